# outlets/admin.py

from django.contrib import admin

from outlets.models import Floor, Outlet, Table, TableMerge, TableSession


@admin.register(Outlet)
class OutletAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "phone", "is_active", "created_at")
    search_fields = ("name", "code")
    list_filter = ("is_active",)


@admin.register(Floor)
class FloorAdmin(admin.ModelAdmin):
    list_display = ("name", "outlet", "display_order", "is_active")
    list_filter = ("outlet",)


@admin.register(Table)
class TableAdmin(admin.ModelAdmin):
    list_display = ("number", "outlet", "floor", "capacity", "status")
    list_filter = ("outlet", "status")
    search_fields = ("number",)


@admin.register(TableSession)
class TableSessionAdmin(admin.ModelAdmin):
    list_display = ("id", "table", "status", "started_at", "ended_at")
    list_filter = ("status",)


@admin.register(TableMerge)
class TableMergeAdmin(admin.ModelAdmin):
    list_display = ("primary_table", "merged_table", "merged_capacity", "merged_at", "unmerged_at")
