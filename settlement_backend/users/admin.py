# users/admin.py

"""
STAFF ADMIN

POS staff are managed here: email login, job role, activation.
Capabilities follow from the role (permissions/roles.py); Django groups
and model permissions only matter for admin access itself.
"""

from __future__ import annotations

from django.contrib import admin, messages
from django.contrib.auth import get_user_model
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin

User = get_user_model()


def _set_role_action(role: str, label: str):
    def action(modeladmin, request, queryset):
        updated = queryset.exclude(role=role).update(role=role)
        modeladmin.message_user(request, f"{updated} staff moved to {label}.", messages.SUCCESS)

    action.__name__ = f"set_role_{role}"
    action.short_description = f"Set role: {label}"
    return action


@admin.register(User)
class StaffAdmin(DjangoUserAdmin):
    ordering = ("role", "email")
    list_display = ("email", "first_name", "last_name", "role", "is_active", "last_login")
    list_filter = ("role", "is_active", "is_staff")
    search_fields = ("email", "first_name", "last_name")
    readonly_fields = ("last_login", "created_at", "updated_at")

    actions = [_set_role_action(code, label) for code, label in User.ROLE_CHOICES]

    fieldsets = (
        (None, {"fields": ("email", "password")}),
        ("Staff", {"fields": ("first_name", "last_name", "role", "is_active")}),
        ("Admin access", {"fields": ("is_staff", "is_superuser", "groups", "user_permissions")}),
        ("Dates", {"fields": ("last_login", "created_at", "updated_at")}),
    )

    add_fieldsets = (
        (
            None,
            {
                "classes": ("wide",),
                "fields": ("email", "first_name", "last_name", "role", "password1", "password2"),
            },
        ),
    )
