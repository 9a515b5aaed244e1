# payments/api/urls.py

from django.urls import path

from payments.api.views import (
    OrderPaymentsView,
    PaymentCreateView,
    RefundApproveView,
    RefundCreateView,
    SplitPaymentCreateView,
)

urlpatterns = [
    path("", PaymentCreateView.as_view(), name="payment-create"),
    path("split/", SplitPaymentCreateView.as_view(), name="payment-split"),
    path("orders/<uuid:order_id>/", OrderPaymentsView.as_view(), name="order-payments"),
    path("refunds/", RefundCreateView.as_view(), name="refund-create"),
    path("refunds/<uuid:refund_id>/approve/", RefundApproveView.as_view(), name="refund-approve"),
]
