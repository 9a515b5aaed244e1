# permissions/roles.py

from __future__ import annotations

from typing import Optional

from rest_framework.permissions import BasePermission


# =========================================================
# ROLE CONSTANTS (STAFF JOB ROLES)
# =========================================================
ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_CASHIER = "cashier"
ROLE_CAPTAIN = "captain"  # floor / table captain

STAFF_ROLES = {
    ROLE_ADMIN,
    ROLE_MANAGER,
    ROLE_CASHIER,
    ROLE_CAPTAIN,
}


# =========================================================
# CAPABILITIES (THE REAL PERMISSION LANGUAGE)
# =========================================================
# Views protect capabilities, not raw roles.
CAP_PAYMENTS_COLLECT = "payments.collect"
CAP_PAYMENTS_VIEW = "payments.view"
CAP_PAYMENTS_REFUND_REQUEST = "payments.refund_request"
CAP_PAYMENTS_REFUND_APPROVE = "payments.refund_approve"

CAP_CASH_SHIFT_MANAGE = "cash.shift_manage"  # open/close shift, cash in/out, expenses
CAP_CASH_VIEW = "cash.view"

ALL_CAPABILITIES = {
    CAP_PAYMENTS_COLLECT,
    CAP_PAYMENTS_VIEW,
    CAP_PAYMENTS_REFUND_REQUEST,
    CAP_PAYMENTS_REFUND_APPROVE,
    CAP_CASH_SHIFT_MANAGE,
    CAP_CASH_VIEW,
}


# =========================================================
# ROLE → CAPABILITY MAP
# =========================================================
ROLE_CAPABILITIES: dict[str, set[str]] = {
    ROLE_ADMIN: {
        *ALL_CAPABILITIES,
    },
    ROLE_MANAGER: {
        *ALL_CAPABILITIES,
    },
    ROLE_CASHIER: {
        CAP_PAYMENTS_COLLECT,
        CAP_PAYMENTS_VIEW,
        CAP_PAYMENTS_REFUND_REQUEST,
        CAP_CASH_SHIFT_MANAGE,
        CAP_CASH_VIEW,
        # approving refunds stays with managers
    },
    ROLE_CAPTAIN: {
        CAP_PAYMENTS_COLLECT,
        CAP_PAYMENTS_VIEW,
    },
}


# =========================================================
# Helpers
# =========================================================
def get_user_role(user) -> Optional[str]:
    return getattr(user, "role", None)


def effective_capabilities_for(user) -> set[str]:
    if getattr(user, "is_superuser", False):
        return set(ALL_CAPABILITIES)
    return set(ROLE_CAPABILITIES.get(get_user_role(user), set()))


# =========================================================
# Capability Permissions
# =========================================================
class HasCapability(BasePermission):
    """
    Require a specific capability.

    Usage:
        permission_classes = [IsAuthenticated, HasCapability]
        view.required_capability = CAP_PAYMENTS_COLLECT
    """

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False

        required = getattr(view, "required_capability", None)
        if not required:
            # deny-by-default when a view forgets to declare one
            return False

        return required in effective_capabilities_for(user)


class HasAnyCapability(BasePermission):
    """
    Require ANY capability from a set.

    Usage:
        view.required_any_capabilities = {CAP_PAYMENTS_VIEW, CAP_CASH_VIEW}
    """

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False

        required = getattr(view, "required_any_capabilities", None)
        if not required:
            return False

        caps = effective_capabilities_for(user)
        return any(cap in caps for cap in set(required))
