# ===============================================================================
# API PERMISSIONS 🔐
# ===============================================================================

from typing import Any

from rest_framework import permissions
from rest_framework.request import Request


def acting_user_id(request: Request) -> str:
    """Opaque identity string the services key users by."""
    return str(request.user.pk)


class IsStaffOrSelf(permissions.BasePermission):
    """
    Staff may act on any user; everyone else only on themselves.

    Views pass a ``user_id`` query/body parameter; non-staff callers may only
    name their own id.
    """

    def has_permission(self, request: Request, view: Any) -> bool:
        if not (request.user and request.user.is_authenticated):
            return False
        if request.user.is_staff:
            return True
        requested = request.query_params.get("user_id") or request.data.get("user_id")
        return requested in (None, "", acting_user_id(request))
