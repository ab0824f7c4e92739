# dentlab_core/permissions.py
from __future__ import annotations

from rest_framework.permissions import BasePermission, SAFE_METHODS

from .services.roles import get_user_roles
from .workflows import CASE_WRITER_ROLES, TEMPLATE_EDITOR_ROLES


def _roles(request) -> set[str]:
    user = getattr(request, "user", None)
    if not user or not user.is_authenticated:
        return set()
    # cached per request: several permission checks may run
    cached = getattr(request, "_dentlab_roles", None)
    if cached is None:
        cached = get_user_roles(user)
        request._dentlab_roles = cached
    return cached


def is_lab_reader(roles: set[str]) -> bool:
    """Any role besides DOCTOR gives read access to lab-side case data."""
    return bool(roles - {"DOCTOR"})


class _RolePermission(BasePermission):
    write_roles: set[str] = set()

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False

        roles = _roles(request)

        if request.method in SAFE_METHODS:
            return is_lab_reader(roles)

        return "ADMIN" in roles or bool(roles & self.write_roles)


class IsTemplateEditorOrReadOnly(_RolePermission):
    """
    Read: any lab-side role
    Write: ADMIN or LAB_MANAGER
    """

    message = "Editing case types requires the ADMIN or LAB_MANAGER role."
    write_roles = TEMPLATE_EDITOR_ROLES


class IsCaseWriterOrReadOnly(_RolePermission):
    """
    Read: any lab-side role
    Write (create / edit / delete cases): ADMIN, LAB_MANAGER or LAB_TECH
    """

    message = "Changing cases requires a lab role."
    write_roles = CASE_WRITER_ROLES


class IsAdminRole(BasePermission):
    message = "Administrator role required."

    def has_permission(self, request, view):
        return "ADMIN" in _roles(request)


class IsDoctor(BasePermission):
    message = "Doctor role required."

    def has_permission(self, request, view):
        return "DOCTOR" in _roles(request)
