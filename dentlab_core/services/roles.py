# dentlab_core/services/roles.py

from __future__ import annotations

from typing import Iterable, Set

from django.conf import settings

from dentlab_core.models import UserRole
from dentlab_core.workflows import normalize_role, normalize_roles


def get_user_roles(user) -> Set[str]:
    """
    Effective normalized roles for a user.
    Superusers are treated as ADMIN on top of whatever they hold.
    """
    if not user or not getattr(user, "is_authenticated", False):
        return set()

    roles = normalize_roles(
        UserRole.objects.filter(user=user).values_list("role", flat=True)
    )

    if getattr(user, "is_superuser", False):
        roles.add("ADMIN")

    return roles


def delivery_roles() -> Set[str]:
    return normalize_roles(getattr(settings, "DENTLAB_DELIVERY_ROLES", []) or [])


def event_actor_role(roles: Iterable[str]) -> str:
    """
    Audit label for the acting side: SYSTEM when nobody acts, DOCTOR when the
    principal only holds the doctor role, LAB otherwise.
    """
    rs = {normalize_role(r) for r in roles}
    if not rs:
        return "SYSTEM"
    if "DOCTOR" in rs and not rs - {"DOCTOR", "READONLY"}:
        return "DOCTOR"
    return "LAB"
