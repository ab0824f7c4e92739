# dentlab_core/workflows/__init__.py
from __future__ import annotations

from typing import Dict, Iterable, List, Set


# ===============================================================
# Canonical stage / delivery vocabularies
# ===============================================================

STAGE_PENDING = "pending"
STAGE_IN_PROGRESS = "in_progress"
STAGE_DONE = "done"

STAGE_STATUSES: Set[str] = {STAGE_PENDING, STAGE_IN_PROGRESS, STAGE_DONE}

DELIVERY_PENDING = "pending"
DELIVERY_SCHEDULED = "scheduled"
DELIVERY_DELIVERED = "delivered"
DELIVERY_RETURNED = "returned"

DELIVERY_STATUSES: Set[str] = {
    DELIVERY_PENDING,
    DELIVERY_SCHEDULED,
    DELIVERY_DELIVERED,
    DELIVERY_RETURNED,
}

# Stage pointer is frozen while the case is out of the lab.
DELIVERY_LOCKED_STATUSES: Set[str] = {DELIVERY_SCHEDULED, DELIVERY_DELIVERED}


# ===============================================================
# Jump policies
# ===============================================================

POLICY_NONE = "none"
POLICY_NEXT_ONLY = "next-only"
POLICY_FORWARD_ANY = "forward-any"
POLICY_FORWARD_WHEN_PREVIOUS_DONE = "forward-when-previous-done"
POLICY_BOTH_WHEN_PREVIOUS_DONE = "both-when-previous-done"

JUMP_POLICIES: List[str] = [
    POLICY_NONE,
    POLICY_NEXT_ONLY,
    POLICY_FORWARD_ANY,
    POLICY_FORWARD_WHEN_PREVIOUS_DONE,
    POLICY_BOTH_WHEN_PREVIOUS_DONE,
]


def normalize_policy(value: str) -> str:
    return str(value or "").strip().lower().replace("_", "-")


def is_known_policy(value: str) -> bool:
    return normalize_policy(value) in JUMP_POLICIES


# ===============================================================
# Role normalization
# ===============================================================

ROLE_ALIASES: Dict[str, str] = {
    "ADMIN": "ADMIN",
    "SYSTEM_ADMIN": "ADMIN",
    "SUPERUSER": "ADMIN",
    "LAB_MANAGER": "LAB_MANAGER",
    "MANAGER": "LAB_MANAGER",
    "LAB_TECH": "LAB_TECH",
    "TECHNICIAN": "LAB_TECH",
    "TECH": "LAB_TECH",
    "COURIER": "COURIER",
    "DRIVER": "COURIER",
    "DELIVERY": "COURIER",
    "DOCTOR": "DOCTOR",
    "DENTIST": "DOCTOR",
    "READONLY": "READONLY",
    "VIEWER": "READONLY",
}

KNOWN_ROLES: Set[str] = set(ROLE_ALIASES.values())

# Roles that may edit the per-type stage catalog.
TEMPLATE_EDITOR_ROLES: Set[str] = {"ADMIN", "LAB_MANAGER"}

# Roles that may create, edit and delete cases.
CASE_WRITER_ROLES: Set[str] = {"ADMIN", "LAB_MANAGER", "LAB_TECH"}

# Roles that never move lab stages, whatever a stage's allowed_roles say.
NON_MUTATING_ROLES: Set[str] = {"READONLY", "DOCTOR"}


def normalize_role(value: str) -> str:
    raw = str(value or "").strip().upper().replace(" ", "_").replace("-", "_")
    return ROLE_ALIASES.get(raw, raw or "READONLY")


def normalize_roles(values: Iterable[str]) -> Set[str]:
    return {normalize_role(v) for v in (values or []) if str(v or "").strip()}


def roles_allow_stage(principal_roles: Iterable[str], allowed_roles: Iterable[str]) -> bool:
    """
    Role gate for a single stage.

    ADMIN always passes. A principal holding only non-mutating roles never
    passes. Otherwise an empty allowed_roles list means unrestricted.
    """
    roles = normalize_roles(principal_roles)

    if "ADMIN" in roles:
        return True

    if not roles - NON_MUTATING_ROLES:
        return False

    allowed = normalize_roles(allowed_roles)
    if not allowed:
        return True

    return bool(roles & allowed)


__all__ = [
    "STAGE_PENDING",
    "STAGE_IN_PROGRESS",
    "STAGE_DONE",
    "STAGE_STATUSES",
    "DELIVERY_PENDING",
    "DELIVERY_SCHEDULED",
    "DELIVERY_DELIVERED",
    "DELIVERY_RETURNED",
    "DELIVERY_STATUSES",
    "DELIVERY_LOCKED_STATUSES",
    "POLICY_NONE",
    "POLICY_NEXT_ONLY",
    "POLICY_FORWARD_ANY",
    "POLICY_FORWARD_WHEN_PREVIOUS_DONE",
    "POLICY_BOTH_WHEN_PREVIOUS_DONE",
    "JUMP_POLICIES",
    "normalize_policy",
    "is_known_policy",
    "ROLE_ALIASES",
    "KNOWN_ROLES",
    "TEMPLATE_EDITOR_ROLES",
    "CASE_WRITER_ROLES",
    "NON_MUTATING_ROLES",
    "normalize_role",
    "normalize_roles",
    "roles_allow_stage",
]
