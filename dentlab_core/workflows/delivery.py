# dentlab_core/workflows/delivery.py
from __future__ import annotations

from typing import Dict, List, Set

from . import (
    DELIVERY_DELIVERED,
    DELIVERY_PENDING,
    DELIVERY_RETURNED,
    DELIVERY_SCHEDULED,
    DELIVERY_STATUSES,
)


DELIVERY_TRANSITIONS: Dict[str, Set[str]] = {
    DELIVERY_PENDING: {DELIVERY_SCHEDULED},
    DELIVERY_SCHEDULED: {DELIVERY_DELIVERED},
    DELIVERY_DELIVERED: {DELIVERY_RETURNED},
    DELIVERY_RETURNED: {DELIVERY_SCHEDULED},
}


def normalize_delivery_status(value: str) -> str:
    return str(value or "").strip().lower()


def allowed_delivery_targets(current: str) -> List[str]:
    return sorted(DELIVERY_TRANSITIONS.get(normalize_delivery_status(current), set()))


def validate_delivery_transition(current: str, target: str) -> None:
    """
    Raises ValueError when ``current -> target`` is not a delivery edge.

    Preconditions that depend on the case (fully done, approval) are checked
    by the delivery service, not here.
    """
    cur = normalize_delivery_status(current)
    tgt = normalize_delivery_status(target)

    if cur not in DELIVERY_STATUSES:
        raise ValueError(f"Unknown delivery status: {cur}")
    if tgt not in DELIVERY_STATUSES:
        raise ValueError(f"Unknown delivery status: {tgt}")
    if tgt not in DELIVERY_TRANSITIONS[cur]:
        raise ValueError(f"Invalid delivery transition: {cur} -> {tgt}")


def can_approve(delivery_status: str, approved: bool) -> bool:
    return normalize_delivery_status(delivery_status) == DELIVERY_DELIVERED and not approved


__all__ = [
    "DELIVERY_TRANSITIONS",
    "normalize_delivery_status",
    "allowed_delivery_targets",
    "validate_delivery_transition",
    "can_approve",
]
