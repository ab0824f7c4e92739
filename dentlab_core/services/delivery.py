# dentlab_core/services/delivery.py
"""
Delivery and doctor approval for finished cases.

pending -> scheduled -> delivered -> returned -> scheduled ...
Approval is a separate flag the case's doctor sets once, while delivered.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Optional, Set

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date

from dentlab_core.models import Case
from dentlab_core.services.case_writes import (
    check_expected_version,
    fresh_case,
    lock_case,
    record_event,
    rejected,
    write_case,
)
from dentlab_core.services.roles import delivery_roles, get_user_roles
from dentlab_core.workflows import (
    DELIVERY_DELIVERED,
    DELIVERY_RETURNED,
    DELIVERY_SCHEDULED,
    DELIVERY_STATUSES,
)
from dentlab_core.workflows.delivery import can_approve, validate_delivery_transition
from dentlab_core.workflows.errors import AuthorizationError, InvalidStateError, ValidationError
from dentlab_core.workflows.policy import is_fully_done

logger = logging.getLogger(__name__)


def _coerce_date(value: Any) -> Optional[datetime.date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    parsed = parse_date(str(value))
    if parsed is None:
        raise ValidationError("date must be YYYY-MM-DD.", field="date")
    return parsed


def _require_delivery_role(case: Case, actor) -> Set[str]:
    roles = get_user_roles(actor)
    if not ("ADMIN" in roles or roles & delivery_roles()):
        raise rejected(
            case,
            "delivery",
            AuthorizationError(
                "You do not have a role allowed to update delivery.",
                required_roles=sorted(delivery_roles()),
            ),
        )
    return roles


def _move_delivery(
    case: Case,
    target: str,
    actor,
    *,
    date: Any = None,
    note: Optional[str] = None,
    expected_version: Any = None,
) -> Case:
    action = "delivery"
    roles = _require_delivery_role(case, actor)
    when = _coerce_date(date)

    with transaction.atomic():
        locked, stages = lock_case(case)

        check_expected_version(locked, expected_version)

        current = locked.delivery_status
        try:
            validate_delivery_transition(current, target)
        except ValueError as e:
            raise rejected(
                locked,
                action,
                InvalidStateError(str(e), delivery_status=current, requested=target),
            )

        if target == DELIVERY_SCHEDULED and not is_fully_done(stages):
            raise rejected(
                locked,
                action,
                InvalidStateError(
                    "Every stage must be done before delivery is scheduled.",
                    delivery_status=current,
                ),
            )

        if target == DELIVERY_RETURNED and locked.approved:
            raise rejected(
                locked,
                action,
                InvalidStateError("An approved case cannot be returned.", delivery_status=current),
            )

        fields = {"delivery_status": target}
        if target == DELIVERY_DELIVERED:
            fields["delivery_date"] = when or timezone.localdate()
        elif target == DELIVERY_SCHEDULED:
            fields["delivery_date"] = when
        if note is not None:
            fields["delivery_note"] = str(note)

        write_case(locked, fields)
        record_event(
            locked,
            action,
            actor,
            roles,
            {
                "from": current,
                "to": target,
                "date": fields.get("delivery_date").isoformat() if fields.get("delivery_date") else None,
            },
        )

    logger.info(
        "case=%s delivery %s -> %s by=%s",
        locked.code,
        current,
        target,
        getattr(actor, "username", None),
    )
    return fresh_case(locked.pk)


def mark_scheduled(case: Case, actor, *, date: Any = None, note: Optional[str] = None,
                   expected_version: Any = None) -> Case:
    """Requires the case to be fully done."""
    return _move_delivery(
        case, DELIVERY_SCHEDULED, actor, date=date, note=note, expected_version=expected_version
    )


def mark_delivered(case: Case, actor, *, date: Any = None, note: Optional[str] = None,
                   expected_version: Any = None) -> Case:
    """Stamps delivery_date (today unless given)."""
    return _move_delivery(
        case, DELIVERY_DELIVERED, actor, date=date, note=note, expected_version=expected_version
    )


def mark_returned(case: Case, actor, *, note: Optional[str] = None,
                  expected_version: Any = None) -> Case:
    return _move_delivery(
        case, DELIVERY_RETURNED, actor, note=note, expected_version=expected_version
    )


DELIVERY_COMMANDS = {
    DELIVERY_SCHEDULED: mark_scheduled,
    DELIVERY_DELIVERED: mark_delivered,
    DELIVERY_RETURNED: mark_returned,
}


def set_delivery_status(case: Case, status: str, actor, *, date: Any = None,
                        note: Optional[str] = None, expected_version: Any = None) -> Case:
    """Dispatch on the requested delivery status (used by the HTTP layer)."""
    _require_delivery_role(case, actor)

    target = str(status or "").strip().lower()
    if target not in DELIVERY_STATUSES:
        raise ValidationError(
            f"Unknown delivery status '{status}'.",
            field="status",
            allowed=sorted(DELIVERY_STATUSES),
        )
    if target not in DELIVERY_COMMANDS:
        # pending is only ever reached through stage work on a returned case
        raise InvalidStateError(
            "Delivery cannot be set back to pending directly.",
            delivery_status=case.delivery_status,
            requested=target,
        )

    kwargs = {"note": note, "expected_version": expected_version}
    if target != DELIVERY_RETURNED:
        kwargs["date"] = date
    return DELIVERY_COMMANDS[target](case, actor, **kwargs)


# ===============================================================
# Doctor approval
# ===============================================================

def mark_approved(case: Case, by, note: str = "", *, expected_version: Any = None) -> Case:
    """
    Doctor acknowledges reception of a delivered case.

    Only the case's own doctor may approve, only while delivered, and only
    once: a second call is rejected and approved_at is left untouched.
    """
    action = "approve"

    with transaction.atomic():
        locked, _ = lock_case(case)

        if by is None or getattr(by, "pk", None) is None or by.pk != locked.doctor_id:
            raise rejected(
                locked,
                action,
                AuthorizationError("Only the case's doctor can approve it."),
            )

        check_expected_version(locked, expected_version)

        if not can_approve(locked.delivery_status, locked.approved):
            msg = (
                "Case is already approved."
                if locked.approved
                else f"Case can only be approved once delivered (delivery is '{locked.delivery_status}')."
            )
            raise rejected(
                locked,
                action,
                InvalidStateError(
                    msg,
                    delivery_status=locked.delivery_status,
                    approved=locked.approved,
                ),
            )

        now = timezone.now()
        write_case(
            locked,
            {
                "approved": True,
                "approved_at": now,
                "approved_by": by,
                "approval_note": str(note or ""),
            },
        )
        record_event(locked, action, by, {"DOCTOR"}, {"by": by.pk})

    logger.info("case=%s approved by=%s", locked.code, getattr(by, "username", by.pk))
    return fresh_case(locked.pk)


__all__ = [
    "mark_scheduled",
    "mark_delivered",
    "mark_returned",
    "set_delivery_status",
    "mark_approved",
]
