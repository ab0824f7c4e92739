# dentlab_core/services/case_writes.py
"""
Persistence primitives shared by the case pipeline and delivery services.

All of them expect to run inside ``transaction.atomic()``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from django.db.models import F
from django.utils import timezone

from dentlab_core.models import Case, CaseEvent, CaseStage
from dentlab_core.services.roles import event_actor_role
from dentlab_core.workflows.errors import InvalidStateError, PipelineError, ValidationError

logger = logging.getLogger("dentlab_core.services")


def fresh_case(pk: int) -> Case:
    """Authoritative re-read returned by every command."""
    return (
        Case.objects.select_related("case_type", "approved_by")
        .prefetch_related("stages")
        .get(pk=pk)
    )


def lock_case(case: Case) -> Tuple[Case, List[CaseStage]]:
    locked = Case.objects.select_for_update().get(pk=case.pk)
    stages = list(
        CaseStage.objects.select_for_update()
        .filter(case_id=locked.pk)
        .order_by("order")
    )
    return locked, stages


def parse_int(value: Any, field: str) -> int:
    """
    Integer from a request value. Bools and non-integral floats are
    rejected; integral floats and digit strings are accepted.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer.", field=field)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        digits = text[1:] if text[:1] in ("+", "-") else text
        if digits.isdecimal():
            return int(text)
    raise ValidationError(f"{field} must be an integer.", field=field)


def check_expected_version(locked: Case, expected_version: Any) -> None:
    if expected_version is None or expected_version == "":
        return
    expected = parse_int(expected_version, "version")
    if expected != locked.version:
        raise InvalidStateError(
            "Case was modified since it was read; reload and retry.",
            expected_version=expected,
            version=locked.version,
        )


def write_case(locked: Case, fields: Dict[str, Any]) -> None:
    """
    Conditional write keyed on the version read under the lock.
    Bypasses the model write guard on purpose: this is the pipeline.
    """
    values = dict(fields)
    values["version"] = F("version") + 1
    values["updated_at"] = timezone.now()

    updated = Case.objects.filter(pk=locked.pk, version=locked.version).update(**values)
    if updated != 1:
        raise InvalidStateError(
            "Case was modified concurrently; reload and retry.",
            version=locked.version,
        )


def write_stages(stages: Iterable[CaseStage]) -> None:
    stages = list(stages)
    if stages:
        CaseStage.objects.bulk_update(stages, ["status", "started_at", "completed_at"])


def record_event(
    locked: Case,
    action: str,
    actor,
    roles: Iterable[str],
    meta: Optional[Dict[str, Any]] = None,
) -> CaseEvent:
    performed_by = actor if actor is not None and getattr(actor, "is_authenticated", False) else None
    return CaseEvent.objects.create(
        case_id=locked.pk,
        action=action,
        actor_role=event_actor_role(roles),
        performed_by=performed_by,
        meta=meta or {},
    )


def rejected(case: Case, action: str, exc: PipelineError) -> PipelineError:
    logger.warning(
        "case=%s %s rejected: %s %s",
        getattr(case, "code", case.pk),
        action,
        exc.default_code,
        exc.message,
    )
    return exc
