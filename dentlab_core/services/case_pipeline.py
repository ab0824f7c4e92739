# dentlab_core/services/case_pipeline.py
"""
Authoritative case stage pipeline.

All stage pointer moves and stage status changes MUST go through this module.
Never update stage status or current_stage_order in views or serializers.

Every command runs in one transaction with the case row locked, checks
everything before writing anything, and returns the re-fetched case.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from dentlab_core.models import Case, CaseStage, CaseType
from dentlab_core.services.case_writes import (
    check_expected_version,
    fresh_case,
    lock_case,
    parse_int,
    record_event,
    rejected,
    write_case,
    write_stages,
)
from dentlab_core.services.roles import get_user_roles
from dentlab_core.workflows import (
    CASE_WRITER_ROLES,
    DELIVERY_LOCKED_STATUSES,
    DELIVERY_PENDING,
    DELIVERY_RETURNED,
    DELIVERY_SCHEDULED,
    JUMP_POLICIES,
    STAGE_DONE,
    STAGE_IN_PROGRESS,
    STAGE_PENDING,
    STAGE_STATUSES,
    is_known_policy,
    normalize_policy,
    roles_allow_stage,
)
from dentlab_core.workflows.errors import (
    AuthorizationError,
    InvalidStateError,
    InvalidTransitionError,
    ValidationError,
)
from dentlab_core.workflows.policy import (
    can_transition,
    index_of_order,
    is_fully_done,
    resolve_current_index,
)

logger = logging.getLogger(__name__)


# ===============================================================
# Helpers
# ===============================================================

def _start_first_stage(explicit: Optional[bool]) -> bool:
    if explicit is not None:
        return bool(explicit)
    return bool(getattr(settings, "DENTLAB_START_FIRST_STAGE", True))


def _next_case_code() -> str:
    prefix = getattr(settings, "DENTLAB_CASE_CODE_PREFIX", "JOB") or "JOB"
    n = Case.objects.count() + 1
    while True:
        code = f"{prefix}-{n:06d}"
        if not Case.objects.filter(code=code).exists():
            return code
        n += 1


def _order_at(stages: Sequence[CaseStage], index: int) -> Optional[int]:
    if 0 <= index < len(stages):
        return stages[index].order
    return None


def _delivery_fields_after_stage_change(locked: Case, stages: Sequence[CaseStage]) -> Dict[str, Any]:
    """
    Stage work on a returned case puts it back in the lab queue; optionally a
    case that just became fully done is scheduled in the same write.
    """
    fields: Dict[str, Any] = {}
    status = locked.delivery_status

    if status == DELIVERY_RETURNED:
        status = DELIVERY_PENDING
        fields["delivery_status"] = DELIVERY_PENDING
        fields["delivery_date"] = None

    if (
        status == DELIVERY_PENDING
        and getattr(settings, "DENTLAB_AUTO_SCHEDULE_ON_COMPLETION", False)
        and is_fully_done(stages)
    ):
        fields["delivery_status"] = DELIVERY_SCHEDULED

    return fields


def _projected_for_advance(stages: Sequence[CaseStage], current_index: int) -> List[Dict[str, Any]]:
    """Statuses an advance would produce: the current stage counts as done."""
    out = []
    for i, s in enumerate(stages):
        status = STAGE_DONE if i == current_index else s.status
        out.append({"order": s.order, "status": status})
    return out


def _apply_forward(stages: Sequence[CaseStage], current_index: int, target_index: int, now) -> None:
    if 0 <= current_index < len(stages):
        prev = stages[current_index]
        if prev.status != STAGE_DONE:
            prev.status = STAGE_DONE
            prev.completed_at = now
        if prev.started_at is None:
            prev.started_at = now
        if prev.completed_at is None:
            prev.completed_at = now

    target = stages[target_index]
    target.status = STAGE_IN_PROGRESS
    if target.started_at is None:
        target.started_at = now
    target.completed_at = None


def _apply_backward(stages: Sequence[CaseStage], target_index: int, now) -> None:
    target = stages[target_index]
    target.status = STAGE_IN_PROGRESS
    if target.started_at is None:
        target.started_at = now
    target.completed_at = None

    for s in stages[target_index + 1:]:
        s.status = STAGE_PENDING
        s.started_at = None
        s.completed_at = None


def _stage_finished_by(stages: Sequence[CaseStage], current: int, target: int) -> Optional[CaseStage]:
    """The stage a forward move marks done, when it is not done already."""
    if target > current and 0 <= current < len(stages) and stages[current].status != STAGE_DONE:
        return stages[current]
    return None


def _roles_allow_move(roles, stages: Sequence[CaseStage], current: int, target: int) -> bool:
    if not roles_allow_stage(roles, stages[target].allowed_roles):
        return False
    finishing = _stage_finished_by(stages, current, target)
    return finishing is None or roles_allow_stage(roles, finishing.allowed_roles)


def _check_delivery_lock(locked: Case, action: str) -> None:
    if locked.delivery_status in DELIVERY_LOCKED_STATUSES:
        raise rejected(
            locked,
            action,
            InvalidStateError(
                f"Stages are locked while delivery is '{locked.delivery_status}'.",
                delivery_status=locked.delivery_status,
            ),
        )


def _check_stage_roles(locked: Case, action: str, roles, stage: Optional[CaseStage]) -> None:
    allowed = stage.allowed_roles if stage is not None else []
    if not roles_allow_stage(roles, allowed):
        raise rejected(
            locked,
            action,
            AuthorizationError(
                "You do not have a role allowed on this stage.",
                stage_order=stage.order if stage is not None else None,
                required_roles=sorted(allowed or []),
            ),
        )


# ===============================================================
# Snapshot
# ===============================================================

def instantiate_case(
    case_type: CaseType,
    *,
    doctor,
    jump_policy: str,
    code: Optional[str] = None,
    patient_name: str = "",
    note: str = "",
    actor=None,
    start_first_stage: Optional[bool] = None,
) -> Case:
    """
    Create a case and deep-copy the type's current stage templates into it.

    Later edits of the type never reach this case.
    """
    if case_type is None:
        raise ValidationError("A case type is required.", field="case_type")

    if not is_known_policy(jump_policy):
        raise ValidationError(
            f"Unknown jump policy '{jump_policy}'.",
            field="jump_policy",
            allowed=list(JUMP_POLICIES),
        )
    policy = normalize_policy(jump_policy)

    if actor is not None:
        actor_roles = get_user_roles(actor)
        if not actor_roles & CASE_WRITER_ROLES:
            raise AuthorizationError("You do not have a role allowed to create cases.")
    else:
        actor_roles = set()

    if doctor is None or getattr(doctor, "pk", None) is None:
        raise ValidationError("A doctor is required.", field="doctor")
    if "DOCTOR" not in get_user_roles(doctor):
        raise ValidationError("The selected user is not a doctor.", field="doctor")

    templates = list(case_type.stages.order_by("order", "id"))
    if not templates:
        raise ValidationError(
            f"Type '{case_type.key}' has no stages; cannot create a case from it.",
            field="case_type",
        )

    start = _start_first_stage(start_first_stage)

    with transaction.atomic():
        if code:
            code = str(code).strip()
            if Case.objects.filter(code=code).exists():
                raise ValidationError(f"Case code '{code}' already exists.", field="code")
        else:
            code = _next_case_code()

        case = Case.objects.create(
            code=code,
            doctor=doctor,
            patient_name=str(patient_name or "").strip(),
            note=str(note or ""),
            case_type=case_type,
            jump_policy=policy,
            current_stage_order=1 if start else None,
        )

        CaseStage.objects.bulk_create(
            [
                CaseStage(
                    case=case,
                    key=t.key,
                    name=t.name,
                    order=n,
                    color=t.color,
                    allowed_roles=list(t.allowed_roles or []),
                    status=STAGE_IN_PROGRESS if (start and n == 1) else STAGE_PENDING,
                )
                for n, t in enumerate(templates, start=1)
            ]
        )

        record_event(
            case,
            "create",
            actor,
            actor_roles,
            {"case_type": case_type.key, "stages": len(templates), "jump_policy": policy},
        )

    logger.info("case=%s created from type=%s policy=%s", case.code, case_type.key, policy)
    return fresh_case(case.pk)


# ===============================================================
# Transitions
# ===============================================================

def _transition(
    case: Case,
    actor,
    *,
    action: str,
    pick_target: Callable[[Sequence[CaseStage], int], int],
    advancing: bool = False,
    expected_version: Any = None,
) -> Case:
    roles = get_user_roles(actor)

    with transaction.atomic():
        locked, stages = lock_case(case)
        current = resolve_current_index(stages, locked.current_stage_order)
        target = pick_target(stages, current)

        target_stage = stages[target] if 0 <= target < len(stages) else None

        _check_stage_roles(locked, action, roles, target_stage)
        finishing = _stage_finished_by(stages, current, target)
        if finishing is not None:
            _check_stage_roles(locked, action, roles, finishing)
        _check_delivery_lock(locked, action)
        check_expected_version(locked, expected_version)

        evaluated = _projected_for_advance(stages, current) if advancing else stages
        if not can_transition(evaluated, current, target, locked.jump_policy, True):
            raise rejected(
                locked,
                action,
                InvalidTransitionError(
                    f"Policy '{locked.jump_policy}' does not allow moving "
                    f"from stage {_order_at(stages, current)} to {_order_at(stages, target)}.",
                    policy=locked.jump_policy,
                    from_order=_order_at(stages, current),
                    to_order=_order_at(stages, target),
                ),
            )

        now = timezone.now()
        if target > current:
            _apply_forward(stages, current, target, now)
        else:
            _apply_backward(stages, target, now)

        fields = {"current_stage_order": target_stage.order}
        fields.update(_delivery_fields_after_stage_change(locked, stages))

        write_stages(stages)
        write_case(locked, fields)
        record_event(
            locked,
            action,
            actor,
            roles,
            {
                "from": _order_at(stages, current),
                "to": target_stage.order,
                "policy": locked.jump_policy,
            },
        )

    logger.info(
        "case=%s %s %s -> %s by=%s",
        locked.code,
        action,
        _order_at(stages, current),
        target_stage.order,
        getattr(actor, "username", None),
    )
    return fresh_case(locked.pk)


def apply_transition(
    case: Case,
    target_order: int,
    actor,
    *,
    action: str = "jump",
    expected_version: Any = None,
) -> Case:
    """
    Move the stage pointer to the stage carrying ``target_order``.

    Checks, in order: target exists, actor's roles on the target stage and
    on the stage a forward move finishes, delivery lock, expected version,
    jump policy.
    """
    wanted = parse_int(target_order, "to_order")

    def pick(stages, current):
        idx = index_of_order(stages, wanted)
        if idx < 0:
            raise rejected(
                case,
                action,
                ValidationError(f"Case has no stage with order {wanted}.", field="to_order"),
            )
        return idx

    return _transition(
        case,
        actor,
        action=action,
        pick_target=pick,
        expected_version=expected_version,
    )


def advance(case: Case, actor, *, expected_version: Any = None) -> Case:
    """
    Finish the current stage and start the next one.

    The policy sees the statuses this move would produce, so the stage being
    finished counts as done.
    """
    return _transition(
        case,
        actor,
        action="advance",
        pick_target=lambda stages, current: current + 1,
        advancing=True,
        expected_version=expected_version,
    )


def rewind(case: Case, actor, *, expected_version: Any = None) -> Case:
    """Reopen the previous stage; every later stage goes back to pending."""
    return _transition(
        case,
        actor,
        action="rewind",
        pick_target=lambda stages, current: current - 1,
        expected_version=expected_version,
    )


def set_stage_status(
    case: Case,
    order: int,
    status: str,
    actor,
    *,
    expected_version: Any = None,
) -> Case:
    """
    Change one stage's status without moving the pointer.
    Setting a stage to its current status writes nothing.
    """
    new_status = str(status or "").strip().lower()
    if new_status not in STAGE_STATUSES:
        raise ValidationError(
            f"Unknown stage status '{status}'.",
            field="status",
            allowed=sorted(STAGE_STATUSES),
        )

    wanted = parse_int(order, "order")

    roles = get_user_roles(actor)

    with transaction.atomic():
        locked, stages = lock_case(case)

        idx = index_of_order(stages, wanted)
        if idx < 0:
            raise rejected(
                locked,
                "stage_status",
                ValidationError(f"Case has no stage with order {wanted}.", field="order"),
            )
        stage = stages[idx]

        _check_stage_roles(locked, "stage_status", roles, stage)
        _check_delivery_lock(locked, "stage_status")
        check_expected_version(locked, expected_version)

        previous = stage.status
        if previous == new_status:
            return fresh_case(locked.pk)

        now = timezone.now()
        stage.status = new_status
        if new_status == STAGE_IN_PROGRESS:
            stage.started_at = stage.started_at or now
            stage.completed_at = None
        elif new_status == STAGE_DONE:
            stage.started_at = stage.started_at or now
            stage.completed_at = now
        else:
            stage.started_at = None
            stage.completed_at = None

        write_stages([stage])
        write_case(locked, _delivery_fields_after_stage_change(locked, stages))
        record_event(
            locked,
            "stage_status",
            actor,
            roles,
            {"order": stage.order, "key": stage.key, "from": previous, "to": new_status},
        )

    logger.info(
        "case=%s stage=%s status %s -> %s by=%s",
        locked.code,
        stage.order,
        previous,
        new_status,
        getattr(actor, "username", None),
    )
    return fresh_case(locked.pk)


# ===============================================================
# Introspection
# ===============================================================

def allowed_targets(
    case: Case,
    principal_roles: Iterable[str],
    transition_requested: bool = True,
) -> List[int]:
    """
    Stage orders the principal could jump to right now.
    Read-only; the answer may be stale by the time a move is requested.
    """
    if case.delivery_status in DELIVERY_LOCKED_STATUSES:
        return []

    roles = set(principal_roles or [])
    stages = list(case.stages.order_by("order"))
    current = resolve_current_index(stages, case.current_stage_order)

    out = []
    for i, s in enumerate(stages):
        if not _roles_allow_move(roles, stages, current, i):
            continue
        if can_transition(stages, current, i, case.jump_policy, transition_requested):
            out.append(s.order)
    return out


def move_options(case: Case, principal_roles: Iterable[str]) -> Dict[str, Any]:
    """Jump targets plus whether advance / rewind would currently pass."""
    roles = set(principal_roles or [])
    stages = list(case.stages.order_by("order"))
    current = resolve_current_index(stages, case.current_stage_order)
    locked = case.delivery_status in DELIVERY_LOCKED_STATUSES

    def _ok(target: int, evaluated) -> bool:
        if locked or not (0 <= target < len(stages)):
            return False
        if not _roles_allow_move(roles, stages, current, target):
            return False
        return can_transition(evaluated, current, target, case.jump_policy, True)

    return {
        "current_order": _order_at(stages, current),
        "jump": allowed_targets(case, roles),
        "advance": _ok(current + 1, _projected_for_advance(stages, current)),
        "rewind": _ok(current - 1, stages),
    }


__all__ = [
    "instantiate_case",
    "apply_transition",
    "advance",
    "rewind",
    "set_stage_status",
    "allowed_targets",
    "move_options",
]
