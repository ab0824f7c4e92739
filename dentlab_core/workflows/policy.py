# dentlab_core/workflows/policy.py
"""
Jump policy rules for moving a case's stage pointer.

Pure functions only: no ORM access, no side effects. Stages may be model
instances or plain mappings; only ``status`` (and ``order`` where noted) is read.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

from . import (
    POLICY_BOTH_WHEN_PREVIOUS_DONE,
    POLICY_FORWARD_ANY,
    POLICY_FORWARD_WHEN_PREVIOUS_DONE,
    POLICY_NEXT_ONLY,
    POLICY_NONE,
    STAGE_DONE,
    STAGE_IN_PROGRESS,
    normalize_policy,
)


def _field(stage: Any, name: str, default: Any = None) -> Any:
    if isinstance(stage, Mapping):
        return stage.get(name, default)
    return getattr(stage, name, default)


def stage_status(stage: Any) -> str:
    return str(_field(stage, "status", "") or "").strip().lower()


def stage_order(stage: Any) -> Optional[int]:
    value = _field(stage, "order")
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def chain_done_until(stages: Sequence[Any], index: int) -> bool:
    """True when every stage at a position before ``index`` is done."""
    return all(stage_status(s) == STAGE_DONE for s in stages[: max(index, 0)])


def can_transition(
    stages: Sequence[Any],
    current_index: int,
    target_index: int,
    policy: str,
    transition_requested: bool = True,
) -> bool:
    """
    Decide whether the pointer may move from ``current_index`` to ``target_index``.

    | policy                     | rule                                  |
    |----------------------------|---------------------------------------|
    | none                       | never                                 |
    | next-only                  | target == current + 1                 |
    | forward-any                | target > current                      |
    | forward-when-previous-done | target > current and chain done       |
    | both-when-previous-done    | chain done up to target               |

    Always false when no transition is requested, when the target equals the
    current position, when the target is out of range, or for unknown policies.
    """
    if not transition_requested:
        return False

    p = normalize_policy(policy)
    if p == POLICY_NONE:
        return False

    if not isinstance(target_index, int) or not (0 <= target_index < len(stages)):
        return False

    if target_index == current_index:
        return False

    is_forward = target_index > current_index

    if p == POLICY_NEXT_ONLY:
        return target_index == current_index + 1
    if p == POLICY_FORWARD_ANY:
        return is_forward
    if p == POLICY_FORWARD_WHEN_PREVIOUS_DONE:
        return is_forward and chain_done_until(stages, target_index)
    if p == POLICY_BOTH_WHEN_PREVIOUS_DONE:
        return chain_done_until(stages, target_index)

    return False


# ===============================================================
# Pointer resolution
# ===============================================================

def index_of_order(stages: Sequence[Any], order: Optional[int]) -> int:
    """Position of the stage carrying ``order``; -1 when absent."""
    if order is None:
        return -1
    for i, s in enumerate(stages):
        if stage_order(s) == order:
            return i
    return -1


def resolve_current_index(stages: Sequence[Any], current_order: Optional[int] = None) -> int:
    """
    Current position in an ordered stage list.

    An explicit pointer wins when it names an existing stage. Otherwise the
    first in_progress stage, else the first stage not done, else the last one.
    Returns -1 for an empty list.
    """
    if not stages:
        return -1

    idx = index_of_order(stages, current_order)
    if idx >= 0:
        return idx

    for i, s in enumerate(stages):
        if stage_status(s) == STAGE_IN_PROGRESS:
            return i

    for i, s in enumerate(stages):
        if stage_status(s) != STAGE_DONE:
            return i

    return len(stages) - 1


def is_fully_done(stages: Sequence[Any]) -> bool:
    """Every stage done; an empty list is never fully done."""
    return bool(stages) and all(stage_status(s) == STAGE_DONE for s in stages)


__all__ = [
    "stage_status",
    "stage_order",
    "chain_done_until",
    "can_transition",
    "index_of_order",
    "resolve_current_index",
    "is_fully_done",
]
