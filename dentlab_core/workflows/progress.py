# dentlab_core/workflows/progress.py
from __future__ import annotations

import math
from typing import Any, Optional, Sequence

from . import STAGE_DONE, STAGE_IN_PROGRESS
from .policy import stage_order, stage_status

STAGE_WEIGHTS = {
    STAGE_DONE: 1.0,
    STAGE_IN_PROGRESS: 0.5,
}

# Any non-zero progress is shown as at least this much.
MIN_VISIBLE_PCT = 3


def compute_progress(stages: Sequence[Any], current_order: Optional[int] = None) -> int:
    """
    Integer completion percentage in [0, 100].

    done counts 1, in_progress counts 0.5. When nothing is started but the
    pointer sits on ``current_order`` the stages before it count as done and
    the pointer stage as half done.
    """
    if not stages:
        return 0

    total = sum(STAGE_WEIGHTS.get(stage_status(s), 0.0) for s in stages)

    if total == 0 and current_order is not None and current_order > 0:
        before = 0
        for s in stages:
            o = stage_order(s)
            if o is not None and o < current_order:
                before += 1
        total = before + 0.5

    pct = total / len(stages) * 100

    if 0 < pct < MIN_VISIBLE_PCT:
        pct = MIN_VISIBLE_PCT
    pct = max(0.0, min(100.0, pct))

    # half-up, not banker's rounding
    return int(math.floor(pct + 0.5))


__all__ = ["compute_progress", "STAGE_WEIGHTS", "MIN_VISIBLE_PCT"]
