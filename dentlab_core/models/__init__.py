from .core import (
    DEFAULT_STAGE_COLOR,
    TimeStampedModel,
    CaseType,
    StageTemplate,
    Case,
    CaseStage,
    UserRole,
)
from .case_event import CaseEvent

__all__ = [
    "DEFAULT_STAGE_COLOR",
    "TimeStampedModel",
    "CaseType",
    "StageTemplate",
    "Case",
    "CaseStage",
    "UserRole",
    "CaseEvent",
]
