# dentlab_core/workflows/errors.py
"""
Typed rejections raised by the case pipeline.

They are DRF APIExceptions so views can let them propagate: DRF's exception
handler renders ``{"error": <code>, "detail": <message>, ...extra}`` with the
matching status code. Nothing is written before one of these is raised.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from rest_framework import status
from rest_framework.exceptions import APIException


class PipelineError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "pipeline_error"
    default_detail = "Case pipeline request rejected."

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = str(message or self.default_detail)
        self.extra: Dict[str, Any] = dict(extra)
        # Kept as a plain dict so DRF renders it as-is.
        self.detail = {"error": self.default_code, "detail": self.message, **self.extra}

    def __str__(self) -> str:
        return self.message


class ValidationError(PipelineError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation_error"
    default_detail = "Invalid input."


class AuthorizationError(PipelineError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "authorization_error"
    default_detail = "You do not have the required role for this action."


class InvalidTransitionError(PipelineError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "invalid_transition"
    default_detail = "The jump policy does not allow this move."


class InvalidStateError(PipelineError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "invalid_state"
    default_detail = "The case is not in a state that allows this action."


__all__ = [
    "PipelineError",
    "ValidationError",
    "AuthorizationError",
    "InvalidTransitionError",
    "InvalidStateError",
]
