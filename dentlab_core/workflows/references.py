# dentlab_core/workflows/references.py
"""
Doctor reference carried by case projections.

A case always knows its doctor's id; the user row itself may not be
readable (deleted, or not loaded). Readers get one of two explicit shapes
instead of a field that is sometimes an id and sometimes an object.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class Unresolved:
    id: Optional[int]

    def as_dict(self) -> Dict[str, Any]:
        return {"resolved": False, "id": self.id}


@dataclass(frozen=True)
class Resolved:
    id: int
    username: str
    full_name: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "resolved": True,
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
        }


DoctorRef = Union[Unresolved, Resolved]


def doctor_ref(doctor_id: Optional[int], user: Any = None) -> DoctorRef:
    if user is None or getattr(user, "pk", None) is None:
        return Unresolved(id=doctor_id)

    full_name = ""
    get_full_name = getattr(user, "get_full_name", None)
    if callable(get_full_name):
        full_name = (get_full_name() or "").strip()

    return Resolved(
        id=user.pk,
        username=getattr(user, "username", "") or "",
        full_name=full_name,
    )


__all__ = ["Unresolved", "Resolved", "DoctorRef", "doctor_ref"]
