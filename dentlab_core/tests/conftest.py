# dentlab_core/tests/conftest.py

from __future__ import annotations

import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

import pytest
from django.contrib.auth import authenticate, get_user_model
from rest_framework.test import APIClient

from dentlab_core.models import Case, CaseType, UserRole
from dentlab_core.services.case_pipeline import instantiate_case
from dentlab_core.services.stage_templates import create_case_type


def _rand(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


class AuthAPIClient(APIClient):
    """
    Test client that uses force_authenticate for predictable DRF auth.
    """

    _user = None

    def login(self, username: str, password: str, **kwargs) -> bool:  # type: ignore[override]
        user = authenticate(username=username, password=password)
        if not user:
            return False
        self.force_authenticate(user=user)
        self._user = user
        return True

    def as_user(self, user) -> "AuthAPIClient":
        self.force_authenticate(user=user)
        self._user = user
        return self

    def logout(self) -> None:  # type: ignore[override]
        # DO NOT call force_authenticate(user=None) here.
        # DRF's force_authenticate(user=None) calls self.logout() internally.
        super().logout()
        self.handler._force_user = None
        self.handler._force_token = None
        self._user = None


@pytest.fixture
def api_client() -> AuthAPIClient:
    return AuthAPIClient()


# ---------------------------------------------------------------
# Users + roles
# ---------------------------------------------------------------

@pytest.fixture
def make_user(db) -> Callable[..., Any]:
    User = get_user_model()

    def _factory(username: Optional[str] = None, roles: Iterable[str] = (), **extra: Any):
        user = User.objects.create_user(
            username=username or _rand("user"),
            password="pass123",
            **extra,
        )
        for role in roles:
            UserRole.objects.get_or_create(user=user, role=role)
        return user

    return _factory


@pytest.fixture
def user_admin(make_user):
    return make_user("admin", roles=["ADMIN"])


@pytest.fixture
def user_manager(make_user):
    return make_user("manager", roles=["LAB_MANAGER"])


@pytest.fixture
def user_tech(make_user):
    return make_user("labtech", roles=["LAB_TECH"])


@pytest.fixture
def user_courier(make_user):
    return make_user("courier", roles=["COURIER"])


@pytest.fixture
def user_readonly(make_user):
    return make_user("viewer", roles=["READONLY"])


@pytest.fixture
def doctor(make_user):
    return make_user("dr_house", roles=["DOCTOR"], first_name="Greg", last_name="House")


@pytest.fixture
def other_doctor(make_user):
    return make_user("dr_wilson", roles=["DOCTOR"])


# ---------------------------------------------------------------
# Types + cases
# ---------------------------------------------------------------

def stage_list(*names: str, roles: Optional[Dict[str, List[str]]] = None) -> List[Dict[str, Any]]:
    roles = roles or {}
    return [
        {"name": name, "allowed_roles": roles.get(name, [])}
        for name in names
    ]


@pytest.fixture
def case_type_factory(db) -> Callable[..., CaseType]:
    def _factory(
        *,
        key: Optional[str] = None,
        name: Optional[str] = None,
        stages: Optional[List[Dict[str, Any]]] = None,
    ) -> CaseType:
        if stages is None:
            stages = stage_list("Impression", "Design", "Milling")
        return create_case_type(
            key=key or _rand("type"),
            name=name or _rand("Type"),
            stages=stages,
        )

    return _factory


@pytest.fixture
def three_stage_type(case_type_factory) -> CaseType:
    return case_type_factory(key="crown", name="Crown")


@pytest.fixture
def case_factory(db, user_tech, doctor) -> Callable[..., Case]:
    def _factory(
        case_type: CaseType,
        *,
        jump_policy: str = "forward-when-previous-done",
        doctor_user=None,
        actor=None,
        **extra: Any,
    ) -> Case:
        return instantiate_case(
            case_type,
            doctor=doctor_user or doctor,
            jump_policy=jump_policy,
            actor=actor or user_tech,
            **extra,
        )

    return _factory


def statuses(case: Case) -> List[str]:
    return [s.status for s in case.stages.order_by("order")]
