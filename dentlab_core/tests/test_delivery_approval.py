# dentlab_core/tests/test_delivery_approval.py

import datetime

import pytest

from dentlab_core.models import CaseEvent
from dentlab_core.services.case_pipeline import set_stage_status
from dentlab_core.services.delivery import (
    mark_approved,
    mark_delivered,
    mark_returned,
    mark_scheduled,
    set_delivery_status,
)
from dentlab_core.workflows.errors import (
    AuthorizationError,
    InvalidStateError,
    ValidationError,
)


@pytest.fixture
def finished_case(three_stage_type, case_factory, user_tech):
    case = case_factory(three_stage_type)
    for order in (1, 2, 3):
        case = set_stage_status(case, order, "done", user_tech)
    return case


@pytest.fixture
def delivered_case(finished_case, user_tech):
    case = mark_scheduled(finished_case, user_tech)
    return mark_delivered(case, user_tech, date="2026-03-02")


# ---------------------------------------------------------
# Delivery
# ---------------------------------------------------------
@pytest.mark.django_db
def test_schedule_requires_every_stage_done(three_stage_type, case_factory, user_tech):
    case = case_factory(three_stage_type)
    with pytest.raises(InvalidStateError):
        mark_scheduled(case, user_tech)
    case.refresh_from_db()
    assert case.delivery_status == "pending"


@pytest.mark.django_db
def test_schedule_then_deliver_records_dates(finished_case, user_courier):
    case = mark_scheduled(finished_case, user_courier, date="2026-03-01", note="morning run")
    assert case.delivery_status == "scheduled"
    assert case.delivery_date == datetime.date(2026, 3, 1)
    assert case.delivery_note == "morning run"

    case = mark_delivered(case, user_courier)
    assert case.delivery_status == "delivered"
    assert case.delivery_date is not None
    assert case.delivery_note == "morning run"


@pytest.mark.django_db
def test_delivery_edges_are_enforced(finished_case, user_tech):
    with pytest.raises(InvalidStateError):
        mark_delivered(finished_case, user_tech)
    with pytest.raises(InvalidStateError):
        mark_returned(finished_case, user_tech)

    case = mark_scheduled(finished_case, user_tech)
    with pytest.raises(InvalidStateError):
        mark_scheduled(case, user_tech)


@pytest.mark.django_db
def test_returned_case_can_be_rescheduled(delivered_case, user_tech):
    case = mark_returned(delivered_case, user_tech, note="wrong shade")
    assert case.delivery_status == "returned"

    case = mark_scheduled(case, user_tech)
    assert case.delivery_status == "scheduled"


@pytest.mark.django_db
def test_delivery_requires_delivery_role(finished_case, user_readonly, doctor):
    with pytest.raises(AuthorizationError):
        mark_scheduled(finished_case, user_readonly)
    with pytest.raises(AuthorizationError):
        mark_scheduled(finished_case, doctor)


@pytest.mark.django_db
def test_delivery_role_is_checked_before_the_payload(finished_case, user_readonly, user_tech):
    # a caller without a delivery role learns nothing about the payload
    with pytest.raises(AuthorizationError):
        mark_scheduled(finished_case, user_readonly, date="next tuesday")
    with pytest.raises(AuthorizationError):
        set_delivery_status(finished_case, "pending", user_readonly)
    with pytest.raises(AuthorizationError):
        set_delivery_status(finished_case, "lost", user_readonly)

    with pytest.raises(ValidationError):
        mark_scheduled(finished_case, user_tech, date="next tuesday")


@pytest.mark.django_db
def test_delivery_roles_come_from_settings(settings, finished_case, user_courier):
    settings.DENTLAB_DELIVERY_ROLES = ["LAB_MANAGER"]
    with pytest.raises(AuthorizationError):
        mark_scheduled(finished_case, user_courier)


@pytest.mark.django_db
def test_set_delivery_status_dispatch(finished_case, user_tech):
    with pytest.raises(ValidationError):
        set_delivery_status(finished_case, "lost", user_tech)
    with pytest.raises(InvalidStateError):
        set_delivery_status(finished_case, "pending", user_tech)

    case = set_delivery_status(finished_case, "Scheduled", user_tech, date="2026-04-01")
    assert case.delivery_status == "scheduled"
    assert case.delivery_date == datetime.date(2026, 4, 1)


@pytest.mark.django_db
def test_bad_delivery_date_is_rejected(finished_case, user_tech):
    with pytest.raises(ValidationError):
        mark_scheduled(finished_case, user_tech, date="next tuesday")


@pytest.mark.django_db
def test_delivery_honours_expected_version(finished_case, user_tech):
    with pytest.raises(InvalidStateError):
        mark_scheduled(finished_case, user_tech, expected_version=finished_case.version - 1)

    case = mark_scheduled(finished_case, user_tech, expected_version=finished_case.version)
    assert case.version == finished_case.version + 1


# ---------------------------------------------------------
# Approval
# ---------------------------------------------------------
@pytest.mark.django_db
def test_doctor_approves_delivered_case_once(delivered_case, doctor):
    case = mark_approved(delivered_case, doctor, note="fits well")
    assert case.approved is True
    assert case.approved_by == doctor
    assert case.approval_note == "fits well"
    first_at = case.approved_at
    assert first_at is not None

    with pytest.raises(InvalidStateError):
        mark_approved(case, doctor)

    case.refresh_from_db()
    assert case.approved_at == first_at
    assert CaseEvent.objects.filter(case=case, action="approve").count() == 1
    assert CaseEvent.objects.get(case=case, action="approve").actor_role == "DOCTOR"


@pytest.mark.django_db
def test_only_the_cases_doctor_can_approve(delivered_case, other_doctor, user_admin):
    with pytest.raises(AuthorizationError):
        mark_approved(delivered_case, other_doctor)
    with pytest.raises(AuthorizationError):
        mark_approved(delivered_case, user_admin)


@pytest.mark.django_db
def test_approval_requires_delivery(finished_case, doctor, user_tech):
    with pytest.raises(InvalidStateError):
        mark_approved(finished_case, doctor)

    case = mark_scheduled(finished_case, user_tech)
    with pytest.raises(InvalidStateError):
        mark_approved(case, doctor)


@pytest.mark.django_db
def test_approved_case_cannot_be_returned(delivered_case, doctor, user_tech):
    case = mark_approved(delivered_case, doctor)
    with pytest.raises(InvalidStateError):
        mark_returned(case, user_tech)


@pytest.mark.django_db
def test_returned_case_cannot_be_approved(delivered_case, doctor, user_tech):
    case = mark_returned(delivered_case, user_tech)
    with pytest.raises(InvalidStateError):
        mark_approved(case, doctor)
