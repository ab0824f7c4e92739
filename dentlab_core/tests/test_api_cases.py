# dentlab_core/tests/test_api_cases.py

import pytest

from dentlab_core.models import Case, CaseEvent
from dentlab_core.services.case_pipeline import set_stage_status


def _create_payload(case_type, doctor, **extra):
    payload = {
        "case_type": case_type.pk,
        "doctor": doctor.pk,
        "jump_policy": "forward-when-previous-done",
        "patient_name": "Jane Roe",
    }
    payload.update(extra)
    return payload


# ---------------------------------------------------------
# Create / read
# ---------------------------------------------------------
@pytest.mark.django_db
def test_lab_tech_creates_case(api_client, user_tech, doctor, three_stage_type):
    api_client.as_user(user_tech)
    r = api_client.post("/api/cases/", _create_payload(three_stage_type, doctor), format="json")
    assert r.status_code == 201, r.content

    data = r.json()
    assert data["code"] == "JOB-000001"
    assert data["case_type_key"] == "crown"
    assert data["current_stage_order"] == 1
    assert [s["status"] for s in data["stages"]] == ["in_progress", "pending", "pending"]
    # half of one stage out of three
    assert data["progress"] == 17
    assert data["fully_done"] is False
    assert data["delivery"] == {"status": "pending", "date": None, "note": ""}
    assert data["approval"]["approved"] is False
    assert data["doctor"] == {
        "resolved": True,
        "id": doctor.pk,
        "username": "dr_house",
        "full_name": "Greg House",
    }


@pytest.mark.django_db
def test_create_rejects_unknown_policy(api_client, user_tech, doctor, three_stage_type):
    api_client.as_user(user_tech)
    r = api_client.post(
        "/api/cases/",
        _create_payload(three_stage_type, doctor, jump_policy="sideways"),
        format="json",
    )
    assert r.status_code == 400
    assert "jump_policy" in r.json()


@pytest.mark.django_db
def test_create_from_type_without_stages_is_400(api_client, user_tech, doctor, case_type_factory):
    empty = case_type_factory(stages=[])
    api_client.as_user(user_tech)
    r = api_client.post("/api/cases/", _create_payload(empty, doctor), format="json")
    assert r.status_code == 400
    assert r.json()["error"] == "validation_error"
    assert Case.objects.count() == 0


@pytest.mark.django_db
def test_readonly_and_doctor_cannot_create(api_client, user_readonly, doctor, three_stage_type):
    for user in (user_readonly, doctor):
        api_client.as_user(user)
        r = api_client.post("/api/cases/", _create_payload(three_stage_type, doctor), format="json")
        assert r.status_code == 403


@pytest.mark.django_db
def test_anonymous_is_rejected(api_client, three_stage_type, case_factory):
    case = case_factory(three_stage_type)
    assert api_client.get("/api/cases/").status_code in (401, 403)
    assert api_client.post(f"/api/cases/{case.pk}/advance/", {}, format="json").status_code in (401, 403)


@pytest.mark.django_db
def test_list_is_paginated_and_filterable(api_client, user_readonly, three_stage_type, case_factory, user_tech):
    first = case_factory(three_stage_type, patient_name="Alice Smith")
    case_factory(three_stage_type, patient_name="Bob Jones")
    for order in (1, 2, 3):
        first = set_stage_status(first, order, "done", user_tech)

    api_client.as_user(user_readonly)
    r = api_client.get("/api/cases/")
    assert r.status_code == 200
    assert r.json()["count"] == 2

    r = api_client.get("/api/cases/", {"q": "alice"})
    assert [c["id"] for c in r.json()["results"]] == [first.pk]

    r = api_client.get("/api/cases/", {"delivery_status": "PENDING"})
    assert r.json()["count"] == 2

    r = api_client.get("/api/cases/", {"received": "true"})
    assert r.json()["count"] == 0


@pytest.mark.django_db
def test_doctor_cannot_use_lab_case_list(api_client, doctor):
    api_client.as_user(doctor)
    assert api_client.get("/api/cases/").status_code == 403


@pytest.mark.django_db
def test_deleted_doctor_is_reported_unresolved(api_client, user_tech, three_stage_type, case_factory, make_user):
    gone = make_user("dr_gone", roles=["DOCTOR"])
    case = case_factory(three_stage_type, doctor_user=gone)
    gone_id = gone.pk
    gone.delete()

    api_client.as_user(user_tech)
    r = api_client.get(f"/api/cases/{case.pk}/")
    assert r.status_code == 200
    assert r.json()["doctor"] == {"resolved": False, "id": gone_id}


@pytest.mark.django_db
def test_patch_edits_details_only(api_client, user_tech, three_stage_type, case_factory):
    case = case_factory(three_stage_type)
    api_client.as_user(user_tech)

    r = api_client.patch(f"/api/cases/{case.pk}/", {"note": "rush"}, format="json")
    assert r.status_code == 200
    assert r.json()["note"] == "rush"

    r = api_client.patch(f"/api/cases/{case.pk}/", {"current_stage_order": 3}, format="json")
    assert r.status_code == 400
    case.refresh_from_db()
    assert case.current_stage_order == 1


@pytest.mark.django_db
def test_delete_case(api_client, user_tech, user_readonly, three_stage_type, case_factory):
    case = case_factory(three_stage_type)

    api_client.as_user(user_readonly)
    assert api_client.delete(f"/api/cases/{case.pk}/").status_code == 403

    api_client.as_user(user_tech)
    assert api_client.delete(f"/api/cases/{case.pk}/").status_code == 204
    assert not Case.objects.filter(pk=case.pk).exists()


# ---------------------------------------------------------
# Commands
# ---------------------------------------------------------
@pytest.mark.django_db
def test_advance_and_jump_endpoints(api_client, user_tech, three_stage_type, case_factory):
    case = case_factory(three_stage_type)
    api_client.as_user(user_tech)

    r = api_client.post(f"/api/cases/{case.pk}/advance/", {}, format="json")
    assert r.status_code == 200
    assert r.json()["current_stage_order"] == 2

    r = api_client.post(f"/api/cases/{case.pk}/jump/", {"to_order": 3}, format="json")
    assert r.status_code == 409
    body = r.json()
    assert body["error"] == "invalid_transition"
    assert body["policy"] == "forward-when-previous-done"
    assert body["from_order"] == 2
    assert body["to_order"] == 3

    r = api_client.post(f"/api/cases/{case.pk}/jump/", {}, format="json")
    assert r.status_code == 400

    r = api_client.post(f"/api/cases/{case.pk}/jump/", {"to_order": 12}, format="json")
    assert r.status_code == 400

    r = api_client.post(f"/api/cases/{case.pk}/jump/", {"to_order": True}, format="json")
    assert r.status_code == 400
    assert r.json()["field"] == "to_order"


@pytest.mark.django_db
def test_stale_version_is_409(api_client, user_tech, three_stage_type, case_factory):
    case = case_factory(three_stage_type)
    api_client.as_user(user_tech)

    r = api_client.post(f"/api/cases/{case.pk}/advance/", {"version": case.version}, format="json")
    assert r.status_code == 200

    r = api_client.post(f"/api/cases/{case.pk}/advance/", {"version": case.version}, format="json")
    assert r.status_code == 409
    assert r.json()["error"] == "invalid_state"


@pytest.mark.django_db
def test_readonly_cannot_move_stages(api_client, user_readonly, three_stage_type, case_factory):
    case = case_factory(three_stage_type)
    api_client.as_user(user_readonly)
    r = api_client.post(f"/api/cases/{case.pk}/advance/", {}, format="json")
    assert r.status_code == 403
    assert r.json()["error"] == "authorization_error"


@pytest.mark.django_db
def test_stage_status_and_delivery_endpoints(api_client, user_tech, user_courier, three_stage_type, case_factory):
    case = case_factory(three_stage_type)
    api_client.as_user(user_tech)

    for order in (1, 2, 3):
        r = api_client.post(f"/api/cases/{case.pk}/stages/{order}/status/", {"status": "done"}, format="json")
        assert r.status_code == 200
    assert r.json()["fully_done"] is True
    assert r.json()["progress"] == 100

    r = api_client.post(f"/api/cases/{case.pk}/stages/1/status/", {}, format="json")
    assert r.status_code == 400

    api_client.as_user(user_courier)
    r = api_client.post(f"/api/cases/{case.pk}/delivery/", {"status": "pending"}, format="json")
    assert r.status_code == 409

    r = api_client.post(
        f"/api/cases/{case.pk}/delivery/",
        {"status": "scheduled", "date": "2026-05-04"},
        format="json",
    )
    assert r.status_code == 200
    assert r.json()["delivery"]["status"] == "scheduled"
    assert r.json()["delivery"]["date"] == "2026-05-04"

    r = api_client.post(f"/api/cases/{case.pk}/delivery/", {"status": "delivered"}, format="json")
    assert r.status_code == 200

    api_client.as_user(user_tech)
    r = api_client.post(f"/api/cases/{case.pk}/stages/3/status/", {"status": "in_progress"}, format="json")
    assert r.status_code == 409


# ---------------------------------------------------------
# Introspection
# ---------------------------------------------------------
@pytest.mark.django_db
def test_allowed_endpoint(api_client, user_tech, doctor, three_stage_type, case_factory):
    case = case_factory(three_stage_type, jump_policy="forward-any")

    api_client.as_user(user_tech)
    r = api_client.get(f"/api/cases/{case.pk}/allowed/")
    assert r.status_code == 200
    data = r.json()
    assert data["current_order"] == 1
    assert data["allowed"] == [2, 3]
    assert data["can_advance"] is True
    assert data["can_rewind"] is False
    assert data["roles"] == ["LAB_TECH"]
    assert data["delivery_status"] == "pending"
    assert data["delivery_targets"] == ["scheduled"]

    api_client.as_user(doctor)
    assert api_client.get(f"/api/cases/{case.pk}/allowed/").status_code == 403


@pytest.mark.django_db
def test_events_endpoint_newest_first(api_client, user_tech, three_stage_type, case_factory):
    case = case_factory(three_stage_type)
    api_client.as_user(user_tech)
    api_client.post(f"/api/cases/{case.pk}/advance/", {}, format="json")

    r = api_client.get(f"/api/cases/{case.pk}/events/")
    assert r.status_code == 200
    actions = [e["action"] for e in r.json()["events"]]
    assert actions == ["advance", "create"]
    assert r.json()["events"][0]["performed_by"]["username"] == "labtech"
    assert CaseEvent.objects.filter(case=case).count() == 2
