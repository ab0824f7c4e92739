# dentlab_core/tests/test_stage_templates.py

import pytest
from rest_framework.exceptions import NotFound

from dentlab_core.models import Case, CaseType, StageTemplate
from dentlab_core.services.stage_templates import (
    add_stage,
    create_case_type,
    delete_case_type,
    duplicate_stages,
    remove_stage,
    update_case_type,
    update_stage,
    validate_stage_list,
)
from dentlab_core.workflows.errors import ValidationError

from .conftest import stage_list


def _keys(case_type):
    return [s.key for s in case_type.stages.order_by("order")]


def _orders(case_type):
    return [s.order for s in case_type.stages.order_by("order")]


# ---------------------------------------------------------
# validate_stage_list (no DB)
# ---------------------------------------------------------
def test_validate_derives_keys_and_renumbers():
    out = validate_stage_list(
        [
            {"name": "Milling", "order": 7},
            {"name": "Impression", "order": 2},
            {"name": "Shade check"},
        ]
    )
    assert [s["key"] for s in out] == ["impression", "milling", "shade-check"]
    assert [s["order"] for s in out] == [1, 2, 3]
    assert out[0]["color"] == "#2563eb"


def test_validate_rejects_duplicate_keys_case_insensitively():
    with pytest.raises(ValidationError) as exc:
        validate_stage_list([{"name": "A", "key": "Design"}, {"name": "B", "key": "design"}])
    assert exc.value.extra["keys"] == ["design"]


@pytest.mark.parametrize("bad", [0, -1, "x", 1.5, True])
def test_validate_rejects_bad_orders(bad):
    with pytest.raises(ValidationError):
        validate_stage_list([{"name": "A", "order": bad}])


def test_validate_rejects_empty_name():
    with pytest.raises(ValidationError):
        validate_stage_list([{"name": "   ", "key": "a"}])


def test_validate_normalizes_roles():
    out = validate_stage_list([{"name": "A", "allowed_roles": ["technician", "LAB_MANAGER"]}])
    assert out[0]["allowed_roles"] == ["LAB_MANAGER", "LAB_TECH"]


# ---------------------------------------------------------
# Store operations
# ---------------------------------------------------------
@pytest.mark.django_db
def test_create_case_type_persists_dense_orders():
    ct = create_case_type("bridge", "Bridge", stage_list("Impression", "Design", "Milling"))
    assert _keys(ct) == ["impression", "design", "milling"]
    assert _orders(ct) == [1, 2, 3]


@pytest.mark.django_db
def test_create_case_type_rejects_duplicate_type_key():
    create_case_type("bridge", "Bridge")
    with pytest.raises(ValidationError):
        create_case_type("BRIDGE", "Other bridge")


@pytest.mark.django_db
def test_add_stage_appends_by_default(three_stage_type):
    ct = add_stage(three_stage_type, {"name": "Glazing"})
    assert _keys(ct) == ["impression", "design", "milling", "glazing"]
    assert _orders(ct) == [1, 2, 3, 4]


@pytest.mark.django_db
def test_add_stage_at_explicit_order_shifts_later_stages(three_stage_type):
    ct = add_stage(three_stage_type, {"name": "Scan", "order": 2, "color": "#ff0000"})
    assert _keys(ct) == ["impression", "scan", "design", "milling"]
    assert _orders(ct) == [1, 2, 3, 4]
    assert ct.stages.get(key="scan").color == "#ff0000"


@pytest.mark.django_db
def test_add_stage_order_past_the_end_is_clamped(three_stage_type):
    ct = add_stage(three_stage_type, {"name": "Polish", "order": 40})
    assert _keys(ct)[-1] == "polish"
    assert _orders(ct) == [1, 2, 3, 4]


@pytest.mark.django_db
def test_add_stage_rejects_duplicate_key(three_stage_type):
    with pytest.raises(ValidationError) as exc:
        add_stage(three_stage_type, {"name": "Another", "key": "DESIGN"})
    assert exc.value.extra["keys"] == ["design"]
    assert StageTemplate.objects.filter(case_type=three_stage_type).count() == 3


@pytest.mark.django_db
def test_update_stage_moves_and_renames(three_stage_type):
    ct = update_stage(three_stage_type, "milling", {"order": 1, "name": "CAM milling"})
    assert _keys(ct) == ["milling", "impression", "design"]
    assert _orders(ct) == [1, 2, 3]
    assert ct.stages.get(key="milling").name == "CAM milling"


@pytest.mark.django_db
def test_update_stage_key_must_stay_unique(three_stage_type):
    with pytest.raises(ValidationError):
        update_stage(three_stage_type, "milling", {"key": "Design"})

    ct = update_stage(three_stage_type, "milling", {"key": "cam"})
    assert "cam" in _keys(ct)


@pytest.mark.django_db
def test_update_unknown_stage_is_not_found(three_stage_type):
    with pytest.raises(NotFound):
        update_stage(three_stage_type, "nope", {"name": "x"})


@pytest.mark.django_db
def test_remove_stage_renumbers(three_stage_type):
    ct = remove_stage(three_stage_type, "Impression")
    assert _keys(ct) == ["design", "milling"]
    assert _orders(ct) == [1, 2]


@pytest.mark.django_db
def test_update_case_type_replaces_stage_list(three_stage_type):
    ct = update_case_type(three_stage_type, name="Zirconia crown", stages=stage_list("Scan", "Print"))
    assert ct.name == "Zirconia crown"
    assert _keys(ct) == ["scan", "print"]


@pytest.mark.django_db
def test_duplicate_selected_stages_skips_existing(case_type_factory):
    source = case_type_factory(stages=stage_list("Impression", "Design", "Milling", "Glazing"))
    target = case_type_factory(stages=stage_list("Design"))

    ct = duplicate_stages(source, ["MILLING", "design", "impression"], target)
    # source order is kept; "design" already exists on target
    assert _keys(ct) == ["design", "impression", "milling"]
    assert _orders(ct) == [1, 2, 3]


@pytest.mark.django_db
def test_duplicate_all_when_no_keys_given(case_type_factory):
    source = case_type_factory(
        stages=[{"name": "Design", "color": "#111111", "allowed_roles": ["LAB_TECH"]}, {"name": "Milling"}]
    )
    target = case_type_factory(stages=[])

    ct = duplicate_stages(source, [], target)
    assert _keys(ct) == ["design", "milling"]
    copied = ct.stages.get(key="design")
    assert copied.color == "#111111"
    assert copied.allowed_roles == ["LAB_TECH"]


@pytest.mark.django_db
def test_duplicate_unknown_key_is_rejected(case_type_factory):
    source = case_type_factory()
    target = case_type_factory(stages=[])
    with pytest.raises(ValidationError) as exc:
        duplicate_stages(source, ["ghost"], target)
    assert exc.value.extra["keys"] == ["ghost"]
    assert target.stages.count() == 0


@pytest.mark.django_db
def test_template_edits_do_not_touch_existing_cases(three_stage_type, case_factory):
    case = case_factory(three_stage_type)

    add_stage(three_stage_type, {"name": "Glazing", "order": 1})
    remove_stage(three_stage_type, "milling")

    assert [s.key for s in case.stages.order_by("order")] == ["impression", "design", "milling"]


@pytest.mark.django_db
def test_delete_type_keeps_cases(three_stage_type, case_factory):
    case = case_factory(three_stage_type)
    delete_case_type(three_stage_type)

    assert not CaseType.objects.filter(pk=three_stage_type.pk).exists()
    case = Case.objects.get(pk=case.pk)
    assert case.case_type_id is None
    assert case.stages.count() == 3
