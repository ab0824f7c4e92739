# dentlab_core/services/stage_templates.py
"""
Stage template store.

Every per-type stage catalog change goes through this module. Orders are
kept dense (1..N) and keys unique per type (case-insensitive) after each
operation; every operation returns the re-fetched CaseType.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from django.db import transaction
from django.utils.text import slugify

from rest_framework.exceptions import NotFound

from dentlab_core.models import DEFAULT_STAGE_COLOR, CaseType, StageTemplate
from dentlab_core.workflows import normalize_roles
from dentlab_core.workflows.errors import ValidationError

logger = logging.getLogger(__name__)


STAGE_PATCH_FIELDS = ("key", "name", "order", "color", "allowed_roles")


# ===============================================================
# Validation
# ===============================================================

def _parse_order(value: Any) -> Optional[int]:
    """
    None means "not given". Raises ValueError for anything that is not a
    positive integer (bools rejected, digit strings accepted).
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(value)
    if isinstance(value, int):
        out = value
    elif isinstance(value, str) and value.strip().isdigit():
        out = int(value.strip())
    else:
        raise ValueError(value)
    if out < 1:
        raise ValueError(value)
    return out


def _normalize_template(raw: Mapping[str, Any], position: int) -> Dict[str, Any]:
    if not isinstance(raw, Mapping):
        raise ValidationError(f"Stage #{position} must be an object.", position=position)

    name = str(raw.get("name") or "").strip()
    if not name:
        raise ValidationError(f"Stage #{position}: name is required.", position=position, field="name")

    key = str(raw.get("key") or "").strip() or slugify(name)
    if not key:
        raise ValidationError(f"Stage #{position}: key is required.", position=position, field="key")

    try:
        order = _parse_order(raw.get("order"))
    except ValueError:
        raise ValidationError(
            f"Stage #{position}: order must be a positive integer.",
            position=position,
            field="order",
        )

    roles = raw.get("allowed_roles")
    if roles is None:
        roles = []
    if not isinstance(roles, (list, tuple)):
        raise ValidationError(
            f"Stage #{position}: allowed_roles must be a list.",
            position=position,
            field="allowed_roles",
        )

    color = str(raw.get("color") or "").strip() or DEFAULT_STAGE_COLOR

    return {
        "key": key,
        "name": name,
        "order": order,
        "color": color,
        "allowed_roles": sorted(normalize_roles(roles)),
    }


def _duplicate_keys(keys: Iterable[str]) -> List[str]:
    seen = set()
    dups = set()
    for k in keys:
        kk = k.casefold()
        if kk in seen:
            dups.add(kk)
        seen.add(kk)
    return sorted(dups)


def validate_stage_list(stages: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """
    Validate a full stage list and return it normalized, sorted and renumbered.

    Raises ValidationError for an empty name, a bad order, or duplicate keys
    (the colliding keys are listed under ``keys``). Stages without an order
    keep their relative position after the ordered ones.
    """
    normalized = [_normalize_template(raw, i) for i, raw in enumerate(stages or [], start=1)]

    dups = _duplicate_keys(s["key"] for s in normalized)
    if dups:
        raise ValidationError("Duplicate stage keys.", keys=dups)

    indexed = list(enumerate(normalized))
    indexed.sort(key=lambda pair: (pair[1]["order"] is None, pair[1]["order"] or 0, pair[0]))

    out = []
    for n, (_, s) in enumerate(indexed, start=1):
        s["order"] = n
        out.append(s)
    return out


# ===============================================================
# Helpers
# ===============================================================

def _fresh(case_type_id: int) -> CaseType:
    return CaseType.objects.prefetch_related("stages").get(pk=case_type_id)


def _lock_type(case_type: CaseType) -> CaseType:
    return CaseType.objects.select_for_update().get(pk=case_type.pk)


def _current_stages(case_type: CaseType) -> List[StageTemplate]:
    return list(
        StageTemplate.objects.select_for_update()
        .filter(case_type=case_type)
        .order_by("order", "id")
    )


def _renumber(stages: List[StageTemplate]) -> None:
    """Persist orders 1..N following the list position."""
    changed = []
    for n, s in enumerate(stages, start=1):
        if s.order != n:
            s.order = n
            changed.append(s)
    if changed:
        StageTemplate.objects.bulk_update(changed, ["order"])


def _find_stage(stages: Sequence[StageTemplate], key: str) -> Optional[StageTemplate]:
    kk = str(key or "").strip().casefold()
    for s in stages:
        if s.key.casefold() == kk:
            return s
    return None


def _insert_position(order: Optional[int], size: int) -> int:
    if order is None:
        return size
    return max(0, min(order - 1, size))


def _create_templates(case_type: CaseType, stages: Sequence[Dict[str, Any]]) -> None:
    StageTemplate.objects.bulk_create(
        [StageTemplate(case_type=case_type, **s) for s in stages]
    )


# ===============================================================
# Case types
# ===============================================================

def create_case_type(key: str, name: str, stages: Sequence[Mapping[str, Any]] = ()) -> CaseType:
    key = str(key or "").strip()
    name = str(name or "").strip()

    if not name:
        raise ValidationError("Type name is required.", field="name")
    if not key:
        key = slugify(name)
    if not key:
        raise ValidationError("Type key is required.", field="key")

    validated = validate_stage_list(stages)

    with transaction.atomic():
        if CaseType.objects.filter(key__iexact=key).exists():
            raise ValidationError(f"Type key '{key}' already exists.", field="key")

        case_type = CaseType.objects.create(key=key, name=name)
        _create_templates(case_type, validated)

    logger.info("type=%s created with %d stages", case_type.key, len(validated))
    return _fresh(case_type.pk)


def update_case_type(
    case_type: CaseType,
    name: Optional[str] = None,
    stages: Optional[Sequence[Mapping[str, Any]]] = None,
) -> CaseType:
    """
    Rename a type and/or replace its whole stage list.
    Existing cases keep their own stage snapshot.
    """
    validated = None
    if stages is not None:
        validated = validate_stage_list(stages)

    if name is not None:
        name = str(name).strip()
        if not name:
            raise ValidationError("Type name is required.", field="name")

    with transaction.atomic():
        locked = _lock_type(case_type)

        if name is not None and name != locked.name:
            locked.name = name
            locked.save(update_fields=["name", "updated_at"])

        if validated is not None:
            StageTemplate.objects.filter(case_type=locked).delete()
            _create_templates(locked, validated)

    logger.info(
        "type=%s updated (name=%s, stages=%s)",
        locked.key,
        name is not None,
        "replaced" if validated is not None else "kept",
    )
    return _fresh(locked.pk)


def delete_case_type(case_type: CaseType) -> None:
    key = case_type.key
    with transaction.atomic():
        _lock_type(case_type).delete()
    logger.info("type=%s deleted", key)


# ===============================================================
# Stage templates
# ===============================================================

def add_stage(case_type: CaseType, template: Mapping[str, Any]) -> CaseType:
    with transaction.atomic():
        locked = _lock_type(case_type)
        stages = _current_stages(locked)

        data = _normalize_template(template, len(stages) + 1)

        if _find_stage(stages, data["key"]) is not None:
            raise ValidationError("Duplicate stage keys.", keys=[data["key"].casefold()])

        pos = _insert_position(data.pop("order"), len(stages))
        new = StageTemplate.objects.create(case_type=locked, order=pos + 1, **data)

        stages.insert(pos, new)
        _renumber(stages)

    logger.info("type=%s stage=%s added at order=%d", locked.key, new.key, pos + 1)
    return _fresh(locked.pk)


def update_stage(case_type: CaseType, key: str, patch: Mapping[str, Any]) -> CaseType:
    """
    Patch one template. Changing ``order`` moves the stage to that position
    (clamped to the list bounds); unknown patch fields are ignored.
    """
    patch = {k: v for k, v in (patch or {}).items() if k in STAGE_PATCH_FIELDS}

    with transaction.atomic():
        locked = _lock_type(case_type)
        stages = _current_stages(locked)

        stage = _find_stage(stages, key)
        if stage is None:
            raise NotFound(f"Stage '{key}' not found on type '{locked.key}'.")

        merged = {
            "key": stage.key,
            "name": stage.name,
            "color": stage.color,
            "allowed_roles": stage.allowed_roles,
            "order": None,
        }
        merged.update(patch)
        position = stages.index(stage) + 1
        data = _normalize_template(merged, position)

        if data["key"].casefold() != stage.key.casefold():
            others = [s for s in stages if s.pk != stage.pk]
            if _find_stage(others, data["key"]) is not None:
                raise ValidationError("Duplicate stage keys.", keys=[data["key"].casefold()])

        new_order = data.pop("order")

        for field, value in data.items():
            setattr(stage, field, value)
        stage.save(update_fields=["key", "name", "color", "allowed_roles", "updated_at"])

        if new_order is not None:
            stages.remove(stage)
            stages.insert(_insert_position(new_order, len(stages)), stage)
        _renumber(stages)

    logger.info("type=%s stage=%s updated fields=%s", locked.key, stage.key, sorted(patch))
    return _fresh(locked.pk)


def remove_stage(case_type: CaseType, key: str) -> CaseType:
    with transaction.atomic():
        locked = _lock_type(case_type)
        stages = _current_stages(locked)

        stage = _find_stage(stages, key)
        if stage is None:
            raise NotFound(f"Stage '{key}' not found on type '{locked.key}'.")

        stages.remove(stage)
        stage.delete()
        _renumber(stages)

    logger.info("type=%s stage=%s removed", locked.key, key)
    return _fresh(locked.pk)


def duplicate_stages(
    source: CaseType,
    chosen_keys: Optional[Iterable[str]],
    target: CaseType,
) -> CaseType:
    """
    Copy templates from ``source`` onto the end of ``target``.

    Keys are matched case-insensitively; an empty selection copies every
    source stage. Stages whose key already exists on the target are skipped.
    """
    wanted = {str(k).strip().casefold() for k in (chosen_keys or []) if str(k or "").strip()}

    with transaction.atomic():
        locked = _lock_type(target)
        src_stages = list(
            StageTemplate.objects.filter(case_type_id=source.pk).order_by("order", "id")
        )

        if wanted:
            known = {s.key.casefold() for s in src_stages}
            unknown = sorted(wanted - known)
            if unknown:
                raise ValidationError("Unknown stage keys on source type.", keys=unknown)
            src_stages = [s for s in src_stages if s.key.casefold() in wanted]

        stages = _current_stages(locked)
        existing = {s.key.casefold() for s in stages}

        copies = []
        for s in src_stages:
            if s.key.casefold() in existing:
                continue
            existing.add(s.key.casefold())
            copies.append(
                StageTemplate(
                    case_type=locked,
                    key=s.key,
                    name=s.name,
                    color=s.color,
                    allowed_roles=list(s.allowed_roles or []),
                    order=len(stages) + len(copies) + 1,
                )
            )

        _renumber(stages)
        if copies:
            StageTemplate.objects.bulk_create(copies)

    logger.info(
        "type=%s duplicated %d stages from type=%s (%d skipped)",
        locked.key,
        len(copies),
        source.key,
        len(src_stages) - len(copies),
    )
    return _fresh(locked.pk)


__all__ = [
    "validate_stage_list",
    "create_case_type",
    "update_case_type",
    "delete_case_type",
    "add_stage",
    "update_stage",
    "remove_stage",
    "duplicate_stages",
]
