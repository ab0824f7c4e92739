from __future__ import annotations

from typing import Any, Dict

from django.contrib.auth import get_user_model
from django.core.exceptions import ObjectDoesNotExist
from rest_framework import serializers

from .models import Case, CaseEvent, CaseStage, CaseType, StageTemplate, UserRole
from .workflows import JUMP_POLICIES, KNOWN_ROLES, normalize_policy, normalize_role
from .workflows.policy import is_fully_done
from .workflows.progress import compute_progress
from .workflows.references import doctor_ref

User = get_user_model()


# ===============================================================
# Helpers
# ===============================================================

class ImmutableFieldsMixin:
    """
    Blocks updates to selected fields if they appear in the incoming payload.
    """
    immutable_fields: tuple[str, ...] = ()

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        if self.instance is not None and self.immutable_fields:
            incoming = getattr(self, "initial_data", {}) or {}
            blocked = [f for f in self.immutable_fields if f in incoming]
            if blocked:
                raise serializers.ValidationError(
                    {f: "This field is managed by the case pipeline." for f in blocked}
                )
        return super().validate(attrs)


class UserSlimSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ("id", "username")
        read_only_fields = fields


# ===============================================================
# Case types / stage templates
# ===============================================================

class StageTemplateSerializer(serializers.ModelSerializer):
    class Meta:
        model = StageTemplate
        fields = ("id", "key", "name", "order", "color", "allowed_roles")
        read_only_fields = fields


class CaseTypeSerializer(serializers.ModelSerializer):
    stages = StageTemplateSerializer(many=True, read_only=True)

    class Meta:
        model = CaseType
        fields = ("id", "key", "name", "stages", "created_at", "updated_at")
        read_only_fields = fields


# ===============================================================
# Cases
# ===============================================================

class CaseStageSerializer(serializers.ModelSerializer):
    class Meta:
        model = CaseStage
        fields = (
            "key",
            "name",
            "order",
            "color",
            "allowed_roles",
            "status",
            "started_at",
            "completed_at",
        )
        read_only_fields = fields


class CaseSerializer(serializers.ModelSerializer):
    """
    Full case projection returned by every read and every command.
    """

    doctor = serializers.SerializerMethodField()
    case_type_key = serializers.CharField(source="case_type.key", read_only=True, default=None)
    stages = CaseStageSerializer(many=True, read_only=True)
    progress = serializers.SerializerMethodField()
    fully_done = serializers.SerializerMethodField()
    delivery = serializers.SerializerMethodField()
    approval = serializers.SerializerMethodField()

    class Meta:
        model = Case
        fields = (
            "id",
            "code",
            "doctor",
            "patient_name",
            "note",
            "case_type",
            "case_type_key",
            "jump_policy",
            "current_stage_order",
            "version",
            "stages",
            "progress",
            "fully_done",
            "delivery",
            "approval",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields

    def _stages(self, obj: Case):
        return list(obj.stages.all())

    def get_doctor(self, obj: Case) -> Dict[str, Any]:
        try:
            user = obj.doctor
        except ObjectDoesNotExist:
            user = None
        return doctor_ref(obj.doctor_id, user).as_dict()

    def get_progress(self, obj: Case) -> int:
        return compute_progress(self._stages(obj), obj.current_stage_order)

    def get_fully_done(self, obj: Case) -> bool:
        return is_fully_done(self._stages(obj))

    def get_delivery(self, obj: Case) -> Dict[str, Any]:
        return {
            "status": obj.delivery_status,
            "date": obj.delivery_date.isoformat() if obj.delivery_date else None,
            "note": obj.delivery_note,
        }

    def get_approval(self, obj: Case) -> Dict[str, Any]:
        return {
            "approved": obj.approved,
            "approved_at": obj.approved_at.isoformat() if obj.approved_at else None,
            "approved_by": obj.approved_by_id,
            "note": obj.approval_note,
        }


class CaseCreateSerializer(serializers.Serializer):
    case_type = serializers.PrimaryKeyRelatedField(queryset=CaseType.objects.all())
    doctor = serializers.PrimaryKeyRelatedField(queryset=User.objects.all())
    jump_policy = serializers.CharField()
    code = serializers.CharField(required=False, allow_blank=True, max_length=32)
    patient_name = serializers.CharField(required=False, allow_blank=True, max_length=255)
    note = serializers.CharField(required=False, allow_blank=True)
    start_first_stage = serializers.BooleanField(required=False, allow_null=True, default=None)

    def validate_jump_policy(self, value: str) -> str:
        policy = normalize_policy(value)
        if policy not in JUMP_POLICIES:
            raise serializers.ValidationError(
                f"Unknown jump policy. Use one of: {', '.join(JUMP_POLICIES)}."
            )
        return policy


class CaseUpdateSerializer(ImmutableFieldsMixin, serializers.ModelSerializer):
    immutable_fields = (
        "code",
        "doctor",
        "case_type",
        "jump_policy",
        "current_stage_order",
        "version",
        "stages",
        "delivery_status",
        "delivery",
        "approved",
        "approval",
    )

    class Meta:
        model = Case
        fields = ("patient_name", "note")


class CaseEventSerializer(serializers.ModelSerializer):
    performed_by = UserSlimSerializer(read_only=True)

    class Meta:
        model = CaseEvent
        fields = ("id", "action", "actor_role", "performed_by", "meta", "created_at")
        read_only_fields = fields


# ===============================================================
# Roles
# ===============================================================

class UserRoleSerializer(serializers.ModelSerializer):
    username = serializers.CharField(source="user.username", read_only=True)

    class Meta:
        model = UserRole
        fields = ("id", "user", "username", "role", "created_at")
        read_only_fields = ("id", "username", "created_at")

    def validate_role(self, value: str) -> str:
        role = normalize_role(value)
        if role not in KNOWN_ROLES:
            raise serializers.ValidationError(
                f"Unknown role. Use one of: {', '.join(sorted(KNOWN_ROLES))}."
            )
        return role
