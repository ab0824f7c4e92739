# dentlab_core/models/core.py

from django.conf import settings
from django.db import models
from django.db.models.functions import Lower

from dentlab_core.workflows import (
    DELIVERY_DELIVERED,
    DELIVERY_PENDING,
    DELIVERY_RETURNED,
    DELIVERY_SCHEDULED,
    JUMP_POLICIES,
    STAGE_DONE,
    STAGE_IN_PROGRESS,
    STAGE_PENDING,
    normalize_role,
)
from dentlab_core.workflows.guards import WorkflowWriteGuardMixin


DEFAULT_STAGE_COLOR = "#2563eb"


# ============================================================
# Base
# ============================================================
class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


# ============================================================
# Case type (manufacturing type) + stage catalog
# ============================================================
class CaseType(TimeStampedModel):
    key = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)

    class Meta:
        ordering = ["name", "id"]

    def __str__(self):
        return f"{self.key} - {self.name}"


class StageTemplate(TimeStampedModel):
    """
    Blueprint of one stage for a case type.

    Keys are unique per type regardless of case; orders are kept dense (1..N)
    by the stage template service.
    """

    case_type = models.ForeignKey(
        CaseType,
        on_delete=models.CASCADE,
        related_name="stages",
    )
    key = models.CharField(max_length=64)
    name = models.CharField(max_length=255)
    order = models.PositiveIntegerField()
    color = models.CharField(max_length=32, blank=True, default=DEFAULT_STAGE_COLOR)
    allowed_roles = models.JSONField(default=list, blank=True)

    class Meta:
        ordering = ["case_type_id", "order", "id"]
        constraints = [
            models.UniqueConstraint(
                Lower("key"),
                "case_type",
                name="uniq_stage_template_key_ci_per_type",
            ),
        ]

    def __str__(self):
        return f"{self.case_type.key}:{self.order}:{self.key}"


# ============================================================
# Case
# ============================================================
class Case(WorkflowWriteGuardMixin, TimeStampedModel):
    JUMP_POLICY_CHOICES = [(p, p) for p in JUMP_POLICIES]

    DELIVERY_STATUS_CHOICES = (
        (DELIVERY_PENDING, "Pending"),
        (DELIVERY_SCHEDULED, "Scheduled"),
        (DELIVERY_DELIVERED, "Delivered"),
        (DELIVERY_RETURNED, "Returned"),
    )

    WORKFLOW_FIELDS = ("current_stage_order", "delivery_status", "approved")

    code = models.CharField(max_length=32, unique=True)

    # No DB constraint: the case keeps the doctor id even if the user row goes away.
    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name="dental_cases",
    )
    patient_name = models.CharField(max_length=255, blank=True)
    note = models.TextField(blank=True)

    case_type = models.ForeignKey(
        CaseType,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="cases",
    )
    jump_policy = models.CharField(max_length=32, choices=JUMP_POLICY_CHOICES)
    current_stage_order = models.PositiveIntegerField(null=True, blank=True)
    version = models.PositiveIntegerField(default=1)

    delivery_status = models.CharField(
        max_length=16,
        choices=DELIVERY_STATUS_CHOICES,
        default=DELIVERY_PENDING,
        db_index=True,
    )
    delivery_date = models.DateField(null=True, blank=True)
    delivery_note = models.TextField(blank=True)

    approved = models.BooleanField(default=False, db_index=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="approved_dental_cases",
    )
    approval_note = models.TextField(blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return self.code


class CaseStage(WorkflowWriteGuardMixin, models.Model):
    """
    A case's own copy of a stage template, plus its runtime status.
    """

    STATUS_CHOICES = (
        (STAGE_PENDING, "Pending"),
        (STAGE_IN_PROGRESS, "In progress"),
        (STAGE_DONE, "Done"),
    )

    WORKFLOW_FIELDS = ("status",)

    case = models.ForeignKey(
        Case,
        on_delete=models.CASCADE,
        related_name="stages",
    )
    key = models.CharField(max_length=64)
    name = models.CharField(max_length=255)
    order = models.PositiveIntegerField()
    color = models.CharField(max_length=32, blank=True, default=DEFAULT_STAGE_COLOR)
    allowed_roles = models.JSONField(default=list, blank=True)

    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STAGE_PENDING)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["case_id", "order"]
        unique_together = ("case", "order")

    def __str__(self):
        return f"{self.case.code}:{self.order}:{self.key} ({self.status})"


# ============================================================
# Roles
# ============================================================
class UserRole(TimeStampedModel):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="dentlab_roles",
    )
    role = models.CharField(max_length=64)

    class Meta:
        unique_together = ("user", "role")

    def save(self, *args, **kwargs):
        self.role = normalize_role(self.role)
        return super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.user.username} - {self.role}"
