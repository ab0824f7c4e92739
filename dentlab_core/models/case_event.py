from django.conf import settings
from django.db import models


class CaseEvent(models.Model):
    """
    Immutable audit log for case pipeline mutations.
    """

    ACTION_CHOICES = (
        ("create", "Create"),
        ("advance", "Advance"),
        ("rewind", "Rewind"),
        ("jump", "Jump"),
        ("stage_status", "Stage status"),
        ("delivery", "Delivery"),
        ("approve", "Approve"),
    )

    ACTOR_ROLE_CHOICES = (
        ("LAB", "Lab"),
        ("DOCTOR", "Doctor"),
        ("SYSTEM", "System"),
    )

    case = models.ForeignKey(
        "dentlab_core.Case",
        on_delete=models.CASCADE,
        related_name="events",
    )
    action = models.CharField(max_length=32, choices=ACTION_CHOICES)
    actor_role = models.CharField(max_length=16, choices=ACTOR_ROLE_CHOICES, default="SYSTEM")

    performed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="case_events",
    )

    meta = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["case", "created_at"], name="case_event_case_created_idx"),
        ]

    def __str__(self):
        who = self.performed_by.username if self.performed_by_id else self.actor_role
        return f"{self.case.code}: {self.action} by {who}"
