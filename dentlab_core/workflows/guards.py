# dentlab_core/workflows/guards.py

from django.core.exceptions import PermissionDenied
from django.db import models


class WorkflowWriteGuardMixin(models.Model):
    """
    Prevent direct modification of pipeline-controlled fields outside the services.

    Models inheriting this mixin list their guarded fields in WORKFLOW_FIELDS.
    Direct .save() changes to any of them are blocked; the pipeline services
    write through queryset .update() / bulk_update() instead.

    Escape hatch:
      - pass _workflow_bypass=True to save(), OR
      - set instance._workflow_bypass = True
    Use sparingly (tests, data fixes, admin repair scripts).
    """

    WORKFLOW_FIELDS = ()
    WORKFLOW_BYPASS_KWARG = "_workflow_bypass"

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        bypass = bool(
            kwargs.pop(self.WORKFLOW_BYPASS_KWARG, False)
            or getattr(self, "_workflow_bypass", False)
        )

        if not bypass and self.pk is not None and self.WORKFLOW_FIELDS:
            old = (
                self.__class__.objects.filter(pk=self.pk)
                .values(*self.WORKFLOW_FIELDS)
                .first()
            )
            if old is not None:
                changed = [
                    f for f in self.WORKFLOW_FIELDS
                    if old[f] != getattr(self, f, None)
                ]
                if changed:
                    raise PermissionDenied(
                        f"Direct modification of {', '.join(repr(f) for f in changed)} is forbidden. "
                        "Use the case pipeline APIs."
                    )

        return super().save(*args, **kwargs)
