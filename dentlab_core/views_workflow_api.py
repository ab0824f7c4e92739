# dentlab_core/views_workflow_api.py

from __future__ import annotations

from django.shortcuts import get_object_or_404

from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import AllowAny
from rest_framework.exceptions import NotAuthenticated, PermissionDenied

from dentlab_core.models import Case
from dentlab_core.permissions import is_lab_reader
from dentlab_core.serializers import CaseEventSerializer, CaseSerializer
from dentlab_core.services import case_pipeline, delivery
from dentlab_core.services.roles import get_user_roles
from dentlab_core.workflows.delivery import allowed_delivery_targets
from dentlab_core.workflows.errors import ValidationError


# =============================================================
# Helpers
# =============================================================

def _require_auth(user) -> None:
    """
    Enforce authentication in a way that returns DRF's normal 401/403
    instead of Django login redirects (302) under session-based setups.
    """
    if not user or not getattr(user, "is_authenticated", False):
        raise NotAuthenticated("Authentication credentials were not provided.")


def _require_lab_reader(user) -> set[str]:
    _require_auth(user)
    roles = get_user_roles(user)
    if not is_lab_reader(roles):
        raise PermissionDenied("This endpoint is reserved to lab staff.")
    return roles


def _case_response(case: Case) -> Response:
    return Response(CaseSerializer(case).data)


class _CaseCommandView(APIView):
    # Auth is enforced explicitly; role checks belong to the pipeline services.
    permission_classes = [AllowAny]

    def load(self, request, pk: int):
        _require_auth(request.user)
        case = get_object_or_404(Case, pk=pk)
        payload = request.data or {}
        return case, payload


# =============================================================
# API: Stage pointer moves (AUTHORITATIVE)
# =============================================================

class CaseAdvanceView(_CaseCommandView):
    """
    POST /api/cases/<pk>/advance/

    Body (optional): { "version": 3 }
    Finishes the current stage and starts the next one.
    """

    def post(self, request, pk: int):
        case, payload = self.load(request, pk)
        updated = case_pipeline.advance(
            case, request.user, expected_version=payload.get("version")
        )
        return _case_response(updated)


class CaseRewindView(_CaseCommandView):
    """
    POST /api/cases/<pk>/rewind/

    Reopens the previous stage; later stages go back to pending.
    """

    def post(self, request, pk: int):
        case, payload = self.load(request, pk)
        updated = case_pipeline.rewind(
            case, request.user, expected_version=payload.get("version")
        )
        return _case_response(updated)


class CaseJumpView(_CaseCommandView):
    """
    POST /api/cases/<pk>/jump/

    Body: { "to_order": 3, "version"?: 4 }
    """

    def post(self, request, pk: int):
        case, payload = self.load(request, pk)

        to_order = payload.get("to_order")
        if to_order in (None, ""):
            raise ValidationError("to_order is required.", field="to_order")

        updated = case_pipeline.apply_transition(
            case,
            to_order,
            request.user,
            action="jump",
            expected_version=payload.get("version"),
        )
        return _case_response(updated)


class CaseStageStatusView(_CaseCommandView):
    """
    POST /api/cases/<pk>/stages/<order>/status/

    Body: { "status": "pending" | "in_progress" | "done", "version"?: 4 }
    """

    def post(self, request, pk: int, order: int):
        case, payload = self.load(request, pk)

        new_status = payload.get("status")
        if not new_status:
            raise ValidationError("status is required.", field="status")

        updated = case_pipeline.set_stage_status(
            case,
            order,
            str(new_status),
            request.user,
            expected_version=payload.get("version"),
        )
        return _case_response(updated)


# =============================================================
# API: Delivery
# =============================================================

class CaseDeliveryView(_CaseCommandView):
    """
    POST /api/cases/<pk>/delivery/

    Body: { "status": "scheduled" | "delivered" | "returned", "date"?: "YYYY-MM-DD", "note"?: "..." }
    """

    def post(self, request, pk: int):
        case, payload = self.load(request, pk)

        target = payload.get("status")
        if not target:
            raise ValidationError("status is required.", field="status")

        updated = delivery.set_delivery_status(
            case,
            str(target),
            request.user,
            date=payload.get("date"),
            note=payload.get("note"),
            expected_version=payload.get("version"),
        )
        return _case_response(updated)


# =============================================================
# API: Introspection (read-only)
# =============================================================

class CaseAllowedView(APIView):
    """
    GET /api/cases/<pk>/allowed/

    Returns:
    - current stage order
    - jump targets allowed for the caller's roles
    - whether advance / rewind would pass right now
    - delivery statuses reachable from the current one
    """
    permission_classes = [AllowAny]

    def get(self, request, pk: int):
        roles = _require_lab_reader(request.user)
        case = get_object_or_404(Case, pk=pk)

        options = case_pipeline.move_options(case, roles)

        return Response(
            {
                "case": case.pk,
                "jump_policy": case.jump_policy,
                "current_order": options["current_order"],
                "allowed": options["jump"],
                "can_advance": options["advance"],
                "can_rewind": options["rewind"],
                "delivery_status": case.delivery_status,
                "delivery_targets": allowed_delivery_targets(case.delivery_status),
                "roles": sorted(roles),
            }
        )


class CaseEventsView(APIView):
    """
    GET /api/cases/<pk>/events/

    Audit trail, newest first.
    """
    permission_classes = [AllowAny]

    def get(self, request, pk: int):
        _require_lab_reader(request.user)
        case = get_object_or_404(Case, pk=pk)
        events = case.events.select_related("performed_by").order_by("-created_at", "-id")
        return Response(
            {
                "case": case.pk,
                "events": CaseEventSerializer(events, many=True).data,
            }
        )
