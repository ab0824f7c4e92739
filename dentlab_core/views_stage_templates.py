# dentlab_core/views_stage_templates.py

from __future__ import annotations

from django.shortcuts import get_object_or_404

from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from dentlab_core.models import CaseType
from dentlab_core.permissions import IsTemplateEditorOrReadOnly
from dentlab_core.serializers import CaseTypeSerializer
from dentlab_core.services import stage_templates
from dentlab_core.services.case_writes import parse_int
from dentlab_core.workflows.errors import ValidationError


class StageTemplateCreateView(APIView):
    """
    POST /api/types/<pk>/stages/

    Body: { "name": "...", "key"?: "...", "order"?: 2, "color"?: "#...", "allowed_roles"?: [...] }
    Without an order the stage is appended.
    """
    permission_classes = [IsAuthenticated, IsTemplateEditorOrReadOnly]

    def post(self, request, pk: int):
        case_type = get_object_or_404(CaseType, pk=pk)
        updated = stage_templates.add_stage(case_type, request.data or {})
        return Response(CaseTypeSerializer(updated).data, status=status.HTTP_201_CREATED)


class StageTemplateDetailView(APIView):
    """
    PATCH  /api/types/<pk>/stages/<key>/   partial update; "order" moves the stage
    DELETE /api/types/<pk>/stages/<key>/
    """
    permission_classes = [IsAuthenticated, IsTemplateEditorOrReadOnly]

    def patch(self, request, pk: int, key: str):
        case_type = get_object_or_404(CaseType, pk=pk)
        updated = stage_templates.update_stage(case_type, key, request.data or {})
        return Response(CaseTypeSerializer(updated).data)

    def delete(self, request, pk: int, key: str):
        case_type = get_object_or_404(CaseType, pk=pk)
        updated = stage_templates.remove_stage(case_type, key)
        return Response(CaseTypeSerializer(updated).data)


class DuplicateStagesView(APIView):
    """
    POST /api/types/<pk>/duplicate-stages/

    Body: { "source": <type id>, "keys": ["design", ...] }
    Copies the chosen stages (all when "keys" is empty) from source onto this type.
    """
    permission_classes = [IsAuthenticated, IsTemplateEditorOrReadOnly]

    def post(self, request, pk: int):
        target = get_object_or_404(CaseType, pk=pk)

        payload = request.data or {}
        source_id = parse_int(payload.get("source"), "source")
        source = get_object_or_404(CaseType, pk=source_id)

        keys = payload.get("keys") or []
        if not isinstance(keys, (list, tuple)):
            raise ValidationError("keys must be a list.", field="keys")

        updated = stage_templates.duplicate_stages(source, keys, target)
        return Response(CaseTypeSerializer(updated).data)
