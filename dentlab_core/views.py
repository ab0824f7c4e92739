# dentlab_core/views.py
from __future__ import annotations

import logging

from drf_spectacular.utils import extend_schema
from rest_framework import mixins, status, viewsets
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .filters import CaseFilter
from .models import Case, CaseType, UserRole
from .permissions import IsAdminRole, IsCaseWriterOrReadOnly, IsTemplateEditorOrReadOnly
from .serializers import (
    CaseCreateSerializer,
    CaseSerializer,
    CaseTypeSerializer,
    CaseUpdateSerializer,
    UserRoleSerializer,
)
from .services import stage_templates
from .services.case_pipeline import instantiate_case

logger = logging.getLogger(__name__)


# ===============================================================
# Utilities
# ===============================================================
def case_queryset():
    return Case.objects.select_related("case_type", "approved_by").prefetch_related("stages")


# ===============================================================
# Health
# ===============================================================
class HealthCheckView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(tags=["System"])
    def get(self, request):
        return Response({"status": "ok", "service": "dentlab"})


# ===============================================================
# Case types (stage catalog lives in views_stage_templates)
# ===============================================================
class CaseTypeViewSet(viewsets.ModelViewSet):
    queryset = CaseType.objects.prefetch_related("stages").all().order_by("name", "id")
    serializer_class = CaseTypeSerializer
    permission_classes = [IsAuthenticated, IsTemplateEditorOrReadOnly]
    http_method_names = ["get", "post", "patch", "put", "delete", "head", "options"]

    def create(self, request, *args, **kwargs):
        payload = request.data or {}
        case_type = stage_templates.create_case_type(
            key=payload.get("key"),
            name=payload.get("name"),
            stages=payload.get("stages") or [],
        )
        return Response(self.get_serializer(case_type).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        payload = request.data or {}
        if "key" in payload and str(payload.get("key") or "").strip() != self.get_object().key:
            return Response(
                {"key": "Type key cannot be changed once created."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        case_type = stage_templates.update_case_type(
            self.get_object(),
            name=payload.get("name"),
            stages=payload.get("stages"),
        )
        return Response(self.get_serializer(case_type).data)

    def partial_update(self, request, *args, **kwargs):
        return self.update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        stage_templates.delete_case_type(self.get_object())
        return Response(status=status.HTTP_204_NO_CONTENT)


# ===============================================================
# Cases
# ===============================================================
class CaseViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    """
    Case CRUD. Stage moves, delivery and approval have their own endpoints;
    only patient_name and note are editable here.
    """

    serializer_class = CaseSerializer
    permission_classes = [IsAuthenticated, IsCaseWriterOrReadOnly]
    filterset_class = CaseFilter

    def get_queryset(self):
        return case_queryset().order_by("-created_at", "-id")

    @extend_schema(request=CaseCreateSerializer, responses=CaseSerializer)
    def create(self, request, *args, **kwargs):
        s = CaseCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        data = s.validated_data

        case = instantiate_case(
            data["case_type"],
            doctor=data["doctor"],
            jump_policy=data["jump_policy"],
            code=data.get("code") or None,
            patient_name=data.get("patient_name", ""),
            note=data.get("note", ""),
            actor=request.user,
            start_first_stage=data.get("start_first_stage"),
        )
        return Response(CaseSerializer(case).data, status=status.HTTP_201_CREATED)

    @extend_schema(request=CaseUpdateSerializer, responses=CaseSerializer)
    def partial_update(self, request, *args, **kwargs):
        instance = self.get_object()
        s = CaseUpdateSerializer(instance, data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        s.save()
        logger.info("case=%s details edited by=%s", instance.code, request.user.username)
        return Response(CaseSerializer(case_queryset().get(pk=instance.pk)).data)

    def perform_destroy(self, instance):
        code = instance.code
        instance.delete()
        logger.info("case=%s deleted by=%s", code, self.request.user.username)


# ===============================================================
# User roles (admin only)
# ===============================================================
class UserRoleViewSet(
    mixins.ListModelMixin,
    mixins.CreateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    queryset = UserRole.objects.select_related("user").all().order_by("user_id", "role")
    serializer_class = UserRoleSerializer
    permission_classes = [IsAuthenticated, IsAdminRole]
