# dentlab_core/views_doctor.py
"""
Doctor-side reader: a doctor only ever sees the cases prescribed by them.
"""

from __future__ import annotations

from django.shortcuts import get_object_or_404

from rest_framework import generics
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from dentlab_core.filters import DoctorCaseFilter
from dentlab_core.models import Case
from dentlab_core.permissions import IsDoctor
from dentlab_core.serializers import CaseSerializer
from dentlab_core.services.delivery import mark_approved


def _doctor_cases(user):
    return (
        Case.objects.filter(doctor=user)
        .select_related("case_type", "approved_by")
        .prefetch_related("stages")
        .order_by("-created_at", "-id")
    )


class DoctorCaseListView(generics.ListAPIView):
    """
    GET /api/doctor/cases/?status=delivered&received=false
    """
    serializer_class = CaseSerializer
    permission_classes = [IsAuthenticated, IsDoctor]
    filterset_class = DoctorCaseFilter

    def get_queryset(self):
        return _doctor_cases(self.request.user)


class DoctorCaseDetailView(generics.RetrieveAPIView):
    serializer_class = CaseSerializer
    permission_classes = [IsAuthenticated, IsDoctor]

    def get_queryset(self):
        return _doctor_cases(self.request.user)


class DoctorCaseApproveView(APIView):
    """
    POST /api/doctor/cases/<pk>/approve/

    Body (optional): { "note": "...", "version": 5 }
    The approving user is always the requester.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk: int):
        case = get_object_or_404(Case, pk=pk)
        payload = request.data or {}

        updated = mark_approved(
            case,
            request.user,
            note=payload.get("note") or "",
            expected_version=payload.get("version"),
        )
        return Response(CaseSerializer(updated).data)
