# dentlab_core/urls.py

from django.urls import path, include
from rest_framework.routers import DefaultRouter

# -------------------------------------------------
# Core API ViewSets
# -------------------------------------------------
from .views import (
    HealthCheckView,
    CaseTypeViewSet,
    CaseViewSet,
    UserRoleViewSet,
)

# -------------------------------------------------
# Stage template store
# -------------------------------------------------
from .views_stage_templates import (
    StageTemplateCreateView,
    StageTemplateDetailView,
    DuplicateStagesView,
)

# -------------------------------------------------
# Case pipeline commands + introspection
# -------------------------------------------------
from .views_workflow_api import (
    CaseAdvanceView,
    CaseRewindView,
    CaseJumpView,
    CaseStageStatusView,
    CaseDeliveryView,
    CaseAllowedView,
    CaseEventsView,
)

# -------------------------------------------------
# Doctor-scoped reader
# -------------------------------------------------
from .views_doctor import (
    DoctorCaseListView,
    DoctorCaseDetailView,
    DoctorCaseApproveView,
)


app_name = "dentlab_core"

# -------------------------------------------------
# Router (CRUD APIs)
# -------------------------------------------------
router = DefaultRouter()
router.register(r"types", CaseTypeViewSet, basename="casetype")
router.register(r"cases", CaseViewSet, basename="case")
router.register(r"roles", UserRoleViewSet, basename="role")


urlpatterns = [
    # ============================================================
    # Core CRUD API
    # ============================================================
    path("", include(router.urls)),

    # ============================================================
    # System
    # ============================================================
    path("health/", HealthCheckView.as_view(), name="health_check"),

    # ============================================================
    # Stage templates
    # ============================================================
    path("types/<int:pk>/stages/", StageTemplateCreateView.as_view(), name="stage-template-create"),
    path("types/<int:pk>/stages/<str:key>/", StageTemplateDetailView.as_view(), name="stage-template-detail"),
    path("types/<int:pk>/duplicate-stages/", DuplicateStagesView.as_view(), name="stage-template-duplicate"),

    # ============================================================
    # Case pipeline (authoritative mutations)
    # ============================================================
    path("cases/<int:pk>/advance/", CaseAdvanceView.as_view(), name="case-advance"),
    path("cases/<int:pk>/rewind/", CaseRewindView.as_view(), name="case-rewind"),
    path("cases/<int:pk>/jump/", CaseJumpView.as_view(), name="case-jump"),
    path("cases/<int:pk>/stages/<int:order>/status/", CaseStageStatusView.as_view(), name="case-stage-status"),
    path("cases/<int:pk>/delivery/", CaseDeliveryView.as_view(), name="case-delivery"),

    # ============================================================
    # Case introspection (read-only)
    # ============================================================
    path("cases/<int:pk>/allowed/", CaseAllowedView.as_view(), name="case-allowed"),
    path("cases/<int:pk>/events/", CaseEventsView.as_view(), name="case-events"),

    # ============================================================
    # Doctor-scoped
    # ============================================================
    path("doctor/cases/", DoctorCaseListView.as_view(), name="doctor-case-list"),
    path("doctor/cases/<int:pk>/", DoctorCaseDetailView.as_view(), name="doctor-case-detail"),
    path("doctor/cases/<int:pk>/approve/", DoctorCaseApproveView.as_view(), name="doctor-case-approve"),
]
