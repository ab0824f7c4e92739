# dentlab_core/tests/test_admin_stage_catalog.py

import pytest
from django.contrib.admin.sites import AdminSite
from django.contrib.auth import get_user_model
from django.test import RequestFactory

from dentlab_core import admin as dentlab_admin
from dentlab_core.models import CaseType


@pytest.mark.django_db
def test_stage_templates_are_read_only_in_admin(three_stage_type):
    """
    Guardrail: the admin must not bypass the stage template store, which
    keeps orders dense and keys unique.
    """
    site = AdminSite()
    request = RequestFactory().get("/admin/")
    request.user = get_user_model().objects.create_superuser(
        username="admin_catalog",
        email="admin_catalog@example.com",
        password="pass",
    )

    inline = dentlab_admin.StageTemplateInline(CaseType, site)

    assert inline.has_add_permission(request, three_stage_type) is False
    assert inline.has_change_permission(request, three_stage_type) is False
    assert inline.has_delete_permission(request, three_stage_type) is False
    assert set(inline.get_readonly_fields(request, three_stage_type)) >= {"order", "key"}
