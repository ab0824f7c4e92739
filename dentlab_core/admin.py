# dentlab_core/admin.py

from django.contrib import admin

from .models import (
    CaseType,
    StageTemplate,
    Case,
    CaseStage,
    CaseEvent,
    UserRole,
)


# =============================================================
# Case events (READ-ONLY AUDIT LOG)
# =============================================================

@admin.register(CaseEvent)
class CaseEventAdmin(admin.ModelAdmin):
    list_display = ("case", "action", "actor_role", "performed_by", "created_at")
    list_filter = ("action", "actor_role")
    search_fields = ("case__code", "performed_by__username")
    ordering = ("-created_at",)

    readonly_fields = [f.name for f in CaseEvent._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# =============================================================
# Case types + stage catalog
# =============================================================

# Stage catalog edits go through the /api/types/ endpoints so orders stay
# dense and keys unique; the admin only shows them.
class StageTemplateInline(admin.TabularInline):
    model = StageTemplate
    extra = 0
    ordering = ("order",)
    fields = ("order", "key", "name", "color", "allowed_roles")
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(CaseType)
class CaseTypeAdmin(admin.ModelAdmin):
    list_display = ("key", "name", "created_at")
    search_fields = ("key", "name")
    inlines = [StageTemplateInline]


# =============================================================
# Cases (pipeline fields are read-only here)
# =============================================================

class CaseStageInline(admin.TabularInline):
    model = CaseStage
    extra = 0
    ordering = ("order",)
    fields = ("order", "key", "name", "status", "started_at", "completed_at")
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Case)
class CaseAdmin(admin.ModelAdmin):
    list_display = (
        "code",
        "doctor",
        "patient_name",
        "case_type",
        "current_stage_order",
        "delivery_status",
        "approved",
        "created_at",
    )
    list_filter = ("delivery_status", "approved", "jump_policy", "case_type")
    search_fields = ("code", "patient_name")
    ordering = ("-created_at",)
    readonly_fields = (
        "current_stage_order",
        "version",
        "delivery_status",
        "delivery_date",
        "approved",
        "approved_at",
        "approved_by",
    )
    inlines = [CaseStageInline]


@admin.register(UserRole)
class UserRoleAdmin(admin.ModelAdmin):
    list_display = ("user", "role", "created_at")
    list_filter = ("role",)
    search_fields = ("user__username", "role")
