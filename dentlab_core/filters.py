# dentlab_core/filters.py
import django_filters as df
from django.db.models import Q

from .models import Case


class CaseFilter(df.FilterSet):
    doctor = df.NumberFilter(field_name="doctor_id")
    case_type = df.NumberFilter(field_name="case_type_id")
    delivery_status = df.CharFilter(field_name="delivery_status", lookup_expr="iexact")
    # "received" is the doctor's approval flag, not a delivery status
    received = df.BooleanFilter(field_name="approved")
    created_at = df.DateFromToRangeFilter()
    q = df.CharFilter(method="filter_q")

    class Meta:
        model = Case
        fields = ["doctor", "case_type", "delivery_status", "received", "jump_policy", "created_at"]

    def filter_q(self, queryset, name, value):
        value = (value or "").strip()
        if not value:
            return queryset
        return queryset.filter(
            Q(code__icontains=value) | Q(patient_name__icontains=value) | Q(note__icontains=value)
        )


class DoctorCaseFilter(df.FilterSet):
    status = df.CharFilter(field_name="delivery_status", lookup_expr="iexact")
    received = df.BooleanFilter(field_name="approved")

    class Meta:
        model = Case
        fields = ["status", "received"]
