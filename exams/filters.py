# exams/filters.py
import django_filters
from django.db.models import Exists, OuterRef

from common.enums import AttemptStatus
from .models import Answer, Attempt


def with_pending_answers(qs):
    return qs.annotate(
        has_pending_answers=Exists(Answer.objects.filter(attempt=OuterRef("pk"), graded_at__isnull=True))
    )


class AttemptFilter(django_filters.FilterSet):
    status = django_filters.ChoiceFilter(choices=AttemptStatus.choices, method="filter_status")
    needs_grading = django_filters.BooleanFilter(method="filter_needs_grading")
    is_late = django_filters.BooleanFilter()
    voided = django_filters.BooleanFilter(field_name="abandoned_at", lookup_expr="isnull", exclude=True)
    submitted_after = django_filters.IsoDateTimeFilter(field_name="submitted_at", lookup_expr="gte")
    submitted_before = django_filters.IsoDateTimeFilter(field_name="submitted_at", lookup_expr="lte")

    class Meta:
        model = Attempt
        fields = ["status", "needs_grading", "is_late", "voided"]

    def filter_status(self, qs, name, value):
        # GRADED and SUBMITTED are told apart by the answers
        if value == AttemptStatus.GRADED:
            return with_pending_answers(qs).filter(status=AttemptStatus.SUBMITTED, has_pending_answers=False)
        if value == AttemptStatus.SUBMITTED:
            return with_pending_answers(qs).filter(status=AttemptStatus.SUBMITTED, has_pending_answers=True)
        return qs.filter(status=value)

    def filter_needs_grading(self, qs, name, value):
        qs = with_pending_answers(qs).filter(status=AttemptStatus.SUBMITTED)
        return qs.filter(has_pending_answers=value)
