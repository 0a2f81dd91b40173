# exams/serializers.py
from rest_framework import serializers

from common.enums import AttemptStatus, ProctorEventKind
from .models import Attempt
from .services.grading import derived_status


class StartAttemptIn(serializers.Serializer):
    fingerprint = serializers.CharField(required=False, allow_blank=True, max_length=256, default="")


class AnswerIn(serializers.Serializer):
    question_id = serializers.UUIDField()
    answer_text = serializers.CharField(required=False, allow_blank=True, allow_null=True, trim_whitespace=False)
    selected_option_ids = serializers.ListField(
        child=serializers.CharField(), required=False, allow_null=True, allow_empty=True
    )
    # kept as text; unparseable values are stored as no answer and score zero
    numeric_answer = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    marked_for_review = serializers.BooleanField(required=False)


class TabTrackingIn(serializers.Serializer):
    MODE_TOTAL = "total"
    MODE_INCREMENT = "increment"

    tab_switch_count = serializers.IntegerField(required=False, min_value=0)
    time_off_page_seconds = serializers.IntegerField(required=False, min_value=0)
    mode = serializers.ChoiceField(choices=[MODE_TOTAL, MODE_INCREMENT], default=MODE_TOTAL)

    def validate(self, attrs):
        if "tab_switch_count" not in attrs and "time_off_page_seconds" not in attrs:
            raise serializers.ValidationError("Provide tab_switch_count and/or time_off_page_seconds.")
        return attrs


class ProctorEventIn(serializers.Serializer):
    kind = serializers.ChoiceField(choices=ProctorEventKind.choices)
    meta = serializers.JSONField(required=False, default=dict)

    def to_internal_value(self, data):
        if hasattr(data, "copy") and isinstance(data.get("kind"), str):
            data = data.copy()
            data["kind"] = data["kind"].strip().upper()
        return super().to_internal_value(data)


class GradeItemIn(serializers.Serializer):
    answer_id = serializers.UUIDField()
    points_awarded = serializers.DecimalField(max_digits=12, decimal_places=4, allow_null=True)
    grader_note = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class GradeIn(serializers.Serializer):
    grades = GradeItemIn(many=True, allow_empty=False)


class AttemptRowSerializer(serializers.ModelSerializer):
    member = serializers.SerializerMethodField()
    status = serializers.SerializerMethodField()

    class Meta:
        model = Attempt
        fields = [
            "id", "member", "status", "started_at", "submitted_at", "is_late", "abandoned_at",
            "grade_earned", "tab_switch_count", "time_off_page_seconds", "proctoring_score",
        ]

    def get_member(self, obj):
        m = obj.membership
        return {"membership_id": str(m.id), "name": str(m.user), "team": m.team.name if m.team_id else None}

    def get_status(self, obj):
        pending = getattr(obj, "has_pending_answers", None)
        if pending is not None and obj.status == AttemptStatus.SUBMITTED:
            return AttemptStatus.SUBMITTED if pending else AttemptStatus.GRADED
        return derived_status(obj)
