from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from accounts.models import Club, Membership
from common.enums import (
    AssessmentKind, AssessmentStatus, AttemptStatus, AuditAction, CalculatorType,
    ProctorEventKind, QuestionType, ScoreReleaseMode,
)
from common.models import TimeStampedModel
from tournaments.models import Event, Tournament


class Assessment(TimeStampedModel):
    """
    A gradable test definition. `kind` tags the two variants: a club
    Test and a tournament ESTest. Both share every field the engine
    reads; only ES_TEST honours the `scores_released` override.
    """
    kind = models.CharField(max_length=10, choices=AssessmentKind.choices, default=AssessmentKind.TEST)
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    instructions = models.TextField(blank=True)

    club = models.ForeignKey(Club, on_delete=models.CASCADE, null=True, blank=True, related_name="assessments")
    tournament = models.ForeignKey(
        Tournament, on_delete=models.CASCADE, null=True, blank=True, related_name="assessments"
    )
    # null event = general test, or a trial-event test named in the CREATE audit row
    event = models.ForeignKey(Event, on_delete=models.SET_NULL, null=True, blank=True, related_name="assessments")

    status = models.CharField(max_length=12, choices=AssessmentStatus.choices, default=AssessmentStatus.DRAFT)

    start_at = models.DateTimeField(null=True, blank=True)
    end_at = models.DateTimeField(null=True, blank=True)
    allow_late_until = models.DateTimeField(null=True, blank=True)
    duration_minutes = models.PositiveIntegerField(
        default=60, validators=[MinValueValidator(1), MaxValueValidator(24 * 60)]
    )
    max_attempts = models.PositiveIntegerField(null=True, blank=True)

    require_fullscreen = models.BooleanField(default=True)
    allow_calculator = models.BooleanField(default=False)
    calculator_type = models.CharField(max_length=16, choices=CalculatorType.choices, null=True, blank=True)
    allow_note_sheet = models.BooleanField(default=False)
    note_sheet_instructions = models.TextField(blank=True)

    score_release_mode = models.CharField(
        max_length=20, choices=ScoreReleaseMode.choices, default=ScoreReleaseMode.FULL_TEST
    )
    release_scores_at = models.DateTimeField(null=True, blank=True)
    scores_released = models.BooleanField(null=True, blank=True)

    class Meta:
        ordering = ("start_at", "name")
        indexes = [
            models.Index(fields=["tournament", "status"]),
            models.Index(fields=["club", "status"]),
        ]

    def clean(self):
        if self.kind == AssessmentKind.TEST and not self.club_id:
            raise ValidationError("Club tests must belong to a club.")
        if self.kind == AssessmentKind.ES_TEST and not self.tournament_id:
            raise ValidationError("Event tests must belong to a tournament.")
        if self.start_at and self.end_at and self.start_at >= self.end_at:
            raise ValidationError("start_at must be earlier than end_at")
        if self.allow_late_until and self.end_at and self.allow_late_until < self.end_at:
            raise ValidationError("allow_late_until cannot be earlier than end_at")

    @property
    def is_published(self) -> bool:
        return self.status == AssessmentStatus.PUBLISHED

    @property
    def supports_release_override(self) -> bool:
        return self.kind == AssessmentKind.ES_TEST

    @property
    def release_override(self):
        """True/False when explicitly set on an ES test, otherwise None."""
        if not self.supports_release_override:
            return None
        return self.scores_released

    @property
    def closes_at(self):
        return self.allow_late_until or self.end_at

    def __str__(self):
        return f"{self.name} [{self.kind}]"


class Question(TimeStampedModel):
    assessment = models.ForeignKey(Assessment, on_delete=models.CASCADE, related_name="questions")
    type = models.CharField(max_length=12, choices=QuestionType.choices, default=QuestionType.MCQ_SINGLE)
    prompt = models.TextField()
    explanation = models.TextField(blank=True)
    points = models.DecimalField(
        max_digits=8, decimal_places=2, default=Decimal("1.00"), validators=[MinValueValidator(Decimal("0"))]
    )
    order = models.PositiveIntegerField(default=0)

    numeric_answer = models.DecimalField(max_digits=20, decimal_places=6, null=True, blank=True)
    numeric_tolerance = models.DecimalField(max_digits=20, decimal_places=6, default=Decimal("0"))

    class Meta:
        ordering = ("assessment", "order", "created_at")
        indexes = [models.Index(fields=["assessment", "order"])]

    def __str__(self):
        return self.prompt[:60]


class QuestionOption(TimeStampedModel):
    question = models.ForeignKey(Question, on_delete=models.CASCADE, related_name="options")
    label = models.TextField()
    is_correct = models.BooleanField(default=False)
    order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ("question", "order", "created_at")


class Attempt(TimeStampedModel):
    assessment = models.ForeignKey(Assessment, on_delete=models.CASCADE, related_name="attempts")
    membership = models.ForeignKey(Membership, on_delete=models.CASCADE, related_name="attempts")

    # GRADED is never stored here; see exams.services.grading.derived_status
    status = models.CharField(max_length=12, choices=AttemptStatus.choices, default=AttemptStatus.NOT_STARTED)
    started_at = models.DateTimeField(null=True, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    is_late = models.BooleanField(default=False)
    abandoned_at = models.DateTimeField(null=True, blank=True)

    grade_earned = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    tab_switch_count = models.PositiveIntegerField(default=0)
    time_off_page_seconds = models.PositiveIntegerField(default=0)
    proctoring_score = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)

    client_fingerprint = models.CharField(max_length=256, blank=True)
    ip_at_start = models.GenericIPAddressField(null=True, blank=True)
    ip_at_submit = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)

    class Meta:
        ordering = ("-created_at",)
        indexes = [
            models.Index(fields=["assessment", "membership", "status"]),
            models.Index(fields=["status", "started_at"]),
        ]

    def clean(self):
        if self.submitted_at and self.started_at and self.submitted_at < self.started_at:
            raise ValidationError("submitted_at cannot be earlier than started_at")

    @property
    def expires_at(self):
        if not self.started_at or not self.assessment.duration_minutes:
            return None
        return self.started_at + timedelta(minutes=self.assessment.duration_minutes)

    def __str__(self):
        return f"{self.membership} • {self.assessment} • {self.status}"


class Answer(TimeStampedModel):
    attempt = models.ForeignKey(Attempt, on_delete=models.CASCADE, related_name="answers")
    question = models.ForeignKey(Question, on_delete=models.CASCADE, related_name="answers")

    answer_text = models.TextField(null=True, blank=True)
    selected_option_ids = models.JSONField(null=True, blank=True)
    numeric_answer = models.DecimalField(max_digits=20, decimal_places=6, null=True, blank=True)
    marked_for_review = models.BooleanField(default=False)

    points_awarded = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    graded_at = models.DateTimeField(null=True, blank=True)
    grader_note = models.TextField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["attempt", "question"], name="uq_answer_attempt_question"),
        ]
        indexes = [models.Index(fields=["attempt", "graded_at"])]


class ProctorEvent(TimeStampedModel):
    attempt = models.ForeignKey(Attempt, on_delete=models.CASCADE, related_name="proctor_events")
    kind = models.CharField(max_length=20, choices=ProctorEventKind.choices)
    meta = models.JSONField(default=dict, blank=True)
    occurred_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=["attempt", "kind", "occurred_at"])]


class AssessmentAudit(TimeStampedModel):
    assessment = models.ForeignKey(
        Assessment, on_delete=models.SET_NULL, null=True, blank=True, related_name="audits"
    )
    action = models.CharField(max_length=20, choices=AuditAction.choices)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="assessment_audits"
    )
    details = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ("created_at",)
        indexes = [
            models.Index(fields=["assessment", "action"]),
        ]
