# exams/services/grading.py
"""
Automatic and manual grading of attempt answers.

Every objective question type registers a matcher comparing an answer
with the key; its points follow from the match, and so does the
correctness shown to students. Free-response types have no matcher, so
one sweep at submission covers every item and leaves those for graders.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.db import transaction
from django.utils import timezone

from common.enums import AttemptStatus, AuditAction, FREE_RESPONSE_TYPES, QuestionType
from exams import exceptions as exc
from exams.models import Answer, Attempt

from .audit import record_audit

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENTS = Decimal("0.01")

# question type -> matcher(question, answer) -> bool (answer matches the key)
KEY_MATCHERS = {}


def key_matcher(*question_types):
    def register(fn):
        for qt in question_types:
            KEY_MATCHERS[qt] = fn
        return fn
    return register


def to_decimal(value):
    """Parse a submitted numeric value; None when missing or unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = Decimal(text)
        except (InvalidOperation, ValueError):
            return None
    if not parsed.is_finite():
        return None
    return parsed


def to_stored_numeric(value, max_digits=20, decimal_places=6):
    """
    Parse a value for a DecimalField(max_digits, decimal_places): rounded to
    the field's places, None when unparseable or too large to store.
    """
    parsed = to_decimal(value)
    if parsed is None:
        return None
    if abs(parsed) >= Decimal(10) ** (max_digits - decimal_places):
        return None
    return parsed.quantize(Decimal(1).scaleb(-decimal_places), rounding=ROUND_HALF_UP)


def _selected_ids(answer) -> set[str]:
    raw = answer.selected_option_ids or []
    if not isinstance(raw, (list, tuple)):
        return set()
    return {str(x) for x in raw}


def _correct_ids(question) -> set[str]:
    return {str(o.id) for o in question.options.all() if o.is_correct}


@key_matcher(QuestionType.MCQ_SINGLE)
def _single_choice_matches(question, answer) -> bool:
    selected = _selected_ids(answer)
    correct = _correct_ids(question)
    return len(selected) == 1 and len(correct) == 1 and selected == correct


@key_matcher(QuestionType.MCQ_MULTI)
def _multi_choice_matches(question, answer) -> bool:
    # exact set match, no partial credit
    correct = _correct_ids(question)
    return bool(correct) and _selected_ids(answer) == correct


@key_matcher(QuestionType.NUMERIC)
def _numeric_matches(question, answer) -> bool:
    submitted = to_decimal(answer.numeric_answer)
    expected = to_decimal(question.numeric_answer)
    if submitted is None or expected is None:
        return False
    tolerance = abs(to_decimal(question.numeric_tolerance) or ZERO)
    return abs(submitted - expected) <= tolerance


def matches_key(question, answer):
    """True/False for objective types, None for free response."""
    matcher = KEY_MATCHERS.get(question.type)
    if matcher is None:
        return None
    return matcher(question, answer)


def grade_automatically(question, answer):
    matched = matches_key(question, answer)
    if matched is None:
        return None
    return question.points if matched else ZERO


def is_answer_correct(answer):
    """
    True/False once graded, None while pending. Objective answers are
    compared with the key; free response counts as correct at full marks
    and has no verdict on a zero-point question.
    """
    if answer.graded_at is None or answer.points_awarded is None:
        return None
    question = answer.question
    matched = matches_key(question, answer)
    if matched is not None:
        return matched
    if not question.points:
        return None
    return answer.points_awarded >= question.points


def clamp_points(value, maximum) -> Decimal:
    points = to_decimal(value)
    if points is None:
        raise exc.ConsistencyViolation(exc.INVALID_POINTS, "points_awarded must be a number.")
    points = max(ZERO, min(points, Decimal(maximum)))
    return points.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ScoreBreakdown:
    earned_points: Decimal
    graded_total_points: Decimal
    overall_total_points: Decimal
    graded_count: int
    answer_count: int

    @property
    def grading_in_progress(self) -> bool:
        return self.graded_count < self.answer_count

    @property
    def fraction(self):
        # graded points only, so partially graded attempts aren't depressed
        if not self.graded_total_points:
            return None
        return self.earned_points / self.graded_total_points

    def as_dict(self) -> dict:
        fraction = self.fraction
        return {
            "earned_points": float(self.earned_points),
            "graded_total_points": float(self.graded_total_points),
            "overall_total_points": float(self.overall_total_points),
            "grading_in_progress": self.grading_in_progress,
            "percent": round(float(fraction) * 100.0, 2) if fraction is not None else None,
        }


def score_breakdown(answers) -> ScoreBreakdown:
    earned = graded_total = overall = ZERO
    graded = count = 0
    for a in answers:
        count += 1
        points = a.question.points or ZERO
        overall += points
        if a.graded_at is not None:
            graded += 1
            graded_total += points
            earned += a.points_awarded or ZERO
    return ScoreBreakdown(
        earned_points=earned,
        graded_total_points=graded_total,
        overall_total_points=overall,
        graded_count=graded,
        answer_count=count,
    )


def load_answers(attempt):
    return list(
        attempt.answers
        .select_related("question")
        .prefetch_related("question__options")
        .order_by("question__order", "question__created_at")
    )


def derived_status(attempt, answers=None) -> str:
    """
    SUBMITTED attempts read as GRADED once every answer carries graded_at.
    Computed from the answers on each call.
    """
    if attempt.status != AttemptStatus.SUBMITTED:
        return attempt.status
    if answers is None:
        pending = attempt.answers.filter(graded_at__isnull=True).exists()
    else:
        pending = any(a.graded_at is None for a in answers)
    return AttemptStatus.SUBMITTED if pending else AttemptStatus.GRADED


def refresh_grade_earned(attempt, answers=None) -> ScoreBreakdown:
    """Recompute the cached grade_earned; callers hold the grading transaction."""
    if answers is None:
        answers = load_answers(attempt)
    breakdown = score_breakdown(answers)
    attempt.grade_earned = breakdown.earned_points if breakdown.graded_count else None
    attempt.save(update_fields=["grade_earned", "updated_at"])
    return breakdown


def auto_grade_attempt(attempt, now=None) -> ScoreBreakdown:
    """Score every objective answer of a just-submitted attempt."""
    now = now or timezone.now()
    answers = load_answers(attempt)
    changed = []
    for a in answers:
        points = grade_automatically(a.question, a)
        if points is None:
            continue
        a.points_awarded = Decimal(points).quantize(CENTS, rounding=ROUND_HALF_UP)
        a.graded_at = now
        changed.append(a)
    if changed:
        Answer.objects.bulk_update(changed, ["points_awarded", "graded_at"])
    breakdown = refresh_grade_earned(attempt, answers)
    logger.info(
        "auto-graded attempt %s: %s objective answers, %s/%s points",
        attempt.pk, len(changed), breakdown.earned_points, breakdown.graded_total_points,
    )
    return breakdown


def grade_answers(attempt, grades, grader=None, now=None):
    """
    Apply manual grades to free-response answers of a submitted attempt.

    `grades` is a list of {"answer_id", "points_awarded", "grader_note"}.
    points_awarded None ungrades the answer. Points are clamped to
    [0, question.points]. Re-grading overwrites.
    """
    now = now or timezone.now()
    with transaction.atomic():
        attempt = (
            Attempt.objects.select_for_update()
            .select_related("assessment")
            .get(pk=attempt.pk)
        )
        if attempt.status != AttemptStatus.SUBMITTED:
            raise exc.ConsistencyViolation(
                exc.ATTEMPT_NOT_SUBMITTED, "Only submitted attempts can be graded."
            )

        wanted = [str(g["answer_id"]) for g in grades]
        answers = {
            str(a.id): a
            for a in Answer.objects.filter(attempt=attempt, id__in=wanted).select_related("question")
        }

        changed = []
        for g in grades:
            a = answers.get(str(g["answer_id"]))
            if a is None:
                raise exc.ConsistencyViolation(
                    exc.ANSWER_NOT_IN_ATTEMPT, "Answer does not belong to this attempt.",
                    answer_id=str(g["answer_id"]),
                )
            if a.question.type not in FREE_RESPONSE_TYPES:
                raise exc.ConsistencyViolation(
                    exc.ANSWER_AUTO_GRADED, "Objective answers are graded automatically.",
                    answer_id=str(a.id),
                )
            points = g.get("points_awarded")
            if points is None:
                a.points_awarded = None
                a.grader_note = None
                a.graded_at = None
            else:
                a.points_awarded = clamp_points(points, a.question.points)
                a.grader_note = g.get("grader_note") or None
                a.graded_at = now
            changed.append(a)

        if changed:
            Answer.objects.bulk_update(changed, ["points_awarded", "grader_note", "graded_at"])

        answers_now = load_answers(attempt)
        breakdown = refresh_grade_earned(attempt, answers_now)
        record_audit(
            attempt.assessment, AuditAction.GRADE, actor=grader,
            details={
                "attemptId": str(attempt.id),
                "answers": [str(a.id) for a in changed],
                "gradeEarned": str(attempt.grade_earned) if attempt.grade_earned is not None else None,
            },
        )

    logger.info("graded %s answers on attempt %s by %s", len(changed), attempt.pk, getattr(grader, "pk", None))
    return attempt, breakdown, derived_status(attempt, answers_now)
