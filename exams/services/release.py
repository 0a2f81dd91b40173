# exams/services/release.py
"""
Score-release gating.

Two questions are answered here: are an assessment's scores released at
all, and how much of an attempt's result a student may see once they
are. Both variants of Assessment go through the same rules; the
scores_released override only exists on tournament event tests and is
read as absent (not False) everywhere else.
"""
from __future__ import annotations

import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from common.enums import (
    AssessmentStatus, AttemptStatus, AuditAction, FREE_RESPONSE_TYPES, QuestionType, ScoreReleaseMode,
)
from exams import exceptions as exc
from exams.models import Assessment
from tournaments.selectors import tournament_has_ended

from .audit import creation_event_names, record_audit
from .grading import derived_status, is_answer_correct, load_answers, score_breakdown

logger = logging.getLogger(__name__)

OBJECTIVE_CHOICE_TYPES = (QuestionType.MCQ_SINGLE, QuestionType.MCQ_MULTI)


def release_tolerance() -> timedelta:
    return timedelta(seconds=float(getattr(settings, "SCORE_RELEASE_TOLERANCE_SECONDS", 1.0)))


def scores_released(assessment, now=None) -> bool:
    if assessment.score_release_mode == ScoreReleaseMode.NONE:
        return False
    if assessment.status != AssessmentStatus.PUBLISHED:
        return True
    if getattr(assessment, "release_override", None) is True:
        return True
    if assessment.release_scores_at is None:
        return True
    now = now or timezone.now()
    return now >= assessment.release_scores_at - release_tolerance()


def is_submitted(attempt) -> bool:
    return attempt.status in (AttemptStatus.SUBMITTED, AttemptStatus.GRADED)


def can_view_results(attempt, now=None) -> bool:
    return is_submitted(attempt) and scores_released(attempt.assessment, now)


# ---------- per-item detail ----------

def _correctness_only(answer) -> dict:
    return {
        "question_id": str(answer.question_id),
        "order": answer.question.order,
        "is_correct": is_answer_correct(answer),
    }


def _full_detail(answer) -> dict:
    q = answer.question
    item = {
        "answer_id": str(answer.id),
        "question_id": str(q.id),
        "order": q.order,
        "type": q.type,
        "prompt": q.prompt,
        "points": float(q.points),
        "points_awarded": float(answer.points_awarded) if answer.points_awarded is not None else None,
        "graded_at": answer.graded_at,
        "is_correct": is_answer_correct(answer),
        "answer_text": answer.answer_text,
        "selected_option_ids": answer.selected_option_ids,
        "numeric_answer": float(answer.numeric_answer) if answer.numeric_answer is not None else None,
        "explanation": q.explanation,
    }
    if q.type in OBJECTIVE_CHOICE_TYPES:
        options = list(q.options.all())
        item["options"] = [
            {"id": str(o.id), "label": o.label, "order": o.order, "is_correct": o.is_correct}
            for o in options
        ]
        item["correct_option_ids"] = [str(o.id) for o in options if o.is_correct]
    elif q.type == QuestionType.NUMERIC:
        item["correct_numeric_answer"] = float(q.numeric_answer) if q.numeric_answer is not None else None
        item["numeric_tolerance"] = float(q.numeric_tolerance)
    if q.type in FREE_RESPONSE_TYPES:
        item["grader_note"] = answer.grader_note
    return item


DETAIL_BUILDERS = {
    ScoreReleaseMode.NONE: None,
    ScoreReleaseMode.SCORE_ONLY: None,
    ScoreReleaseMode.SCORE_WITH_WRONG: _correctness_only,
    ScoreReleaseMode.FULL_TEST: _full_detail,
}


def results_payload(attempt, now=None, answers=None) -> dict:
    """
    Student-facing result of one attempt, redacted per release mode.

    Score figures stay None and answers are omitted until the attempt is
    submitted and the assessment's scores are released.
    """
    assessment = attempt.assessment
    if answers is None:
        answers = load_answers(attempt)
    status = derived_status(attempt, answers)
    released = scores_released(assessment, now)
    visible = released and is_submitted(attempt)

    block = {
        "id": str(attempt.id),
        "status": status,
        "grade_earned": None,
        "earned_points": None,
        "graded_total_points": None,
        "overall_total_points": None,
        "grading_in_progress": None,
        "percent": None,
        "tab_switch_count": attempt.tab_switch_count,
        "is_late": attempt.is_late,
        "started_at": attempt.started_at,
        "submitted_at": attempt.submitted_at,
    }
    payload = {
        "attempt": block,
        "scores_released": released,
        "can_view_results": visible,
        "score_release_mode": assessment.score_release_mode,
        "release_scores_at": assessment.release_scores_at,
    }
    if not visible:
        return payload

    block["grade_earned"] = float(attempt.grade_earned) if attempt.grade_earned is not None else None
    block.update(score_breakdown(answers).as_dict())

    build = DETAIL_BUILDERS.get(assessment.score_release_mode)
    if build is not None:
        payload["answers"] = [build(a) for a in answers]
    return payload


def results_history(assessment, attempts, now=None) -> dict:
    """Every attempt's result, each redacted as in results_payload."""
    now = now or timezone.now()
    return {
        "test_id": str(assessment.id),
        "scores_released": scores_released(assessment, now),
        "score_release_mode": assessment.score_release_mode,
        "release_scores_at": assessment.release_scores_at,
        "attempts": [results_payload(a, now=now) for a in attempts],
    }


def grader_payload(attempt) -> dict:
    """Unredacted review of an attempt for graders."""
    answers = load_answers(attempt)
    breakdown = score_breakdown(answers)
    membership = attempt.membership
    return {
        "attempt": {
            "id": str(attempt.id),
            "status": derived_status(attempt, answers),
            "member": {
                "membership_id": str(membership.id),
                "user_id": membership.user_id,
                "name": str(membership.user),
            },
            "grade_earned": float(attempt.grade_earned) if attempt.grade_earned is not None else None,
            **breakdown.as_dict(),
            "started_at": attempt.started_at,
            "submitted_at": attempt.submitted_at,
            "is_late": attempt.is_late,
            "abandoned_at": attempt.abandoned_at,
            "tab_switch_count": attempt.tab_switch_count,
            "time_off_page_seconds": attempt.time_off_page_seconds,
            "proctoring_score": float(attempt.proctoring_score) if attempt.proctoring_score is not None else None,
            "ip_at_start": attempt.ip_at_start,
            "ip_at_submit": attempt.ip_at_submit,
        },
        "answers": [_full_detail(a) for a in answers],
    }


# ---------- release actions ----------

def _require_tournament_ended(tournament, now):
    if tournament is not None and not tournament_has_ended(tournament, now):
        raise exc.ConsistencyViolation(
            exc.TOURNAMENT_NOT_ENDED, "Scores can only be released after the tournament has ended."
        )


def _mark_released(assessment, now) -> bool:
    if assessment.supports_release_override:
        if assessment.scores_released is True:
            return False
        assessment.scores_released = True
        assessment.save(update_fields=["scores_released", "updated_at"])
        return True
    if assessment.release_scores_at is not None and assessment.release_scores_at <= now:
        return False
    assessment.release_scores_at = now
    assessment.save(update_fields=["release_scores_at", "updated_at"])
    return True


def _release_many(assessments, actor, now, scope) -> list:
    released = []
    with transaction.atomic():
        for a in assessments:
            if _mark_released(a, now):
                record_audit(a, AuditAction.RELEASE_SCORES, actor=actor, details={"scope": scope})
                released.append(a)
    logger.info("released scores for %s assessments (%s)", len(released), scope)
    return released


def release_scores(assessment, actor=None, now=None) -> bool:
    """Release one assessment's scores. Returns False when already released."""
    now = now or timezone.now()
    if assessment.tournament_id:
        _require_tournament_ended(assessment.tournament, now)
    return bool(_release_many([assessment], actor, now, scope="assessment"))


def release_all_scores(tournament, actor=None, now=None) -> list:
    now = now or timezone.now()
    _require_tournament_ended(tournament, now)
    assessments = Assessment.objects.filter(tournament=tournament, status=AssessmentStatus.PUBLISHED)
    return _release_many(list(assessments), actor, now, scope="tournament")


def release_trial_event_scores(tournament, event_name, actor=None, now=None) -> list:
    """Release every published null-event test created for the named trial event."""
    now = now or timezone.now()
    _require_tournament_ended(tournament, now)
    candidates = list(
        Assessment.objects.filter(
            tournament=tournament, status=AssessmentStatus.PUBLISHED, event__isnull=True,
        )
    )
    names = creation_event_names([a.id for a in candidates])
    wanted = (event_name or "").strip()
    matched = [a for a in candidates if names.get(a.id) == wanted]
    return _release_many(matched, actor, now, scope=f"trial:{wanted}")
