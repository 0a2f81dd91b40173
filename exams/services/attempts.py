# exams/services/attempts.py
"""
Attempt lifecycle: start, autosave, proctoring counters, submit, expiry.

Stored status moves NOT_STARTED -> IN_PROGRESS -> SUBMITTED. GRADED is
derived from the answers (see grading.derived_status).
"""
from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.db.models import Count, F, Value
from django.db.models.functions import Greatest
from django.utils import timezone

from accounts.models import Membership
from common.enums import AttemptStatus, AuditAction, ProctorEventKind, QuestionType
from exams import exceptions as exc
from exams.models import Answer, Attempt, ProctorEvent, Question, QuestionOption
from tournaments.selectors import (
    club_membership, roster_events, tournament_has_ended, tournament_membership,
)

from .audit import record_audit
from .grading import auto_grade_attempt, to_stored_numeric

logger = logging.getLogger(__name__)

# points added to the proctoring score per recorded event
PROCTOR_WEIGHTS = {
    ProctorEventKind.TAB_SWITCH: 5,
    ProctorEventKind.BLUR: 2,
    ProctorEventKind.FULLSCREEN_EXIT: 5,
    ProctorEventKind.COPY: 3,
    ProctorEventKind.PASTE: 5,
    ProctorEventKind.CONTEXT_MENU: 1,
    ProctorEventKind.DEVTOOLS_OPEN: 10,
    ProctorEventKind.RESIZE: 1,
    ProctorEventKind.OTHER: 1,
}
TIME_OFF_PAGE_POINTS_PER_MINUTE = 2
PROCTORING_SCORE_CAP = 100

UNSET = object()


def _grace() -> timedelta:
    return timedelta(seconds=float(getattr(settings, "ATTEMPT_SUBMIT_GRACE_SECONDS", 30)))


def submit_cutoff(attempt):
    """Last moment a submission of this attempt is on time; None without a duration."""
    expires_at = attempt.expires_at
    if expires_at is None:
        return None
    return expires_at + _grace()


def is_expired(attempt, now=None) -> bool:
    cutoff = submit_cutoff(attempt)
    if cutoff is None:
        return False
    now = now or timezone.now()
    return now > cutoff


def open_attempt(assessment, membership):
    return (
        Attempt.objects
        .filter(
            assessment=assessment, membership=membership,
            status=AttemptStatus.IN_PROGRESS, abandoned_at__isnull=True,
        )
        .order_by("-started_at")
        .first()
    )


def attempts_used(assessment, membership) -> int:
    return Attempt.objects.filter(
        assessment=assessment, membership=membership,
        status=AttemptStatus.SUBMITTED, abandoned_at__isnull=True,
    ).count()


def attempt_usage(assessment, membership) -> dict:
    used = attempts_used(assessment, membership)
    current = open_attempt(assessment, membership)
    limit = assessment.max_attempts
    return {
        "attempts_used": used,
        "max_attempts": limit,
        "has_reached_limit": limit is not None and used >= limit,
        "open_attempt_id": str(current.id) if current else None,
    }


def resolve_participant(user, assessment):
    """
    (membership, rostered events) through which `user` takes `assessment`.
    Tournament tests go through a confirmed registration; club tests
    through plain club membership.
    """
    if assessment.tournament_id:
        membership, registration = tournament_membership(user, assessment.tournament)
        if membership is not None:
            return membership, roster_events(membership, registration)
    membership = club_membership(user, assessment.club_id)
    if membership is None:
        raise exc.PolicyViolation(exc.NOT_REGISTERED, "You are not entered for this test.")
    return membership, []


def check_can_start(assessment, membership, now, rostered=None):
    if not assessment.is_published:
        raise exc.PolicyViolation(exc.TEST_NOT_PUBLISHED, "This test is not published.")
    if assessment.start_at and now < assessment.start_at:
        raise exc.PolicyViolation(
            exc.TEST_NOT_OPEN, "This test is not open yet.", start_at=assessment.start_at.isoformat()
        )
    closes_at = assessment.closes_at
    if closes_at and now > closes_at:
        raise exc.PolicyViolation(exc.TEST_CLOSED, "This test is closed.")
    if assessment.tournament_id and tournament_has_ended(assessment.tournament, now):
        raise exc.PolicyViolation(exc.TOURNAMENT_ENDED, "The tournament has ended.")

    # members without any roster rows see every event test, so they may start any of them
    if assessment.event_id and rostered:
        if assessment.event_id not in {e.id for e in rostered}:
            raise exc.PolicyViolation(exc.NOT_ASSIGNED_TO_EVENT, "You are not assigned to this event.")

    current = open_attempt(assessment, membership)
    if current is not None:
        raise exc.Conflict(
            exc.ATTEMPT_IN_PROGRESS, "A previous attempt is still open.", attempt_id=str(current.id)
        )

    if assessment.max_attempts is not None:
        used = attempts_used(assessment, membership)
        if used >= assessment.max_attempts:
            raise exc.PolicyViolation(
                exc.MAX_ATTEMPTS_REACHED, "Maximum attempts reached.",
                attempts_used=used, max_attempts=assessment.max_attempts,
            )


def start_attempt(assessment, membership, *, rostered=None, now=None,
                  fingerprint="", ip=None, user_agent=""):
    """Create an IN_PROGRESS attempt with an empty answer per question."""
    now = now or timezone.now()
    with transaction.atomic():
        # serialise concurrent starts by the same member
        Membership.objects.select_for_update().filter(pk=membership.pk).first()
        check_can_start(assessment, membership, now, rostered=rostered)

        attempt = Attempt.objects.create(
            assessment=assessment,
            membership=membership,
            status=AttemptStatus.IN_PROGRESS,
            started_at=now,
            client_fingerprint=(fingerprint or "")[:256],
            ip_at_start=ip,
            user_agent=user_agent or "",
        )
        questions = list(assessment.questions.order_by("order", "created_at"))
        Answer.objects.bulk_create([Answer(attempt=attempt, question=q) for q in questions])

    logger.info(
        "attempt %s started: assessment=%s membership=%s questions=%s",
        attempt.pk, assessment.pk, membership.pk, len(questions),
    )
    return attempt


def _require_in_progress(attempt):
    if attempt.status != AttemptStatus.IN_PROGRESS or attempt.abandoned_at is not None:
        raise exc.Conflict(exc.ATTEMPT_NOT_IN_PROGRESS, "This attempt is no longer in progress.")


def _clean_option_ids(question, option_ids):
    if option_ids is None:
        return None
    if not isinstance(option_ids, (list, tuple)):
        option_ids = [option_ids]
    wanted, unknown = [], []
    for x in option_ids:
        try:
            wanted.append(str(uuid.UUID(str(x))))
        except ValueError:
            unknown.append(str(x))
    valid = {
        str(pk) for pk in QuestionOption.objects.filter(question=question, id__in=wanted).values_list("id", flat=True)
    }
    unknown += [x for x in wanted if x not in valid]
    if unknown:
        raise exc.ConsistencyViolation(
            exc.OPTION_NOT_IN_QUESTION, "Selected option does not belong to this question.", option_ids=unknown
        )
    # keep order, drop duplicates
    return list(dict.fromkeys(wanted))


def save_answer(attempt, question_id, *, answer_text=UNSET, selected_option_ids=UNSET,
                numeric_answer=UNSET, marked_for_review=None, now=None):
    """
    Autosave one answer. Only the field matching the question type is
    written; the others are ignored.
    """
    now = now or timezone.now()
    _require_in_progress(attempt)
    if is_expired(attempt, now):
        submit_attempt(attempt, now=submit_cutoff(attempt))
        raise exc.PolicyViolation(exc.TIME_EXPIRED, "Time is up. The attempt has been submitted.")

    question = Question.objects.filter(pk=question_id, assessment_id=attempt.assessment_id).first()
    if question is None:
        raise exc.ConsistencyViolation(exc.QUESTION_NOT_IN_TEST, "Question is not part of this test.")

    with transaction.atomic():
        locked = Attempt.objects.select_for_update().get(pk=attempt.pk)
        _require_in_progress(locked)

        answer, _ = Answer.objects.get_or_create(attempt=locked, question=question)
        fields = []
        if question.type in (QuestionType.MCQ_SINGLE, QuestionType.MCQ_MULTI):
            if selected_option_ids is not UNSET:
                answer.selected_option_ids = _clean_option_ids(question, selected_option_ids)
                fields.append("selected_option_ids")
        elif question.type == QuestionType.NUMERIC:
            if numeric_answer is not UNSET:
                field = Answer._meta.get_field("numeric_answer")
                answer.numeric_answer = to_stored_numeric(numeric_answer, field.max_digits, field.decimal_places)
                fields.append("numeric_answer")
        elif answer_text is not UNSET:
            answer.answer_text = answer_text
            fields.append("answer_text")

        if marked_for_review is not None:
            answer.marked_for_review = bool(marked_for_review)
            fields.append("marked_for_review")

        if fields:
            answer.save(update_fields=fields + ["updated_at"])
    return answer


def record_tab_tracking(attempt, *, tab_switches=None, time_off_page_seconds=None, absolute=False):
    """
    Bump the proctoring counters with atomic updates.

    Deltas are added; with `absolute=True` the values are client totals
    and a counter only moves up to them. Counters never decrease.
    """
    updates = {}
    for field, value in (("tab_switch_count", tab_switches), ("time_off_page_seconds", time_off_page_seconds)):
        if value is None:
            continue
        value = max(0, int(value))
        if absolute:
            updates[field] = Greatest(F(field), Value(value))
        elif value:
            updates[field] = F(field) + value

    if updates:
        touched = Attempt.objects.filter(
            pk=attempt.pk, status=AttemptStatus.IN_PROGRESS, abandoned_at__isnull=True,
        ).update(**updates)
        if not touched:
            raise exc.Conflict(exc.ATTEMPT_NOT_IN_PROGRESS, "This attempt is no longer in progress.")
    else:
        _require_in_progress(attempt)

    attempt.refresh_from_db(fields=["tab_switch_count", "time_off_page_seconds"])
    return attempt


def record_proctor_event(attempt, kind, meta=None):
    _require_in_progress(attempt)
    return ProctorEvent.objects.create(attempt=attempt, kind=kind, meta=meta or {})


def compute_proctoring_score(attempt) -> Decimal:
    counts = dict(
        ProctorEvent.objects.filter(attempt=attempt)
        .values("kind")
        .annotate(n=Count("id"))
        .values_list("kind", "n")
    )
    counts[ProctorEventKind.TAB_SWITCH] = max(
        counts.get(ProctorEventKind.TAB_SWITCH, 0), attempt.tab_switch_count
    )
    score = sum(PROCTOR_WEIGHTS.get(kind, 1) * n for kind, n in counts.items())
    score += (attempt.time_off_page_seconds / 60.0) * TIME_OFF_PAGE_POINTS_PER_MINUTE
    return Decimal(str(round(min(score, PROCTORING_SCORE_CAP), 2)))


def submit_attempt(attempt, *, now=None, ip=None):
    """
    IN_PROGRESS -> SUBMITTED, then one automatic grading pass.

    The transition is a conditional update, so of two racing submits only
    one grades; the other gets the stored record back. Returns
    (attempt, already_submitted).
    """
    now = now or timezone.now()
    assessment = attempt.assessment
    closes_at = assessment.closes_at
    is_late = bool(closes_at and now > closes_at)

    with transaction.atomic():
        won = Attempt.objects.filter(pk=attempt.pk, status=AttemptStatus.IN_PROGRESS).update(
            status=AttemptStatus.SUBMITTED,
            submitted_at=now,
            is_late=is_late,
            ip_at_submit=ip,
            updated_at=now,
        )
        attempt.refresh_from_db()
        if not won:
            logger.info("attempt %s already submitted; submit ignored", attempt.pk)
            return attempt, True

        auto_grade_attempt(attempt, now=now)
        attempt.proctoring_score = compute_proctoring_score(attempt)
        attempt.save(update_fields=["proctoring_score", "updated_at"])

    logger.info("attempt %s submitted (late=%s)", attempt.pk, is_late)
    return attempt, False


def void_attempt(attempt, actor=None, now=None):
    """Grader action: stop an attempt counting toward the attempt limit."""
    now = now or timezone.now()
    if attempt.abandoned_at is not None:
        return attempt
    if attempt.status == AttemptStatus.IN_PROGRESS:
        submit_attempt(attempt, now=now)
    with transaction.atomic():
        Attempt.objects.filter(pk=attempt.pk, abandoned_at__isnull=True).update(abandoned_at=now, updated_at=now)
        record_audit(attempt.assessment, AuditAction.VOID_ATTEMPT, actor=actor, details={"attemptId": str(attempt.id)})
    attempt.refresh_from_db()
    logger.info("attempt %s voided by %s", attempt.pk, getattr(actor, "pk", None))
    return attempt


def expire_overdue_attempts(now=None) -> int:
    """
    Submit every in-progress attempt whose duration ran out, stamped at
    its cutoff rather than the sweep time. One failing attempt is logged
    and skipped.
    """
    now = now or timezone.now()
    candidates = (
        Attempt.objects
        .filter(status=AttemptStatus.IN_PROGRESS, abandoned_at__isnull=True, started_at__isnull=False)
        .select_related("assessment")
        .order_by("started_at")
    )
    submitted = 0
    for attempt in list(candidates):
        if not is_expired(attempt, now):
            continue
        try:
            _, already = submit_attempt(attempt, now=min(now, submit_cutoff(attempt)))
        except Exception:
            logger.exception("could not submit expired attempt %s", attempt.pk)
            continue
        if not already:
            submitted += 1
    if submitted:
        logger.info("expired %s overdue attempts", submitted)
    return submitted
