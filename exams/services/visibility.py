# exams/services/visibility.py
"""
Which published tests a student sees in a tournament, and how they are grouped.

resolve_visibility() is pure: it takes already-loaded rows and returns
the grouped payload. visible_tests_for_user() loads those rows for a
user and tournament and decorates each test with the student's state.

Start/end times are not consulted here. A test is listed before it
opens and after it closes; starting it is checked in attempts.py.
"""
from __future__ import annotations

import json
import logging

from django.db.models import Count
from django.utils import timezone

from common.enums import AssessmentKind, AssessmentStatus, AttemptStatus
from exams import exceptions as exc
from exams.models import Assessment, Attempt
from tournaments.selectors import roster_events, tournament_has_ended, tournament_membership

from .audit import creation_event_names
from .release import scores_released

logger = logging.getLogger(__name__)


def parse_trial_events(raw, default_division=None) -> list:
    """
    Trial events declared on a tournament, as [{"name", "division"}].

    Accepts the JSON text of either [{"name": ..., "division": ...}] or
    the older ["name", ...]. Bad input gives an empty list.
    """
    if not raw:
        return []
    data = raw
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("ignoring malformed trial_events: %r", raw[:200])
            return []
    if not isinstance(data, list):
        logger.warning("ignoring trial_events that is not a list: %r", type(data).__name__)
        return []

    parsed, seen = [], set()
    for item in data:
        if isinstance(item, str):
            name, division = item.strip(), default_division
        elif isinstance(item, dict):
            name = str(item.get("name") or "").strip()
            division = item.get("division") or default_division
        else:
            continue
        if not name or name in seen:
            continue
        seen.add(name)
        parsed.append({"name": name, "division": division})
    return parsed


def event_dict(event) -> dict:
    return {
        "id": str(event.id),
        "name": event.name,
        "slug": event.slug,
        "division": event.division,
        "is_trial": False,
    }


def trial_event_dict(trial) -> dict:
    return {
        "id": None,
        "name": trial["name"],
        "slug": None,
        "division": trial["division"],
        "is_trial": True,
    }


def _summary(assessment) -> dict:
    return {"id": str(assessment.id), "name": assessment.name}


def resolve_visibility(*, assessments, assigned_events, trial_events, origin_event_names,
                       division=None, describe=None) -> dict:
    """
    Group a tournament's published tests for one student.

    - assigned_events: the student's rostered events (may be empty)
    - trial_events: output of parse_trial_events()
    - origin_event_names: {assessment_id: event name from its CREATE audit}
    - division: tournament division, used when the student has no roster rows
    - describe: assessment -> dict for each listed test
    """
    describe = describe or _summary
    published = [a for a in assessments if a.status == AssessmentStatus.PUBLISHED]
    event_scoped = [a for a in published if a.event_id]
    unscoped = [a for a in published if not a.event_id]

    event_groups = []
    if assigned_events:
        seen = set()
        for ev in assigned_events:
            if ev.id in seen:
                continue
            seen.add(ev.id)
            tests = [describe(a) for a in event_scoped if a.event_id == ev.id]
            event_groups.append({"event": event_dict(ev), "tests": tests})
    else:
        # no roster yet: show every event test in the tournament's division
        by_event = {}
        for a in event_scoped:
            ev = a.event
            if division and ev.division != division:
                continue
            by_event.setdefault(ev.id, (ev, []))[1].append(a)
        for ev, tests in sorted(by_event.values(), key=lambda pair: (pair[0].name.lower(), str(pair[0].id))):
            event_groups.append({"event": event_dict(ev), "tests": [describe(a) for a in tests]})

    trials = {t["name"]: t for t in trial_events}
    trial_tests, general_tests = {}, []
    for a in unscoped:
        name = origin_event_names.get(a.id)
        if name and name in trials:
            trial_tests.setdefault(name, []).append(describe(a))
        else:
            general_tests.append(describe(a))

    trial_event_groups = [
        {"event": trial_event_dict(t), "tests": trial_tests[t["name"]]}
        for t in trial_events
        if t["name"] in trial_tests
    ]

    return {
        "event_groups": event_groups,
        "trial_event_groups": trial_event_groups,
        "general_tests": general_tests,
    }


def describe_assessment(assessment, *, completed, tournament_ended, now=None) -> dict:
    released = scores_released(assessment, now)
    return {
        "id": str(assessment.id),
        "name": assessment.name,
        "description": assessment.description,
        "instructions": assessment.instructions,
        "kind": assessment.kind,
        "is_es_test": assessment.kind == AssessmentKind.ES_TEST,
        "event_id": str(assessment.event_id) if assessment.event_id else None,
        "duration_minutes": assessment.duration_minutes,
        "start_at": assessment.start_at,
        "end_at": assessment.end_at,
        "allow_late_until": assessment.allow_late_until,
        "require_fullscreen": assessment.require_fullscreen,
        "allow_calculator": assessment.allow_calculator,
        "calculator_type": assessment.calculator_type,
        "allow_note_sheet": assessment.allow_note_sheet,
        "note_sheet_instructions": assessment.note_sheet_instructions,
        "max_attempts": assessment.max_attempts,
        "score_release_mode": assessment.score_release_mode,
        "release_scores_at": assessment.release_scores_at,
        "scores_released": released,
        "question_count": getattr(assessment, "question_count", None),
        "has_completed_attempt": completed,
        "can_view_results": completed and released,
        "tournament_ended": tournament_ended,
    }


def visible_tests_for_user(user, tournament, now=None) -> dict:
    now = now or timezone.now()
    membership, registration = tournament_membership(user, tournament)
    if membership is None:
        raise exc.PolicyViolation(exc.NOT_REGISTERED, "You are not registered for this tournament.")

    assigned = roster_events(membership, registration)
    assessments = list(
        Assessment.objects
        .filter(tournament=tournament, status=AssessmentStatus.PUBLISHED)
        .select_related("event")
        .annotate(question_count=Count("questions"))
        .order_by("start_at", "name")
    )
    trial_events = parse_trial_events(tournament.trial_events, tournament.division)
    origin_names = {}
    if trial_events:
        origin_names = creation_event_names([a.id for a in assessments if not a.event_id])

    completed = set(
        Attempt.objects.filter(
            membership=membership,
            assessment_id__in=[a.id for a in assessments],
            status=AttemptStatus.SUBMITTED,
            abandoned_at__isnull=True,
        ).values_list("assessment_id", flat=True)
    )
    ended = tournament_has_ended(tournament, now)

    def describe(a):
        return describe_assessment(a, completed=a.id in completed, tournament_ended=ended, now=now)

    payload = resolve_visibility(
        assessments=assessments,
        assigned_events=assigned,
        trial_events=trial_events,
        origin_event_names=origin_names,
        division=tournament.division,
        describe=describe,
    )
    logger.debug(
        "visibility for %s in %s: %s event groups, %s trial groups, %s general",
        membership.pk, tournament.pk, len(payload["event_groups"]),
        len(payload["trial_event_groups"]), len(payload["general_tests"]),
    )
    return payload
