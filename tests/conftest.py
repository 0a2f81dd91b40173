import itertools
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from django.utils.text import slugify
from rest_framework.test import APIClient

from accounts.models import Club, Membership, Team, User
from common.enums import (
    AssessmentKind, AssessmentStatus, AuditAction, MembershipRole, QuestionType, RegistrationStatus,
)
from exams.models import Assessment, AssessmentAudit, Question, QuestionOption
from tournaments.models import Event, RosterAssignment, Tournament, TournamentAdmin, TournamentRegistration

_seq = itertools.count(1)


@pytest.fixture
def now():
    return timezone.now()


@pytest.fixture
def make_user(db):
    def _make(username=None, **kw):
        username = username or f"user{next(_seq)}"
        return User.objects.create_user(username=username, email=f"{username}@example.com", password="pw", **kw)
    return _make


@pytest.fixture
def club(db):
    return Club.objects.create(name="Ridge High", slug="ridge-high", division="C")


@pytest.fixture
def team(club):
    return Team.objects.create(club=club, name="Varsity")


@pytest.fixture
def student(make_user):
    return make_user("student")


@pytest.fixture
def membership(student, club, team):
    return Membership.objects.create(user=student, club=club, team=team)


@pytest.fixture
def club_admin(make_user, club):
    user = make_user("coach")
    Membership.objects.create(user=user, club=club, role=MembershipRole.ADMIN)
    return user


@pytest.fixture
def tournament(db, now):
    return Tournament.objects.create(
        name="Regional", slug="regional", division="C",
        start_at=now - timedelta(hours=2), end_at=now + timedelta(days=1),
    )


@pytest.fixture
def registration(tournament, club, team):
    return TournamentRegistration.objects.create(
        tournament=tournament, club=club, team=team, status=RegistrationStatus.CONFIRMED,
    )


@pytest.fixture
def director(make_user, tournament):
    user = make_user("director")
    TournamentAdmin.objects.create(tournament=tournament, user=user)
    return user


@pytest.fixture
def make_event(db):
    def _make(name, division="C"):
        return Event.objects.create(name=name, slug=slugify(name), division=division)
    return _make


@pytest.fixture
def assign(team):
    def _assign(membership, event):
        return RosterAssignment.objects.create(membership=membership, team=team, event=event)
    return _assign


@pytest.fixture
def make_assessment(db, club):
    def _make(**kw):
        fields = {
            "kind": AssessmentKind.TEST,
            "name": f"Test {next(_seq)}",
            "club": club,
            "status": AssessmentStatus.PUBLISHED,
            "duration_minutes": 50,
        }
        fields.update(kw)
        return Assessment.objects.create(**fields)
    return _make


@pytest.fixture
def make_es_test(make_assessment, tournament):
    def _make(**kw):
        kw.setdefault("kind", AssessmentKind.ES_TEST)
        kw.setdefault("tournament", tournament)
        kw.setdefault("club", None)
        return make_assessment(**kw)
    return _make


@pytest.fixture
def add_question(db):
    def _add(assessment, type=QuestionType.MCQ_SINGLE, points="2", options=None, **kw):
        q = Question.objects.create(
            assessment=assessment, type=type, prompt=kw.pop("prompt", f"Question {next(_seq)}"),
            points=Decimal(points), order=kw.pop("order", assessment.questions.count() + 1), **kw,
        )
        for i, (label, correct) in enumerate(options or []):
            QuestionOption.objects.create(question=q, label=label, is_correct=correct, order=i)
        return q
    return _add


@pytest.fixture
def mixed_test(make_assessment, add_question):
    """One question of each type; 2 points each, 10 in total."""
    a = make_assessment(name="Chemistry Lab")
    add_question(a, QuestionType.MCQ_SINGLE, options=[("H2O", True), ("CO2", False)], explanation="Water.")
    add_question(a, QuestionType.MCQ_MULTI, options=[("Na", True), ("Ar", False), ("K", True)])
    add_question(a, QuestionType.NUMERIC, numeric_answer=Decimal("3.14"), numeric_tolerance=Decimal("0.01"))
    add_question(a, QuestionType.SHORT_TEXT)
    add_question(a, QuestionType.LONG_TEXT)
    return a


@pytest.fixture
def audit_created(db):
    def _audit(assessment, event_name):
        return AssessmentAudit.objects.create(
            assessment=assessment, action=AuditAction.CREATE, details={"eventName": event_name},
        )
    return _audit


@pytest.fixture
def api():
    return APIClient()


def option_ids(question, correct=None):
    opts = question.options.order_by("order")
    if correct is not None:
        opts = opts.filter(is_correct=correct)
    return [str(o.id) for o in opts]


def question_of(assessment, type):
    return assessment.questions.get(type=type)
