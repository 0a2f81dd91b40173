from datetime import timedelta

import pytest

from common.enums import QuestionType, ScoreReleaseMode
from exams.models import Attempt

from .conftest import option_ids, question_of

pytestmark = pytest.mark.django_db


@pytest.fixture
def as_student(api, student, membership):
    api.force_authenticate(user=student)
    return api


def _start(client, test):
    return client.post(f"/api/tests/{test.id}/attempts/start/", {"fingerprint": "abc"}, format="json")


def test_take_a_test_end_to_end(as_student, mixed_test):
    resp = _start(as_student, mixed_test)
    assert resp.status_code == 201
    attempt_id = resp.data["attempt_id"]
    paper = {q["type"]: q for q in resp.data["questions"]}
    assert "is_correct" not in paper[QuestionType.MCQ_SINGLE]["options"][0]

    single = question_of(mixed_test, QuestionType.MCQ_SINGLE)
    resp = as_student.post(f"/api/attempts/{attempt_id}/answers/", {
        "question_id": str(single.id),
        "selected_option_ids": option_ids(single, correct=True),
    }, format="json")
    assert resp.status_code == 200

    resp = as_student.patch(f"/api/attempts/{attempt_id}/tab-tracking/", {"tab_switch_count": 2}, format="json")
    assert resp.data["tab_switch_count"] == 2

    resp = as_student.get(f"/api/attempts/{attempt_id}/")
    assert resp.data["status"] == "IN_PROGRESS"
    assert len(resp.data["answers"]) == 5

    resp = as_student.post(f"/api/attempts/{attempt_id}/submit/")
    assert resp.status_code == 200
    assert resp.data["already_submitted"] is False
    resp = as_student.post(f"/api/attempts/{attempt_id}/submit/")
    assert resp.data["already_submitted"] is True

    resp = as_student.get(f"/api/tests/{mixed_test.id}/my-results/")
    assert resp.status_code == 200
    assert resp.data["can_view_results"] is True
    assert resp.data["attempt"]["grade_earned"] == 2.0
    assert len(resp.data["answers"]) == 5


def test_second_start_conflicts(as_student, mixed_test):
    first = _start(as_student, mixed_test)
    resp = _start(as_student, mixed_test)
    assert resp.status_code == 409
    assert resp.data["error"] == "ATTEMPT_IN_PROGRESS"
    assert resp.data["attempt_id"] == first.data["attempt_id"]


def test_my_results_hidden_until_release(as_student, mixed_test, now):
    mixed_test.score_release_mode = ScoreReleaseMode.SCORE_ONLY
    mixed_test.release_scores_at = now + timedelta(days=3)
    mixed_test.save()
    attempt_id = _start(as_student, mixed_test).data["attempt_id"]
    as_student.post(f"/api/attempts/{attempt_id}/submit/")

    resp = as_student.get(f"/api/tests/{mixed_test.id}/my-results/")
    assert resp.data["scores_released"] is False
    assert resp.data["attempt"]["grade_earned"] is None
    assert "answers" not in resp.data


def test_my_attempts_lists_every_submission_newest_first(as_student, mixed_test, now):
    mixed_test.max_attempts = None
    mixed_test.score_release_mode = ScoreReleaseMode.SCORE_ONLY
    mixed_test.save()
    single = question_of(mixed_test, QuestionType.MCQ_SINGLE)

    first = _start(as_student, mixed_test).data["attempt_id"]
    as_student.post(f"/api/attempts/{first}/submit/")
    second = _start(as_student, mixed_test).data["attempt_id"]
    as_student.post(f"/api/attempts/{second}/answers/", {
        "question_id": str(single.id), "selected_option_ids": option_ids(single, correct=True),
    }, format="json")
    as_student.post(f"/api/attempts/{second}/submit/")
    _start(as_student, mixed_test)

    resp = as_student.get(f"/api/tests/{mixed_test.id}/my-attempts/")
    assert resp.status_code == 200
    assert resp.data["scores_released"] is True
    assert resp.data["score_release_mode"] == ScoreReleaseMode.SCORE_ONLY
    assert [a["attempt"]["id"] for a in resp.data["attempts"]] == [second, first]
    assert [a["attempt"]["grade_earned"] for a in resp.data["attempts"]] == [2.0, 0.0]

    mixed_test.release_scores_at = now + timedelta(days=3)
    mixed_test.save()
    resp = as_student.get(f"/api/tests/{mixed_test.id}/my-attempts/")
    assert resp.data["scores_released"] is False
    assert all(a["attempt"]["grade_earned"] is None for a in resp.data["attempts"])


def test_my_results_without_submission(as_student, mixed_test):
    resp = as_student.get(f"/api/tests/{mixed_test.id}/my-results/")
    assert resp.status_code == 404


def test_proctor_event_kind_is_normalised(as_student, mixed_test):
    attempt_id = _start(as_student, mixed_test).data["attempt_id"]
    resp = as_student.post(f"/api/attempts/{attempt_id}/proctor-events/", {"kind": "paste"}, format="json")
    assert resp.status_code == 201
    assert resp.data["kind"] == "PASTE"


def test_students_cannot_touch_others_attempts(api, make_user, club, mixed_test, as_student):
    from accounts.models import Membership
    attempt_id = _start(as_student, mixed_test).data["attempt_id"]
    intruder = make_user()
    Membership.objects.create(user=intruder, club=club)
    api.force_authenticate(user=intruder)
    assert api.post(f"/api/attempts/{attempt_id}/submit/").status_code == 404


def test_grading_is_for_admins(api, student, membership, club_admin, mixed_test):
    api.force_authenticate(user=student)
    attempt_id = _start(api, mixed_test).data["attempt_id"]
    api.post(f"/api/attempts/{attempt_id}/submit/")
    short = Attempt.objects.get(pk=attempt_id).answers.get(question__type=QuestionType.SHORT_TEXT)
    body = {"grades": [{"answer_id": str(short.id), "points_awarded": "1.5"}]}

    assert api.patch(f"/api/attempts/{attempt_id}/grade/", body, format="json").status_code == 403

    api.force_authenticate(user=club_admin)
    resp = api.patch(f"/api/attempts/{attempt_id}/grade/", body, format="json")
    assert resp.status_code == 200
    assert resp.data["grade_earned"] == 1.5
    assert resp.data["status"] == "SUBMITTED"

    resp = api.get(f"/api/tests/{mixed_test.id}/attempts/", {"needs_grading": "true"})
    assert resp.status_code == 200
    assert [row["id"] for row in resp.data["results"]] == [attempt_id]


def test_export_csv(api, club_admin, mixed_test, student, membership):
    api.force_authenticate(user=student)
    attempt_id = _start(api, mixed_test).data["attempt_id"]
    api.post(f"/api/attempts/{attempt_id}/submit/")

    api.force_authenticate(user=club_admin)
    resp = api.get(f"/api/tests/{mixed_test.id}/attempts/export/", {"type": "csv"})
    assert resp.status_code == 200
    assert resp["Content-Type"] == "text/csv"
    lines = resp.content.decode().splitlines()
    assert lines[0].startswith("attempt_id,member,team,status")
    assert len(lines) == 2


def test_tournament_listing_and_release(api, student, membership, registration, director, tournament,
                                        make_es_test, now):
    test = make_es_test(name="Forensics")
    api.force_authenticate(user=student)
    resp = api.get(f"/api/testing/tournaments/{tournament.id}/tests/")
    assert resp.status_code == 200
    assert set(resp.data) == {"event_groups", "trial_event_groups", "general_tests"}
    assert [t["name"] for t in resp.data["general_tests"]] == ["Forensics"]

    assert api.post(f"/api/tournaments/{tournament.id}/release-all-scores/").status_code == 403

    api.force_authenticate(user=director)
    resp = api.post(f"/api/tournaments/{tournament.id}/release-all-scores/")
    assert resp.status_code == 400
    assert resp.data["error"] == "TOURNAMENT_NOT_ENDED"

    tournament.end_at = now - timedelta(minutes=5)
    tournament.save()
    resp = api.post(f"/api/tournaments/{tournament.id}/release-all-scores/")
    assert resp.status_code == 200
    assert resp.data["released_test_ids"] == [str(test.id)]
