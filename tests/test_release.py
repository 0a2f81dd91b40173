from datetime import timedelta
from decimal import Decimal

import pytest

from common.enums import AssessmentKind, AssessmentStatus, AuditAction, QuestionType, ScoreReleaseMode
from exams import exceptions as exc
from exams.models import Assessment, AssessmentAudit
from exams.services import release
from exams.services.attempts import save_answer, start_attempt, submit_attempt
from exams.services.grading import grade_answers

from .conftest import option_ids, question_of


def _assessment(**kw):
    fields = {
        "kind": AssessmentKind.ES_TEST,
        "status": AssessmentStatus.PUBLISHED,
        "score_release_mode": ScoreReleaseMode.FULL_TEST,
    }
    fields.update(kw)
    return Assessment(**fields)


class TestScoresReleased:
    def test_mode_none_is_never_released(self, now):
        a = _assessment(score_release_mode=ScoreReleaseMode.NONE, scores_released=True,
                        release_scores_at=now - timedelta(days=1))
        assert release.scores_released(a, now) is False

    def test_unpublished_reads_as_released(self, now):
        a = _assessment(status=AssessmentStatus.DRAFT, release_scores_at=now + timedelta(days=1))
        assert release.scores_released(a, now) is True

    def test_override_wins_over_future_timestamp(self, now):
        a = _assessment(scores_released=True, release_scores_at=now + timedelta(days=1))
        assert release.scores_released(a, now) is True

    def test_club_tests_have_no_override(self, now):
        a = _assessment(kind=AssessmentKind.TEST, scores_released=True, release_scores_at=now + timedelta(days=1))
        assert a.release_override is None
        assert release.scores_released(a, now) is False

    def test_override_false_falls_through_to_timestamp(self, now):
        a = _assessment(scores_released=False, release_scores_at=None)
        assert release.scores_released(a, now) is True

    def test_no_timestamp_means_released(self, now):
        assert release.scores_released(_assessment(), now) is True

    def test_timestamp_boundary(self, now, settings):
        settings.SCORE_RELEASE_TOLERANCE_SECONDS = 1.0
        a = _assessment(release_scores_at=now)
        tol = timedelta(seconds=1)
        assert release.scores_released(a, now - tol) is True
        assert release.scores_released(a, now - tol - timedelta(microseconds=1)) is False
        assert release.scores_released(a, now + timedelta(hours=1)) is True

    def test_zero_tolerance(self, now, settings):
        settings.SCORE_RELEASE_TOLERANCE_SECONDS = 0
        a = _assessment(release_scores_at=now)
        assert release.scores_released(a, now) is True
        assert release.scores_released(a, now - timedelta(microseconds=1)) is False


@pytest.mark.django_db
class TestResultsPayload:
    @pytest.fixture
    def submitted(self, mixed_test, membership):
        attempt = start_attempt(mixed_test, membership)
        single = question_of(mixed_test, QuestionType.MCQ_SINGLE)
        save_answer(attempt, single.id, selected_option_ids=option_ids(single, correct=False))
        save_answer(attempt, question_of(mixed_test, QuestionType.LONG_TEXT).id, answer_text="essay")
        attempt, _ = submit_attempt(attempt)
        return attempt

    def _with_mode(self, attempt, mode, **kw):
        a = attempt.assessment
        a.score_release_mode = mode
        for k, v in kw.items():
            setattr(a, k, v)
        a.save()
        return attempt

    def test_score_with_wrong_reveals_correctness_only(self, submitted):
        payload = release.results_payload(self._with_mode(submitted, ScoreReleaseMode.SCORE_WITH_WRONG))
        assert payload["can_view_results"] is True
        assert len(payload["answers"]) == 5
        for item in payload["answers"]:
            assert set(item) == {"question_id", "order", "is_correct"}
        by_order = {i["order"]: i for i in payload["answers"]}
        assert by_order[1]["is_correct"] is False
        assert by_order[5]["is_correct"] is None  # long text awaits a grader

    def test_zero_point_questions_report_correctness_from_the_key(
        self, make_assessment, add_question, membership, club_admin,
    ):
        test = make_assessment(score_release_mode=ScoreReleaseMode.SCORE_WITH_WRONG)
        single = add_question(test, QuestionType.MCQ_SINGLE, points="0", options=[("a", True), ("b", False)])
        right = add_question(test, QuestionType.NUMERIC, points="0", numeric_answer=Decimal("7"))
        essay = add_question(test, QuestionType.LONG_TEXT, points="0")

        attempt = start_attempt(test, membership)
        save_answer(attempt, single.id, selected_option_ids=option_ids(single, correct=False))
        save_answer(attempt, right.id, numeric_answer="7")
        attempt, _ = submit_attempt(attempt)
        essay_answer = attempt.answers.get(question=essay)
        grade_answers(attempt, [{"answer_id": essay_answer.id, "points_awarded": 0}], grader=club_admin)

        by_question = {i["question_id"]: i["is_correct"] for i in release.results_payload(attempt)["answers"]}
        assert by_question[str(single.id)] is False
        assert by_question[str(right.id)] is True
        assert by_question[str(essay.id)] is None

    def test_score_only_has_no_item_detail(self, submitted):
        payload = release.results_payload(self._with_mode(submitted, ScoreReleaseMode.SCORE_ONLY))
        assert "answers" not in payload
        assert payload["attempt"]["grade_earned"] == 0.0
        assert payload["attempt"]["grading_in_progress"] is True

    def test_full_test_reveals_keys_and_notes(self, submitted):
        payload = release.results_payload(self._with_mode(submitted, ScoreReleaseMode.FULL_TEST))
        by_type = {i["type"]: i for i in payload["answers"]}
        single = by_type[QuestionType.MCQ_SINGLE]
        assert single["correct_option_ids"] == option_ids(question_of(submitted.assessment, QuestionType.MCQ_SINGLE), True)
        assert single["explanation"] == "Water."
        assert "grader_note" in by_type[QuestionType.LONG_TEXT]
        assert by_type[QuestionType.NUMERIC]["correct_numeric_answer"] == 3.14

    def test_unreleased_scores_are_hidden(self, submitted, now):
        attempt = self._with_mode(submitted, ScoreReleaseMode.FULL_TEST, release_scores_at=now + timedelta(days=2))
        payload = release.results_payload(attempt)
        assert payload["scores_released"] is False
        assert payload["can_view_results"] is False
        assert payload["attempt"]["grade_earned"] is None
        assert "answers" not in payload

    def test_in_progress_attempt_cannot_view(self, mixed_test, membership):
        attempt = start_attempt(mixed_test, membership)
        assert release.can_view_results(attempt) is False
        assert "answers" not in release.results_payload(attempt)


@pytest.mark.django_db
class TestReleaseActions:
    def test_requires_ended_tournament(self, make_es_test, director, now):
        test = make_es_test(release_scores_at=now + timedelta(days=7))
        with pytest.raises(exc.ConsistencyViolation) as err:
            release.release_scores(test, actor=director, now=now)
        assert err.value.reason == exc.TOURNAMENT_NOT_ENDED

    def test_release_sets_override_once(self, make_es_test, tournament, director, now):
        tournament.end_at = now - timedelta(hours=1)
        tournament.save()
        test = make_es_test(release_scores_at=now + timedelta(days=7))

        assert release.release_scores(test, actor=director, now=now) is True
        test.refresh_from_db()
        assert test.scores_released is True
        assert release.scores_released(test, now) is True
        assert release.release_scores(test, actor=director, now=now) is False
        assert AssessmentAudit.objects.filter(assessment=test, action=AuditAction.RELEASE_SCORES).count() == 1

    def test_club_test_release_moves_timestamp(self, make_assessment, club_admin, now):
        test = make_assessment(release_scores_at=now + timedelta(days=7))
        assert release.release_scores(test, actor=club_admin, now=now) is True
        test.refresh_from_db()
        assert test.release_scores_at == now
        assert test.scores_released is None

    def test_release_all(self, make_es_test, tournament, director, now):
        tournament.end_at = now - timedelta(hours=1)
        tournament.save()
        published = [make_es_test(), make_es_test()]
        make_es_test(status=AssessmentStatus.DRAFT)
        released = release.release_all_scores(tournament, actor=director, now=now)
        assert {a.id for a in released} == {a.id for a in published}

    def test_release_trial_event(self, make_es_test, tournament, director, audit_created, now):
        tournament.end_at = now - timedelta(hours=1)
        tournament.save()
        robots, other, general = make_es_test(), make_es_test(), make_es_test()
        audit_created(robots, "Robot Tour")
        audit_created(other, "Bungee Drop")

        released = release.release_trial_event_scores(tournament, " Robot Tour ", actor=director, now=now)
        assert [a.id for a in released] == [robots.id]
        general.refresh_from_db()
        assert general.scores_released is None
