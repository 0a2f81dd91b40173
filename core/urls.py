# core/urls.py
from django.contrib import admin
from django.urls import path

from exams.views import (
    TournamentTestsView, StartAttemptView, AttemptUsageView, AttemptDetailView, AnswerUpsertView,
    TabTrackingView, ProctorEventView, SubmitAttemptView, MyResultsView, MyAttemptsView,
    AssessmentAttemptsView, ExportResponsesView, AttemptReviewView, GradeAttemptView, VoidAttemptView,
    ReleaseScoresView, ReleaseAllScoresView, ReleaseTrialEventScoresView,
)


urlpatterns = [
    path('admin/', admin.site.urls),

    path("api/testing/tournaments/<uuid:tournament_id>/tests/", TournamentTestsView.as_view(), name="tournament-tests"),

    path("api/tests/<uuid:test_id>/attempts/start/", StartAttemptView.as_view(), name="attempt-start"),
    path("api/tests/<uuid:test_id>/user-attempts/", AttemptUsageView.as_view(), name="attempt-usage"),
    path("api/tests/<uuid:test_id>/my-results/", MyResultsView.as_view(), name="my-results"),
    path("api/tests/<uuid:test_id>/my-attempts/", MyAttemptsView.as_view(), name="my-attempts"),
    path("api/tests/<uuid:test_id>/attempts/", AssessmentAttemptsView.as_view(), name="test-attempts"),
    path("api/tests/<uuid:test_id>/attempts/export/", ExportResponsesView.as_view(), name="test-attempts-export"),
    path("api/tests/<uuid:test_id>/release-scores/", ReleaseScoresView.as_view(), name="test-release-scores"),

    path("api/attempts/<uuid:attempt_id>/", AttemptDetailView.as_view(), name="attempt-detail"),
    path("api/attempts/<uuid:attempt_id>/answers/", AnswerUpsertView.as_view(), name="attempt-answers"),
    path("api/attempts/<uuid:attempt_id>/tab-tracking/", TabTrackingView.as_view(), name="attempt-tab-tracking"),
    path("api/attempts/<uuid:attempt_id>/proctor-events/", ProctorEventView.as_view(), name="attempt-proctor-events"),
    path("api/attempts/<uuid:attempt_id>/submit/", SubmitAttemptView.as_view(), name="attempt-submit"),
    path("api/attempts/<uuid:attempt_id>/review/", AttemptReviewView.as_view(), name="attempt-review"),
    path("api/attempts/<uuid:attempt_id>/grade/", GradeAttemptView.as_view(), name="attempt-grade"),
    path("api/attempts/<uuid:attempt_id>/void/", VoidAttemptView.as_view(), name="attempt-void"),

    path("api/tournaments/<uuid:tournament_id>/release-all-scores/", ReleaseAllScoresView.as_view(),
         name="tournament-release-all-scores"),
    path("api/tournaments/<uuid:tournament_id>/trial-events/<str:event_name>/release-scores/",
         ReleaseTrialEventScoresView.as_view(), name="trial-event-release-scores"),
]
