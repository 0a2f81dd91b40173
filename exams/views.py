# exams/views.py
import uuid

from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import generics, permissions, status
from rest_framework.exceptions import NotFound
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from common.enums import AttemptStatus
from tournaments.models import Tournament

from .filters import AttemptFilter, with_pending_answers
from .models import Assessment, Attempt
from .permissions import IsAssessmentGrader, IsTournamentManager
from .serializers import (
    AnswerIn, AttemptRowSerializer, GradeIn, ProctorEventIn, StartAttemptIn, TabTrackingIn,
)
from .services import attempts as attempt_service
from .services.export import export_responses
from .services.grading import derived_status, grade_answers
from .services.release import (
    grader_payload, release_all_scores, release_scores, release_trial_event_scores, results_history,
    results_payload,
)
from .services.visibility import visible_tests_for_user


def _client_ip(request):
    xff = request.META.get("HTTP_X_FORWARDED_FOR")
    if xff:
        return xff.split(",")[0].strip()
    return request.META.get("REMOTE_ADDR")


def _own_attempt(request, attempt_id):
    return get_object_or_404(
        Attempt.objects.select_related("assessment", "assessment__tournament", "membership"),
        pk=attempt_id,
        membership__user=request.user,
    )


def _paper(assessment):
    """Questions as shown to a student; nothing about correctness."""
    out = []
    for q in assessment.questions.prefetch_related("options").order_by("order", "created_at"):
        item = {
            "id": str(q.id),
            "type": q.type,
            "prompt": q.prompt,
            "points": float(q.points),
            "order": q.order,
        }
        if q.options.exists():
            item["options"] = [{"id": str(o.id), "label": o.label, "order": o.order} for o in q.options.all()]
        out.append(item)
    return out


def _saved_answers(attempt):
    return [
        {
            "question_id": str(a.question_id),
            "answer_text": a.answer_text,
            "selected_option_ids": a.selected_option_ids,
            "numeric_answer": float(a.numeric_answer) if a.numeric_answer is not None else None,
            "marked_for_review": a.marked_for_review,
        }
        for a in attempt.answers.all()
    ]


def _attempt_out(attempt, **extra):
    data = {
        "attempt_id": str(attempt.id),
        "assessment_id": str(attempt.assessment_id),
        "status": derived_status(attempt),
        "started_at": attempt.started_at,
        "submitted_at": attempt.submitted_at,
        "expires_at": attempt.expires_at,
        "is_late": attempt.is_late,
        "tab_switch_count": attempt.tab_switch_count,
        "time_off_page_seconds": attempt.time_off_page_seconds,
    }
    data.update(extra)
    return data


class SmallPage(PageNumberPagination):
    page_size = 50
    page_size_query_param = "page_size"
    max_page_size = 500


# ---------- student side ----------

class TournamentTestsView(APIView):
    """
    GET /api/testing/tournaments/<tournament_id>/tests/
    Published tests visible to the caller, grouped by rostered event,
    trial event, and general tests.
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, tournament_id):
        tournament = get_object_or_404(Tournament, pk=tournament_id)
        return Response(visible_tests_for_user(request.user, tournament), status=status.HTTP_200_OK)


class StartAttemptView(APIView):
    """
    POST /api/tests/<test_id>/attempts/start/
    Body: {"fingerprint": "..."}   # optional
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, test_id):
        assessment = get_object_or_404(Assessment.objects.select_related("tournament"), pk=test_id)
        s = StartAttemptIn(data=request.data)
        s.is_valid(raise_exception=True)

        membership, rostered = attempt_service.resolve_participant(request.user, assessment)
        attempt = attempt_service.start_attempt(
            assessment, membership,
            rostered=rostered,
            fingerprint=s.validated_data["fingerprint"],
            ip=_client_ip(request),
            user_agent=request.META.get("HTTP_USER_AGENT", ""),
        )
        return Response(
            _attempt_out(attempt, questions=_paper(assessment)),
            status=status.HTTP_201_CREATED,
        )


class AttemptUsageView(APIView):
    """GET /api/tests/<test_id>/user-attempts/"""
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, test_id):
        assessment = get_object_or_404(Assessment.objects.select_related("tournament"), pk=test_id)
        membership, _ = attempt_service.resolve_participant(request.user, assessment)
        return Response(attempt_service.attempt_usage(assessment, membership), status=status.HTTP_200_OK)


class AttemptDetailView(APIView):
    """GET /api/attempts/<attempt_id>/  (resume: paper plus saved answers)"""
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, attempt_id):
        attempt = _own_attempt(request, attempt_id)
        data = _attempt_out(attempt)
        if attempt.status == AttemptStatus.IN_PROGRESS:
            data["questions"] = _paper(attempt.assessment)
            data["answers"] = _saved_answers(attempt)
        return Response(data, status=status.HTTP_200_OK)


class AnswerUpsertView(APIView):
    """
    POST /api/attempts/<attempt_id>/answers/
    Body:
      {
        "question_id": "<uuid>",
        "answer_text": "...",              # SHORT_TEXT / LONG_TEXT
        "selected_option_ids": ["<uuid>"], # MCQ_SINGLE / MCQ_MULTI
        "numeric_answer": "3.14",          # NUMERIC
        "marked_for_review": false
      }
    Only the field matching the question type is stored.
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, attempt_id):
        attempt = _own_attempt(request, attempt_id)
        s = AnswerIn(data=request.data)
        s.is_valid(raise_exception=True)
        data = s.validated_data

        fields = {
            key: data[key]
            for key in ("answer_text", "selected_option_ids", "numeric_answer")
            if key in data
        }
        answer = attempt_service.save_answer(
            attempt, data["question_id"],
            marked_for_review=data.get("marked_for_review"),
            **fields,
        )
        return Response({
            "answer_id": str(answer.id),
            "question_id": str(answer.question_id),
            "answer_text": answer.answer_text,
            "selected_option_ids": answer.selected_option_ids,
            "numeric_answer": float(answer.numeric_answer) if answer.numeric_answer is not None else None,
            "marked_for_review": answer.marked_for_review,
            "saved_at": answer.updated_at,
        }, status=status.HTTP_200_OK)


class TabTrackingView(APIView):
    """
    PATCH /api/attempts/<attempt_id>/tab-tracking/
    Body: {"tab_switch_count": 3, "time_off_page_seconds": 42, "mode": "total"|"increment"}
    Counters only ever grow.
    """
    permission_classes = [permissions.IsAuthenticated]

    def patch(self, request, attempt_id):
        attempt = _own_attempt(request, attempt_id)
        s = TabTrackingIn(data=request.data)
        s.is_valid(raise_exception=True)
        data = s.validated_data
        attempt_service.record_tab_tracking(
            attempt,
            tab_switches=data.get("tab_switch_count"),
            time_off_page_seconds=data.get("time_off_page_seconds"),
            absolute=data["mode"] == TabTrackingIn.MODE_TOTAL,
        )
        return Response({
            "attempt_id": str(attempt.id),
            "tab_switch_count": attempt.tab_switch_count,
            "time_off_page_seconds": attempt.time_off_page_seconds,
        }, status=status.HTTP_200_OK)


class ProctorEventView(APIView):
    """
    POST /api/attempts/<attempt_id>/proctor-events/
    Body: {"kind": "TAB_SWITCH", "meta": {...}}
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, attempt_id):
        attempt = _own_attempt(request, attempt_id)
        s = ProctorEventIn(data=request.data)
        s.is_valid(raise_exception=True)
        event = attempt_service.record_proctor_event(
            attempt, s.validated_data["kind"], s.validated_data.get("meta") or {}
        )
        return Response({
            "ok": True,
            "event_id": str(event.id),
            "attempt_id": str(attempt.id),
            "kind": event.kind,
        }, status=status.HTTP_201_CREATED)


class SubmitAttemptView(APIView):
    """
    POST /api/attempts/<attempt_id>/submit/
    Submitting twice is harmless: the second call returns the stored
    attempt with already_submitted=true.
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, attempt_id):
        attempt = _own_attempt(request, attempt_id)
        attempt, already_submitted = attempt_service.submit_attempt(attempt, ip=_client_ip(request))
        return Response(
            _attempt_out(attempt, submitted=True, already_submitted=already_submitted),
            status=status.HTTP_200_OK,
        )


class MyResultsView(APIView):
    """
    GET /api/tests/<test_id>/my-results/?attempt_id=<uuid>
    Latest submitted attempt by default; redacted per release mode.
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, test_id):
        assessment = get_object_or_404(Assessment, pk=test_id)
        qs = (
            Attempt.objects
            .filter(
                assessment=assessment, membership__user=request.user,
                status=AttemptStatus.SUBMITTED, abandoned_at__isnull=True,
            )
            .select_related("assessment")
            .order_by("-submitted_at")
        )
        attempt_id = request.query_params.get("attempt_id")
        if attempt_id:
            try:
                qs = qs.filter(pk=uuid.UUID(attempt_id))
            except ValueError:
                raise NotFound("No submitted attempt for this test.")
        attempt = qs.first()
        if attempt is None:
            raise NotFound("No submitted attempt for this test.")
        return Response(results_payload(attempt), status=status.HTTP_200_OK)


class MyAttemptsView(APIView):
    """
    GET /api/tests/<test_id>/my-attempts/
    All of the caller's submitted attempts, newest first, each redacted
    per release mode.
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, test_id):
        assessment = get_object_or_404(Assessment, pk=test_id)
        attempts = (
            Attempt.objects
            .filter(
                assessment=assessment, membership__user=request.user,
                status=AttemptStatus.SUBMITTED, abandoned_at__isnull=True,
            )
            .select_related("assessment")
            .order_by("-submitted_at")
        )
        return Response(results_history(assessment, attempts), status=status.HTTP_200_OK)


# ---------- grader side ----------

class AssessmentAttemptsView(generics.ListAPIView):
    """
    GET /api/tests/<test_id>/attempts/?status=SUBMITTED&needs_grading=true
    """
    permission_classes = [permissions.IsAuthenticated, IsAssessmentGrader]
    serializer_class = AttemptRowSerializer
    filterset_class = AttemptFilter
    pagination_class = SmallPage

    def get_queryset(self):
        assessment = get_object_or_404(Assessment, pk=self.kwargs["test_id"])
        self.check_object_permissions(self.request, assessment)
        qs = (
            Attempt.objects
            .filter(assessment=assessment)
            .exclude(status=AttemptStatus.NOT_STARTED)
            .select_related("membership__user", "membership__team")
            .order_by("-submitted_at", "-started_at")
        )
        return with_pending_answers(qs)


class ExportResponsesView(APIView):
    """GET /api/tests/<test_id>/attempts/export/?type=csv|xlsx"""
    permission_classes = [permissions.IsAuthenticated, IsAssessmentGrader]

    def get(self, request, test_id):
        assessment = get_object_or_404(Assessment, pk=test_id)
        self.check_object_permissions(request, assessment)
        fmt = (request.query_params.get("type") or "csv").lower()
        content, content_type, filename = export_responses(assessment, fmt="xlsx" if fmt == "xlsx" else "csv")
        resp = HttpResponse(content, content_type=content_type)
        resp["Content-Disposition"] = f'attachment; filename="{filename}"'
        return resp


class AttemptReviewView(APIView):
    """GET /api/attempts/<attempt_id>/review/  (unredacted, graders only)"""
    permission_classes = [permissions.IsAuthenticated, IsAssessmentGrader]

    def get(self, request, attempt_id):
        attempt = get_object_or_404(
            Attempt.objects.select_related("assessment", "membership__user"), pk=attempt_id
        )
        self.check_object_permissions(request, attempt)
        return Response(grader_payload(attempt), status=status.HTTP_200_OK)


class GradeAttemptView(APIView):
    """
    PATCH /api/attempts/<attempt_id>/grade/
    Body:
      {"grades": [{"answer_id": "<uuid>", "points_awarded": 2.5, "grader_note": "..."}]}
    points_awarded null clears the grade.
    """
    permission_classes = [permissions.IsAuthenticated, IsAssessmentGrader]

    def patch(self, request, attempt_id):
        attempt = get_object_or_404(Attempt.objects.select_related("assessment"), pk=attempt_id)
        self.check_object_permissions(request, attempt)
        s = GradeIn(data=request.data)
        s.is_valid(raise_exception=True)

        attempt, breakdown, derived = grade_answers(attempt, s.validated_data["grades"], grader=request.user)
        return Response({
            "attempt_id": str(attempt.id),
            "status": derived,
            "grade_earned": float(attempt.grade_earned) if attempt.grade_earned is not None else None,
            **breakdown.as_dict(),
        }, status=status.HTTP_200_OK)


class VoidAttemptView(APIView):
    """POST /api/attempts/<attempt_id>/void/  (frees up one attempt for the member)"""
    permission_classes = [permissions.IsAuthenticated, IsAssessmentGrader]

    def post(self, request, attempt_id):
        attempt = get_object_or_404(Attempt.objects.select_related("assessment"), pk=attempt_id)
        self.check_object_permissions(request, attempt)
        attempt = attempt_service.void_attempt(attempt, actor=request.user)
        return Response(_attempt_out(attempt, abandoned_at=attempt.abandoned_at), status=status.HTTP_200_OK)


class ReleaseScoresView(APIView):
    """POST /api/tests/<test_id>/release-scores/"""
    permission_classes = [permissions.IsAuthenticated, IsAssessmentGrader]

    def post(self, request, test_id):
        assessment = get_object_or_404(Assessment.objects.select_related("tournament"), pk=test_id)
        self.check_object_permissions(request, assessment)
        changed = release_scores(assessment, actor=request.user)
        return Response({
            "test_id": str(assessment.id),
            "released": True,
            "already_released": not changed,
            "released_at": timezone.now(),
        }, status=status.HTTP_200_OK)


class ReleaseAllScoresView(APIView):
    """POST /api/tournaments/<tournament_id>/release-all-scores/"""
    permission_classes = [permissions.IsAuthenticated, IsTournamentManager]

    def post(self, request, tournament_id):
        tournament = get_object_or_404(Tournament, pk=tournament_id)
        self.check_object_permissions(request, tournament)
        released = release_all_scores(tournament, actor=request.user)
        return Response({
            "tournament_id": str(tournament.id),
            "released_count": len(released),
            "released_test_ids": [str(a.id) for a in released],
        }, status=status.HTTP_200_OK)


class ReleaseTrialEventScoresView(APIView):
    """POST /api/tournaments/<tournament_id>/trial-events/<event_name>/release-scores/"""
    permission_classes = [permissions.IsAuthenticated, IsTournamentManager]

    def post(self, request, tournament_id, event_name):
        tournament = get_object_or_404(Tournament, pk=tournament_id)
        self.check_object_permissions(request, tournament)
        released = release_trial_event_scores(tournament, event_name, actor=request.user)
        return Response({
            "tournament_id": str(tournament.id),
            "event_name": event_name,
            "released_count": len(released),
            "released_test_ids": [str(a.id) for a in released],
        }, status=status.HTTP_200_OK)
