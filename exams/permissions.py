# exams/permissions.py
from rest_framework.permissions import BasePermission

from tournaments.selectors import is_grader, is_tournament_admin


class IsAssessmentGrader(BasePermission):
    """
    Object-level: the user administers the club that owns the test, or
    the tournament it belongs to. `obj` is an Assessment or anything
    with an `.assessment`.
    """
    message = "Only club or tournament administrators can do this."

    def has_object_permission(self, request, view, obj):
        assessment = getattr(obj, "assessment", obj)
        return is_grader(request.user, assessment)


class IsTournamentManager(BasePermission):
    message = "Only tournament administrators can do this."

    def has_object_permission(self, request, view, obj):
        return is_tournament_admin(request.user, obj)
