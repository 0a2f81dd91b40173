# tournaments/selectors.py
"""
Read-only lookups over clubs, rosters and tournaments.

The testing engine never writes these rows; it only asks who a user is
within a club or tournament and which events they are rostered for.
"""
from __future__ import annotations

from django.utils import timezone

from accounts.models import Membership
from common.enums import MembershipRole, RegistrationStatus

from .models import RosterAssignment, TournamentAdmin, TournamentRegistration


def club_membership(user, club_id):
    if not user or not user.is_authenticated or not club_id:
        return None
    return Membership.objects.filter(user=user, club_id=club_id).select_related("club", "team").first()


def tournament_membership(user, tournament):
    """
    Resolve the (membership, registration) pair through which `user`
    takes part in `tournament`. Only CONFIRMED registrations count.
    A team-level registration matching the member's own team wins over
    a club-wide one. Returns (None, None) when the user is not entered.
    """
    if not user or not user.is_authenticated:
        return None, None

    memberships = {
        m.club_id: m
        for m in Membership.objects.filter(user=user).select_related("club", "team")
    }
    if not memberships:
        return None, None

    registrations = list(
        TournamentRegistration.objects
        .filter(
            tournament=tournament,
            status=RegistrationStatus.CONFIRMED,
            club_id__in=list(memberships.keys()),
        )
        .select_related("team")
        .order_by("created_at")
    )

    fallback = None
    for reg in registrations:
        membership = memberships[reg.club_id]
        if reg.team_id and reg.team_id == membership.team_id:
            return membership, reg
        if fallback is None and (reg.team_id is None or membership.team_id is None):
            fallback = (membership, reg)

    if fallback:
        return fallback
    if registrations:
        reg = registrations[0]
        return memberships[reg.club_id], reg
    return None, None


def roster_events(membership, registration=None):
    """Events the member is rostered for, deduplicated, in assignment order."""
    if membership is None:
        return []
    qs = RosterAssignment.objects.filter(membership=membership).select_related("event")
    if registration is not None and registration.team_id:
        qs = qs.filter(team_id=registration.team_id)
    else:
        qs = qs.filter(team__club_id=membership.club_id)

    seen, events = set(), []
    for ra in qs.order_by("created_at"):
        if ra.event_id in seen:
            continue
        seen.add(ra.event_id)
        events.append(ra.event)
    return events


def is_tournament_admin(user, tournament) -> bool:
    if not user or not user.is_authenticated or tournament is None:
        return False
    if user.is_staff:
        return True
    return TournamentAdmin.objects.filter(tournament=tournament, user=user).exists()


def is_grader(user, assessment) -> bool:
    """
    Graders hold an administrative role over the assessment's owning
    club, or administer the tournament it belongs to.
    """
    if not user or not user.is_authenticated:
        return False
    if user.is_staff:
        return True
    if assessment.club_id and Membership.objects.filter(
        user=user, club_id=assessment.club_id, role=MembershipRole.ADMIN
    ).exists():
        return True
    if assessment.tournament_id and TournamentAdmin.objects.filter(
        tournament_id=assessment.tournament_id, user=user
    ).exists():
        return True
    return False


def tournament_has_ended(tournament, now=None) -> bool:
    if tournament is None or tournament.end_at is None:
        return False
    now = now or timezone.now()
    return now > tournament.end_at
