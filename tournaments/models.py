from django.conf import settings
from django.db import models

from accounts.models import Club, Membership, Team
from common.enums import Division, RegistrationStatus
from common.models import TimeStampedModel


class Event(TimeStampedModel):
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=220)
    division = models.CharField(max_length=2, choices=Division.choices)

    class Meta:
        unique_together = ("slug", "division")
        ordering = ("name",)

    def __str__(self):
        return f"{self.name} ({self.division})"


class Tournament(TimeStampedModel):
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=220, unique=True)
    division = models.CharField(max_length=2, choices=Division.choices)
    start_at = models.DateTimeField(null=True, blank=True)
    end_at = models.DateTimeField(null=True, blank=True)
    # raw JSON: [{"name": ..., "division": ...}] or the older ["name", ...]
    trial_events = models.TextField(blank=True, default="")

    def __str__(self):
        return self.name


class TournamentRegistration(TimeStampedModel):
    tournament = models.ForeignKey(Tournament, on_delete=models.CASCADE, related_name="registrations")
    club = models.ForeignKey(Club, on_delete=models.CASCADE, related_name="tournament_registrations")
    team = models.ForeignKey(Team, on_delete=models.CASCADE, null=True, blank=True, related_name="tournament_registrations")
    status = models.CharField(max_length=16, choices=RegistrationStatus.choices, default=RegistrationStatus.PENDING)

    class Meta:
        unique_together = ("tournament", "club", "team")
        indexes = [models.Index(fields=["tournament", "status"])]


class TournamentAdmin(TimeStampedModel):
    tournament = models.ForeignKey(Tournament, on_delete=models.CASCADE, related_name="admins")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="tournament_admin_roles")

    class Meta:
        unique_together = ("tournament", "user")


class RosterAssignment(TimeStampedModel):
    membership = models.ForeignKey(Membership, on_delete=models.CASCADE, related_name="roster_assignments")
    team = models.ForeignKey(Team, on_delete=models.CASCADE, related_name="roster_assignments")
    event = models.ForeignKey(Event, on_delete=models.CASCADE, related_name="roster_assignments")

    class Meta:
        unique_together = ("membership", "team", "event")
        ordering = ("created_at",)
