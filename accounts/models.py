from django.contrib.auth.models import AbstractUser
from django.db import models

from common.enums import Division, MembershipRole
from common.models import TimeStampedModel


class User(AbstractUser):
    email = models.EmailField(unique=True, null=True, blank=True)
    display_name = models.CharField(max_length=150, blank=True)

    def __str__(self):
        return self.display_name or self.username


class Club(TimeStampedModel):
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=220, unique=True)
    division = models.CharField(max_length=2, choices=Division.choices, default=Division.C)

    def __str__(self):
        return self.name


class Team(TimeStampedModel):
    club = models.ForeignKey(Club, on_delete=models.CASCADE, related_name="teams")
    name = models.CharField(max_length=120)

    class Meta:
        unique_together = ("club", "name")
        ordering = ("club", "name")

    def __str__(self):
        return f"{self.club} • {self.name}"


class Membership(TimeStampedModel):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="memberships")
    club = models.ForeignKey(Club, on_delete=models.CASCADE, related_name="memberships")
    team = models.ForeignKey(Team, on_delete=models.SET_NULL, null=True, blank=True, related_name="memberships")
    role = models.CharField(max_length=16, choices=MembershipRole.choices, default=MembershipRole.MEMBER)

    class Meta:
        unique_together = ("user", "club")
        indexes = [models.Index(fields=["club", "role"])]

    @property
    def is_admin(self) -> bool:
        return self.role == MembershipRole.ADMIN

    def __str__(self):
        return f"{self.user} • {self.club} • {self.role}"
