from django.contrib import admin

from .models import Event, RosterAssignment, Tournament, TournamentAdmin, TournamentRegistration


class TournamentRegistrationInline(admin.TabularInline):
    model = TournamentRegistration
    extra = 0
    raw_id_fields = ("club", "team")
    fields = ("club", "team", "status")


class TournamentAdminInline(admin.TabularInline):
    model = TournamentAdmin
    extra = 0
    raw_id_fields = ("user",)


@admin.register(Tournament)
class TournamentModelAdmin(admin.ModelAdmin):
    list_display = ("name", "division", "start_at", "end_at")
    list_filter = ("division",)
    search_fields = ("name", "slug")
    inlines = [TournamentAdminInline, TournamentRegistrationInline]


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = ("name", "slug", "division")
    list_filter = ("division",)
    search_fields = ("name", "slug")


@admin.register(RosterAssignment)
class RosterAssignmentAdmin(admin.ModelAdmin):
    list_display = ("membership", "team", "event", "created_at")
    list_filter = ("event__division",)
    raw_id_fields = ("membership", "team", "event")
