from django.contrib import admin
from .models import Assessment, AssessmentAudit, Answer, Attempt, ProctorEvent, Question, QuestionOption


# ----- Inlines -----
class QuestionOptionInline(admin.TabularInline):
    model = QuestionOption
    extra = 1
    fields = ("label", "is_correct", "order")
    ordering = ("order",)


class QuestionInline(admin.TabularInline):
    model = Question
    extra = 0
    show_change_link = True
    fields = ("order", "type", "prompt", "points")
    ordering = ("order",)


class AnswerInline(admin.TabularInline):
    model = Answer
    extra = 0
    raw_id_fields = ("question",)
    fields = ("question", "points_awarded", "graded_at", "grader_note", "marked_for_review")
    readonly_fields = ("graded_at",)


class ProctorEventInline(admin.TabularInline):
    model = ProctorEvent
    extra = 0
    can_delete = False
    fields = ("kind", "meta", "occurred_at")
    readonly_fields = ("kind", "meta", "occurred_at")


# ----- ModelAdmins -----
@admin.register(Assessment)
class AssessmentAdmin(admin.ModelAdmin):
    list_display = (
        "name", "kind", "status", "club", "tournament", "event",
        "start_at", "end_at", "score_release_mode", "release_scores_at", "scores_released",
    )
    list_filter = ("kind", "status", "score_release_mode")
    search_fields = ("name", "club__name", "tournament__name")
    raw_id_fields = ("club", "tournament", "event")
    inlines = [QuestionInline]


@admin.register(Question)
class QuestionAdmin(admin.ModelAdmin):
    list_display = ("prompt", "assessment", "type", "points", "order")
    list_filter = ("type",)
    search_fields = ("prompt",)
    raw_id_fields = ("assessment",)
    inlines = [QuestionOptionInline]


@admin.register(Attempt)
class AttemptAdmin(admin.ModelAdmin):
    list_display = (
        "assessment", "membership", "status", "started_at", "submitted_at",
        "is_late", "grade_earned", "tab_switch_count", "abandoned_at",
    )
    list_filter = ("status", "is_late")
    search_fields = ("membership__user__username", "assessment__name")
    raw_id_fields = ("assessment", "membership")
    readonly_fields = ("grade_earned", "proctoring_score", "ip_at_start", "ip_at_submit", "user_agent")
    inlines = [AnswerInline, ProctorEventInline]


@admin.register(AssessmentAudit)
class AssessmentAuditAdmin(admin.ModelAdmin):
    list_display = ("assessment", "action", "actor", "created_at")
    list_filter = ("action",)
    raw_id_fields = ("assessment", "actor")
