from django.db import models


class Division(models.TextChoices):
    A = "A", "Division A"
    B = "B", "Division B"
    C = "C", "Division C"


class MembershipRole(models.TextChoices):
    ADMIN  = "ADMIN",  "Admin"
    MEMBER = "MEMBER", "Member"


class RegistrationStatus(models.TextChoices):
    PENDING   = "PENDING",   "Pending"
    CONFIRMED = "CONFIRMED", "Confirmed"
    WITHDRAWN = "WITHDRAWN", "Withdrawn"


class AssessmentKind(models.TextChoices):
    TEST    = "TEST",    "Club test"
    ES_TEST = "ES_TEST", "Tournament event test"


class AssessmentStatus(models.TextChoices):
    DRAFT     = "DRAFT",     "Draft"
    PUBLISHED = "PUBLISHED", "Published"
    ARCHIVED  = "ARCHIVED",  "Archived"


class ScoreReleaseMode(models.TextChoices):
    NONE             = "NONE",             "No release"
    SCORE_ONLY       = "SCORE_ONLY",       "Score only"
    SCORE_WITH_WRONG = "SCORE_WITH_WRONG", "Score with wrong answers"
    FULL_TEST        = "FULL_TEST",        "Full test"


class CalculatorType(models.TextChoices):
    FOUR_FUNCTION = "FOUR_FUNCTION", "Four function"
    SCIENTIFIC    = "SCIENTIFIC",    "Scientific"
    GRAPHING      = "GRAPHING",      "Graphing"


class QuestionType(models.TextChoices):
    MCQ_SINGLE = "MCQ_SINGLE", "Single choice"
    MCQ_MULTI  = "MCQ_MULTI",  "Multi choice"
    SHORT_TEXT = "SHORT_TEXT", "Short text"
    LONG_TEXT  = "LONG_TEXT",  "Long text"
    NUMERIC    = "NUMERIC",    "Numeric"


FREE_RESPONSE_TYPES = (QuestionType.SHORT_TEXT, QuestionType.LONG_TEXT)


class AttemptStatus(models.TextChoices):
    NOT_STARTED = "NOT_STARTED", "Not started"
    IN_PROGRESS = "IN_PROGRESS", "In progress"
    SUBMITTED   = "SUBMITTED",   "Submitted"
    # derived from answers, never written to Attempt.status
    GRADED      = "GRADED",      "Graded"


class ProctorEventKind(models.TextChoices):
    TAB_SWITCH      = "TAB_SWITCH",      "Tab/Window switch"
    BLUR            = "BLUR",            "Window blur"
    FULLSCREEN_EXIT = "FULLSCREEN_EXIT", "Fullscreen exit"
    COPY            = "COPY",            "Copy"
    PASTE           = "PASTE",           "Paste"
    CONTEXT_MENU    = "CONTEXT_MENU",    "Context menu"
    DEVTOOLS_OPEN   = "DEVTOOLS_OPEN",   "DevTools opened"
    RESIZE          = "RESIZE",          "Window resize"
    OTHER           = "OTHER",           "Other"


class AuditAction(models.TextChoices):
    CREATE         = "CREATE",         "Create"
    UPDATE         = "UPDATE",         "Update"
    PUBLISH        = "PUBLISH",        "Publish"
    RELEASE_SCORES = "RELEASE_SCORES", "Release scores"
    GRADE          = "GRADE",          "Grade"
    VOID_ATTEMPT   = "VOID_ATTEMPT",   "Void attempt"
