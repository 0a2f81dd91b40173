# exams/services/export.py
import io

import pandas as pd

from exams.models import Attempt

from .grading import derived_status, load_answers, score_breakdown

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _question_label(question):
    return f"Q{question.order}: {question.prompt[:40]}"


def responses_frame(assessment) -> pd.DataFrame:
    """One row per attempt, one points column per question."""
    questions = list(assessment.questions.order_by("order", "created_at"))
    rows = []
    attempts = (
        Attempt.objects
        .filter(assessment=assessment)
        .exclude(started_at__isnull=True)
        .select_related("membership__user", "membership__team")
        .order_by("membership__user__username", "started_at")
    )
    for attempt in attempts:
        answers = load_answers(attempt)
        breakdown = score_breakdown(answers)
        by_question = {a.question_id: a for a in answers}
        row = {
            "attempt_id": str(attempt.id),
            "member": str(attempt.membership.user),
            "team": attempt.membership.team.name if attempt.membership.team_id else "",
            "status": derived_status(attempt, answers),
            "started_at": attempt.started_at,
            "submitted_at": attempt.submitted_at,
            "is_late": attempt.is_late,
            "voided": attempt.abandoned_at is not None,
            "grade_earned": float(attempt.grade_earned) if attempt.grade_earned is not None else None,
            "graded_total_points": float(breakdown.graded_total_points),
            "overall_total_points": float(breakdown.overall_total_points),
            "tab_switch_count": attempt.tab_switch_count,
            "time_off_page_seconds": attempt.time_off_page_seconds,
            "proctoring_score": float(attempt.proctoring_score) if attempt.proctoring_score is not None else None,
        }
        for q in questions:
            a = by_question.get(q.id)
            row[_question_label(q)] = (
                float(a.points_awarded) if a is not None and a.points_awarded is not None else None
            )
        rows.append(row)

    columns = [
        "attempt_id", "member", "team", "status", "started_at", "submitted_at", "is_late", "voided",
        "grade_earned", "graded_total_points", "overall_total_points",
        "tab_switch_count", "time_off_page_seconds", "proctoring_score",
    ] + [_question_label(q) for q in questions]
    df = pd.DataFrame(rows, columns=columns)
    for col in ("started_at", "submitted_at"):
        # Excel cannot store tz-aware datetimes
        df[col] = pd.to_datetime(df[col], utc=True).dt.tz_localize(None)
    return df


def export_responses(assessment, fmt="csv"):
    """Returns (bytes, content_type, filename)."""
    df = responses_frame(assessment)
    stem = f"responses-{assessment.id}"
    if fmt == "xlsx":
        buf = io.BytesIO()
        with pd.ExcelWriter(buf, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name="responses", index=False)
        return buf.getvalue(), XLSX_CONTENT_TYPE, f"{stem}.xlsx"
    return df.to_csv(index=False).encode("utf-8"), "text/csv", f"{stem}.csv"
