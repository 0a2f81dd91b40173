# exams/services/audit.py
from __future__ import annotations

import json
import logging

from django.db import DatabaseError, transaction

from common.enums import AuditAction
from exams.models import AssessmentAudit

logger = logging.getLogger(__name__)

EVENT_NAME_KEYS = ("eventName", "event_name")


def record_audit(assessment, action, actor=None, details=None):
    return AssessmentAudit.objects.create(
        assessment=assessment,
        action=action,
        actor=actor if actor is not None and getattr(actor, "is_authenticated", False) else None,
        details=details or {},
    )


def _event_name(details):
    if isinstance(details, str):
        try:
            details = json.loads(details)
        except ValueError:
            return None
    if not isinstance(details, dict):
        return None
    for key in EVENT_NAME_KEYS:
        name = details.get(key)
        if isinstance(name, str) and name.strip():
            return name.strip()
    return None


def creation_event_names(assessment_ids) -> dict:
    """
    Map assessment id -> event name recorded on its CREATE audit row.

    Best effort: assessments with no row, or an unreadable one, are left
    out, and a failing lookup yields an empty map.
    """
    ids = [i for i in assessment_ids if i]
    if not ids:
        return {}
    try:
        # savepoint, so a failed lookup leaves an outer transaction usable
        with transaction.atomic():
            rows = list(
                AssessmentAudit.objects
                .filter(assessment_id__in=ids, action=AuditAction.CREATE)
                .order_by("created_at")
                .values_list("assessment_id", "details")
            )
    except DatabaseError:
        logger.warning("creation audit lookup failed for %s assessments", len(ids), exc_info=True)
        return {}

    names = {}
    for assessment_id, details in rows:
        if assessment_id in names:
            continue
        name = _event_name(details)
        if name:
            names[assessment_id] = name
    return names


def creation_event_name(assessment_id):
    return creation_event_names([assessment_id]).get(assessment_id)
