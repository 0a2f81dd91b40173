# exams/tasks.py
from celery import shared_task
from django.utils import timezone

from .services.attempts import expire_overdue_attempts


@shared_task(bind=True, ignore_result=True)
def submit_expired_attempts(self):
    """
    Periodic task (safe to run every minute): submit and auto-grade
    in-progress attempts whose duration has run out.
    """
    return expire_overdue_attempts(timezone.now())
