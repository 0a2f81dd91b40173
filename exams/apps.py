# exams/apps.py
from django.apps import AppConfig


class ExamsConfig(AppConfig):
    name = "exams"
    verbose_name = "Tests and attempts"

    def ready(self):
        # registers the expiry sweep with the worker
        from . import tasks  # noqa: F401
