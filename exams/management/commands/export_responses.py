# exams/management/commands/export_responses.py
from pathlib import Path

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from exams.models import Assessment
from exams.services.export import export_responses


class Command(BaseCommand):
    help = "Export every attempt of a test (scores, proctoring counters, per-question points) to CSV or XLSX."

    def add_arguments(self, parser):
        parser.add_argument("test_id", help="Assessment id")
        parser.add_argument("--out", help="Output path (default: responses-<id>.<ext> in the cwd)")
        parser.add_argument("--xlsx", action="store_true", help="Write an Excel workbook instead of CSV")

    def handle(self, *args, **opts):
        try:
            assessment = Assessment.objects.filter(pk=opts["test_id"]).first()
        except ValidationError as e:
            raise CommandError(f"Invalid test id {opts['test_id']}") from e
        if assessment is None:
            raise CommandError(f"No test with id {opts['test_id']}")

        content, _, filename = export_responses(assessment, fmt="xlsx" if opts["xlsx"] else "csv")
        path = Path(opts["out"] or filename)
        path.write_bytes(content)
        self.stdout.write(f"Wrote {len(content)} bytes for '{assessment.name}' to {path}")
