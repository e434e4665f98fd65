"""
Management command to monitor pipeline executions.

Usage:
    # List recent executions
    python manage.py monitor_pipeline --limit 10

    # Filter by project and status
    python manage.py monitor_pipeline --project web-app --status failed

    # Show details for one execution
    python manage.py monitor_pipeline --execution-id <execution_id>
"""

from django.core.management.base import BaseCommand

from apps.orchestration.models import ExecutionStatus, PipelineExecution


class Command(BaseCommand):
    help = "Monitor pipeline executions: list, filter, and show details."

    def add_arguments(self, parser):
        parser.add_argument(
            "--limit",
            type=int,
            default=10,
            help="Number of executions to show (default: 10)",
        )
        parser.add_argument(
            "--status",
            type=str,
            choices=ExecutionStatus.values,
            help="Filter by execution status",
        )
        parser.add_argument("--project", type=str, help="Filter by project slug")
        parser.add_argument(
            "--execution-id",
            type=str,
            help="Show details for one execution",
        )

    def handle(self, *args, **options):
        if options.get("execution_id"):
            self.show_execution(options["execution_id"])
        else:
            self.list_executions(options.get("project"), options.get("status"), options["limit"])

    def list_executions(self, project, status, limit):
        qs = PipelineExecution.objects.all()
        if project:
            qs = qs.filter(project_id=project)
        if status:
            qs = qs.filter(status=status)
        executions = list(qs.order_by("-created_at", "-id")[:limit])

        if not executions:
            self.stdout.write(self.style.WARNING("No pipeline executions found."))
            return

        self.stdout.write(
            f"{'Execution ID':<38} {'Project':<16} {'Branch':<16} {'Status':<10} {'Created':<20}"
        )
        self.stdout.write("-" * 100)
        for execution in executions:
            self.stdout.write(
                f"{execution.execution_id:<38} {execution.project_id:<16} "
                f"{execution.branch[:16]:<16} {execution.status:<10} "
                f"{execution.created_at:%Y-%m-%d %H:%M:%S}"
            )

    def show_execution(self, execution_id):
        try:
            execution = PipelineExecution.objects.get(execution_id=execution_id)
        except PipelineExecution.DoesNotExist:
            self.stdout.write(self.style.ERROR(f"Pipeline execution not found: {execution_id}"))
            return

        self.stdout.write(self.style.HTTP_INFO(f"Pipeline Execution: {execution.execution_id}"))
        self.stdout.write(f"  Project: {execution.project_id}")
        self.stdout.write(f"  Status: {execution.status}")
        self.stdout.write(f"  Commit: {execution.commit_id} ({execution.branch})")
        self.stdout.write(f"  Triggered by: {execution.triggered_by or '-'}")
        self.stdout.write(f"  Environment: {execution.environment}")
        self.stdout.write(f"  Started: {execution.started_at}")
        self.stdout.write(f"  Completed: {execution.completed_at}")
        self.stdout.write(f"  Duration: {execution.duration_ms:.2f} ms")
        if execution.error_message:
            self.stdout.write(self.style.ERROR(f"  Error: {execution.error_message}"))
        self.stdout.write("")
        self.stdout.write("Stages:")
        for stage in execution.stages.order_by("position"):
            self.stdout.write(
                f"  - {stage.name:<20} {stage.status:<8} Attempts: {stage.attempts} "
                f"Duration: {stage.duration_ms:.2f} ms"
            )
            if stage.error:
                self.stdout.write(self.style.ERROR(f"      Error: {stage.error}"))
        self.stdout.write("")
