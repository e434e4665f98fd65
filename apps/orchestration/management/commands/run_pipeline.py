"""
Management command to trigger and run a pipeline synchronously.

Usage:
    # Run the latest configuration of a project for a commit
    python manage.py run_pipeline web-app --commit abc123 --branch main

    # Target another environment and pass parameters
    python manage.py run_pipeline web-app --commit abc123 --environment staging --param FLAG=1

    # Show the stages that would run
    python manage.py run_pipeline web-app --commit abc123 --dry-run
"""

import json

from django.core.management.base import BaseCommand, CommandError

from apps.orchestration.container import get_services
from apps.orchestration.exceptions import OrchestrationError
from apps.orchestration.models import ExecutionStatus, StageStatus


class Command(BaseCommand):
    help = "Trigger a pipeline for a commit and run it in this process"

    def add_arguments(self, parser):
        parser.add_argument("project_id", type=str, help="Project slug")
        parser.add_argument("--commit", type=str, required=True, help="Commit id to build")
        parser.add_argument(
            "--branch",
            type=str,
            help="Branch name (default: the project's default branch)",
        )
        parser.add_argument("--actor", type=str, default="cli", help="Who triggered (default: cli)")
        parser.add_argument("--environment", type=str, help="Target environment")
        parser.add_argument(
            "--param",
            action="append",
            default=[],
            metavar="KEY=VALUE",
            help="Execution parameter, repeatable",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show the stages of the configuration without running them",
        )
        parser.add_argument("--json", action="store_true", help="Output result as JSON")

    def handle(self, *args, **options):
        services = get_services()
        project_id = options["project_id"]
        parameters = self._parse_params(options["param"])

        try:
            profile = services.store.get_profile(project_id)
            configuration = services.generator.resolve(project_id, actor=options["actor"])
        except OrchestrationError as e:
            raise CommandError(str(e))

        branch = options["branch"] or profile.default_branch
        if options["dry_run"]:
            self._show_dry_run(configuration, branch, options)
            return

        # Progress goes to stderr when stdout carries JSON
        progress = self.stderr if options["json"] else self.stdout
        progress.write(self.style.NOTICE("Starting pipeline..."))
        progress.write(f"  Project: {project_id}")
        progress.write(f"  Commit: {options['commit']} ({branch})")
        progress.write(f"  Configuration: v{configuration.version}")
        progress.write("")

        try:
            execution = services.orchestrator.trigger(
                project_id,
                commit_id=options["commit"],
                branch=branch,
                actor=options["actor"],
                environment=options["environment"],
                parameters=parameters,
                configuration=configuration,
            )
            execution = services.orchestrator.run(execution.execution_id)
        except OrchestrationError as e:
            raise CommandError(f"Pipeline failed: {e}")

        if options["json"]:
            from apps.orchestration.views import execution_to_dict

            self.stdout.write(
                json.dumps(execution_to_dict(execution, include_stages=True), indent=2)
            )
        else:
            self._display_result(execution)

        if execution.status != ExecutionStatus.SUCCESS:
            raise CommandError(f"Pipeline {execution.execution_id} ended {execution.status}")

    def _parse_params(self, pairs: list[str]) -> dict[str, str]:
        params = {}
        for pair in pairs:
            key, sep, value = pair.partition("=")
            if not sep or not key:
                raise CommandError(f"Invalid --param '{pair}', expected KEY=VALUE")
            params[key] = value
        return params

    def _show_dry_run(self, configuration, branch, options):
        plan = configuration.plan()
        self.stdout.write(self.style.WARNING("=== DRY RUN ==="))
        self.stdout.write(f"Project: {options['project_id']} (v{configuration.version})")
        self.stdout.write(f"Commit: {options['commit']} ({branch})")
        self.stdout.write("")
        self.stdout.write("Stages:")
        for position, stage in enumerate(plan.stages):
            flag = " (continue on error)" if stage.continue_on_error else ""
            self.stdout.write(f"  {position:>2}. {stage.name}{flag}")
            for command in stage.commands:
                self.stdout.write(f"        $ {command}")

    def _display_result(self, execution):
        self.stdout.write(f"Execution: {execution.execution_id}")
        for stage in execution.stages.order_by("position"):
            if stage.status == StageStatus.SUCCESS:
                icon = self.style.SUCCESS("✓")
            elif stage.status == StageStatus.FAILED:
                icon = self.style.ERROR("✗")
            else:
                icon = "-"
            self.stdout.write(
                f"  {icon} {stage.name:<20} {stage.status:<8} {stage.duration_ms:>9.1f} ms"
            )
            if stage.error:
                self.stdout.write(self.style.ERROR(f"      {stage.error}"))

        self.stdout.write("")
        if execution.status == ExecutionStatus.SUCCESS:
            self.stdout.write(
                self.style.SUCCESS(f"Pipeline succeeded in {execution.duration_ms:.0f} ms")
            )
        else:
            self.stdout.write(
                self.style.ERROR(f"Pipeline {execution.status}: {execution.error_message}")
            )
