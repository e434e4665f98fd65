"""
Export a project's pipeline configuration as YAML.

Usage:
    python manage.py export_pipeline_config web-app
    python manage.py export_pipeline_config web-app --output pipeline.yml
    python manage.py export_pipeline_config web-app --regenerate
"""

from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from apps.orchestration.container import get_services
from apps.orchestration.exceptions import OrchestrationError


class Command(BaseCommand):
    help = "Print (or write) the latest pipeline configuration of a project as YAML"

    def add_arguments(self, parser):
        parser.add_argument("project_id", type=str, help="Project slug")
        parser.add_argument("--output", type=str, help="Write to this file instead of stdout")
        parser.add_argument(
            "--regenerate",
            action="store_true",
            help="Generate a new configuration version from the stored project profile first",
        )

    def handle(self, *args, **options):
        generator = get_services().generator
        project_id = options["project_id"]
        try:
            if options["regenerate"]:
                configuration = generator.generate_for_project(project_id, actor="cli")
            else:
                configuration = generator.resolve(project_id, actor="cli")
        except OrchestrationError as e:
            raise CommandError(str(e))

        document = generator.export_yaml(configuration)
        if not options["output"]:
            self.stdout.write(document)
            return

        Path(options["output"]).write_text(document)
        self.stdout.write(
            self.style.SUCCESS(
                f"Wrote {project_id} configuration v{configuration.version} to {options['output']}"
            )
        )
