"""
Roll an environment back to a verified snapshot.

Usage:
    # List rollback targets
    python manage.py rollback_environment production --project web-app --list

    # Roll back to the newest verified snapshot (the role must be an approver)
    python manage.py rollback_environment production --project web-app --actor ada --role admin

    # Ask an approver to roll back to a specific snapshot
    python manage.py rollback_environment production --snapshot <snapshot_id> \
        --actor dana --role developer --request

    # Approve and execute a pending request
    python manage.py rollback_environment production --approve <rollback_id> \
        --actor ada --role admin
"""

import json

from django.core.management.base import BaseCommand, CommandError

from apps.deployments.exceptions import InsufficientPermission, InvalidTarget, RollbackFailed
from apps.deployments.policy import Actor, Role
from apps.orchestration.container import get_services
from apps.orchestration.exceptions import InvalidTransition


class Command(BaseCommand):
    help = "Roll an environment back to a verified snapshot"

    def add_arguments(self, parser):
        parser.add_argument("environment", type=str, help="Environment name")
        parser.add_argument("--project", type=str, help="Project slug")
        parser.add_argument(
            "--snapshot",
            type=str,
            help="Snapshot id (default: the newest verified snapshot of --project)",
        )
        parser.add_argument("--reason", type=str, default="manual rollback")
        parser.add_argument("--actor", type=str, default="cli")
        parser.add_argument("--role", type=str, choices=Role.values, help="Role of --actor")
        parser.add_argument(
            "--request", action="store_true", help="File a request for an approver instead"
        )
        parser.add_argument("--approve", type=str, metavar="ROLLBACK_ID", help="Approve a request")
        parser.add_argument("--list", action="store_true", help="List rollback targets and exit")
        parser.add_argument("--json", action="store_true", help="Output result as JSON")

    def handle(self, *args, **options):
        controller = get_services().rollback
        environment = options["environment"]

        if options["list"]:
            self._list(controller.get_rollback_options(environment, project_id=options["project"]))
            return

        if not options["role"]:
            raise CommandError("Pass --role for --actor")
        actor = Actor(options["actor"], options["role"])
        progress = self.stderr if options["json"] else self.stdout

        try:
            if options["approve"]:
                progress.write(self.style.NOTICE(f"Approving rollback {options['approve']}..."))
                result = controller.approve_rollback(options["approve"], actor)
            elif options["request"]:
                snapshot_id = self._snapshot_id(controller, environment, options)
                result = controller.request_rollback(
                    environment, snapshot_id, options["reason"], actor
                )
            else:
                snapshot_id = self._snapshot_id(controller, environment, options)
                progress.write(self.style.NOTICE(f"Rolling {environment} back to {snapshot_id}..."))
                result = controller.rollback(environment, snapshot_id, options["reason"], actor)
        except (InsufficientPermission, InvalidTransition) as e:
            raise CommandError(str(e))
        except InvalidTarget as e:
            raise CommandError(f"Invalid rollback target: {e}")
        except RollbackFailed as e:
            self._print_recovery_options(e.analysis)
            raise CommandError(
                f"Rollback {e.rollback_id} failed at {e.step}: {e}. Manual intervention required."
            )

        if options["json"]:
            self.stdout.write(json.dumps(result.to_dict(), indent=2))
            return

        if options["request"]:
            self.stdout.write(
                self.style.SUCCESS(f"Rollback {result.rollback_id} is awaiting approval")
            )
            return
        for check in result.health_results:
            self.stdout.write(f"  ✓ {check['name']}: {check['message']}")
        self.stdout.write(self.style.SUCCESS(f"Rollback {result.rollback_id} succeeded"))

    def _snapshot_id(self, controller, environment, options) -> str:
        if options["snapshot"]:
            return options["snapshot"]
        if not options["project"]:
            raise CommandError("Pass --snapshot, or --project to use the newest snapshot")
        candidates = controller.get_rollback_options(
            environment, project_id=options["project"], limit=1
        )
        if not candidates:
            raise CommandError(f"No verified snapshots for {options['project']} in {environment}")
        return candidates[0].snapshot_id

    def _print_recovery_options(self, analysis):
        if not analysis:
            return
        self.stderr.write(self.style.ERROR(f"Likely cause: {analysis['root_cause']}"))
        self.stderr.write("Recovery options:")
        for option in analysis["recovery_options"]:
            self.stderr.write(f"  - {option}")

    def _list(self, snapshots):
        if not snapshots:
            self.stdout.write(self.style.WARNING("No verified snapshots found."))
            return
        self.stdout.write(f"{'Snapshot ID':<38} {'Version':<16} {'Commit':<10} {'Created':<20}")
        self.stdout.write("-" * 86)
        for snapshot in snapshots:
            self.stdout.write(
                f"{snapshot.snapshot_id:<38} {snapshot.version[:16]:<16} "
                f"{snapshot.commit_id[:8]:<10} {snapshot.created_at:%Y-%m-%d %H:%M:%S}"
            )
