import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("projects", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="TestExecution",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("test_execution_id", models.CharField(max_length=64, unique=True)),
                (
                    "trigger_type",
                    models.CharField(
                        choices=[
                            ("commit", "Commit"),
                            ("pull_request", "Pull request"),
                            ("manual", "Manual"),
                        ],
                        db_index=True,
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("running", "Running"), ("passed", "Passed"), ("failed", "Failed")],
                        db_index=True,
                        default="running",
                        max_length=20,
                    ),
                ),
                ("commit_id", models.CharField(blank=True, default="", max_length=64)),
                ("branch", models.CharField(blank=True, default="", max_length=255)),
                ("pr_id", models.CharField(blank=True, db_index=True, default="", max_length=64)),
                ("source_branch", models.CharField(blank=True, default="", max_length=255)),
                ("target_branch", models.CharField(blank=True, default="", max_length=255)),
                ("author", models.CharField(blank=True, default="", max_length=255)),
                ("changed_files", models.JSONField(blank=True, default=list)),
                ("parallel", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("started_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="test_executions",
                        to="projects.project",
                        to_field="slug",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(
                        fields=["project", "created_at"], name="testexec_project_created_idx"
                    ),
                    models.Index(fields=["project", "pr_id"], name="testexec_project_pr_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SuiteRun",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("name", models.CharField(max_length=100)),
                ("command", models.TextField()),
                ("optional", models.BooleanField(default=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("running", "Running"),
                            ("passed", "Passed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("output", models.TextField(blank=True, default="")),
                ("error", models.TextField(blank=True, default="")),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("duration_ms", models.FloatField(default=0.0)),
                (
                    "test_execution",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="suite_runs",
                        to="testruns.testexecution",
                    ),
                ),
            ],
            options={
                "ordering": ["test_execution", "id"],
            },
        ),
    ]
