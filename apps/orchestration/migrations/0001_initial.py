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
            name="PipelineConfiguration",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("config_id", models.CharField(max_length=64, unique=True)),
                ("language", models.CharField(max_length=50)),
                ("target_platforms", models.JSONField(blank=True, default=list)),
                (
                    "settings",
                    models.JSONField(
                        blank=True, default=dict, help_text="Settings the plan was generated from."
                    ),
                ),
                ("stages", models.JSONField(default=list, help_text="Ordered stage templates.")),
                ("environments", models.JSONField(default=dict)),
                ("test_policy", models.JSONField(default=dict)),
                ("deployment_policy", models.JSONField(default=dict)),
                ("version", models.CharField(default="1.0.0", max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="pipeline_configurations",
                        to="projects.project",
                        to_field="slug",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(
                        fields=["project", "created_at"], name="pipeconf_project_created_idx"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="PipelineExecution",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("execution_id", models.CharField(max_length=64, unique=True)),
                ("commit_id", models.CharField(max_length=64)),
                ("branch", models.CharField(max_length=255)),
                ("triggered_by", models.CharField(blank=True, default="", max_length=255)),
                ("environment", models.CharField(default="development", max_length=50)),
                ("parameters", models.JSONField(blank=True, default=dict)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("running", "Running"),
                            ("success", "Success"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="running",
                        max_length=20,
                    ),
                ),
                (
                    "cancel_requested",
                    models.BooleanField(
                        default=False,
                        help_text="Cancellation takes effect at the next stage boundary.",
                    ),
                ),
                ("error_message", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("started_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "configuration",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="executions",
                        to="orchestration.pipelineconfiguration",
                    ),
                ),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="pipeline_executions",
                        to="projects.project",
                        to_field="slug",
                    ),
                ),
                (
                    "retry_of",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="retries",
                        to="orchestration.pipelineexecution",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(
                        fields=["project", "created_at"], name="pipeexec_project_created_idx"
                    ),
                    models.Index(
                        fields=["status", "created_at"], name="pipeexec_status_created_idx"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Stage",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("position", models.PositiveIntegerField()),
                ("name", models.CharField(max_length=100)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("running", "Running"),
                            ("success", "Success"),
                            ("failed", "Failed"),
                            ("skipped", "Skipped"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("continue_on_error", models.BooleanField(default=False)),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("output", models.TextField(blank=True, default="")),
                ("error_type", models.CharField(blank=True, default="", max_length=100)),
                ("error", models.TextField(blank=True, default="")),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("duration_ms", models.FloatField(default=0.0)),
                (
                    "execution",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="stages",
                        to="orchestration.pipelineexecution",
                    ),
                ),
            ],
            options={
                "ordering": ["execution", "position"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=["execution", "position"], name="unique_stage_position"
                    )
                ],
            },
        ),
    ]
