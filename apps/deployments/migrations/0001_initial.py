import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("projects", "0001_initial"),
        ("orchestration", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Snapshot",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("snapshot_id", models.CharField(max_length=64, unique=True)),
                ("environment", models.CharField(db_index=True, max_length=50)),
                ("version", models.CharField(blank=True, default="", max_length=100)),
                ("commit_id", models.CharField(max_length=64)),
                ("config_files", models.JSONField(blank=True, default=list)),
                ("data_backup_ref", models.CharField(blank=True, default="", max_length=255)),
                ("verified", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="snapshots",
                        to="projects.project",
                        to_field="slug",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(
                        fields=["environment", "verified"], name="snapshot_env_verified_idx"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="DeploymentRequest",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("deployment_id", models.CharField(max_length=64, unique=True)),
                ("environment", models.CharField(db_index=True, max_length=50)),
                ("version", models.CharField(max_length=100)),
                ("commit_id", models.CharField(blank=True, default="", max_length=64)),
                ("branch", models.CharField(blank=True, default="", max_length=255)),
                (
                    "stage",
                    models.JSONField(
                        blank=True, default=dict, help_text="Deploy stage template to run."
                    ),
                ),
                ("requested_by", models.CharField(max_length=255)),
                ("requested_role", models.CharField(max_length=50)),
                ("reason", models.TextField(blank=True, default="")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending_approval", "Pending approval"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                            ("executing", "Executing"),
                            ("success", "Success"),
                            ("failed", "Failed"),
                            ("rolled_back", "Rolled back"),
                        ],
                        db_index=True,
                        max_length=20,
                    ),
                ),
                ("decided_by", models.CharField(blank=True, default="", max_length=255)),
                ("decided_at", models.DateTimeField(blank=True, null=True)),
                ("decision_reason", models.TextField(blank=True, default="")),
                ("output", models.TextField(blank=True, default="")),
                ("error_message", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "configuration",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="deployments",
                        to="orchestration.pipelineconfiguration",
                    ),
                ),
                (
                    "execution",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="deployments",
                        to="orchestration.pipelineexecution",
                    ),
                ),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="deployments",
                        to="projects.project",
                        to_field="slug",
                    ),
                ),
                (
                    "snapshot",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="deployments",
                        to="deployments.snapshot",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["environment", "status"], name="deploy_env_status_idx"),
                    models.Index(
                        fields=["project", "created_at"], name="deploy_project_created_idx"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="DeploymentLogEntry",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("level", models.CharField(default="info", max_length=10)),
                ("message", models.TextField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "deployment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="log_entries",
                        to="deployments.deploymentrequest",
                    ),
                ),
            ],
            options={
                "ordering": ["deployment", "id"],
            },
        ),
        migrations.CreateModel(
            name="HealthSession",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("session_id", models.CharField(max_length=64, unique=True)),
                ("environment", models.CharField(max_length=50)),
                ("active", models.BooleanField(db_index=True, default=True)),
                ("rollback_recommended", models.BooleanField(default=False)),
                ("recommended_check", models.CharField(blank=True, default="", max_length=100)),
                ("interval_seconds", models.PositiveIntegerField(default=30)),
                ("observations", models.PositiveIntegerField(default=0)),
                ("failed_observations", models.PositiveIntegerField(default=0)),
                ("started_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("ends_at", models.DateTimeField()),
                ("last_observed_at", models.DateTimeField(blank=True, null=True)),
                ("stopped_at", models.DateTimeField(blank=True, null=True)),
                ("stop_reason", models.CharField(blank=True, default="", max_length=255)),
                (
                    "deployment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="health_sessions",
                        to="deployments.deploymentrequest",
                    ),
                ),
            ],
            options={
                "ordering": ["-started_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="HealthCheckState",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("name", models.CharField(max_length=100)),
                ("kind", models.CharField(max_length=20)),
                ("target", models.CharField(blank=True, default="", max_length=500)),
                ("threshold", models.PositiveIntegerField(default=3)),
                ("timeout_seconds", models.FloatField(default=30.0)),
                ("options", models.JSONField(blank=True, default=dict)),
                ("last_passed", models.BooleanField(blank=True, null=True)),
                ("last_message", models.TextField(blank=True, default="")),
                ("consecutive_failures", models.PositiveIntegerField(default=0)),
                ("total_failures", models.PositiveIntegerField(default=0)),
                ("checked_at", models.DateTimeField(blank=True, null=True)),
                (
                    "session",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="checks",
                        to="deployments.healthsession",
                    ),
                ),
            ],
            options={
                "ordering": ["session", "id"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=["session", "name"], name="unique_session_check"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="RollbackRecord",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("rollback_id", models.CharField(max_length=64, unique=True)),
                ("environment", models.CharField(db_index=True, max_length=50)),
                ("reason", models.TextField(blank=True, default="")),
                ("actor", models.CharField(blank=True, default="", max_length=255)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("in_progress", "In progress"),
                            ("success", "Success"),
                            ("failed", "Failed"),
                        ],
                        default="in_progress",
                        max_length=20,
                    ),
                ),
                ("failed_step", models.CharField(blank=True, default="", max_length=50)),
                ("error_message", models.TextField(blank=True, default="")),
                ("output", models.TextField(blank=True, default="")),
                ("health_results", models.JSONField(blank=True, default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "deployment",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="rollbacks",
                        to="deployments.deploymentrequest",
                    ),
                ),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="rollbacks",
                        to="projects.project",
                        to_field="slug",
                    ),
                ),
                (
                    "snapshot",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="rollbacks",
                        to="deployments.snapshot",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
            },
        ),
    ]
