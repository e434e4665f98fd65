from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="AuditEntry",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "action_type",
                    models.CharField(
                        db_index=True,
                        help_text="Machine-readable action name (e.g. 'deployment_approved').",
                        max_length=100,
                    ),
                ),
                ("description", models.TextField(help_text="Human-readable description of the action.")),
                (
                    "actor",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Actor that caused the action, when known.",
                        max_length=255,
                    ),
                ),
                (
                    "context",
                    models.JSONField(
                        blank=True, default=dict, help_text="Identifiers and details attached to the action."
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
            ],
            options={
                "ordering": ["-created_at"],
                "verbose_name_plural": "audit entries",
                "indexes": [
                    models.Index(fields=["action_type", "created_at"], name="audit_action_created_idx")
                ],
            },
        ),
    ]
