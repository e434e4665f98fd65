from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("deployments", "0001_initial"),
    ]

    operations = [
        migrations.AlterField(
            model_name="rollbackrecord",
            name="status",
            field=models.CharField(
                choices=[
                    ("pending_approval", "Pending approval"),
                    ("rejected", "Rejected"),
                    ("in_progress", "In progress"),
                    ("success", "Success"),
                    ("failed", "Failed"),
                ],
                default="in_progress",
                max_length=20,
            ),
        ),
        migrations.AddField(
            model_name="rollbackrecord",
            name="approved_by",
            field=models.CharField(blank=True, default="", max_length=255),
        ),
        migrations.AddField(
            model_name="rollbackrecord",
            name="decided_at",
            field=models.DateTimeField(blank=True, null=True),
        ),
        migrations.AddField(
            model_name="rollbackrecord",
            name="analysis",
            field=models.JSONField(
                blank=True,
                default=dict,
                help_text=(
                    "Failure category, likely cause and recovery options of a failed rollback"
                ),
            ),
        ),
    ]
