from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("orchestration", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="pipelineexecution",
            name="claimed_at",
            field=models.DateTimeField(
                blank=True,
                null=True,
                help_text="Set by the one runner that executes the stages.",
            ),
        ),
    ]
