from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Project",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "slug",
                    models.SlugField(
                        help_text="Project identifier used in URLs, webhooks and records.",
                        max_length=100,
                        unique=True,
                    ),
                ),
                ("name", models.CharField(max_length=255)),
                (
                    "language",
                    models.CharField(
                        help_text="Ecosystem tag (flutter, nodejs, python, dotnet, ...).",
                        max_length=50,
                    ),
                ),
                (
                    "target_platforms",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Target platforms (web, linux, android, docker, ...).",
                    ),
                ),
                (
                    "settings",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Pipeline settings (enable_security_scan, deployment_strategy, ...).",
                    ),
                ),
                (
                    "repository",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Repository path on the provider (e.g. 'acme/web-app').",
                        max_length=255,
                    ),
                ),
                ("default_branch", models.CharField(default="main", max_length=255)),
                (
                    "scm_provider",
                    models.CharField(
                        blank=True,
                        choices=[("github", "GitHub"), ("gitlab", "GitLab"), ("", "None")],
                        default="",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["slug"],
            },
        ),
    ]
