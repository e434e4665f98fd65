"""Django app configuration for the testruns app."""

from django.apps import AppConfig


class TestrunsConfig(AppConfig):
    """Configuration for the Test Runs app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.testruns"
    verbose_name = "Test Runs"
