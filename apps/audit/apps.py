"""Django app configuration for the audit app."""

from django.apps import AppConfig


class AuditConfig(AppConfig):
    """Configuration for the Audit app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.audit"
    verbose_name = "Audit Trail"
