"""Admin configuration for audit entries."""

from django.contrib import admin

from apps.audit.models import AuditEntry


@admin.register(AuditEntry)
class AuditEntryAdmin(admin.ModelAdmin):
    """Read-only view of the audit trail."""

    list_display = ["action_type", "actor", "created_at"]
    list_filter = ["action_type"]
    search_fields = ["action_type", "description", "actor"]
    readonly_fields = ["action_type", "description", "actor", "context", "created_at"]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
