"""Admin configuration for test runs."""

from django.contrib import admin

from apps.testruns.models import SuiteRun, TestExecution


class SuiteRunInline(admin.TabularInline):
    model = SuiteRun
    extra = 0
    fields = ["name", "status", "optional", "attempts", "duration_ms", "error"]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(TestExecution)
class TestExecutionAdmin(admin.ModelAdmin):
    list_display = [
        "test_execution_id",
        "project",
        "trigger_type",
        "status",
        "branch",
        "pr_id",
        "author",
        "created_at",
    ]
    list_filter = ["status", "trigger_type", "project"]
    search_fields = ["test_execution_id", "commit_id", "branch", "pr_id", "author"]
    readonly_fields = [
        "test_execution_id",
        "project",
        "trigger_type",
        "status",
        "commit_id",
        "branch",
        "pr_id",
        "source_branch",
        "target_branch",
        "author",
        "changed_files",
        "parallel",
        "created_at",
        "started_at",
        "completed_at",
    ]
    inlines = [SuiteRunInline]
