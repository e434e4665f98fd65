"""Admin configuration for projects."""

from django.contrib import admin

from apps.projects.models import Project


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ["slug", "name", "language", "scm_provider", "default_branch", "updated_at"]
    list_filter = ["language", "scm_provider"]
    search_fields = ["slug", "name", "repository"]
    prepopulated_fields = {"slug": ("name",)}
