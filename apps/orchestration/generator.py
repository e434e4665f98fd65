"""
Pipeline configuration generator.

build_plan() turns a language/platform profile plus settings into a
PipelinePlan without touching the database; the same inputs always give the
same stages in the same order. PipelineConfigGenerator persists plans as
versioned PipelineConfiguration rows and records an audit action for each.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import yaml
from django.conf import settings as django_settings

from apps.audit.recorder import AuditRecorder
from apps.orchestration import catalog
from apps.orchestration.dtos import (
    HEALTH_CHECK_KINDS,
    DeploymentPolicy,
    EnvironmentDefinition,
    HealthCheckSpec,
    PipelinePlan,
    StageTemplate,
    TestPolicy,
    TestSuiteTemplate,
)
from apps.orchestration.exceptions import (
    ConfigurationNotFound,
    InvalidConfiguration,
    ProjectNotFound,
    UnsupportedLanguage,
)
from apps.orchestration.models import PipelineConfiguration
from apps.projects.store import ProjectStore

logger = logging.getLogger(__name__)

DEFAULT_ROLLBACK_COMMANDS = [
    'echo "Restoring configuration files for $ROLLBACK_COMMIT"',
    'echo "Redeploying $ROLLBACK_COMMIT to $DEPLOY_ENVIRONMENT"',
]


def _normalize_platforms(platforms: list[str] | tuple[str, ...] | None) -> list[str]:
    seen: list[str] = []
    for platform in platforms or []:
        name = str(platform).strip().lower()
        if name and name not in seen:
            seen.append(name)
    return seen


def _stage(
    name: str,
    display_name: str,
    description: str,
    commands: list[str],
    timeout_minutes: int,
    retry_count: int,
    continue_on_error: bool,
    overrides: dict[str, Any],
) -> StageTemplate:
    override = overrides.get(name)
    return StageTemplate(
        name=name,
        display_name=display_name,
        description=description,
        commands=list(override) if override else commands,
        timeout_seconds=timeout_minutes * 60,
        retry_count=retry_count,
        continue_on_error=continue_on_error,
    )


def _build_stages(language: str, platforms: list[str], settings: dict[str, Any]) -> list[StageTemplate]:
    overrides = settings.get("stage_commands") or {}
    strategy = _strategy(settings)

    stages = [
        _stage(
            "setup",
            "Environment Setup",
            "Setup build environment and dependencies",
            catalog.setup_commands(language, platforms),
            5,
            2,
            False,
            overrides,
        ),
        _stage(
            "code_quality",
            "Code Quality",
            "Run code analysis and linting",
            catalog.code_quality_commands(language),
            10,
            1,
            False,
            overrides,
        ),
        _stage(
            "build",
            "Build",
            "Build application for target platforms",
            catalog.build_commands(language, platforms),
            20,
            2,
            False,
            overrides,
        ),
        _stage(
            "test",
            "Test",
            "Run automated tests",
            catalog.testing_commands(language, settings),
            30,
            1,
            False,
            overrides,
        ),
    ]

    if settings.get("enable_security_scan") is True:
        stages.append(
            _stage(
                "security_scan",
                "Security Scan",
                "Run security vulnerability scan",
                catalog.security_scan_commands(language),
                15,
                1,
                True,
                overrides,
            )
        )

    stages += [
        _stage(
            "package",
            "Package",
            "Package application for deployment",
            catalog.package_commands(language, platforms),
            10,
            2,
            False,
            overrides,
        ),
        _stage(
            "deploy",
            "Deploy",
            "Deploy to target environment",
            catalog.deploy_commands(platforms, strategy),
            15,
            1,
            False,
            overrides,
        ),
    ]

    if settings.get("enable_post_deploy_tests") is True:
        stages.append(
            _stage(
                "post_deploy_test",
                "Post-deploy Tests",
                "Run smoke tests against the deployed environment",
                catalog.post_deploy_test_commands(language),
                15,
                1,
                False,
                overrides,
            )
        )

    if settings.get("enable_monitoring") is True:
        stages.append(
            _stage(
                "monitor_setup",
                "Monitoring Setup",
                "Register health checks for the deployed version",
                catalog.monitor_setup_commands(platforms),
                5,
                0,
                True,
                overrides,
            )
        )

    return stages


def _strategy(settings: dict[str, Any]) -> str:
    strategy = settings.get("deployment_strategy", "standard")
    return strategy if strategy in catalog.DEPLOYMENT_STRATEGIES else "standard"


def _build_environments(settings: dict[str, Any]) -> dict[str, EnvironmentDefinition]:
    approval_overrides = settings.get("approval_required") or {}
    urls = settings.get("environment_urls") or {}
    environments = {}
    for name, template in catalog.ENVIRONMENTS.items():
        environments[name] = EnvironmentDefinition(
            name=name,
            display_name=template["display_name"],
            variables=dict(template["variables"]),
            secrets=list(template["secrets"]),
            approval_required=bool(approval_overrides.get(name, template["approval_required"])),
            base_url=urls.get(name, ""),
        )
    return environments


def _build_test_policy(language: str, settings: dict[str, Any]) -> TestPolicy:
    pattern_overrides = settings.get("test_path_patterns") or {}
    optional = set(settings.get("optional_test_suites") or [])

    def suite(name, enabled, timeout_minutes, retry_count, fail_fast):
        patterns = pattern_overrides.get(name)
        return TestSuiteTemplate(
            name=name,
            command=catalog.suite_command(language, name),
            enabled=enabled,
            timeout_seconds=timeout_minutes * 60,
            retry_count=retry_count,
            optional=name in optional,
            fail_fast=fail_fast,
            path_patterns=list(patterns) if patterns else catalog.suite_path_patterns(language, name),
        )

    return TestPolicy(
        suites=[
            suite("unit", True, 10, 2, True),
            suite("integration", settings.get("enable_integration_tests") is True, 20, 1, False),
            suite("e2e", settings.get("enable_e2e_tests") is True, 30, 1, False),
        ],
        parallel_execution=bool(settings.get("parallel_test_execution", True)),
        max_concurrent_suites=max(1, int(settings.get("max_concurrent_suites", 3))),
        fail_fast=bool(settings.get("fail_fast", False)),
        pre_merge_required=bool(settings.get("pre_merge_required", True)),
        trigger_on_commit=bool(settings.get("trigger_on_commit", True)),
        trigger_on_pull_request=bool(settings.get("trigger_on_pull_request", True)),
        coverage_threshold=int(settings.get("coverage_threshold", 80)),
        generate_reports=settings.get("generate_test_reports") is True,
    )


def _build_deployment_policy(settings: dict[str, Any]) -> DeploymentPolicy:
    threshold = int(
        settings.get(
            "failure_threshold",
            getattr(django_settings, "DEPLOYMENT_DEFAULT_FAILURE_THRESHOLD", 3),
        )
    )
    health_check_url = settings.get("health_check_url", "/health")
    health_check_timeout = int(settings.get("health_check_timeout", 30))

    if settings.get("health_checks") is not None:
        health_checks = [HealthCheckSpec.from_dict(h) for h in settings["health_checks"]]
        unknown = [check.name for check in health_checks if check.kind not in HEALTH_CHECK_KINDS]
        if unknown:
            raise InvalidConfiguration(
                f"Unknown health check kind for {', '.join(unknown)}; "
                f"expected one of {', '.join(HEALTH_CHECK_KINDS)}"
            )
    else:
        health_checks = [
            HealthCheckSpec(
                name="http",
                kind="http",
                target=health_check_url,
                threshold=threshold,
                timeout_seconds=float(health_check_timeout),
            )
        ]

    return DeploymentPolicy(
        strategy=_strategy(settings),
        environments=list(catalog.ENVIRONMENTS),
        health_check_url=health_check_url,
        health_check_timeout=health_check_timeout,
        health_check_interval=int(
            settings.get(
                "health_check_interval",
                getattr(django_settings, "DEPLOYMENT_HEALTH_POLL_INTERVAL", 30),
            )
        ),
        failure_threshold=threshold,
        monitoring_window=int(
            settings.get(
                "monitoring_window",
                getattr(django_settings, "DEPLOYMENT_MONITORING_WINDOW", 600),
            )
        ),
        rollback_on_failure=bool(settings.get("rollback_on_failure", True)),
        rollback_commands=list(settings.get("rollback_commands") or DEFAULT_ROLLBACK_COMMANDS),
        health_checks=health_checks,
        notify_on_success=bool(settings.get("notify_on_success", True)),
        notify_on_failure=bool(settings.get("notify_on_failure", True)),
        notification_channels=list(settings.get("notification_channels") or ["email"]),
    )


def build_plan(
    language: str,
    target_platforms: list[str] | tuple[str, ...] | None,
    settings: dict[str, Any] | None = None,
) -> PipelinePlan:
    """
    Produce the ordered plan for a language/platform profile.

    Unknown languages get inert echo commands. Only a missing language tag
    raises UnsupportedLanguage.
    """
    tag = (language or "").strip().lower()
    if not tag:
        raise UnsupportedLanguage("A language tag is required to generate a pipeline")

    settings = dict(settings or {})
    platforms = _normalize_platforms(target_platforms)

    if tag not in catalog.LANGUAGES:
        logger.info(f"No templates for language '{tag}', using generic commands")

    return PipelinePlan(
        language=tag,
        target_platforms=platforms,
        stages=_build_stages(tag, platforms, settings),
        environments=_build_environments(settings),
        test_policy=_build_test_policy(tag, settings),
        deployment_policy=_build_deployment_policy(settings),
    )


def _bump_minor(version: str) -> str:
    try:
        major, minor, _patch = (int(part) for part in version.split("."))
    except ValueError:
        return "1.0.0"
    return f"{major}.{minor + 1}.0"


class PipelineConfigGenerator:
    """
    Generates and stores pipeline configurations.

    Usage:
        generator = PipelineConfigGenerator(audit=get_audit_recorder(), store=ProjectStore())
        config = generator.generate("web-app", "nodejs", ["web"], {"enable_security_scan": True})
    """

    def __init__(self, audit: AuditRecorder, store: ProjectStore):
        self.audit = audit
        self.store = store

    def generate(
        self,
        project_id: str,
        language: str,
        target_platforms: list[str] | tuple[str, ...] | None,
        settings: dict[str, Any] | None = None,
        actor: str = "",
    ) -> PipelineConfiguration:
        """Build a plan and store it as the project's newest configuration."""
        if not self.store.exists(project_id):
            raise ProjectNotFound(f"Project not found: {project_id}")

        try:
            plan = build_plan(language, target_platforms, settings)
        except (UnsupportedLanguage, InvalidConfiguration) as e:
            self.audit.record(
                "pipeline_config_generation_error",
                f"Failed to generate pipeline configuration for {project_id}: {e}",
                {"project_id": project_id, "language": language},
                actor=actor,
            )
            raise

        previous = (
            PipelineConfiguration.objects.filter(project_id=project_id)
            .order_by("-created_at", "-id")
            .first()
        )
        version = _bump_minor(previous.version) if previous else "1.0.0"

        data = plan.to_dict()
        configuration = PipelineConfiguration.objects.create(
            config_id=str(uuid.uuid4()),
            project_id=project_id,
            language=plan.language,
            target_platforms=plan.target_platforms,
            settings=dict(settings or {}),
            stages=data["stages"],
            environments=data["environments"],
            test_policy=data["test_policy"],
            deployment_policy=data["deployment_policy"],
            version=version,
        )

        self.audit.record(
            "pipeline_config_generated",
            f"Generated pipeline configuration v{version} for {project_id}",
            {
                "config_id": configuration.config_id,
                "project_id": project_id,
                "language": plan.language,
                "platforms": plan.target_platforms,
                "stages": plan.stage_names(),
            },
            actor=actor,
        )
        logger.info(
            f"Pipeline configuration generated: {configuration.config_id} (v{version})",
            extra={"project_id": project_id, "config_id": configuration.config_id},
        )
        return configuration

    def generate_for_project(self, project_id: str, actor: str = "") -> PipelineConfiguration:
        """Regenerate from the project's stored profile."""
        profile = self.store.get_profile(project_id)
        return self.generate(
            project_id,
            profile.language,
            list(profile.target_platforms),
            profile.settings,
            actor=actor,
        )

    def get_latest(self, project_id: str) -> PipelineConfiguration:
        configuration = (
            PipelineConfiguration.objects.filter(project_id=project_id)
            .order_by("-created_at", "-id")
            .first()
        )
        if configuration is None:
            raise ConfigurationNotFound(f"No pipeline configuration for project {project_id}")
        return configuration

    def resolve(self, project_id: str, actor: str = "") -> PipelineConfiguration:
        """Latest configuration, generating one from the profile if none exists."""
        try:
            return self.get_latest(project_id)
        except ConfigurationNotFound:
            return self.generate_for_project(project_id, actor=actor)

    def export_yaml(self, configuration: PipelineConfiguration) -> str:
        """Render a configuration as a YAML pipeline document."""
        plan = configuration.plan()
        document = {
            "name": "CI/CD Pipeline",
            "project": configuration.project_id,
            "version": configuration.version,
            "project_type": plan.language,
            "platforms": plan.target_platforms,
            "stages": [
                {
                    "name": stage.name,
                    "display_name": stage.display_name,
                    "description": stage.description,
                    "commands": stage.commands,
                    "timeout_minutes": stage.timeout_seconds // 60,
                    "retry_count": stage.retry_count,
                    "continue_on_error": stage.continue_on_error,
                }
                for stage in plan.stages
            ],
            "environments": {
                name: {
                    "display_name": env.display_name,
                    "variables": env.variables,
                    "secrets": env.secrets,
                    "approval_required": env.approval_required,
                }
                for name, env in plan.environments.items()
            },
            "test_configuration": {
                "suites": {
                    suite.name: {
                        "enabled": suite.enabled,
                        "command": suite.command,
                        "timeout_minutes": suite.timeout_seconds // 60,
                    }
                    for suite in plan.test_policy.suites
                },
                "parallel_execution": plan.test_policy.parallel_execution,
                "coverage_threshold": plan.test_policy.coverage_threshold,
            },
            "deployment_configuration": {
                "strategy": plan.deployment_policy.strategy,
                "environments": plan.deployment_policy.environments,
                "health_check_url": plan.deployment_policy.health_check_url,
                "rollback_on_failure": plan.deployment_policy.rollback_on_failure,
            },
        }
        return yaml.safe_dump(document, sort_keys=False, default_flow_style=False)
