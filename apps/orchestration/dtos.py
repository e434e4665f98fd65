"""
Data Transfer Objects (DTOs) for pipeline plans and stage contracts.

A PipelinePlan is what the configuration generator produces and what a
PipelineConfiguration row stores (as JSON). StageContext/StageResult are the
contract between the orchestrator and the stage executor.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class StageTemplate:
    """One ordered stage of a pipeline plan."""

    name: str
    display_name: str
    description: str
    commands: list[str]
    timeout_seconds: int
    retry_count: int = 0
    continue_on_error: bool = False
    environment: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StageTemplate:
        return cls(
            name=data["name"],
            display_name=data.get("display_name", data["name"]),
            description=data.get("description", ""),
            commands=list(data.get("commands", [])),
            timeout_seconds=int(data.get("timeout_seconds", 600)),
            retry_count=int(data.get("retry_count", 0)),
            continue_on_error=bool(data.get("continue_on_error", False)),
            environment=dict(data.get("environment", {})),
        )


@dataclass
class EnvironmentDefinition:
    """A named deployment target and its approval/variable policy."""

    name: str
    display_name: str
    variables: dict[str, str] = field(default_factory=dict)
    secrets: list[str] = field(default_factory=list)
    approval_required: bool = False
    base_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnvironmentDefinition:
        return cls(
            name=data["name"],
            display_name=data.get("display_name", data["name"]),
            variables=dict(data.get("variables", {})),
            secrets=list(data.get("secrets", [])),
            approval_required=bool(data.get("approval_required", False)),
            base_url=data.get("base_url", ""),
        )


@dataclass
class TestSuiteTemplate:
    """A test suite the automated test trigger can schedule."""

    __test__ = False

    name: str
    command: str
    enabled: bool = True
    timeout_seconds: int = 600
    retry_count: int = 0
    optional: bool = False
    fail_fast: bool = False
    path_patterns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestSuiteTemplate:
        return cls(
            name=data["name"],
            command=data.get("command", ""),
            enabled=bool(data.get("enabled", True)),
            timeout_seconds=int(data.get("timeout_seconds", 600)),
            retry_count=int(data.get("retry_count", 0)),
            optional=bool(data.get("optional", False)),
            fail_fast=bool(data.get("fail_fast", False)),
            path_patterns=list(data.get("path_patterns", [])),
        )


@dataclass
class TestPolicy:
    """Which suites run and how they are scheduled."""

    __test__ = False

    suites: list[TestSuiteTemplate] = field(default_factory=list)
    parallel_execution: bool = True
    max_concurrent_suites: int = 3
    fail_fast: bool = False
    pre_merge_required: bool = True
    trigger_on_commit: bool = True
    trigger_on_pull_request: bool = True
    coverage_threshold: int = 80
    generate_reports: bool = False

    def enabled_suites(self) -> list[TestSuiteTemplate]:
        return [suite for suite in self.suites if suite.enabled]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestPolicy:
        return cls(
            suites=[TestSuiteTemplate.from_dict(s) for s in data.get("suites", [])],
            parallel_execution=bool(data.get("parallel_execution", True)),
            max_concurrent_suites=max(1, int(data.get("max_concurrent_suites", 3))),
            fail_fast=bool(data.get("fail_fast", False)),
            pre_merge_required=bool(data.get("pre_merge_required", True)),
            trigger_on_commit=bool(data.get("trigger_on_commit", True)),
            trigger_on_pull_request=bool(data.get("trigger_on_pull_request", True)),
            coverage_threshold=int(data.get("coverage_threshold", 80)),
            generate_reports=bool(data.get("generate_reports", False)),
        )


# Probe kinds the deployments app can build.
HEALTH_CHECK_KINDS = ("http", "command", "cpu", "memory")


@dataclass
class HealthCheckSpec:
    """
    A named health probe attached to a deployment.

    kind selects the probe implementation (http, command, cpu, memory). target
    is a URL or path for http probes and a shell command for command probes.
    """

    name: str
    kind: str
    target: str = ""
    threshold: int = 3
    timeout_seconds: float = 30.0
    options: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HealthCheckSpec:
        return cls(
            name=data["name"],
            kind=data.get("kind", "http"),
            target=data.get("target", ""),
            threshold=max(1, int(data.get("threshold", 3))),
            timeout_seconds=float(data.get("timeout_seconds", 30.0)),
            options=dict(data.get("options", {})),
        )


@dataclass
class DeploymentPolicy:
    """How deployments are executed, watched and rolled back."""

    strategy: str = "standard"
    environments: list[str] = field(default_factory=list)
    health_check_url: str = "/health"
    health_check_timeout: int = 30
    health_check_interval: int = 30
    failure_threshold: int = 3
    monitoring_window: int = 600
    rollback_on_failure: bool = True
    rollback_commands: list[str] = field(default_factory=list)
    health_checks: list[HealthCheckSpec] = field(default_factory=list)
    notify_on_success: bool = True
    notify_on_failure: bool = True
    notification_channels: list[str] = field(default_factory=lambda: ["email"])

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeploymentPolicy:
        return cls(
            strategy=data.get("strategy", "standard"),
            environments=list(data.get("environments", [])),
            health_check_url=data.get("health_check_url", "/health"),
            health_check_timeout=int(data.get("health_check_timeout", 30)),
            health_check_interval=int(data.get("health_check_interval", 30)),
            failure_threshold=max(1, int(data.get("failure_threshold", 3))),
            monitoring_window=int(data.get("monitoring_window", 600)),
            rollback_on_failure=bool(data.get("rollback_on_failure", True)),
            rollback_commands=list(data.get("rollback_commands", [])),
            health_checks=[HealthCheckSpec.from_dict(h) for h in data.get("health_checks", [])],
            notify_on_success=bool(data.get("notify_on_success", True)),
            notify_on_failure=bool(data.get("notify_on_failure", True)),
            notification_channels=list(data.get("notification_channels", ["email"])),
        )


@dataclass
class PipelinePlan:
    """The generated, not yet persisted, pipeline configuration."""

    language: str
    target_platforms: list[str]
    stages: list[StageTemplate]
    environments: dict[str, EnvironmentDefinition]
    test_policy: TestPolicy
    deployment_policy: DeploymentPolicy

    def stage_names(self) -> list[str]:
        return [stage.name for stage in self.stages]

    def get_stage(self, name: str) -> StageTemplate | None:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "language": self.language,
            "target_platforms": list(self.target_platforms),
            "stages": [stage.to_dict() for stage in self.stages],
            "environments": {name: env.to_dict() for name, env in self.environments.items()},
            "test_policy": self.test_policy.to_dict(),
            "deployment_policy": self.deployment_policy.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelinePlan:
        return cls(
            language=data.get("language", ""),
            target_platforms=list(data.get("target_platforms", [])),
            stages=[StageTemplate.from_dict(s) for s in data.get("stages", [])],
            environments={
                name: EnvironmentDefinition.from_dict(env)
                for name, env in data.get("environments", {}).items()
            },
            test_policy=TestPolicy.from_dict(data.get("test_policy", {})),
            deployment_policy=DeploymentPolicy.from_dict(data.get("deployment_policy", {})),
        )


@dataclass
class StageContext:
    """
    Input context for a stage run.

    Carries the identifiers of the owning execution and the variables that
    become the command environment.
    """

    execution_id: str
    project_id: str
    commit_id: str
    branch: str
    environment: str = "development"
    attempt: int = 1
    workspace: str = ""
    variables: dict[str, str] = field(default_factory=dict)

    def command_env(self, stage_env: dict[str, str] | None = None) -> dict[str, str]:
        """Process environment plus pipeline variables, stage variables last."""
        env = dict(os.environ)
        env.update(
            {
                "PIPELINE_EXECUTION_ID": self.execution_id,
                "PIPELINE_PROJECT": self.project_id,
                "COMMIT_SHA": self.commit_id,
                "BRANCH": self.branch,
                "DEPLOY_ENVIRONMENT": self.environment,
            }
        )
        env.update({k: str(v) for k, v in self.variables.items()})
        env.update({k: str(v) for k, v in (stage_env or {}).items()})
        return env

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StageResult:
    """Outcome of running one stage (after retries).

    deferred is set when the stage handed its work to an approval gate; stages
    after it that depend on the deployment are skipped.
    """

    success: bool
    output: str = ""
    error: str | None = None
    error_type: str = ""
    attempts: int = 1
    duration_ms: float = 0.0
    retryable: bool = True
    deferred: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
