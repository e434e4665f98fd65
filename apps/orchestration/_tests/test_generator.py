"""Tests for pipeline plan generation and configuration storage."""

import shlex

import pytest
import yaml
from django.test import SimpleTestCase, TestCase

from apps.orchestration._tests.fakes import RecordingAuditRecorder, make_project
from apps.orchestration.exceptions import (
    InvalidConfiguration,
    InvalidTransition,
    ProjectNotFound,
    UnsupportedLanguage,
)
from apps.orchestration.generator import PipelineConfigGenerator, build_plan
from apps.orchestration.models import PipelineConfiguration
from apps.projects.store import ProjectStore


class BuildPlanTests(SimpleTestCase):
    def test_default_stage_order(self):
        plan = build_plan("nodejs", ["web"])

        assert plan.stage_names() == ["setup", "code_quality", "build", "test", "package", "deploy"]
        assert plan.get_stage("setup").commands == ["node --version", "npm --version", "npm ci"]
        assert plan.get_stage("setup").timeout_seconds == 300
        assert plan.get_stage("build").retry_count == 2

    def test_optional_stages(self):
        plan = build_plan(
            "python",
            ["docker"],
            {
                "enable_security_scan": True,
                "enable_post_deploy_tests": True,
                "enable_monitoring": True,
            },
        )

        assert plan.stage_names() == [
            "setup",
            "code_quality",
            "build",
            "test",
            "security_scan",
            "package",
            "deploy",
            "post_deploy_test",
            "monitor_setup",
        ]
        assert plan.get_stage("security_scan").continue_on_error is True
        assert plan.get_stage("deploy").continue_on_error is False

    def test_same_inputs_give_same_plan(self):
        settings = {"enable_security_scan": True, "deployment_strategy": "canary"}

        first = build_plan("dotnet", ["linux", "docker"], settings)
        second = build_plan("dotnet", ["linux", "docker"], dict(settings))

        assert first.to_dict() == second.to_dict()

    def test_platforms_are_normalized(self):
        plan = build_plan("flutter", [" Web ", "web", "ANDROID"])

        assert plan.target_platforms == ["web", "android"]
        assert plan.get_stage("build").commands == [
            "flutter build web --release",
            "flutter build apk --release",
        ]

    def test_flutter_without_platforms(self):
        plan = build_plan("flutter", [])

        assert plan.get_stage("build").commands == ["echo 'No target platforms configured'"]

    def test_unknown_language_gets_generic_commands(self):
        plan = build_plan("cobol", ["linux"])

        assert plan.language == "cobol"
        assert plan.get_stage("setup").commands == ["echo 'Setting up cobol project'"]
        assert plan.get_stage("test").commands == ["echo 'Running generic tests'"]

    def test_language_and_platform_names_are_shell_quoted(self):
        plan = build_plan('x"; touch /tmp/owned; echo "', ["web$(id)"])

        [setup] = plan.get_stage("setup").commands
        assert setup == "echo " + shlex.quote('Setting up x"; touch /tmp/owned; echo " project')
        assert "echo 'Target platforms: web$(id)'" in plan.get_stage("deploy").commands

    def test_missing_language_raises(self):
        with pytest.raises(UnsupportedLanguage):
            build_plan("  ", ["web"])

    def test_stage_command_overrides(self):
        plan = build_plan("nodejs", ["web"], {"stage_commands": {"build": ["make dist"]}})

        assert plan.get_stage("build").commands == ["make dist"]
        assert plan.get_stage("setup").commands[0] == "node --version"

    def test_deploy_strategy(self):
        plan = build_plan("nodejs", ["web"], {"deployment_strategy": "blue_green"})

        assert "echo 'Using blue-green deployment strategy'" in plan.get_stage("deploy").commands
        assert plan.deployment_policy.strategy == "blue_green"

    def test_unknown_strategy_falls_back_to_standard(self):
        plan = build_plan("nodejs", ["web"], {"deployment_strategy": "yolo"})

        assert plan.deployment_policy.strategy == "standard"

    def test_environments(self):
        plan = build_plan(
            "nodejs",
            ["web"],
            {
                "approval_required": {"staging": False},
                "environment_urls": {"production": "https://example.com"},
            },
        )

        assert list(plan.environments) == ["development", "staging", "production"]
        assert plan.environments["development"].approval_required is False
        assert plan.environments["staging"].approval_required is False
        assert plan.environments["production"].approval_required is True
        assert plan.environments["production"].base_url == "https://example.com"

    def test_test_policy(self):
        plan = build_plan(
            "nodejs",
            ["web"],
            {"enable_integration_tests": True, "optional_test_suites": ["integration"]},
        )
        suites = {suite.name: suite for suite in plan.test_policy.suites}

        assert [s.name for s in plan.test_policy.enabled_suites()] == ["unit", "integration"]
        assert suites["unit"].command == "npm run test:unit"
        assert suites["unit"].fail_fast is True
        assert suites["integration"].optional is True
        assert suites["e2e"].enabled is False
        assert plan.test_policy.max_concurrent_suites == 3

    def test_default_health_check(self):
        plan = build_plan("nodejs", ["web"], {"failure_threshold": 5})
        policy = plan.deployment_policy

        assert len(policy.health_checks) == 1
        assert policy.health_checks[0].kind == "http"
        assert policy.health_checks[0].target == "/health"
        assert policy.health_checks[0].threshold == 5
        assert policy.rollback_on_failure is True
        assert policy.rollback_commands

    def test_explicit_health_checks(self):
        plan = build_plan(
            "nodejs",
            ["web"],
            {"health_checks": [{"name": "smoke", "kind": "command", "target": "true"}]},
        )

        [check] = plan.deployment_policy.health_checks
        assert (check.name, check.kind, check.threshold) == ("smoke", "command", 3)

    def test_unknown_health_check_kind_is_rejected(self):
        with pytest.raises(InvalidConfiguration, match="tcp"):
            build_plan("nodejs", ["web"], {"health_checks": [{"name": "tcp", "kind": "tcp"}]})


class PipelineConfigGeneratorTests(TestCase):
    def setUp(self):
        self.audit = RecordingAuditRecorder()
        self.generator = PipelineConfigGenerator(audit=self.audit, store=ProjectStore())
        make_project("web-app", settings={"enable_security_scan": True})

    def test_generate_stores_versions(self):
        first = self.generator.generate("web-app", "nodejs", ["web"], actor="dana")
        second = self.generator.generate("web-app", "nodejs", ["web", "docker"], actor="dana")

        assert first.version == "1.0.0"
        assert second.version == "1.1.0"
        assert self.generator.get_latest("web-app").config_id == second.config_id
        assert self.audit.actions == ["pipeline_config_generated", "pipeline_config_generated"]
        assert self.audit.entries[0]["actor"] == "dana"

    def test_stored_plan_round_trips(self):
        configuration = self.generator.generate("web-app", "python", ["docker"])

        assert configuration.plan().to_dict() == build_plan("python", ["docker"]).to_dict()

    def test_configuration_is_immutable(self):
        configuration = self.generator.generate("web-app", "nodejs", ["web"])
        configuration.version = "9.9.9"

        with pytest.raises(InvalidTransition):
            configuration.save()

    def test_unknown_project(self):
        with pytest.raises(ProjectNotFound):
            self.generator.generate("ghost", "nodejs", ["web"])

    def test_generation_error_is_audited(self):
        with pytest.raises(UnsupportedLanguage):
            self.generator.generate("web-app", "", ["web"])

        assert self.audit.actions == ["pipeline_config_generation_error"]

    def test_invalid_health_check_is_audited(self):
        with pytest.raises(InvalidConfiguration):
            self.generator.generate(
                "web-app", "nodejs", ["web"], {"health_checks": [{"name": "ping", "kind": "icmp"}]}
            )

        assert self.audit.actions == ["pipeline_config_generation_error"]
        assert not PipelineConfiguration.objects.filter(project_id="web-app").exists()

    def test_resolve_generates_from_profile(self):
        configuration = self.generator.resolve("web-app")

        assert configuration.language == "nodejs"
        assert "security_scan" in configuration.plan().stage_names()
        assert self.generator.resolve("web-app").config_id == configuration.config_id

    def test_export_yaml(self):
        configuration = self.generator.generate("web-app", "nodejs", ["web"])

        document = yaml.safe_load(self.generator.export_yaml(configuration))

        assert document["project"] == "web-app"
        assert document["version"] == "1.0.0"
        assert document["stages"][0]["name"] == "setup"
        assert document["stages"][0]["timeout_minutes"] == 5
        assert document["environments"]["production"]["approval_required"] is True
        assert document["test_configuration"]["suites"]["unit"]["enabled"] is True
