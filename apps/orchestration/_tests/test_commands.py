import json
import tempfile
from io import StringIO
from pathlib import Path
from unittest import mock

import pytest
import yaml
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from apps.orchestration._tests.fakes import make_project, make_services
from apps.orchestration.models import ExecutionStatus, PipelineExecution

RUN_PIPELINE = "apps.orchestration.management.commands.run_pipeline.get_services"
EXPORT_CONFIG = "apps.orchestration.management.commands.export_pipeline_config.get_services"


class RunPipelineCommandTests(TestCase):
    def setUp(self):
        make_project("web-app", default_branch="develop")
        self.services, self.runner, _sink, _audit, _ = make_services()
        patcher = mock.patch(RUN_PIPELINE, return_value=self.services)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_runs_pipeline_on_default_branch(self):
        out = StringIO()

        call_command("run_pipeline", "web-app", "--commit", "abc123", stdout=out)

        execution = PipelineExecution.objects.get()
        assert execution.branch == "develop"
        assert execution.triggered_by == "cli"
        assert execution.status == ExecutionStatus.SUCCESS
        assert "Pipeline succeeded" in out.getvalue()

    def test_params_and_json_output(self):
        out = StringIO()
        err = StringIO()

        call_command(
            "run_pipeline",
            "web-app",
            "--commit",
            "abc123",
            "--branch",
            "main",
            "--param",
            "trigger=manual",
            "--json",
            stdout=out,
            stderr=err,
        )

        data = json.loads(out.getvalue())
        assert "Starting pipeline" in err.getvalue()
        assert data["status"] == ExecutionStatus.SUCCESS
        assert len(data["stages"]) == 6
        assert PipelineExecution.objects.get().parameters == {"trigger": "manual"}

    def test_dry_run_does_not_execute(self):
        out = StringIO()

        call_command("run_pipeline", "web-app", "--commit", "abc123", "--dry-run", stdout=out)

        assert "DRY RUN" in out.getvalue()
        assert "$ npm run build" in out.getvalue()
        assert not PipelineExecution.objects.exists()
        assert self.runner.commands == []

    def test_failed_pipeline_raises(self):
        self.runner.failures = {"npm run lint": 1}

        with pytest.raises(CommandError, match="failed"):
            call_command("run_pipeline", "web-app", "--commit", "abc123", stdout=StringIO())

    def test_invalid_param(self):
        with pytest.raises(CommandError, match="KEY=VALUE"):
            call_command("run_pipeline", "web-app", "--commit", "abc", "--param", "novalue")

    def test_unknown_project(self):
        with pytest.raises(CommandError, match="Project not found"):
            call_command("run_pipeline", "missing", "--commit", "abc")


class MonitorPipelineCommandTests(TestCase):
    def setUp(self):
        make_project("web-app")
        self.services, *_ = make_services()

    def test_lists_executions(self):
        execution = self.services.orchestrator.trigger(
            "web-app", commit_id="abc", branch="main", actor="dana"
        )
        out = StringIO()

        call_command("monitor_pipeline", "--project", "web-app", stdout=out)

        assert execution.execution_id in out.getvalue()

    def test_no_executions(self):
        out = StringIO()

        call_command("monitor_pipeline", "--status", "failed", stdout=out)

        assert "No pipeline executions found." in out.getvalue()

    def test_shows_one_execution(self):
        orchestrator = self.services.orchestrator
        execution = orchestrator.trigger("web-app", commit_id="abc", branch="main", actor="dana")
        orchestrator.run(execution.execution_id)
        out = StringIO()

        call_command("monitor_pipeline", "--execution-id", execution.execution_id, stdout=out)

        assert "Status: success" in out.getvalue()
        assert "deploy" in out.getvalue()


class ExportPipelineConfigCommandTests(TestCase):
    def setUp(self):
        make_project("web-app", settings={"enable_security_scan": True})
        self.services, *_ = make_services()
        patcher = mock.patch(EXPORT_CONFIG, return_value=self.services)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_prints_yaml(self):
        out = StringIO()

        call_command("export_pipeline_config", "web-app", stdout=out)

        document = yaml.safe_load(out.getvalue())
        assert document["project"] == "web-app"
        assert "security_scan" in [stage["name"] for stage in document["stages"]]

    def test_regenerate_bumps_version(self):
        call_command("export_pipeline_config", "web-app", stdout=StringIO())
        out = StringIO()

        call_command("export_pipeline_config", "web-app", "--regenerate", stdout=out)

        assert yaml.safe_load(out.getvalue())["version"] == "1.1.0"

    def test_writes_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "pipeline.yml"
            out = StringIO()

            call_command("export_pipeline_config", "web-app", "--output", str(target), stdout=out)

            assert yaml.safe_load(target.read_text())["version"] == "1.0.0"
            assert "Wrote web-app configuration v1.0.0" in out.getvalue()

    def test_unknown_project(self):
        with pytest.raises(CommandError):
            call_command("export_pipeline_config", "missing")
