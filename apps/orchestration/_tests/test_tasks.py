from unittest import mock

from django.test import TestCase

from apps.orchestration._tests.fakes import make_project, make_services
from apps.orchestration.models import ExecutionStatus
from apps.orchestration.tasks import run_pipeline_task


class RunPipelineTaskTests(TestCase):
    def setUp(self):
        make_project("web-app")
        self.services, self.runner, *_ = make_services()
        patcher = mock.patch(
            "apps.orchestration.container.get_services", return_value=self.services
        )
        patcher.start()
        self.addCleanup(patcher.stop)
        self.execution = self.services.orchestrator.trigger(
            "web-app", commit_id="abc123", branch="main", actor="dana"
        )

    def test_run_pipeline_task(self):
        result = run_pipeline_task.apply(args=[self.execution.execution_id]).get()

        assert result["execution_id"] == self.execution.execution_id
        assert result["status"] == ExecutionStatus.SUCCESS

    def test_redelivered_run_is_skipped(self):
        run_pipeline_task.apply(args=[self.execution.execution_id]).get()
        commands_after_first = len(self.runner.commands)

        with self.assertLogs("apps.orchestration.tasks", level="WARNING"):
            result = run_pipeline_task.apply(args=[self.execution.execution_id]).get()

        assert result["status"] == "skipped"
        assert "already success" in result["error"]
        assert len(self.runner.commands) == commands_after_first
