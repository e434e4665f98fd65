"""Tests for the orchestration HTTP endpoints."""

import json
from unittest import mock

from django.test import TestCase

from apps.orchestration._tests.fakes import make_project, make_services
from apps.orchestration.models import ExecutionStatus, StageStatus


class ViewTestCase(TestCase):
    def setUp(self):
        make_project("web-app")
        self.services, self.runner, _sink, self.audit, _ = make_services()
        patcher = mock.patch("apps.orchestration.views.get_services", return_value=self.services)
        patcher.start()
        self.addCleanup(patcher.stop)

    def post_json(self, url, data=None, **extra):
        return self.client.post(
            url, data=json.dumps(data or {}), content_type="application/json", **extra
        )


@mock.patch("apps.orchestration.views.handle_webhook_task")
class WebhookViewTests(ViewTestCase):
    def test_push_is_queued(self, task):
        task.delay.return_value.id = "task-1"
        payload = {"ref": "refs/heads/main", "after": "abc123", "pusher": {"name": "dana"}}

        response = self.post_json(
            "/orchestration/webhooks/web-app/", payload, HTTP_X_GITHUB_EVENT="push"
        )

        assert response.status_code == 202
        assert response.json() == {"status": "queued", "event_type": "push", "task_id": "task-1"}
        task.delay.assert_called_once_with("web-app", "push", payload)

    def test_ignored_event(self, task):
        response = self.post_json(
            "/orchestration/webhooks/web-app/", {"zen": "hi"}, HTTP_X_GITHUB_EVENT="ping"
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        task.delay.assert_not_called()

    def test_invalid_payload(self, task):
        response = self.post_json(
            "/orchestration/webhooks/web-app/", {"branch": "main"}, HTTP_X_GITHUB_EVENT="push"
        )

        assert response.status_code == 400
        assert response.json()["error_type"] == "InvalidWebhook"
        task.delay.assert_not_called()

    def test_unknown_project(self, task):
        response = self.post_json(
            "/orchestration/webhooks/other/",
            {"commitId": "abc", "branch": "main", "event": "push"},
        )

        assert response.status_code == 404
        task.delay.assert_not_called()

    def test_malformed_json(self, task):
        response = self.client.post(
            "/orchestration/webhooks/web-app/", data="{not json", content_type="application/json"
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON body"


@mock.patch("apps.orchestration.views.run_pipeline_task")
class PipelineViewTests(ViewTestCase):
    def test_trigger(self, task):
        task.delay.return_value.id = "task-2"

        response = self.post_json(
            "/orchestration/pipelines/",
            {"project_id": "web-app", "commit_id": "abc123", "branch": "main", "actor": "dana"},
        )

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == ExecutionStatus.RUNNING
        assert data["environment"] == "development"
        assert data["config_version"] == "1.0.0"
        assert data["task_id"] == "task-2"
        task.delay.assert_called_once_with(data["execution_id"])

    def test_trigger_requires_fields(self, task):
        response = self.post_json("/orchestration/pipelines/", {"project_id": "web-app"})

        assert response.status_code == 400
        assert "commit_id" in response.json()["error"]

    def test_trigger_unknown_environment(self, task):
        response = self.post_json(
            "/orchestration/pipelines/",
            {"project_id": "web-app", "commit_id": "a", "branch": "main", "environment": "qa"},
        )

        assert response.status_code == 400
        assert response.json()["error_type"] == "UnknownEnvironment"

    def test_list_and_status(self, task):
        orchestrator = self.services.orchestrator
        first = orchestrator.trigger("web-app", commit_id="a1", branch="main", actor="dana")
        orchestrator.run(first.execution_id)
        second = orchestrator.trigger("web-app", commit_id="b2", branch="main", actor="dana")

        listing = self.client.get("/orchestration/pipelines/?project_id=web-app").json()
        assert [e["execution_id"] for e in listing["executions"]] == [
            second.execution_id,
            first.execution_id,
        ]

        running = self.client.get("/orchestration/pipelines/?status=running").json()
        assert running["count"] == 1

        detail = self.client.get(f"/orchestration/pipelines/{first.execution_id}/").json()
        assert detail["status"] == ExecutionStatus.SUCCESS
        assert [s["status"] for s in detail["stages"]] == [StageStatus.SUCCESS] * 6

    def test_status_not_found(self, task):
        response = self.client.get("/orchestration/pipelines/missing/")

        assert response.status_code == 404

    def test_cancel(self, task):
        execution = self.services.orchestrator.trigger(
            "web-app", commit_id="a1", branch="main", actor="dana"
        )

        response = self.post_json(
            f"/orchestration/pipelines/{execution.execution_id}/cancel/", {"actor": "ada"}
        )

        assert response.status_code == 202
        assert response.json()["cancel_requested"] is True
        again = self.services.orchestrator.run(execution.execution_id)
        assert again.status == ExecutionStatus.CANCELLED

    def test_cancel_finished_pipeline_conflicts(self, task):
        orchestrator = self.services.orchestrator
        execution = orchestrator.trigger("web-app", commit_id="a1", branch="main", actor="dana")
        orchestrator.run(execution.execution_id)

        response = self.post_json(f"/orchestration/pipelines/{execution.execution_id}/cancel/")

        assert response.status_code == 409

    def test_retry(self, task):
        task.delay.return_value.id = "task-3"
        orchestrator = self.services.orchestrator
        self.runner.failures = {"npm run build": 1}
        execution = orchestrator.trigger("web-app", commit_id="a1", branch="main", actor="dana")
        orchestrator.run(execution.execution_id)

        response = self.post_json(
            f"/orchestration/pipelines/{execution.execution_id}/retry/", {"actor": "ada"}
        )

        assert response.status_code == 202
        data = response.json()
        assert data["retry_of"] == execution.execution_id
        assert data["triggered_by"] == "ada"


class ConfigurationViewTests(ViewTestCase):
    def test_generate_from_profile(self):
        response = self.post_json(
            "/orchestration/projects/web-app/configurations/", {"actor": "dana"}
        )

        assert response.status_code == 201
        data = response.json()
        assert data["version"] == "1.0.0"
        assert data["language"] == "nodejs"
        assert [s["name"] for s in data["stages"]][0] == "setup"

    def test_generate_with_explicit_profile(self):
        response = self.post_json(
            "/orchestration/projects/web-app/configurations/",
            {"language": "python", "target_platforms": ["docker"], "settings": {}},
        )

        assert response.status_code == 201
        assert response.json()["language"] == "python"

    def test_generate_for_unknown_project(self):
        response = self.post_json(
            "/orchestration/projects/other/configurations/", {"language": "python"}
        )

        assert response.status_code == 404

    def test_latest_as_yaml(self):
        self.services.generator.generate_for_project("web-app")

        response = self.client.get("/orchestration/projects/web-app/configurations/?format=yaml")

        assert response.status_code == 200
        assert response["Content-Type"] == "application/x-yaml"
        assert b"setup" in response.content

    def test_latest_missing(self):
        response = self.client.get("/orchestration/projects/web-app/configurations/")

        assert response.status_code == 404
