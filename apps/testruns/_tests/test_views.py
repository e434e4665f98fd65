import json
from unittest import mock

from django.test import TestCase

from apps.orchestration._tests.fakes import make_project, make_services


class RunViewsTests(TestCase):
    def setUp(self):
        make_project("web-app", settings={"enable_integration_tests": True})
        self.services, self.runner, *_ = make_services()
        patcher = mock.patch("apps.testruns.views.get_services", return_value=self.services)
        patcher.start()
        self.addCleanup(patcher.stop)

    def post_json(self, url, data):
        return self.client.post(url, data=json.dumps(data), content_type="application/json")

    def test_manual_run(self):
        response = self.post_json(
            "/tests/projects/web-app/", {"branch": "main", "actor": "dana", "suites": ["unit"]}
        )

        assert response.status_code == 201
        data = response.json()
        assert data["trigger_type"] == "manual"
        assert data["status"] == "passed"
        assert [s["name"] for s in data["suites"]] == ["unit"]

    def test_manual_run_requires_branch(self):
        response = self.post_json("/tests/projects/web-app/", {"actor": "dana"})

        assert response.status_code == 400

    def test_manual_run_unknown_suite(self):
        response = self.post_json("/tests/projects/web-app/", {"branch": "main", "suites": ["x"]})

        assert response.status_code == 404
        assert response.json()["error_type"] == "ConfigurationNotFound"

    def test_history_and_detail(self):
        execution = self.services.test_trigger.trigger_manual("web-app", "main", "dana")

        history = self.client.get("/tests/projects/web-app/").json()
        assert history["count"] == 1
        assert "suites" not in history["executions"][0]

        detail = self.client.get(f"/tests/{execution.test_execution_id}/").json()
        assert sorted(s["name"] for s in detail["suites"]) == ["integration", "unit"]

    def test_detail_not_found(self):
        assert self.client.get("/tests/missing/").status_code == 404

    def test_merge_readiness(self):
        url = "/tests/projects/web-app/pull-requests/7/merge-ready/"
        assert self.client.get(url).json()["merge_ready"] is False

        self.services.test_trigger.trigger_on_pull_request(
            "web-app", "7", "feature/x", "main", "dana"
        )

        assert self.client.get(url).json() == {
            "project_id": "web-app",
            "pr_id": "7",
            "merge_ready": True,
        }
