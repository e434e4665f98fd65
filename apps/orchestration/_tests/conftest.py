"""Shared test fixtures for the orchestration app."""

import pytest

from apps.orchestration._tests.fakes import FakeCommandRunner, RecordingAuditRecorder


@pytest.fixture
def runner():
    return FakeCommandRunner()


@pytest.fixture
def audit():
    return RecordingAuditRecorder()


@pytest.fixture
def nodejs_settings():
    """Settings of a project with every optional stage switched on."""
    return {
        "enable_security_scan": True,
        "enable_post_deploy_tests": True,
        "enable_monitoring": True,
        "deployment_strategy": "blue_green",
    }
