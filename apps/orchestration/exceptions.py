"""
Domain errors for pipeline orchestration.

Every error raised across a component boundary derives from OrchestrationError.
Deployment and source-control errors extend the same base in their own apps.
"""

from __future__ import annotations


class OrchestrationError(Exception):
    """Base class for orchestration domain errors."""

    retryable: bool = False


class UnsupportedLanguage(OrchestrationError):
    """No stage templates can be produced for the language tag."""


class InvalidConfiguration(OrchestrationError):
    """Project settings describe something the pipeline cannot run."""


class ProjectNotFound(OrchestrationError):
    pass


class ConfigurationNotFound(OrchestrationError):
    pass


class PipelineNotFound(OrchestrationError):
    pass


class InvalidTransition(OrchestrationError):
    """A state machine was asked to leave a state it cannot leave."""


class StageExecutionError(OrchestrationError):
    """Raised when a stage's command list fails."""

    retryable = True
    error_type = "StageExecutionError"

    def __init__(self, stage: str, message: str, output: str = ""):
        self.stage = stage
        self.message = message
        self.output = output
        super().__init__(f"Stage {stage} failed: {message}")


class StageTimeout(StageExecutionError):
    error_type = "Timeout"

    def __init__(self, stage: str, timeout_seconds: float, output: str = ""):
        self.timeout_seconds = timeout_seconds
        super().__init__(stage, f"timed out after {timeout_seconds:g}s", output)


class CommandFailed(StageExecutionError):
    error_type = "CommandFailed"

    def __init__(self, stage: str, command: str, exit_code: int, output: str = ""):
        self.command = command
        self.exit_code = exit_code
        super().__init__(stage, f"command '{command}' exited with code {exit_code}", output)


class SecurityViolation(StageExecutionError):
    """A stage command matched a blocked pattern. Never retried."""

    retryable = False
    error_type = "SecurityViolation"

    def __init__(self, stage: str, command: str, pattern: str):
        self.command = command
        self.pattern = pattern
        super().__init__(stage, f"command '{command}' is not allowed (matched {pattern!r})")


class UnknownEnvironment(OrchestrationError):
    """The environment is not defined in the project's pipeline configuration."""


class InvalidWebhook(OrchestrationError):
    """A webhook payload is missing required fields."""


class TestExecutionNotFound(OrchestrationError):
    __test__ = False
