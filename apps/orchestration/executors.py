"""
Stage execution.

A CommandRunner runs one shell command. The StageExecutor runs a stage's
command list through a runner, enforcing the stage timeout over the whole
list, retrying failed attempts with backoff, and refusing commands that match
a blocked pattern.
"""

from __future__ import annotations

import logging
import re
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Callable

from django.conf import settings

from apps.orchestration.dtos import StageContext, StageResult, StageTemplate
from apps.orchestration.exceptions import (
    CommandFailed,
    SecurityViolation,
    StageExecutionError,
    StageTimeout,
)

logger = logging.getLogger(__name__)


@dataclass
class CommandOutcome:
    """Result of running one command."""

    command: str
    exit_code: int
    output: str = ""
    timed_out: bool = False


class CommandRunner(ABC):
    """Runs a single shell command."""

    @abstractmethod
    def run(
        self,
        command: str,
        *,
        env: dict[str, str],
        cwd: str | None,
        timeout: float,
    ) -> CommandOutcome:
        raise NotImplementedError


def _decode(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class SubprocessCommandRunner(CommandRunner):
    """Runs commands through the system shell."""

    def run(self, command, *, env, cwd, timeout):
        try:
            completed = subprocess.run(
                command,
                shell=True,
                env=env,
                cwd=cwd or None,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            return CommandOutcome(
                command=command,
                exit_code=-1,
                output=_decode(e.stdout) + _decode(e.stderr),
                timed_out=True,
            )
        return CommandOutcome(
            command=command,
            exit_code=completed.returncode,
            output=(completed.stdout or "") + (completed.stderr or ""),
        )


class StageExecutor:
    """
    Runs one stage and returns a StageResult.

    Usage:
        executor = StageExecutor(runner=SubprocessCommandRunner())
        result = executor.execute(stage_template, ctx)
    """

    def __init__(
        self,
        runner: CommandRunner,
        backoff_factor: float | None = None,
        blocked_patterns: list[str] | None = None,
        max_output_chars: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.runner = runner
        self.backoff_factor = (
            backoff_factor
            if backoff_factor is not None
            else float(getattr(settings, "ORCHESTRATION_BACKOFF_FACTOR", 2.0))
        )
        patterns = (
            blocked_patterns
            if blocked_patterns is not None
            else getattr(settings, "ORCHESTRATION_BLOCKED_COMMAND_PATTERNS", [])
        )
        self.blocked_patterns = [re.compile(p) for p in patterns]
        self.max_output_chars = (
            max_output_chars
            if max_output_chars is not None
            else int(getattr(settings, "ORCHESTRATION_MAX_OUTPUT_CHARS", 20000))
        )
        self.sleep = sleep
        self.clock = clock

    def execute(self, stage: StageTemplate, ctx: StageContext) -> StageResult:
        """
        Run the stage's command list, retrying up to stage.retry_count times.

        Never raises for command failures; the outcome is in the result.
        """
        start_time = time.perf_counter()
        max_attempts = 1 + max(0, stage.retry_count)
        last_error: StageExecutionError | None = None
        error_type = ""
        attempt = 0

        for attempt in range(1, max_attempts + 1):
            attempt_ctx = replace(ctx, attempt=attempt)
            try:
                output = self._run_commands(stage, attempt_ctx)
                return StageResult(
                    success=True,
                    output=output,
                    attempts=attempt,
                    duration_ms=(time.perf_counter() - start_time) * 1000,
                )
            except StageExecutionError as e:
                last_error = e
                error_type = e.error_type
            except Exception as e:
                logger.exception(
                    f"Unexpected error running stage {stage.name}",
                    extra={"execution_id": ctx.execution_id, "stage": stage.name},
                )
                last_error = StageExecutionError(stage.name, str(e))
                error_type = type(e).__name__

            logger.warning(
                f"Stage {stage.name} attempt {attempt}/{max_attempts} failed: {last_error.message}",
                extra={"execution_id": ctx.execution_id, "stage": stage.name, "attempt": attempt},
            )
            if not last_error.retryable or attempt >= max_attempts:
                break
            self.sleep(self.backoff_factor**attempt)

        assert last_error is not None
        return StageResult(
            success=False,
            output=last_error.output,
            error=last_error.message,
            error_type=error_type,
            attempts=attempt,
            duration_ms=(time.perf_counter() - start_time) * 1000,
            retryable=last_error.retryable,
        )

    def check_commands(self, stage_name: str, commands: list[str]) -> None:
        """Raise SecurityViolation if any command matches a blocked pattern."""
        for command in commands:
            for pattern in self.blocked_patterns:
                if pattern.search(command):
                    raise SecurityViolation(stage_name, command, pattern.pattern)

    def _run_commands(self, stage: StageTemplate, ctx: StageContext) -> str:
        self.check_commands(stage.name, stage.commands)

        env = ctx.command_env(stage.environment)
        deadline = self.clock() + stage.timeout_seconds
        chunks: list[str] = []

        for command in stage.commands:
            remaining = deadline - self.clock()
            if remaining <= 0:
                raise StageTimeout(stage.name, stage.timeout_seconds, self._truncate(chunks))

            outcome = self.runner.run(command, env=env, cwd=ctx.workspace or None, timeout=remaining)
            chunks.append(f"$ {command}\n{outcome.output}")

            if outcome.timed_out:
                raise StageTimeout(stage.name, stage.timeout_seconds, self._truncate(chunks))
            if outcome.exit_code != 0:
                raise CommandFailed(stage.name, command, outcome.exit_code, self._truncate(chunks))

        return self._truncate(chunks)

    def _truncate(self, chunks: list[str]) -> str:
        """Join output, keeping only the tail past max_output_chars."""
        output = "\n".join(chunks)
        if len(output) > self.max_output_chars:
            return "...[truncated]\n" + output[-self.max_output_chars :]
        return output
