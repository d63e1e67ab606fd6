"""Error types raised by the orchestrator core."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .process.state import ExecutionResult

FILE_LOCK_HINT = (
    "Often this is caused by a file lock from a process such as your text editor, "
    'command prompt, or "gulp serve"'
)


class OrchestratorError(Exception):
    """Base exception for orchestrator core errors."""

    pass


class ConfigurationError(OrchestratorError, ValueError):
    """Raised for invalid arguments such as a retry budget below one."""

    pass


class ProcessExecutionError(OrchestratorError):
    """A child process could not be run to a successful exit."""

    def __init__(self, message: str, result: ExecutionResult | None = None):
        super().__init__(message)
        self.result = result

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {"error": str(self), "type": type(self).__name__}
        if self.result is not None:
            data["result"] = self.result.to_dict()
        return data


class SpawnError(ProcessExecutionError):
    """The executable could not be started at all."""

    def __init__(self, cause: OSError, result: ExecutionResult | None = None):
        message = str(cause)
        stderr = result.stderr_text if result is not None else ""
        if stderr:
            message += os.linesep + stderr
        super().__init__(message, result)
        self.cause = cause


class NonZeroExitError(ProcessExecutionError):
    """The process ran and reported failure through its exit status."""

    def __init__(self, exit_status: int, result: ExecutionResult | None = None):
        self.exit_status = exit_status
        self.stderr = result.stderr_text if result is not None else ""
        super().__init__(
            f"The command failed with exit code {exit_status}{os.linesep}{self.stderr}",
            result,
        )


class LockTimeoutError(OrchestratorError):
    """A lock-sensitive filesystem operation kept failing until its time budget ran out."""

    def __init__(self, message: str, elapsed_ms: float | None = None):
        super().__init__(message)
        self.elapsed_ms = elapsed_ms

    @classmethod
    def from_error(cls, error: Exception, elapsed_ms: float) -> LockTimeoutError:
        """Escalate the last underlying error with the lock guidance and elapsed time."""
        return cls(
            f"Error: {error}{os.linesep}{FILE_LOCK_HINT}{os.linesep}"
            f"Gave up after {elapsed_ms / 1000.0:.2f} seconds",
            elapsed_ms=elapsed_ms,
        )


class PurgeTargetError(OrchestratorError):
    """A single purge target could not be removed."""

    def __init__(self, path: str | Path, reason: str):
        super().__init__(f"Unable to purge {path}: {reason}")
        self.path = Path(path)
        self.reason = reason


class PurgeError(OrchestratorError):
    """One or more purge targets failed; raised after the whole pass completed."""

    def __init__(self, failures: list[PurgeTargetError]):
        lines = [f"{len(failures)} purge target(s) could not be removed:"]
        lines.extend(f"  {failure}" for failure in failures)
        super().__init__(os.linesep.join(lines))
        self.failures = list(failures)
