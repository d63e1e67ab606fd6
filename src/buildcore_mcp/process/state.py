"""Process invocation types.

Invocation lifecycle:
PENDING → SPAWNING → RUNNING → EXITED → REPORTED
                   ↘ SPAWN_FAILED ↗
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any


class StdioMode(str, Enum):
    """How the child's standard streams are connected."""

    INHERIT = "inherit"  # share the orchestrator's terminal
    CAPTURE = "capture"  # pipe all three streams into the result
    SUPPRESS = "suppress"  # keep output off the terminal, captured for errors


class InvocationState(str, Enum):
    """Process invocation states."""

    PENDING = "pending"
    SPAWNING = "spawning"
    RUNNING = "running"
    EXITED = "exited"
    SPAWN_FAILED = "spawn_failed"
    REPORTED = "reported"


@dataclass(frozen=True)
class CommandInvocation:
    """One external process launch."""

    command: str
    arguments: Sequence[str] = ()
    working_directory: str = "."
    environment: Mapping[str, str] | None = None
    stdio_mode: StdioMode = StdioMode.INHERIT
    keep_environment_verbatim: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "arguments", tuple(self.arguments))
        if self.environment is not None:
            object.__setattr__(
                self, "environment", MappingProxyType(dict(self.environment))
            )

    def describe(self) -> str:
        """Command line as a human-readable string."""
        return " ".join([self.command, *self.arguments])


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one invocation. ``exit_status`` is None if the process never started."""

    exit_status: int | None = None
    stdout: bytes | None = None
    stderr: bytes | None = None
    spawn_error: OSError | None = field(default=None, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.spawn_error is None and self.exit_status == 0

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace") if self.stdout else ""

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace") if self.stderr else ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {"success": self.succeeded}
        if self.exit_status is not None:
            result["exitStatus"] = self.exit_status
        if self.stdout is not None:
            result["stdout"] = self.stdout_text
        if self.stderr is not None:
            result["stderr"] = self.stderr_text
        if self.spawn_error is not None:
            result["spawnError"] = str(self.spawn_error)
        return result
