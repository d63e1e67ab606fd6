"""Cross-platform process execution.

Every command goes through the system shell (``cmd /d /s /c`` on Windows,
``sh -c`` elsewhere) so that package-manager shims such as ``npm.cmd`` resolve
the same way they do for a user at a prompt. Tokens are therefore escaped for
the shell, and each child receives a sanitized copy of the environment.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from ..errors import ConfigurationError, NonZeroExitError, SpawnError
from .environment import ambient_environment, build_environment
from .filesystem import file_exists
from .platform import PlatformCapabilities, current_platform
from .retry import retry_with_attempt_budget
from .state import CommandInvocation, ExecutionResult, InvocationState, StdioMode

logger = logging.getLogger(__name__)


def escape_shell_parameter(parameter: str) -> str:
    """Quote a token for the shell. Example: 'hello there' -> '"hello there"'."""
    return f'"{parameter}"'


def build_command_line(command: str, arguments: Sequence[str]) -> str:
    """Join a command and its arguments into one shell command line.

    Arguments are always quoted. The command is only quoted when it contains a
    space: cmd.exe resolves ``%~dp0`` inside ``npm.cmd`` to the working
    directory when the batch file name itself is quoted.
    """
    escaped_command = command if " " not in command else escape_shell_parameter(command)
    return " ".join([escaped_command, *(escape_shell_parameter(a) for a in arguments)])


class ProcessHandle:
    """A single launched (or failed) child process.

    Handles are single-use: once ``wait`` has reported a result the handle is
    in the terminal REPORTED state and returns the same result on later calls.
    """

    def __init__(
        self,
        invocation: CommandInvocation,
        argv: list[str] | str,
        environment: Mapping[str, str],
        detached: bool = False,
        platform: PlatformCapabilities | None = None,
    ):
        self._invocation = invocation
        self._argv = argv
        self._environment = dict(environment)
        self._detached = detached
        self._platform = platform or current_platform()
        self._state = InvocationState.PENDING
        self._process: subprocess.Popen[bytes] | None = None
        self._spawn_error: OSError | None = None
        self._result: ExecutionResult | None = None
        self._state_listeners: list[Callable[[InvocationState], None]] = []

    @property
    def invocation(self) -> CommandInvocation:
        return self._invocation

    @property
    def state(self) -> InvocationState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def spawn_error(self) -> OSError | None:
        return self._spawn_error

    def on_state_change(self, listener: Callable[[InvocationState], None]) -> None:
        """Register state change listener."""
        self._state_listeners.append(listener)

    def _set_state(self, new_state: InvocationState) -> None:
        old_state = self._state
        self._state = new_state
        if old_state != new_state:
            logger.debug(f"Invocation state: {old_state.value} -> {new_state.value}")
            for listener in self._state_listeners:
                try:
                    listener(new_state)
                except Exception:
                    logger.exception("State listener error")

    def _popen_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {
            "cwd": self._invocation.working_directory,
            "env": self._environment,
        }
        if self._detached:
            options.update(
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
            options.update(self._platform.detached_process_options())
        elif self._invocation.stdio_mode != StdioMode.INHERIT:
            options.update(
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        return options

    def start(self) -> bool:
        """Launch the process. Returns False if it could not be started."""
        if self._state != InvocationState.PENDING:
            raise RuntimeError(f"Invocation already {self._state.value}")

        self._set_state(InvocationState.SPAWNING)
        try:
            self._process = subprocess.Popen(self._argv, **self._popen_options())
        except OSError as e:
            self._spawn_error = e
            self._set_state(InvocationState.SPAWN_FAILED)
            return False

        self._set_state(InvocationState.RUNNING)
        return True

    def poll(self) -> int | None:
        """Exit status if the process has finished, else None."""
        if self._process is None:
            return None
        return self._process.poll()

    def wait(self, timeout: float | None = None) -> ExecutionResult:
        """Block until the process exits and return its result.

        Raises:
            subprocess.TimeoutExpired: If ``timeout`` elapsed first; the
                process keeps running and ``wait`` may be called again
        """
        if self._result is not None:
            return self._result

        if self._state == InvocationState.SPAWN_FAILED:
            self._result = ExecutionResult(spawn_error=self._spawn_error)
        elif self._process is None:
            raise RuntimeError("Invocation was never started")
        else:
            stdout, stderr = self._process.communicate(timeout=timeout)
            self._set_state(InvocationState.EXITED)
            self._result = ExecutionResult(
                exit_status=self._process.returncode,
                stdout=stdout,
                stderr=stderr,
            )

        self._set_state(InvocationState.REPORTED)
        return self._result


class ProcessExecutor:
    """Runs commands through the platform shell with sanitized environments.

    Usage:
        executor = ProcessExecutor()
        executor.execute_sync(CommandInvocation("npm", ["install"], "/repo"))
    """

    def __init__(self, platform: PlatformCapabilities | None = None):
        self._platform = platform or current_platform()

    @property
    def platform(self) -> PlatformCapabilities:
        return self._platform

    def _environment_for(self, invocation: CommandInvocation) -> dict[str, str]:
        if invocation.keep_environment_verbatim:
            if invocation.environment is None:
                return ambient_environment()
            return dict(invocation.environment)
        return build_environment(invocation.environment, platform=self._platform)

    def _spawn(
        self,
        invocation: CommandInvocation,
        command_line: str,
        environment: Mapping[str, str],
        detached: bool = False,
    ) -> ProcessHandle:
        handle = ProcessHandle(
            invocation,
            self._platform.shell_argv(command_line),
            environment,
            detached=detached,
            platform=self._platform,
        )
        handle.start()
        return handle

    @staticmethod
    def _process_result(result: ExecutionResult) -> None:
        if result.spawn_error is not None:
            raise SpawnError(result.spawn_error, result) from result.spawn_error
        if result.exit_status:
            raise NonZeroExitError(result.exit_status, result)

    def execute_sync(self, invocation: CommandInvocation) -> ExecutionResult:
        """Run a command and wait for it to complete.

        Returns:
            Result of a successful run

        Raises:
            SpawnError: If the command could not be started
            NonZeroExitError: If the command exited with a non-zero status
        """
        environment = self._environment_for(invocation)
        logger.info(f"Running: {invocation.describe()}")

        handle = self._spawn(
            invocation,
            build_command_line(invocation.command, invocation.arguments),
            environment,
        )

        if (
            isinstance(handle.spawn_error, FileNotFoundError)
            and self._platform.shim_extension
        ):
            # Shell-less resolution of Node shims is unreliable on Windows;
            # try the .cmd wrapper once before giving up.
            shim = invocation.command + self._platform.shim_extension
            logger.debug(f"{invocation.command} not found, retrying as {shim}")
            handle = self._spawn(
                invocation, " ".join([shim, *invocation.arguments]), environment
            )

        result = handle.wait()
        self._process_result(result)
        return result

    def execute_sync_captured(self, invocation: CommandInvocation) -> str:
        """Run a command with captured output and return its stdout text.

        Raises:
            ConfigurationError: If the invocation does not use StdioMode.CAPTURE
        """
        if invocation.stdio_mode != StdioMode.CAPTURE:
            raise ConfigurationError(
                f"Captured execution requires stdio mode 'capture', got '{invocation.stdio_mode.value}'"
            )
        return self.execute_sync(invocation).stdout_text

    def execute_async(
        self, invocation: CommandInvocation, detached: bool = False
    ) -> ProcessHandle:
        """Start a command without waiting for it.

        Args:
            invocation: Command to run
            detached: Let the child outlive this process (output is discarded)

        Returns:
            Handle whose ``wait()`` yields the ExecutionResult

        Raises:
            SpawnError: If the command could not be started
        """
        command = invocation.command
        shim_extension = self._platform.shim_extension
        if shim_extension and file_exists(command + shim_extension):
            command += shim_extension

        logger.info(f"Starting: {invocation.describe()}")
        handle = self._spawn(
            invocation,
            build_command_line(command, invocation.arguments),
            self._environment_for(invocation),
            detached=detached,
        )
        if handle.spawn_error is not None:
            raise SpawnError(handle.spawn_error) from handle.spawn_error
        return handle

    def execute_with_retry(
        self,
        invocation: CommandInvocation,
        max_attempts: int,
        on_retry: Callable[[], None] | None = None,
    ) -> ExecutionResult:
        """Run ``execute_sync`` up to ``max_attempts`` times.

        Args:
            invocation: Command to run
            max_attempts: Attempt budget (at least 1)
            on_retry: Called between attempts, e.g. to remove partial output

        Returns:
            Result of the first successful attempt

        Raises:
            ConfigurationError: If ``max_attempts`` is less than 1
            ProcessExecutionError: The last attempt's error, unchanged
        """
        results: list[ExecutionResult] = []
        retry_with_attempt_budget(
            lambda: results.append(self.execute_sync(invocation)),
            max_attempts,
            on_retry,
            description=invocation.describe(),
        )
        return results[-1]

    def _lifecycle_invocation(
        self,
        command: str,
        working_directory: str,
        stdio_mode: StdioMode,
        environment: Mapping[str, str] | None,
    ) -> CommandInvocation:
        return CommandInvocation(
            command=command,
            working_directory=working_directory,
            environment=environment,
            stdio_mode=stdio_mode,
        )

    def execute_lifecycle_command(
        self,
        command: str,
        working_directory: str,
        init_cwd: str = "",
        capture_output: bool = False,
        environment: Mapping[str, str] | None = None,
    ) -> ExecutionResult:
        """Run a package lifecycle script through the platform shell.

        The script line is passed to the shell as-is. The environment is always
        sanitized, with ``INIT_CWD`` set to ``init_cwd`` so that scripts can
        find the .npmrc of the folder the install started in.

        Args:
            command: Shell command line
            working_directory: Directory to run in
            init_cwd: Value for INIT_CWD (omitted when empty)
            capture_output: Capture stdout/stderr instead of inheriting them
            environment: Base environment (default: the ambient one)

        Raises:
            SpawnError: If the shell could not be started
            NonZeroExitError: If the script exited with a non-zero status
        """
        invocation = self._lifecycle_invocation(
            command,
            working_directory,
            StdioMode.CAPTURE if capture_output else StdioMode.INHERIT,
            environment,
        )
        logger.info(f"Running lifecycle command: {command}")
        handle = self._spawn(
            invocation,
            command,
            build_environment(environment, init_cwd, self._platform),
        )
        result = handle.wait()
        self._process_result(result)
        return result

    def execute_lifecycle_command_async(
        self,
        command: str,
        working_directory: str,
        init_cwd: str = "",
        capture_output: bool = False,
        environment: Mapping[str, str] | None = None,
        detached: bool = False,
    ) -> ProcessHandle:
        """Start a lifecycle script without waiting for it.

        Raises:
            SpawnError: If the shell could not be started
        """
        invocation = self._lifecycle_invocation(
            command,
            working_directory,
            StdioMode.CAPTURE if capture_output else StdioMode.INHERIT,
            environment,
        )
        logger.info(f"Starting lifecycle command: {command}")
        handle = self._spawn(
            invocation,
            command,
            build_environment(environment, init_cwd, self._platform),
            detached=detached,
        )
        if handle.spawn_error is not None:
            raise SpawnError(handle.spawn_error) from handle.spawn_error
        return handle

    def execute_program_async(
        self,
        argv: Sequence[str],
        working_directory: str,
        detached: bool = False,
    ) -> ProcessHandle:
        """Start an executable directly, bypassing the shell.

        Every element of ``argv`` reaches the child as one literal argument.
        Use this when an argument is a path that must not be expanded.

        Raises:
            SpawnError: If the executable could not be started
        """
        invocation = CommandInvocation(
            command=argv[0],
            arguments=argv[1:],
            working_directory=working_directory,
        )
        logger.info(f"Starting: {invocation.describe()}")
        handle = ProcessHandle(
            invocation,
            list(argv),
            build_environment(platform=self._platform),
            detached=detached,
            platform=self._platform,
        )
        handle.start()
        if handle.spawn_error is not None:
            raise SpawnError(handle.spawn_error) from handle.spawn_error
        return handle
