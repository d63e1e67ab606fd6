"""Process execution and environment determinism layer.

Provides:
- Shell-mediated command execution with Windows shim fallback
- Sanitized child environments (NPM_CONFIG_* and INIT_CWD stripped)
- Retry combinators for lock contention and flaky commands
- Lock-tolerant filesystem primitives
"""

from .environment import ambient_environment, build_environment
from .executor import ProcessExecutor, ProcessHandle, build_command_line, escape_shell_parameter
from .filesystem import (
    create_folder_with_retry,
    dangerously_delete_path,
    directory_exists,
    file_exists,
    get_home_directory,
)
from .platform import PlatformCapabilities, PlatformFamily, current_platform
from .retry import RetryState, retry_until_timeout, retry_with_attempt_budget
from .state import CommandInvocation, ExecutionResult, InvocationState, StdioMode

__all__ = [
    "ambient_environment",
    "build_environment",
    "ProcessExecutor",
    "ProcessHandle",
    "build_command_line",
    "escape_shell_parameter",
    "create_folder_with_retry",
    "dangerously_delete_path",
    "directory_exists",
    "file_exists",
    "get_home_directory",
    "PlatformCapabilities",
    "PlatformFamily",
    "current_platform",
    "RetryState",
    "retry_until_timeout",
    "retry_with_attempt_budget",
    "CommandInvocation",
    "ExecutionResult",
    "InvocationState",
    "StdioMode",
]
