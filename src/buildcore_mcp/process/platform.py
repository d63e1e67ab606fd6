"""Platform capability lookup.

All Windows/POSIX branching for the process layer lives here. Callers receive a
``PlatformCapabilities`` record and never test ``os.name`` themselves.
"""

from __future__ import annotations

import functools
import os
import subprocess
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

RMTREE_SCRIPT = "import shutil, sys; shutil.rmtree(sys.argv[1])"


class PlatformFamily(str, Enum):
    """Operating system families with distinct shell semantics."""

    WINDOWS = "windows"
    POSIX = "posix"


@dataclass(frozen=True)
class PlatformCapabilities:
    """Shell and environment conventions of one platform family."""

    family: PlatformFamily
    shell_executable: str
    shell_flags: tuple[str, ...]
    case_insensitive_environment: bool
    shim_extension: str
    home_variable: str
    delete_tree_program: tuple[str, ...]

    @property
    def is_windows(self) -> bool:
        return self.family == PlatformFamily.WINDOWS

    def environment_key(self, name: str) -> str:
        """Key used to compare environment variable names on this platform."""
        return name.upper() if self.case_insensitive_environment else name

    def shell_argv(self, command_line: str) -> list[str] | str:
        """Arguments that run ``command_line`` through the system shell.

        On Windows the result is a single verbatim string so that cmd.exe
        receives ``/d /s /c "<line>"`` without any further quoting.
        """
        if self.is_windows:
            flags = " ".join(self.shell_flags)
            return f'{self.shell_executable} {flags} "{command_line}"'
        return [self.shell_executable, *self.shell_flags, command_line]

    def detached_process_options(self) -> dict[str, Any]:
        """Popen options that let a child outlive the orchestrator."""
        if self.is_windows:
            flags = getattr(subprocess, "DETACHED_PROCESS", 0x00000008) | getattr(
                subprocess, "CREATE_NEW_PROCESS_GROUP", 0x00000200
            )
            return {"creationflags": flags}
        return {"start_new_session": True}

    def delete_tree_argv(self, folder: str) -> list[str]:
        """Arguments that delete ``folder`` recursively without going through a shell.

        The path is passed as a single argument, so shell expansion of ``$VAR``
        or ``%VAR%`` can never change which folder is removed.
        """
        return [*self.delete_tree_program, folder]


def windows_capabilities(environ: Mapping[str, str] | None = None) -> PlatformCapabilities:
    """Capabilities of Windows-class platforms."""
    environ = os.environ if environ is None else environ
    comspec = environ.get("COMSPEC") or environ.get("ComSpec") or "cmd"
    return PlatformCapabilities(
        family=PlatformFamily.WINDOWS,
        shell_executable=comspec,
        shell_flags=("/d", "/s", "/c"),
        case_insensitive_environment=True,
        shim_extension=".cmd",
        home_variable="USERPROFILE",
        # rd only exists inside cmd.exe
        delete_tree_program=(sys.executable, "-c", RMTREE_SCRIPT),
    )


def posix_capabilities() -> PlatformCapabilities:
    """Capabilities of POSIX platforms."""
    return PlatformCapabilities(
        family=PlatformFamily.POSIX,
        shell_executable="sh",
        shell_flags=("-c",),
        case_insensitive_environment=False,
        shim_extension="",
        home_variable="HOME",
        delete_tree_program=("rm", "-rf", "--"),
    )


def capabilities_for(family: PlatformFamily) -> PlatformCapabilities:
    """Look up the capabilities of a platform family."""
    if family == PlatformFamily.WINDOWS:
        return windows_capabilities()
    return posix_capabilities()


def detect_family() -> PlatformFamily:
    """Platform family of the running interpreter."""
    return PlatformFamily.WINDOWS if os.name == "nt" else PlatformFamily.POSIX


@functools.lru_cache(maxsize=1)
def current_platform() -> PlatformCapabilities:
    """Capabilities of the host, resolved once per process."""
    return capabilities_for(detect_family())
