"""Deterministic environments for child processes.

When npm runs a lifecycle script it copies its whole configuration into
``NPM_CONFIG_*`` variables and records ``INIT_CWD``. If the orchestrator was
itself started from such a script, those values would leak into every nested
package-manager call. The sanitizer strips them from a copy of the base
environment; the ambient environment is never modified.
"""

from __future__ import annotations

import functools
import os
from collections.abc import Mapping
from typing import Any

from .platform import PlatformCapabilities, current_platform

INIT_CWD = "INIT_CWD"
NPM_CONFIG_PREFIX = "NPM_CONFIG_"


@functools.lru_cache(maxsize=1)
def _ambient_snapshot() -> tuple[tuple[str, str], ...]:
    return tuple(os.environ.items())


def ambient_environment() -> dict[str, str]:
    """Copy of the environment this process inherited, read once."""
    return dict(_ambient_snapshot())


def _is_stripped(key: str, platform: PlatformCapabilities) -> bool:
    if platform.environment_key(key) == INIT_CWD:
        return True
    # npm exports lower-case npm_config_* on POSIX, so match any case here.
    return key.upper().startswith(NPM_CONFIG_PREFIX)


def build_environment(
    base_environment: Mapping[str, Any] | None = None,
    init_cwd: str | None = None,
    platform: PlatformCapabilities | None = None,
) -> dict[str, str]:
    """Build the environment for a child process.

    Args:
        base_environment: Environment to start from (default: the ambient one)
        init_cwd: Value for INIT_CWD, set after stripping when non-empty
        platform: Platform conventions (default: the host)

    Returns:
        A new dictionary owned by the caller
    """
    platform = platform or current_platform()
    if base_environment is None:
        base_environment = ambient_environment()

    environment: dict[str, str] = {}
    for key, value in base_environment.items():
        if value is None:
            continue
        if _is_stripped(key, platform):
            continue
        environment[key] = value if isinstance(value, str) else str(value)

    if init_cwd:
        environment[INIT_CWD] = init_cwd

    return environment
