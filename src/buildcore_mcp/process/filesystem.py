"""Filesystem primitives that tolerate transient locks.

Antivirus scanners and editors briefly hold handles on folders that were just
emptied, which makes an immediate mkdir fail. These helpers retry or report
such failures with guidance instead of surfacing a bare OSError.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
from collections.abc import Mapping
from pathlib import Path

from ..errors import FILE_LOCK_HINT, ConfigurationError, LockTimeoutError, PurgeTargetError
from .platform import PlatformCapabilities, current_platform
from .retry import retry_until_timeout

logger = logging.getLogger(__name__)

# Observed lock durations after deleting a populated folder reach several seconds
CREATE_FOLDER_MAX_WAIT_MS: float = 7_000.0


def file_exists(path: str | os.PathLike[str]) -> bool:
    """Whether ``path`` is an existing regular file (symlinks are not followed)."""
    try:
        return stat.S_ISREG(os.lstat(path).st_mode)
    except OSError:
        return False


def directory_exists(path: str | os.PathLike[str]) -> bool:
    """Whether ``path`` is an existing directory (symlinks are not followed)."""
    try:
        return stat.S_ISDIR(os.lstat(path).st_mode)
    except OSError:
        return False


def create_folder_with_retry(
    folder: str | os.PathLike[str],
    max_wait_time_ms: float = CREATE_FOLDER_MAX_WAIT_MS,
) -> None:
    """Create ``folder`` and its parents, riding out temporary locks.

    An existing directory is left alone. A file occupying the path is retried
    like a lock and eventually reported.

    Raises:
        LockTimeoutError: If the folder could not be created within the budget
    """
    if directory_exists(folder):
        return

    retry_until_timeout(
        lambda: os.makedirs(folder, exist_ok=True),
        max_wait_time_ms,
        LockTimeoutError.from_error,
        "create_folder_with_retry",
    )


def _is_filesystem_root(path: Path) -> bool:
    resolved = path.resolve()
    return resolved == Path(resolved.anchor)


def dangerously_delete_path(path: str | os.PathLike[str]) -> None:
    """Delete exactly the literal ``path``, recursively if it is a directory.

    The path is never glob-expanded, so ``"build/*"`` only removes an entry that
    is literally named ``*``. A missing path is a no-op.

    Raises:
        PurgeTargetError: If the path is a filesystem root or could not be removed
    """
    target = Path(path)
    if _is_filesystem_root(target):
        raise PurgeTargetError(target, "refusing to delete a filesystem root")

    try:
        mode = os.lstat(target).st_mode
    except FileNotFoundError:
        return
    except OSError as e:
        raise PurgeTargetError(target, f"{e}{os.linesep}{FILE_LOCK_HINT}") from e

    logger.info(f"Deleting: {target}")
    try:
        if stat.S_ISDIR(mode):
            shutil.rmtree(target)
        else:
            os.unlink(target)
    except FileNotFoundError:
        return
    except OSError as e:
        raise PurgeTargetError(target, f"{e}{os.linesep}{FILE_LOCK_HINT}") from e


def get_home_directory(
    platform: PlatformCapabilities | None = None,
    environ: Mapping[str, str] | None = None,
) -> Path:
    """The current user's home directory.

    Raises:
        ConfigurationError: If the home directory cannot be determined
    """
    platform = platform or current_platform()
    environ = os.environ if environ is None else environ
    unresolved = environ.get(platform.home_variable)
    if not unresolved:
        raise ConfigurationError("Unable to determine the current user's home directory")

    home = Path(unresolved).resolve()
    if not home.is_dir():
        raise ConfigurationError("Unable to determine the current user's home directory")
    return home
