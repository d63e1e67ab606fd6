"""Asynchronous folder recycling.

Deleting a large cache tree can take minutes. Instead, each folder is renamed
into a ``rush-recycler`` folder next to it (a quick, same-volume operation),
and a detached process deletes the recycler folder in the background.
The rename is what makes the original path disappear for later commands.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path

from ..errors import LockTimeoutError, SpawnError
from ..process.executor import ProcessExecutor, ProcessHandle
from ..process.filesystem import create_folder_with_retry, dangerously_delete_path, directory_exists
from ..process.retry import retry_until_timeout

logger = logging.getLogger(__name__)

MOVE_FOLDER_MAX_WAIT_MS: float = 7_000.0


class AsyncRecycler:
    """Moves folders aside and deletes them without blocking the caller."""

    def __init__(
        self,
        recycler_folder: str | os.PathLike[str],
        executor: ProcessExecutor | None = None,
        max_wait_time_ms: float = MOVE_FOLDER_MAX_WAIT_MS,
    ):
        self._recycler_folder = Path(recycler_folder)
        self._executor = executor or ProcessExecutor()
        self._max_wait_time_ms = max_wait_time_ms
        self._moved_count = 0
        # Unique per recycler instance so concurrent purges never collide
        self._prefix = f"{os.getpid()}-{time.time_ns()}"

    @property
    def recycler_folder(self) -> Path:
        return self._recycler_folder

    @property
    def moved_count(self) -> int:
        return self._moved_count

    def move_folder(self, path: str | os.PathLike[str]) -> Path | None:
        """Rename ``path`` into the recycler folder.

        Returns:
            New location, or None if ``path`` does not exist

        Raises:
            LockTimeoutError: If the rename kept failing until the time budget ran out
        """
        source = Path(path)
        if not os.path.lexists(source):
            logger.debug(f"Nothing to purge at {source}")
            return None

        create_folder_with_retry(self._recycler_folder)
        destination = self._recycler_folder / f"{self._prefix}-{self._moved_count + 1}"

        def _rename() -> Path | None:
            try:
                os.rename(source, destination)
            except FileNotFoundError:
                # Another process removed it first
                if not os.path.lexists(source):
                    return None
                raise
            return destination

        moved = retry_until_timeout(
            _rename, self._max_wait_time_ms, LockTimeoutError.from_error, "move_folder"
        )
        if moved is not None:
            self._moved_count += 1
            logger.debug(f"Moved {source} -> {moved}")
        return moved

    def delete_all(self) -> ProcessHandle | None:
        """Start deleting the recycler folder in a detached process.

        Falls back to deleting inline if the background process cannot start.

        Returns:
            Handle of the background deletion, or None if nothing was started

        Raises:
            PurgeTargetError: If the inline fallback failed
        """
        if not directory_exists(self._recycler_folder):
            return None

        argv = self._executor.platform.delete_tree_argv(str(self._recycler_folder))
        try:
            return self._executor.execute_program_async(
                argv,
                working_directory=str(self._recycler_folder.parent),
                detached=True,
            )
        except SpawnError as e:
            logger.warning(
                f"Unable to start background deletion ({e}); deleting {self._recycler_folder} now"
            )
            dangerously_delete_path(self._recycler_folder)
            return None
