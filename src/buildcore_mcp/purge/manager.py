"""Purge orchestration - normal and unsafe cache tiers.

Tiers:
- normal: everything under the workspace's common temp folder. Only this repo
  uses it, so it is safe to purge while other repos are building.
- unsafe: everything under the user's shared folder (package manager installs,
  shared stores). Purging it can break builds running anywhere else for the
  same user, so callers register it only on explicit request.

``purge()`` moves targets aside synchronously and returns while the actual
deletion continues in the background. ``PurgeHandle.wait()`` observes it.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import LockTimeoutError, PurgeError, PurgeTargetError
from ..process.executor import ProcessExecutor, ProcessHandle
from .layout import WorkspaceLayout
from .recycler import MOVE_FOLDER_MAX_WAIT_MS, AsyncRecycler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PurgeTargetSet:
    """Registered purge targets. The two tiers never share a path."""

    normal_targets: tuple[Path, ...] = ()
    unsafe_targets: tuple[Path, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "normalTargets": [str(p) for p in self.normal_targets],
            "unsafeTargets": [str(p) for p in self.unsafe_targets],
        }


@dataclass
class PurgeReport:
    """Outcome of a purge pass."""

    moved: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    failures: list[PurgeTargetError] = field(default_factory=list)
    deleting: list[Path] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        """Raise PurgeError if any target failed."""
        if self.failures:
            raise PurgeError(self.failures)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "moved": [str(p) for p in self.moved],
            "skipped": [str(p) for p in self.skipped],
            "deleting": [str(p) for p in self.deleting],
            "failures": [str(f) for f in self.failures],
        }


class PurgeHandle:
    """Background deletion started by ``PurgeManager.purge``."""

    def __init__(self, report: PurgeReport, deleters: list[tuple[Path, ProcessHandle]]):
        self._report = report
        self._deleters = deleters
        # Deleters whose outcome is not yet in the report
        self._pending = list(deleters)

    @property
    def report(self) -> PurgeReport:
        return self._report

    @property
    def done(self) -> bool:
        """Whether every background deletion has finished."""
        return all(handle.poll() is not None for _, handle in self._deleters)

    def wait(self, timeout: float | None = None) -> PurgeReport:
        """Block until background deletion completes.

        Raises:
            subprocess.TimeoutExpired: If a deleter is still running after ``timeout``;
                calling ``wait`` again resumes with that deleter
        """
        while self._pending:
            folder, handle = self._pending[0]
            result = handle.wait(timeout)
            self._pending.pop(0)
            if not result.succeeded:
                failure = PurgeTargetError(
                    folder, f"background deletion exited with status {result.exit_status}"
                )
                logger.warning(str(failure))
                self._report.failures.append(failure)

        return self._report


class PurgeManager:
    """Collects disposable folders and deletes them.

    Usage:
        manager = PurgeManager(WorkspaceLayout.from_workspace("/repo"))
        manager.register_normal_targets()
        if unsafe:
            manager.register_unsafe_targets()
        handle = manager.purge()
    """

    def __init__(
        self,
        layout: WorkspaceLayout,
        executor: ProcessExecutor | None = None,
        max_wait_time_ms: float = MOVE_FOLDER_MAX_WAIT_MS,
    ):
        self._layout = layout
        executor = executor or ProcessExecutor()
        self._normal_recycler = AsyncRecycler(
            layout.common_temp_recycler, executor, max_wait_time_ms
        )
        self._unsafe_recycler = AsyncRecycler(layout.user_recycler, executor, max_wait_time_ms)
        self._normal_targets: list[Path] = []
        self._unsafe_targets: list[Path] = []
        self._normal_registered = False
        self._unsafe_registered = False

    @property
    def layout(self) -> WorkspaceLayout:
        return self._layout

    @property
    def target_set(self) -> PurgeTargetSet:
        return PurgeTargetSet(tuple(self._normal_targets), tuple(self._unsafe_targets))

    def _members(self, folder: Path, recycler: AsyncRecycler) -> list[Path]:
        """Entries of ``folder`` except the recycler folder itself."""
        try:
            entries = sorted(os.scandir(folder), key=lambda entry: entry.name)
        except FileNotFoundError:
            return []
        excluded = os.path.normcase(str(recycler.recycler_folder))
        return [
            Path(entry.path)
            for entry in entries
            if os.path.normcase(entry.path) != excluded
        ]

    def _register(
        self, candidates: list[Path], tier: list[Path], other_tier: list[Path]
    ) -> list[Path]:
        added: list[Path] = []
        for path in candidates:
            if path in tier or path in other_tier:
                logger.debug(f"Already registered: {path}")
                continue
            tier.append(path)
            added.append(path)
        return added

    def register_normal_targets(self) -> list[Path]:
        """Register the workspace-local cache folders.

        Returns:
            Newly registered paths
        """
        folder = self._layout.common_temp_folder
        logger.info(f"Purging {folder}")
        self._normal_registered = True
        return self._register(
            self._members(folder, self._normal_recycler),
            self._normal_targets,
            self._unsafe_targets,
        )

    def register_unsafe_targets(self) -> list[Path]:
        """Register the user-wide shared folders.

        Only call this when the user explicitly asked for it: other builds of
        any repo may be using these files right now.

        Returns:
            Newly registered paths
        """
        folder = self._layout.user_folder
        logger.info(f"Purging {folder}")
        self._unsafe_registered = True
        return self._register(
            self._members(folder, self._unsafe_recycler),
            self._unsafe_targets,
            self._normal_targets,
        )

    def _move_all(
        self, recycler: AsyncRecycler, targets: list[Path], report: PurgeReport
    ) -> None:
        for target in targets:
            try:
                moved = recycler.move_folder(target)
            except (LockTimeoutError, OSError) as e:
                failure = PurgeTargetError(target, str(e))
                logger.warning(str(failure))
                report.failures.append(failure)
                continue

            if moved is None:
                report.skipped.append(target)
            else:
                report.moved.append(target)

    def purge(self) -> PurgeHandle:
        """Remove every registered target.

        Missing targets are skipped and a failing target does not stop the
        others. Deletion continues after this method returns.

        Returns:
            Handle to observe the background deletion
        """
        report = PurgeReport()
        tiers: list[tuple[AsyncRecycler, list[Path]]] = []
        if self._normal_registered:
            tiers.append((self._normal_recycler, self._normal_targets))
        if self._unsafe_registered:
            tiers.append((self._unsafe_recycler, self._unsafe_targets))

        for recycler, targets in tiers:
            self._move_all(recycler, targets, report)

        deleters: list[tuple[Path, ProcessHandle]] = []
        for recycler, _ in tiers:
            try:
                handle = recycler.delete_all()
            except PurgeTargetError as e:
                logger.warning(str(e))
                report.failures.append(e)
                continue
            if handle is not None:
                deleters.append((recycler.recycler_folder, handle))
                report.deleting.append(recycler.recycler_folder)

        logger.info(
            f"Purge started: {len(report.moved)} moved, {len(report.skipped)} missing, "
            f"{len(report.failures)} failed"
        )
        return PurgeHandle(report, deleters)


def start_purge(
    layout: WorkspaceLayout,
    unsafe: bool = False,
    executor: ProcessExecutor | None = None,
) -> tuple[PurgeTargetSet, PurgeHandle]:
    """Register the normal tier, the unsafe tier if requested, then purge."""
    manager = PurgeManager(layout, executor)
    manager.register_normal_targets()
    if unsafe:
        manager.register_unsafe_targets()
    return manager.target_set, manager.purge()


def wait_for_purge(handle: PurgeHandle, timeout: float | None = None) -> PurgeReport:
    """Wait for a purge and raise PurgeError if anything failed."""
    try:
        report = handle.wait(timeout)
    except subprocess.TimeoutExpired:
        logger.warning(f"Purge still running after {timeout}s")
        raise
    report.raise_for_failures()
    return report
