"""Locations of disposable state for a workspace and for the current user."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from ..process.filesystem import get_home_directory
from ..process.platform import PlatformCapabilities

RECYCLER_FOLDER_NAME = "rush-recycler"
USER_FOLDER_NAME = ".rush"

# Environment overrides
TEMP_FOLDER_VARIABLE = "RUSH_TEMP_FOLDER"
GLOBAL_FOLDER_VARIABLE = "RUSH_GLOBAL_FOLDER"


@dataclass(frozen=True)
class WorkspaceLayout:
    """Cache folders of one workspace.

    ``common_temp_folder`` belongs to this repo only. ``user_folder`` is shared
    by every repo of the current user (package manager installs, shared store).
    """

    workspace_root: Path
    common_temp_folder: Path
    user_folder: Path

    @property
    def common_temp_recycler(self) -> Path:
        return self.common_temp_folder / RECYCLER_FOLDER_NAME

    @property
    def user_recycler(self) -> Path:
        return self.user_folder / RECYCLER_FOLDER_NAME

    @classmethod
    def from_workspace(
        cls,
        workspace_root: str | os.PathLike[str],
        environ: Mapping[str, str] | None = None,
        platform: PlatformCapabilities | None = None,
    ) -> WorkspaceLayout:
        """Resolve the layout for a workspace, honoring environment overrides."""
        environ = os.environ if environ is None else environ
        root = Path(workspace_root).resolve()

        temp_override = environ.get(TEMP_FOLDER_VARIABLE)
        common_temp = (
            Path(temp_override).resolve() if temp_override else root / "common" / "temp"
        )

        global_override = environ.get(GLOBAL_FOLDER_VARIABLE)
        if global_override:
            user_folder = Path(global_override).resolve()
        else:
            user_folder = get_home_directory(platform, environ) / USER_FOLDER_NAME

        return cls(workspace_root=root, common_temp_folder=common_temp, user_folder=user_folder)
