"""Cache purge orchestration.

Provides:
- Normal (workspace-local) and unsafe (user-shared) purge tiers
- Move-aside recycling with detached background deletion
- Idempotent, per-target failure reporting
"""

from .layout import RECYCLER_FOLDER_NAME, WorkspaceLayout
from .manager import (
    PurgeHandle,
    PurgeManager,
    PurgeReport,
    PurgeTargetSet,
    start_purge,
    wait_for_purge,
)
from .recycler import AsyncRecycler

__all__ = [
    "RECYCLER_FOLDER_NAME",
    "WorkspaceLayout",
    "PurgeHandle",
    "PurgeManager",
    "PurgeReport",
    "PurgeTargetSet",
    "start_purge",
    "wait_for_purge",
    "AsyncRecycler",
]
