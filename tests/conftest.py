"""Pytest fixtures for buildcore-mcp tests."""

import pytest
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from buildcore_mcp.process import environment as environment_module  # noqa: E402
from buildcore_mcp.purge import WorkspaceLayout  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_ambient_environment():
    """Re-read os.environ for every test so monkeypatch.setenv is visible."""
    environment_module._ambient_snapshot.cache_clear()
    yield
    environment_module._ambient_snapshot.cache_clear()


@pytest.fixture
def npm_polluted_environment():
    """Environment as seen from inside an npm lifecycle script."""
    return {
        "PATH": os.environ.get("PATH", ""),
        "NPM_CONFIG_REGISTRY": "https://registry.example.com/",
        "npm_config_cache": "/tmp/npm-cache",
        "INIT_CWD": "/somewhere/else",
        "KEEP_ME": "1",
    }


@pytest.fixture
def workspace(tmp_path):
    """Workspace with populated common temp and user folders."""
    root = tmp_path / "repo"
    temp = root / "common" / "temp"
    (temp / "node_modules" / "pkg").mkdir(parents=True)
    (temp / "node_modules" / "pkg" / "index.js").write_text("module.exports = 1;\n")
    (temp / "pnpm-store").mkdir()
    (temp / "shrinkwrap-deps.json").write_text("{}")

    user = tmp_path / "home" / ".rush"
    (user / "node-v18").mkdir(parents=True)
    (user / "node-v18" / "bin").write_text("#!/bin/sh\n")

    layout = WorkspaceLayout(
        workspace_root=root.resolve(),
        common_temp_folder=temp.resolve(),
        user_folder=user.resolve(),
    )
    return layout
