"""Tests for CLI entry point."""

import os
from unittest.mock import MagicMock, patch

import pytest

from buildcore_mcp.__main__ import find_workspace_root, parse_args, resolve_workspace, run_purge

posix_only = pytest.mark.skipif(os.name == "nt", reason="runs real POSIX shell commands")


class TestFindWorkspaceRoot:
    """Tests for find_workspace_root function."""

    def test_finds_rush_json(self, tmp_path, monkeypatch):
        """Test that rush.json marks the workspace root."""
        (tmp_path / "rush.json").write_text("{}")
        subdir = tmp_path / "apps" / "web"
        subdir.mkdir(parents=True)
        monkeypatch.chdir(subdir)

        assert find_workspace_root() == str(tmp_path.resolve())

    def test_rush_json_preferred_over_git(self, tmp_path, monkeypatch):
        """Test that rush.json wins over a nearer .git."""
        (tmp_path / "rush.json").write_text("{}")
        nested = tmp_path / "vendor" / "lib"
        nested.mkdir(parents=True)
        (tmp_path / "vendor" / ".git").mkdir()
        monkeypatch.chdir(nested)

        assert find_workspace_root() == str(tmp_path.resolve())

    def test_finds_git_when_no_rush_json(self, tmp_path, monkeypatch):
        """Test that .git is found as fallback."""
        (tmp_path / ".git").mkdir()
        subdir = tmp_path / "src"
        subdir.mkdir()
        monkeypatch.chdir(subdir)

        assert find_workspace_root() == str(tmp_path.resolve())

    def test_respects_boundary(self, tmp_path, monkeypatch):
        """Test that markers above the boundary are ignored."""
        (tmp_path / "rush.json").write_text("{}")
        boundary = tmp_path / "restricted"
        subdir = boundary / "deep"
        subdir.mkdir(parents=True)
        monkeypatch.chdir(subdir)

        assert find_workspace_root(boundary) == str(subdir.resolve())


class TestParseArgs:
    """Tests for argument parsing."""

    def test_server_mode_by_default(self):
        """Test that no subcommand means server mode."""
        args = parse_args([])

        assert args.command is None
        assert args.workspace is None

    def test_purge_flags(self):
        """Test the purge subcommand flags."""
        args = parse_args(["--workspace", "/repo", "purge", "--unsafe"])

        assert args.command == "purge"
        assert args.unsafe is True
        assert args.wait is False
        assert args.workspace == "/repo"

    def test_conflicting_workspace_options_exit(self):
        """Test that --workspace-from-cwd cannot be combined with --workspace."""
        args = parse_args(["--workspace", "/repo", "--workspace-from-cwd"])

        with pytest.raises(SystemExit):
            resolve_workspace(args)


class TestRunPurge:
    """Tests for the purge command."""

    @posix_only
    def test_purge_and_wait(self, tmp_path, monkeypatch, capsys):
        """Test that purge --wait empties the common temp folder."""
        temp = tmp_path / "common" / "temp"
        (temp / "node_modules" / "pkg").mkdir(parents=True)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.delenv("RUSH_TEMP_FOLDER", raising=False)
        monkeypatch.delenv("RUSH_GLOBAL_FOLDER", raising=False)

        assert run_purge(str(tmp_path), wait=True) == 0

        assert os.listdir(temp) == []
        assert "Purge completed in" in capsys.readouterr().out

    def test_reports_started_asynchronously(self, tmp_path, monkeypatch, capsys):
        """Test the message printed when not waiting."""
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setenv("USERPROFILE", str(tmp_path))

        with patch("buildcore_mcp.__main__.start_purge") as mock_start:
            mock_start.return_value = (MagicMock(), MagicMock())
            assert run_purge(str(tmp_path), unsafe=True) == 0

        assert mock_start.call_args.kwargs["unsafe"] is True
        assert "will complete asynchronously" in capsys.readouterr().out

    def test_configuration_error_exits_nonzero(self, tmp_path, monkeypatch):
        """Test that a missing home folder fails the command."""
        monkeypatch.delenv("HOME", raising=False)
        monkeypatch.delenv("USERPROFILE", raising=False)
        monkeypatch.delenv("RUSH_GLOBAL_FOLDER", raising=False)

        assert run_purge(str(tmp_path)) == 1
