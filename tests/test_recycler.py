"""Tests for move-aside folder recycling."""

import os
from unittest.mock import MagicMock, patch

import pytest

from buildcore_mcp.errors import LockTimeoutError, SpawnError
from buildcore_mcp.process.executor import ProcessExecutor
from buildcore_mcp.process.platform import posix_capabilities
from buildcore_mcp.purge.recycler import AsyncRecycler

posix_only = pytest.mark.skipif(os.name == "nt", reason="runs real POSIX shell commands")


class TestMoveFolder:
    """Tests for AsyncRecycler.move_folder."""

    def test_moves_into_recycler(self, tmp_path):
        """Test that the source disappears and lands in the recycler."""
        source = tmp_path / "node_modules"
        source.mkdir()
        (source / "a.js").write_text("x")
        recycler = AsyncRecycler(tmp_path / "rush-recycler")

        moved = recycler.move_folder(source)

        assert not source.exists()
        assert moved.parent == tmp_path / "rush-recycler"
        assert (moved / "a.js").read_text() == "x"
        assert recycler.moved_count == 1

    def test_missing_source_returns_none(self, tmp_path):
        """Test that a missing path is skipped without creating the recycler."""
        recycler = AsyncRecycler(tmp_path / "rush-recycler")

        assert recycler.move_folder(tmp_path / "missing") is None
        assert not (tmp_path / "rush-recycler").exists()

    def test_destinations_are_unique(self, tmp_path):
        """Test that several moves never collide."""
        recycler = AsyncRecycler(tmp_path / "rush-recycler")
        for name in ("a", "b", "c"):
            (tmp_path / name).mkdir()

        moved = [recycler.move_folder(tmp_path / name) for name in ("a", "b", "c")]

        assert len(set(moved)) == 3

    def test_persistent_lock_times_out(self, tmp_path):
        """Test that a rename that keeps failing raises LockTimeoutError."""
        source = tmp_path / "locked"
        source.mkdir()
        recycler = AsyncRecycler(tmp_path / "rush-recycler", max_wait_time_ms=30)

        with patch(
            "buildcore_mcp.purge.recycler.os.rename",
            side_effect=PermissionError("EBUSY"),
        ):
            with pytest.raises(LockTimeoutError, match="EBUSY"):
                recycler.move_folder(source)

        assert source.exists()


class TestDeleteAll:
    """Tests for AsyncRecycler.delete_all."""

    def test_no_recycler_folder_returns_none(self, tmp_path):
        """Test that nothing is started when nothing was moved."""
        executor = MagicMock(spec=ProcessExecutor)
        recycler = AsyncRecycler(tmp_path / "rush-recycler", executor)

        assert recycler.delete_all() is None
        executor.execute_program_async.assert_not_called()

    def test_starts_detached_delete_command(self, tmp_path):
        """Test the background deletion command line."""
        (tmp_path / "rush-recycler").mkdir()
        executor = MagicMock(spec=ProcessExecutor)
        executor.platform = posix_capabilities()
        recycler = AsyncRecycler(tmp_path / "rush-recycler", executor)

        handle = recycler.delete_all()

        assert handle is executor.execute_program_async.return_value
        args, kwargs = executor.execute_program_async.call_args
        assert args[0] == ["rm", "-rf", "--", str(tmp_path / "rush-recycler")]
        assert kwargs["working_directory"] == str(tmp_path)
        assert kwargs["detached"] is True

    def test_falls_back_to_inline_delete(self, tmp_path):
        """Test that a spawn failure deletes the folder directly."""
        folder = tmp_path / "rush-recycler"
        (folder / "1").mkdir(parents=True)
        executor = MagicMock(spec=ProcessExecutor)
        executor.platform = posix_capabilities()
        executor.execute_program_async.side_effect = SpawnError(
            FileNotFoundError("sh")
        )
        recycler = AsyncRecycler(folder, executor)

        assert recycler.delete_all() is None
        assert not folder.exists()

    @posix_only
    def test_background_delete_removes_folder(self, tmp_path):
        """Test the real detached deletion."""
        source = tmp_path / "cache"
        (source / "deep" / "tree").mkdir(parents=True)
        recycler = AsyncRecycler(tmp_path / "rush-recycler", ProcessExecutor(posix_capabilities()))
        recycler.move_folder(source)

        handle = recycler.delete_all()

        assert handle.wait(timeout=30).exit_status == 0
        assert not (tmp_path / "rush-recycler").exists()

    @posix_only
    def test_dollar_in_path_deletes_only_own_recycler(self, tmp_path, monkeypatch):
        """Test that a $ in the workspace path is never expanded by a shell."""
        monkeypatch.delenv("NOPE_UNSET_VAR", raising=False)
        other = tmp_path / "repo" / "rush-recycler"
        (other / "unrelated").mkdir(parents=True)
        own_root = tmp_path / "repo$NOPE_UNSET_VAR"
        (own_root / "cache").mkdir(parents=True)
        recycler = AsyncRecycler(own_root / "rush-recycler", ProcessExecutor(posix_capabilities()))
        recycler.move_folder(own_root / "cache")

        handle = recycler.delete_all()

        assert handle.wait(timeout=30).exit_status == 0
        assert (other / "unrelated").is_dir()
        assert not (own_root / "rush-recycler").exists()
