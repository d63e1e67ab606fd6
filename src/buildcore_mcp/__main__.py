"""Entry point for buildcore-mcp."""

import argparse
import asyncio
import logging
import os
import sys
import time
from pathlib import Path
from typing import Iterator

from .errors import OrchestratorError
from .purge import WorkspaceLayout, start_purge, wait_for_purge
from .server import PURGE_STARTED_MESSAGE, create_server


def find_workspace_root(root: str | Path | None = None) -> str:
    """Find the monorepo root by walking up from CWD.

    Searches for workspace markers in this order:
    1. rush.json (orchestrator configuration)
    2. .git (git root as fallback)

    Args:
        root: If provided, constrains search to this directory and below.
              Search stops at this boundary.

    Returns:
        Absolute path to workspace root (falls back to CWD if no marker found)
    """
    current = Path.cwd().resolve()
    boundary = Path(root).resolve() if root is not None else None

    def ancestors() -> Iterator[Path]:
        """Yield current directory and ancestors up to boundary."""
        yield current
        if boundary is not None and current == boundary:
            return
        for parent in current.parents:
            yield parent
            if boundary is not None and parent == boundary:
                return

    for directory in ancestors():
        if (directory / "rush.json").is_file():
            return str(directory)

    for directory in ancestors():
        if (directory / ".git").exists():  # .git can be file (worktree) or dir
            return str(directory)

    return str(current)


def configure_logging() -> None:
    """Configure logging based on environment."""
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Buildcore MCP Server - run package scripts and purge caches of a monorepo"
    )
    parser.add_argument(
        "--workspace",
        type=str,
        default=None,
        help="Workspace root path. Commands run inside it and purges target its caches.",
    )
    parser.add_argument(
        "--workspace-from-cwd",
        action="store_true",
        default=False,
        help="Auto-detect workspace from current working directory. "
        "Searches upward for rush.json or .git markers. "
        "Cannot be used with --workspace.",
    )

    subparsers = parser.add_subparsers(dest="command")
    purge_parser = subparsers.add_parser(
        "purge",
        help="For diagnostic purposes, use this command to delete caches and other "
        "temporary files used by the build orchestrator",
    )
    purge_parser.add_argument(
        "--unsafe",
        action="store_true",
        default=False,
        help="(UNSAFE!) Also delete shared files such as package manager installations "
        "stored in the user's home folder. This is NOT safe to use if another build "
        "of any repo is running for the same user.",
    )
    purge_parser.add_argument(
        "--wait",
        action="store_true",
        default=False,
        help="Block until background deletion has finished.",
    )
    return parser.parse_args(argv)


def resolve_workspace(args: argparse.Namespace) -> str:
    """Pick the workspace root from the parsed arguments.

    Raises:
        SystemExit: If --workspace and --workspace-from-cwd are both given
    """
    logger = logging.getLogger(__name__)
    if args.workspace_from_cwd:
        if args.workspace is not None:
            logger.error("--workspace-from-cwd cannot be used with --workspace")
            sys.exit(1)
        workspace = find_workspace_root()
        logger.info(f"Auto-detected workspace root: {workspace}")
        return workspace
    return args.workspace or os.getcwd()


def run_purge(workspace: str, unsafe: bool = False, wait: bool = False) -> int:
    """Run the purge command.

    Returns:
        Process exit code
    """
    logger = logging.getLogger(__name__)
    start = time.perf_counter()
    try:
        layout = WorkspaceLayout.from_workspace(workspace)
        _, handle = start_purge(layout, unsafe=unsafe)
        if wait:
            wait_for_purge(handle)
        else:
            handle.report.raise_for_failures()
    except OrchestratorError as e:
        logger.error(f"Purge failed: {e}")
        return 1

    elapsed = time.perf_counter() - start
    if wait:
        print(f"Purge completed in {elapsed:.2f} seconds.")
    else:
        print(f"{PURGE_STARTED_MESSAGE} ({elapsed:.2f} seconds)")
    return 0


async def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    configure_logging()
    logger = logging.getLogger(__name__)

    args = parse_args(argv)
    workspace = resolve_workspace(args)

    if args.command == "purge":
        sys.exit(run_purge(workspace, unsafe=args.unsafe, wait=args.wait))

    logger.info(f"Starting Buildcore MCP Server (workspace: {workspace})...")

    mcp = create_server(workspace)

    try:
        await mcp.run_stdio_async()
    except Exception:
        logger.exception("Server error")
        raise
    finally:
        logger.info("Server stopped")


def run() -> None:
    """Run the server."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
