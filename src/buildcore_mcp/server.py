"""MCP Server exposing the orchestrator core."""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import os
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from mcp.server.fastmcp import Context, FastMCP

from .errors import ProcessExecutionError
from .process import CommandInvocation, ProcessExecutor, StdioMode
from .purge import PurgeHandle, WorkspaceLayout, start_purge

logger = logging.getLogger(__name__)

T = TypeVar("T")

PURGE_STARTED_MESSAGE = "Purge started successfully and will complete asynchronously."


def resolve_working_directory(workspace_root: str, cwd: str | None) -> str:
    """Resolve a tool-supplied working directory inside the workspace.

    Args:
        workspace_root: Absolute workspace root
        cwd: Directory relative to the workspace, absolute, or None for the root

    Returns:
        Absolute path of an existing directory within the workspace

    Raises:
        ValueError: If the directory is outside the workspace or does not exist
    """
    root = os.path.normpath(os.path.abspath(workspace_root))
    if not cwd:
        return root

    candidate = cwd if os.path.isabs(cwd) else os.path.join(root, cwd)
    candidate = os.path.normpath(os.path.abspath(candidate))
    try:
        common = os.path.commonpath([candidate, root])
    except ValueError as e:
        raise ValueError(f"Working directory outside workspace: {cwd}") from e
    if os.path.normcase(common) != os.path.normcase(root):
        raise ValueError(f"Working directory outside workspace: {cwd}")
    if not os.path.isdir(candidate):
        raise ValueError(f"Working directory does not exist: {cwd}")
    return candidate


def _failure(error: Exception) -> dict[str, Any]:
    response: dict[str, Any] = {"success": False, "error": str(error)}
    if isinstance(error, ProcessExecutionError) and error.result is not None:
        response["data"] = error.result.to_dict()
    return response


def create_server(workspace_root: str | None = None) -> FastMCP:
    """Create and configure the MCP server.

    Args:
        workspace_root: Root of the monorepo. Commands run inside it and
            purges target its common temp folder.
    """
    root = os.path.abspath(workspace_root or os.getcwd())
    mcp = FastMCP("buildcore-mcp")
    executor = ProcessExecutor()
    pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="buildcore")
    purge_lock = asyncio.Lock()
    last_purge: PurgeHandle | None = None

    async def run_blocking(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(pool, functools.partial(fn, *args, **kwargs))

    from pydantic import AnyUrl

    async def notify_purge_changed(ctx: Context) -> None:
        """Notify client that purge://status resource has changed."""
        try:
            if ctx.session:
                await ctx.session.send_resource_updated(AnyUrl("purge://status"))
        except Exception:
            pass  # Notification failure shouldn't break the tool

    def purge_status() -> dict[str, Any]:
        if last_purge is None:
            return {"status": "idle"}
        if not last_purge.done:
            return {"status": "running", "report": last_purge.report.to_dict()}
        report = last_purge.wait()
        return {"status": "completed", "report": report.to_dict()}

    # ============== Command Tools ==============

    @mcp.tool()
    async def run_command(
        command: str,
        args: list[str] | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        max_attempts: int = 1,
    ) -> dict:
        """
        Run a command through the platform shell with a sanitized environment.

        NPM_CONFIG_* and INIT_CWD variables are removed from the environment.
        Output is captured and returned. On Windows, npm-style .cmd shims are
        resolved automatically.

        Args:
            command: Executable name or path (e.g. "npm", "pnpm")
            args: Arguments; each one is quoted for the shell
            cwd: Working directory relative to the workspace root
            env: Base environment to use instead of the server's own
            max_attempts: Retry the whole command up to this many times
        """
        try:
            invocation = CommandInvocation(
                command=command,
                arguments=args or [],
                working_directory=resolve_working_directory(root, cwd),
                environment=env,
                stdio_mode=StdioMode.CAPTURE,
            )
            result = await run_blocking(executor.execute_with_retry, invocation, max_attempts)
            return {"success": True, "data": result.to_dict()}
        except Exception as e:
            return _failure(e)

    @mcp.tool()
    async def run_lifecycle_command(
        command: str,
        cwd: str | None = None,
        init_cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> dict:
        """
        Run a package lifecycle script (a raw shell command line).

        The script runs via "cmd /d /s /c" on Windows and "sh -c" elsewhere.
        INIT_CWD is set to init_cwd (default: the working directory) so scripts
        can locate the .npmrc of the folder the install started from.

        Args:
            command: Shell command line, e.g. "tsc && jest"
            cwd: Working directory relative to the workspace root
            init_cwd: Directory exported as INIT_CWD
            env: Base environment to use instead of the server's own
        """
        try:
            working_directory = resolve_working_directory(root, cwd)
            result = await run_blocking(
                executor.execute_lifecycle_command,
                command,
                working_directory,
                init_cwd or working_directory,
                capture_output=True,
                environment=env,
            )
            return {"success": True, "data": result.to_dict()}
        except Exception as e:
            return _failure(e)

    # ============== Purge Tools ==============

    @mcp.tool()
    async def purge(ctx: Context, unsafe: bool = False) -> dict:
        """
        Delete caches and temporary files used by the build orchestrator.

        Returns as soon as deletion has started; use get_purge_status to
        follow it.

        Args:
            unsafe: (UNSAFE!) Also delete shared files in the user's home
                folder, such as package manager installations. NOT safe while
                any other build of any repo is running for this user.
        """
        nonlocal last_purge
        async with purge_lock:
            try:
                layout = WorkspaceLayout.from_workspace(root)
                targets, handle = await run_blocking(start_purge, layout, unsafe, executor)
                last_purge = handle
                await notify_purge_changed(ctx)
                return {
                    "success": True,
                    "data": {
                        "message": PURGE_STARTED_MESSAGE,
                        "targets": targets.to_dict(),
                        "report": handle.report.to_dict(),
                    },
                }
            except Exception as e:
                return _failure(e)

    @mcp.tool()
    async def get_purge_status() -> dict:
        """Get the status of the most recent purge."""
        try:
            return {"success": True, "data": purge_status()}
        except Exception as e:
            return _failure(e)

    # ============== Resources ==============

    @mcp.resource("purge://status", mime_type="application/json")
    async def purge_status_resource() -> str:
        """Most recent purge (JSON).

        Contains: status (idle/running/completed), moved/skipped/failed targets.
        Updates when: a purge starts.
        """
        return json.dumps(purge_status(), indent=2)

    logger.info(f"Buildcore MCP Server initialized (workspace: {root})")
    return mcp
