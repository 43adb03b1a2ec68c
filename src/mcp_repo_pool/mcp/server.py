"""MCP server implementation for MCP Repo Pool."""

import asyncio
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger
from mcp.server import Server
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server
from mcp.types import (
    CallToolRequest,
    CallToolResult,
    ServerCapabilities,
    TextContent,
    Tool,
)

from ..core.config import PoolSettings
from ..core.exceptions import RepoPoolError
from ..core.iterator import QueryContext, Session, new_row_repo_iter
from ..core.registry import RepositoryPool
from ..core.rows import CommitsRowRepoIter

MAX_COMMITS = 1000


def _text_result(text: str, is_error: bool = False) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)], isError=is_error)


class MCPRepoPoolServer:
    """MCP server exposing a pool of git repositories.

    The pool is populated on initialization from the configured directory
    trees and archive trees, and can be extended with the register tools.
    """

    def __init__(self, settings: PoolSettings | None = None):
        """Initialize the MCP server.

        Args:
            settings: Pool settings. If None, they are read from the
                      MCP_REPO_POOL_* environment variables.
        """
        self.settings = settings or PoolSettings.from_env()
        self.pool = RepositoryPool(self.settings)
        self._initialized = False

        logger.info(f"Repository pool staging directory: {self.settings.staging_dir}")

    async def initialize(self) -> None:
        """Populate the pool from the configured directories."""
        if self._initialized:
            return

        try:
            for directory in self.settings.directories:
                added = await asyncio.to_thread(self.pool.register_directory_tree, directory)
                logger.info(f"Registered {len(added)} repositories from {directory}")

            for directory in self.settings.archive_dirs:
                added = await asyncio.to_thread(self.pool.register_archive_tree, directory)
                logger.info(f"Registered {len(added)} archived repositories from {directory}")

            self._initialized = True
            logger.info(f"MCP server initialized with {len(self.pool)} repositories")

        except Exception as e:
            logger.error(f"Failed to initialize MCP server: {e}")
            raise

    async def cleanup(self) -> None:
        """Cleanup resources."""
        removed = self.pool.staging.cleanup()
        if removed:
            logger.debug(f"Removed {removed} staging directories")

        self._initialized = False
        logger.info("MCP server cleanup completed")

    def get_tools(self) -> list[Tool]:
        """Get available MCP tools."""
        repo_id_prop = {"type": "string", "description": "Repository ID in the pool"}

        return [
            Tool(
                name="register_repo",
                description="Register a git repository directory in the pool",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "repo_path": {
                            "type": "string",
                            "description": "Path to the repository directory",
                        },
                        "repo_id": {
                            "type": "string",
                            "description": "Unique ID (defaults to the path)",
                        },
                    },
                    "required": ["repo_path"],
                },
            ),
            Tool(
                name="register_directory_tree",
                description="Register every direct subdirectory of a path as a repository",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "path": {
                            "type": "string",
                            "description": "Directory holding one repository per subdirectory",
                        },
                        "id_prefix_strip": {
                            "type": "integer",
                            "description": "Leading path segments removed from the IDs",
                            "default": 0,
                            "minimum": 0,
                        },
                    },
                    "required": ["path"],
                },
            ),
            Tool(
                name="register_archive_tree",
                description="Register archived repositories found in a directory and its children",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "path": {
                            "type": "string",
                            "description": "Directory holding archive files",
                        },
                    },
                    "required": ["path"],
                },
            ),
            Tool(
                name="list_repos",
                description="List the repositories registered in the pool",
                inputSchema={"type": "object", "properties": {}, "required": []},
            ),
            Tool(
                name="get_repo_status",
                description="Open a repository and report its HEAD and branches",
                inputSchema={
                    "type": "object",
                    "properties": {"repo_id": repo_id_prop},
                    "required": ["repo_id"],
                },
            ),
            Tool(
                name="list_commits",
                description="List commits across every repository in the pool",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "limit": {
                            "type": "integer",
                            "description": "Maximum number of commits to return",
                            "default": 50,
                            "minimum": 1,
                            "maximum": MAX_COMMITS,
                        },
                        "skip_git_errors": {
                            "type": "boolean",
                            "description": "Skip repositories that fail instead of aborting",
                        },
                    },
                    "required": [],
                },
            ),
        ]

    def get_capabilities(self) -> ServerCapabilities:
        """Get server capabilities."""
        return ServerCapabilities(tools={"listChanged": True}, logging={})

    async def call_tool(self, request: CallToolRequest) -> CallToolResult:
        """Handle tool calls."""
        if not self._initialized:
            await self.initialize()

        name = request.params.name
        args = request.params.arguments or {}

        try:
            if name == "register_repo":
                return await self._register_repo(args)
            elif name == "register_directory_tree":
                return await self._register_directory_tree(args)
            elif name == "register_archive_tree":
                return await self._register_archive_tree(args)
            elif name == "list_repos":
                return await self._list_repos(args)
            elif name == "get_repo_status":
                return await self._get_repo_status(args)
            elif name == "list_commits":
                return await self._list_commits(args)
            else:
                return _text_result(f"Unknown tool: {name}", is_error=True)
        except Exception as e:
            logger.error(f"Tool call failed: {e}")
            return _text_result(f"Tool execution failed: {str(e)}", is_error=True)

    async def _register_repo(self, args: dict[str, Any]) -> CallToolResult:
        """Handle register_repo tool call."""
        repo_path_str = args.get("repo_path", "")
        if not repo_path_str:
            return _text_result("repo_path parameter is required", is_error=True)

        repo_path = Path(repo_path_str).resolve()
        try:
            backend = await asyncio.to_thread(
                self.pool.register_directory, repo_path, args.get("repo_id")
            )
        except RepoPoolError as e:
            logger.error(f"Failed to register repository: {e}")
            return _text_result(f"Failed to register repository: {e}", is_error=True)

        response_lines = [
            "# Repository Registered Successfully\n",
            f"**ID:** {backend.id}",
            f"**Path:** {backend.path}",
            f"**Kind:** {backend.kind.value}",
        ]
        return _text_result("\n".join(response_lines))

    async def _register_directory_tree(self, args: dict[str, Any]) -> CallToolResult:
        """Handle register_directory_tree tool call."""
        path_str = args.get("path", "")
        if not path_str:
            return _text_result("path parameter is required", is_error=True)

        added = await asyncio.to_thread(
            self.pool.register_directory_tree,
            Path(path_str).resolve(),
            args.get("id_prefix_strip", 0),
        )
        return _text_result(self._format_added(added, path_str))

    async def _register_archive_tree(self, args: dict[str, Any]) -> CallToolResult:
        """Handle register_archive_tree tool call."""
        path_str = args.get("path", "")
        if not path_str:
            return _text_result("path parameter is required", is_error=True)

        added = await asyncio.to_thread(self.pool.register_archive_tree, Path(path_str).resolve())
        return _text_result(self._format_added(added, path_str))

    def _format_added(self, added: list, path_str: str) -> str:
        response_lines = [f"# Registered {len(added)} repositories from {path_str}\n"]
        response_lines.extend(f"- {backend.id} ({backend.kind.value})" for backend in added)
        response_lines.append("")
        response_lines.append(f"Pool now holds {len(self.pool)} repositories.")
        return "\n".join(response_lines)

    async def _list_repos(self, args: dict[str, Any]) -> CallToolResult:
        """Handle list_repos tool call."""
        backends = self.pool.backends()
        if not backends:
            return _text_result(
                "No repositories registered. Use `register_repo` to add one."
            )

        response_lines = [f"# Registered Repositories ({len(backends)})\n"]
        for backend in backends:
            response_lines.extend(
                [
                    f"## {backend.id}",
                    f"**Path:** {backend.path}",
                    f"**Kind:** {backend.kind.value}",
                    "",
                ]
            )
        return _text_result("\n".join(response_lines))

    async def _get_repo_status(self, args: dict[str, Any]) -> CallToolResult:
        """Handle get_repo_status tool call."""
        repo_id = args.get("repo_id")
        if not repo_id:
            return _text_result("repo_id parameter is required", is_error=True)

        try:
            repository = await asyncio.to_thread(self.pool.lookup, repo_id)
        except RepoPoolError as e:
            return _text_result(f"Failed to open repository: {e}", is_error=True)

        with repository:
            repo = repository.repo
            response_lines = [f"# Repository Status: {repo_id}\n"]
            response_lines.append(f"**Bare:** {'Yes' if repo.bare else 'No'}")
            if repo.head.is_valid():
                head = repo.head.commit
                response_lines.append(f"**HEAD:** {head.hexsha}")
                response_lines.append(f"**Last commit:** {head.summary}")
            else:
                response_lines.append("**HEAD:** (no commits)")
            branches = [branch.name for branch in repo.heads]
            response_lines.append(f"**Branches:** {', '.join(branches) or 'None'}")

        return _text_result("\n".join(response_lines))

    async def _list_commits(self, args: dict[str, Any]) -> CallToolResult:
        """Handle list_commits tool call."""
        limit = args.get("limit", 50)
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_COMMITS:
            return _text_result(
                f"limit must be an integer between 1 and {MAX_COMMITS}", is_error=True
            )
        skip_git_errors = args.get("skip_git_errors", self.settings.skip_git_errors)

        ctx = QueryContext(Session(self.pool, skip_git_errors=skip_git_errors))
        rows = await asyncio.to_thread(self._collect_rows, ctx, limit)

        if not rows:
            return _text_result("No commits found.")

        response_lines = [f"# Commits ({len(rows)})\n"]
        for repo_id, hexsha, author, committed_at, summary in rows:
            when = datetime.fromtimestamp(committed_at, tz=timezone.utc).isoformat()
            response_lines.append(f"- `{repo_id}` {hexsha[:8]} {when} {author}: {summary}")
        return _text_result("\n".join(response_lines))

    def _collect_rows(self, ctx: QueryContext, limit: int) -> list[tuple]:
        rows = []
        with new_row_repo_iter(ctx, CommitsRowRepoIter()) as row_iter:
            for row in row_iter:
                rows.append(row)
                if len(rows) >= limit:
                    break
        return rows


def create_mcp_server(settings: PoolSettings | None = None) -> Server:
    """Create and configure the MCP server.

    Args:
        settings: Pool settings. If None, they are read from the environment.
    """
    server = Server("mcp-repo-pool")
    mcp_server = MCPRepoPoolServer(settings=settings)

    @server.list_tools()
    async def handle_list_tools() -> list[Tool]:
        """List available tools."""
        return mcp_server.get_tools()

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: dict | None):
        """Handle tool calls."""
        from types import SimpleNamespace

        request = SimpleNamespace(
            params=SimpleNamespace(name=name, arguments=arguments or {})
        )
        result = await mcp_server.call_tool(request)
        return result.content

    # Store reference for cleanup
    server._mcp_server = mcp_server

    return server


async def run_mcp_server(settings: PoolSettings | None = None) -> None:
    """Run the MCP server using stdio transport."""
    server = create_mcp_server(settings)

    init_options = InitializationOptions(
        server_name="mcp-repo-pool",
        server_version="0.1.0",
        capabilities=ServerCapabilities(tools={"listChanged": True}, logging={}),
    )

    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, init_options)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"MCP server error: {e}")
        raise
    finally:
        if hasattr(server, "_mcp_server"):
            logger.info("Performing server cleanup...")
            await server._mcp_server.cleanup()


def main() -> None:
    """Console entry point."""
    # stdout carries the MCP protocol, logs go to stderr
    logger.remove()
    logger.add(sys.stderr, level=os.getenv("MCP_REPO_POOL_LOG_LEVEL", "INFO").upper())

    settings = PoolSettings.from_env()
    if "--skip-git-errors" in sys.argv:
        settings.skip_git_errors = True
        sys.argv.remove("--skip-git-errors")

    for arg in sys.argv[1:]:
        settings.directories.append(Path(arg))

    asyncio.run(run_mcp_server(settings))


if __name__ == "__main__":
    main()
