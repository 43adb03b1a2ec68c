"""MCP Repo Pool: a pool of git repositories exposed as one row stream."""

__version__ = "0.1.0"
