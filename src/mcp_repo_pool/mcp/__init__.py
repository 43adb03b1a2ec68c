"""MCP server integration for MCP Repo Pool."""
