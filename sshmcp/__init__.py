"""MCP server offering SSH command execution, SCP file transfer and directory listing tools, with a matching HTTP client."""

__version__ = "0.1.0"