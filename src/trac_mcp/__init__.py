"""Trac MCP Server - Model Context Protocol integration.

This package exposes WordPress Trac tickets, changesets and timeline to AI
assistants.

Modules:
- server: stdio MCP server implementation
- http_app: JSON-RPC over HTTP transport
- tools: MCP tool definitions
- handlers: Tool implementation handlers
"""

__version__ = "1.0.0"

from . import tools
from . import handlers

__all__ = ["tools", "handlers", "__version__"]
