"""Trac MCP Server - Expose WordPress Trac to AI assistants over stdio."""
import sys
import asyncio
import logging
import traceback
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    Tool,
    TextContent,
    ImageContent,
    EmbeddedResource,
)

from trac_core.cache import TicketCache
from trac_core.config import get_settings
from trac_core.fetchers import open_client

from . import tools
from . import handlers


settings = get_settings()

# Configure logging to stderr (stdout carries the MCP stream)
logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stderr,
    force=True
)
logger = logging.getLogger("trac-mcp")

logger.info(f"MCP Server starting with TRAC_BASE_URL: {settings.trac_base_url}")


# MCP Server instance
app = Server("trac-mcp")

# Write-through ticket cache handed to every handler; never read for answers
ticket_cache = TicketCache(max_size=settings.cache_size)


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available MCP tools for WordPress Trac."""
    return tools.get_tools()


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent | ImageContent | EmbeddedResource]:
    """Handle MCP tool calls by delegating to shared handlers."""
    logger.info(f"Tool call: {name} with arguments: {arguments}")

    # Leaving the block closes the client, aborting requests of a cancelled call
    async with open_client(settings) as client:
        try:
            return await handlers.dispatch(name, arguments, client, ticket_cache)

        except handlers.UnknownToolError as e:
            return [TextContent(type="text", text=str(e))]

        except KeyError as e:
            logger.warning(f"Missing argument {e} for {name}")
            return [TextContent(type="text", text=f"Error: missing required argument {e}")]

        except Exception as e:
            # Catch-all for unexpected errors
            logger.error(f"Unexpected error during {name} call:")
            logger.error(f"  Error type: {type(e).__name__}")
            logger.error(f"  Error message: {str(e)}")
            logger.error(f"  Arguments: {arguments}")
            logger.error(f"  Traceback:\n{traceback.format_exc()}")
            return [TextContent(type="text", text=f"Error: {type(e).__name__}: {str(e)}")]


async def main():
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
