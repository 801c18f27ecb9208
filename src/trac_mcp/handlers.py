"""Common MCP tool handlers shared between stdio and HTTP transports.

This module provides handler logic that can be used by both:
- src/trac_mcp/server.py (stdio transport)
- src/trac_mcp/http_app.py (JSON-RPC over HTTP)

All handlers follow a consistent pattern:
- Accept: arguments dict, httpx.AsyncClient, and optional ticket cache
- Return: list[TextContent] holding one ResultRecord serialized as JSON
- Never see upstream failures: fetchers return failure records instead

A missing required argument raises KeyError; transports report it as a tool error.
"""
from typing import Optional
import logging

import httpx
from mcp.types import TextContent

from trac_core import fetchers
from trac_core.cache import TicketCacheProtocol
from trac_core.classifier import run_query
from trac_core.schemas import ResultRecord

logger = logging.getLogger("trac-mcp.handlers")


class UnknownToolError(Exception):
    """Raised when a transport asks for a tool that does not exist."""

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


def record_content(record: ResultRecord) -> list[TextContent]:
    """Serialize a result record as the tool's text payload."""
    return [TextContent(type="text", text=record.model_dump_json(indent=2))]


# ============================================================================
# Ticket Handlers
# ============================================================================

async def handle_search_tickets(
    arguments: dict,
    client: httpx.AsyncClient,
    cache: Optional[TicketCacheProtocol] = None
) -> list[TextContent]:
    """Search tickets by keyword with optional status/component filters.

    RETURNS: results (ticket summaries), totalFound, returned, and a note when
    the results had to be filtered client-side.
    """
    record = await fetchers.search_tickets(
        client,
        query=arguments["query"],
        limit=arguments.get("limit", fetchers.DEFAULT_SEARCH_LIMIT),
        status=arguments.get("status"),
        component=arguments.get("component"),
        cache=cache,
    )
    return record_content(record)


async def handle_get_ticket(
    arguments: dict,
    client: httpx.AsyncClient,
    cache: Optional[TicketCacheProtocol] = None
) -> list[TextContent]:
    """Get one ticket by id. Errors: not found, access denied."""
    record = await fetchers.get_ticket(
        client,
        ticket_id=arguments["id"],
        include_comments=arguments.get("includeComments", True),
        comment_limit=arguments.get("commentLimit", fetchers.DEFAULT_COMMENT_LIMIT),
        cache=cache,
    )
    return record_content(record)


# ============================================================================
# Changeset, Timeline and Metadata Handlers
# ============================================================================

async def handle_get_changeset(
    arguments: dict,
    client: httpx.AsyncClient,
    cache: Optional[TicketCacheProtocol] = None
) -> list[TextContent]:
    record = await fetchers.get_changeset(
        client,
        revision=arguments["revision"],
        include_diff=arguments.get("includeDiff", True),
        diff_limit=arguments.get("diffLimit", fetchers.DEFAULT_DIFF_LIMIT),
    )
    return record_content(record)


async def handle_get_timeline(
    arguments: dict,
    client: httpx.AsyncClient,
    cache: Optional[TicketCacheProtocol] = None
) -> list[TextContent]:
    record = await fetchers.get_timeline(
        client,
        days=arguments.get("days", fetchers.DEFAULT_TIMELINE_DAYS),
        limit=arguments.get("limit", fetchers.DEFAULT_TIMELINE_LIMIT),
    )
    return record_content(record)


async def handle_get_trac_info(
    arguments: dict,
    client: httpx.AsyncClient,
    cache: Optional[TicketCacheProtocol] = None
) -> list[TextContent]:
    """Metadata lookup. Unsupported types fail without touching the network."""
    record = await fetchers.get_trac_info(client, arguments["type"])
    return record_content(record)


async def handle_search(
    arguments: dict,
    client: httpx.AsyncClient,
    cache: Optional[TicketCacheProtocol] = None
) -> list[TextContent]:
    """Single entry point: classify the query and run the matching fetcher."""
    record = await run_query(client, arguments["query"], cache=cache)
    return record_content(record)


HANDLER_MAP = {
    "searchTickets": handle_search_tickets,
    "getTicket": handle_get_ticket,
    "getChangeset": handle_get_changeset,
    "getTimeline": handle_get_timeline,
    "getTracInfo": handle_get_trac_info,
    "search": handle_search,
}


async def dispatch(
    name: str,
    arguments: Optional[dict],
    client: httpx.AsyncClient,
    cache: Optional[TicketCacheProtocol] = None
) -> list[TextContent]:
    """Run the handler registered for `name`."""
    handler = HANDLER_MAP.get(name)
    if not handler:
        logger.warning(f"Unknown tool requested: {name}")
        raise UnknownToolError(name)
    return await handler(dict(arguments or {}), client, cache)
