"""Shared MCP tool definitions for WordPress Trac.

This module provides the definitive list of MCP tools used by both stdio and HTTP transports.
"""

from mcp.types import Tool


def get_tools() -> list[Tool]:
    """Get the list of all MCP tools for WordPress Trac."""
    return [
        # ============================================================================
        # Ticket Tools
        # ============================================================================
        Tool(
            name="searchTickets",
            description="Search for WordPress Trac tickets by keyword or filter expression. Returns ticket summaries with basic info. "
                       "Use getTicket() for the full description of a specific ticket.",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Keywords matched in summary and description, or a filter expression "
                                       "like 'summary~=keyword&status!=closed'"
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum number of results to return (default: 10, max: 50)",
                        "default": 10
                    },
                    "status": {
                        "type": "string",
                        "description": "Filter by ticket status (e.g., 'new', 'reopened', 'closed')"
                    },
                    "component": {
                        "type": "string",
                        "description": "Filter by component name (e.g., 'Administration', 'Posts, Post Types')"
                    }
                },
                "required": ["query"]
            }
        ),
        Tool(
            name="getTicket",
            description="Get detailed information about a specific WordPress Trac ticket including description and metadata. "
                       "Errors: ticket not found, access denied.",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {
                        "type": "integer",
                        "description": "Trac ticket ID number"
                    },
                    "includeComments": {
                        "type": "boolean",
                        "description": "Include ticket comments and discussion (default: true)",
                        "default": True
                    },
                    "commentLimit": {
                        "type": "integer",
                        "description": "Maximum number of comments to return (default: 10, max: 50)",
                        "default": 10
                    }
                },
                "required": ["id"]
            }
        ),

        # ============================================================================
        # Changeset Tools
        # ============================================================================
        Tool(
            name="getChangeset",
            description="Get information about a specific WordPress code changeset/commit including commit message, "
                       "author, changed files and diff.",
            inputSchema={
                "type": "object",
                "properties": {
                    "revision": {
                        "type": "integer",
                        "description": "SVN revision number (e.g., 58504)"
                    },
                    "includeDiff": {
                        "type": "boolean",
                        "description": "Include diff content (default: true)",
                        "default": True
                    },
                    "diffLimit": {
                        "type": "integer",
                        "description": "Maximum characters of diff to return (default: 2000, max: 10000)",
                        "default": 2000
                    }
                },
                "required": ["revision"]
            }
        ),

        # ============================================================================
        # Timeline and Metadata Tools
        # ============================================================================
        Tool(
            name="getTimeline",
            description="Get recent activity from the WordPress Trac timeline including recent tickets, commits, "
                       "and other events (newest first).",
            inputSchema={
                "type": "object",
                "properties": {
                    "days": {
                        "type": "integer",
                        "description": "Number of days to look back (default: 7, max: 30)",
                        "default": 7
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum number of events to return (default: 20, max: 100)",
                        "default": 20
                    }
                }
            }
        ),
        Tool(
            name="getTracInfo",
            description="Get WordPress Trac metadata: milestones, priorities, ticket types or statuses. "
                       "Components and severities are not available from this data source.",
            inputSchema={
                "type": "object",
                "properties": {
                    "type": {
                        "type": "string",
                        "enum": ["milestones", "priorities", "types", "statuses"],
                        "description": "Type of Trac information to retrieve"
                    }
                },
                "required": ["type"]
            }
        ),

        # ============================================================================
        # Simplified Entry Point
        # ============================================================================
        Tool(
            name="search",
            description="Look up anything on WordPress Trac with one query. "
                       "'61234' or '#61234' loads a ticket, 'r58504' loads a changeset, "
                       "'recent'/'timeline'/'latest' shows recent activity, anything else searches tickets.",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Ticket number, revision (r123), 'recent', or keywords"
                    }
                },
                "required": ["query"]
            }
        ),
    ]
