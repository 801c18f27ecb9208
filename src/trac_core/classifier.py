"""Routing of free-form queries to a fetcher.

Rules, in order:
1. ``123`` or ``#123``: ticket lookup
2. ``r123`` / ``R123``: changeset lookup
3. ``recent``, ``timeline``, ``latest``: timeline with default window
4. anything else: keyword ticket search
"""
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from . import fetchers
from .cache import TicketCacheProtocol
from .models import RouteKind
from .schemas import ResultRecord

TICKET_ID_RE = re.compile(r"^#?(\d+)$")
REVISION_RE = re.compile(r"^r(\d+)$", re.IGNORECASE)
TIMELINE_SYNONYMS = frozenset({"recent", "timeline", "latest"})


@dataclass(frozen=True)
class Route:
    """A fetcher choice plus the keyword arguments to call it with."""

    kind: RouteKind
    params: dict[str, Any] = field(default_factory=dict)


def classify(query: str) -> Route:
    """Map any string to exactly one route. Pure and deterministic."""
    text = (query or "").strip()

    match = TICKET_ID_RE.match(text)
    if match:
        return Route(RouteKind.TICKET, {"ticket_id": int(match.group(1))})

    match = REVISION_RE.match(text)
    if match:
        return Route(RouteKind.CHANGESET, {"revision": int(match.group(1))})

    if text.lower() in TIMELINE_SYNONYMS:
        return Route(RouteKind.TIMELINE, {
            "days": fetchers.DEFAULT_TIMELINE_DAYS,
            "limit": fetchers.DEFAULT_TIMELINE_LIMIT,
        })

    return Route(RouteKind.SEARCH, {"query": text, "limit": fetchers.DEFAULT_SEARCH_LIMIT})


async def run_query(
    client: httpx.AsyncClient,
    query: str,
    cache: Optional[TicketCacheProtocol] = None,
) -> ResultRecord:
    """Classify `query` and run the matching fetcher."""
    route = classify(query)
    if route.kind == RouteKind.TICKET:
        record = await fetchers.get_ticket(client, cache=cache, **route.params)
    elif route.kind == RouteKind.CHANGESET:
        record = await fetchers.get_changeset(client, **route.params)
    elif route.kind == RouteKind.TIMELINE:
        record = await fetchers.get_timeline(client, **route.params)
    else:
        record = await fetchers.search_tickets(client, cache=cache, **route.params)

    record.metadata["route"] = route.kind.value
    return record
