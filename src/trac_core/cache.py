"""Best-effort ticket cache.

Fetchers write every ticket they load into the cache they are given. Nothing
reads it back to answer a request, so a hit and a miss produce the same
output; it exists for inspection and for callers that want recent tickets.
"""
import logging
from collections import OrderedDict
from typing import Optional, Protocol

from .schemas import TicketSummary

logger = logging.getLogger("trac-core.cache")


class TicketCacheProtocol(Protocol):
    """Write-through store keyed by ticket id."""

    def put(self, ticket_id: int, ticket: TicketSummary) -> None:
        ...

    def get(self, ticket_id: int) -> Optional[TicketSummary]:
        ...


class TicketCache:
    """Bounded in-memory cache with LRU eviction.

    Only touched from the event loop thread, so no lock is held.
    """

    def __init__(self, max_size: int = 500) -> None:
        if max_size <= 0:
            raise ValueError(f"Cache size must be positive, got {max_size}")
        self.max_size = max_size
        self._entries: OrderedDict[int, TicketSummary] = OrderedDict()

    def put(self, ticket_id: int, ticket: TicketSummary) -> None:
        self._entries[ticket_id] = ticket
        self._entries.move_to_end(ticket_id)
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted ticket {evicted} from cache")

    def get(self, ticket_id: int) -> Optional[TicketSummary]:
        return self._entries.get(ticket_id)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, ticket_id: object) -> bool:
        return ticket_id in self._entries
