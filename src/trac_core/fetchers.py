"""Resource fetchers for WordPress Trac.

Each fetcher performs one upstream request (plus at most one fallback
request), parses the response and returns a ResultRecord. Fetchers are
failure boundaries: every error is logged and turned into a failure record,
so nothing but cancellation propagates to the caller.

All fetchers take an ``httpx.AsyncClient`` whose base URL is the tracker
root; build one with open_client().
"""
import logging
import traceback
from typing import Any, Optional

import httpx

from .cache import TicketCacheProtocol
from .config import Settings, get_settings
from .csv_export import (
    MARKUP_PROBE_LENGTH,
    ExportResult,
    NotTabular,
    TabularRow,
    looks_like_markup,
    parse_export,
    ticket_rows,
)
from .formatters import (
    format_changeset,
    format_ticket,
    format_ticket_search,
    format_timeline,
    format_trac_info,
)
from .markup import (
    extract_changeset_field,
    extract_feed_field,
    extract_feed_items,
    extract_files,
)
from .models import INFO_TYPE_COLUMNS, UNSUPPORTED_INFO_TYPES, TracInfoType
from .schemas import (
    ChangesetInfo,
    ResultRecord,
    TicketComment,
    TicketDetail,
    TicketSummary,
    TimelineEvent,
    TracInfoSet,
    failure_record,
)

logger = logging.getLogger("trac-core.fetchers")

# Search
DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 50
FALLBACK_SEARCH_ROWS = 100
# Operators a filter expression may write before its "=" (e.g. summary~=x)
FILTER_OPERATORS = "~^$!"
CLIENT_SIDE_FILTER_NOTE = (
    "The filtered ticket query was blocked by WordPress Trac; "
    "results were filtered client-side from the most recent tickets."
)

# Single ticket
DEFAULT_COMMENT_LIMIT = 10
MAX_COMMENT_LIMIT = 50

# Changesets
DEFAULT_DIFF_LIMIT = 2000
MAX_DIFF_LIMIT = 10000
DIFF_TRUNCATION_MARKER = "\n... [diff truncated] ..."
MAX_TITLE_LENGTH = 100

# Timeline
DEFAULT_TIMELINE_DAYS = 7
MAX_TIMELINE_DAYS = 30
DEFAULT_TIMELINE_LIMIT = 20
MAX_TIMELINE_LIMIT = 100

# Metadata
INFO_EXPORT_ROWS = 1000

# Columns requested from the CSV export; rows are read by these names
SUMMARY_COLUMNS = ("id", "summary", "status", "owner", "type", "priority", "milestone", "component")
DETAIL_COLUMNS = SUMMARY_COLUMNS + (
    "description", "reporter", "resolution", "keywords", "version", "severity", "time", "changetime",
)

# Responses that mean the client is being rate-limited or shut out
BLOCKED_STATUS_CODES = {403, 429}


class TracError(Exception):
    """Base class for expected upstream failures."""
    pass


class NotFoundError(TracError):
    """The requested ticket or changeset does not exist upstream."""
    pass


class AccessDeniedError(TracError):
    """Trac served markup instead of data and the fallback was blocked too."""
    pass


class UnsupportedQueryError(TracError):
    """The request asks for something this data source cannot provide."""
    pass


class UpstreamError(TracError):
    """Trac answered with an unexpected HTTP error."""
    pass


def open_client(settings: Optional[Settings] = None, **kwargs: Any) -> httpx.AsyncClient:
    """Create the HTTP client used by all fetchers.

    Extra keyword arguments are passed to httpx (tests inject a transport).
    """
    settings = settings or get_settings()
    return httpx.AsyncClient(
        base_url=settings.trac_base_url,
        headers={"User-Agent": settings.user_agent},
        timeout=settings.request_timeout,
        follow_redirects=True,
        **kwargs,
    )


def clamp(value: Any, maximum: int, default: int, minimum: int = 1) -> int:
    """Coerce a caller-supplied count into [minimum, maximum]."""
    try:
        number = int(value) if value is not None else default
    except (TypeError, ValueError):
        number = default
    return max(minimum, min(number, maximum))


def _site_url(client: httpx.AsyncClient, path: str) -> str:
    return str(client.base_url).rstrip("/") + path


def _export_params(columns: tuple[str, ...], max_rows: Optional[int] = None) -> list[tuple[str, str]]:
    params = [("format", "csv")]
    params.extend(("col", column) for column in columns)
    if max_rows is not None:
        params.append(("max", str(max_rows)))
    params.extend([("order", "id"), ("desc", "1")])
    return params


def _check_status(response: httpx.Response, resource: str) -> None:
    if response.status_code == 404:
        raise NotFoundError(f"{resource} not found")
    if response.status_code in BLOCKED_STATUS_CODES:
        raise AccessDeniedError(f"Access denied by WordPress Trac (HTTP {response.status_code})")
    if response.is_error:
        raise UpstreamError(f"WordPress Trac returned HTTP {response.status_code} for {resource}")


async def _fetch_export(
    client: httpx.AsyncClient,
    path: str,
    params: list[tuple[str, str]],
    resource: str,
) -> ExportResult:
    """Request a CSV export, classifying blocked responses as NotTabular."""
    response = await client.get(path, params=params)
    if response.status_code in BLOCKED_STATUS_CODES:
        return NotTabular(body=response.text)
    _check_status(response, resource)
    return parse_export(response.text)


def _failure(resource: str, identifier: Any, url: str, error: Exception) -> ResultRecord:
    if not isinstance(identifier, (int, str)):
        identifier = str(identifier)
    if isinstance(error, TracError):
        logger.warning(f"Failed to load {resource} {identifier}: {error}")
    else:
        logger.error(f"Unexpected error loading {resource} {identifier}:")
        logger.error(f"  Error type: {type(error).__name__}")
        logger.error(f"  Error message: {error}")
        logger.error(f"  Traceback:\n{traceback.format_exc()}")
    return failure_record(resource, identifier, url, error)


def _remember(cache: Optional[TicketCacheProtocol], ticket: TicketSummary) -> None:
    if cache is None:
        return
    try:
        cache.put(ticket.id, ticket)
    except Exception as e:
        logger.warning(f"Could not cache ticket {ticket.id}: {e}")


# ============================================================================
# Ticket search
# ============================================================================

def ticket_from_row(row: TabularRow) -> TicketSummary:
    return TicketSummary(
        id=row.ticket_id,
        title=row.get("summary"),
        status=row.get("status", "unknown"),
        owner=row.get("owner", "unassigned"),
        type=row.get("type", "unknown"),
        priority=row.get("priority", "unknown"),
        milestone=row.get("milestone", "none"),
        component=row.get("component", "unknown"),
    )


def is_filter_expression(query: str) -> bool:
    """True when the query is a Trac filter expression rather than keywords."""
    return "=" in query or "~" in query


def parse_filter_expression(expression: str) -> list[tuple[str, str]]:
    """Split a filter expression into query constraints.

    ``summary~=editor&status!=closed`` becomes
    ``[("summary", "~editor"), ("status", "!closed")]``: operators written
    before the ``=`` move to the front of the value, the form the query page
    takes them in.
    """
    constraints = []
    for part in expression.split("&"):
        name, sep, value = part.partition("=")
        operators = ""
        name = name.strip()
        while name and name[-1] in FILTER_OPERATORS:
            operators = name[-1] + operators
            name = name[:-1].rstrip()
        if sep and name:
            constraints.append((name.lower(), operators + value.strip()))
    return constraints


def constraint_matches(row: TabularRow, name: str, value: str) -> bool:
    """Evaluate one constraint against a row, case-insensitively."""
    actual = row.get(name).lower()
    negate = value.startswith("!")
    if negate:
        value = value[1:]
    mode = value[:1] if value[:1] in ("~", "^", "$") else ""
    options = [option.lower() for option in value[len(mode):].split("|")]

    if mode == "~":
        hit = any(option in actual for option in options)
    elif mode == "^":
        hit = any(actual.startswith(option) for option in options)
    elif mode == "$":
        hit = any(actual.endswith(option) for option in options)
    else:
        hit = actual in options
    return hit != negate


def _search_clauses(
    query: str,
    constraints: list[tuple[str, str]],
    status: Optional[str],
    component: Optional[str],
) -> list[tuple[str, str]]:
    """Query parameters for a search, with keyword clauses joined by ``or``."""
    shared = []
    if status:
        shared.append(("status", status))
    if component:
        shared.append(("component", component))

    if constraints:
        return constraints + shared
    if not query:
        return shared

    # Keywords match the summary or the description
    params = [("summary", f"~{query}")] + shared
    params.append(("or", ""))
    params.extend([("description", f"~{query}")] + shared)
    return params


def _matches_filters(
    row: TabularRow,
    query: str,
    constraints: list[tuple[str, str]],
    status: Optional[str],
    component: Optional[str],
) -> bool:
    if constraints:
        if not all(constraint_matches(row, name, value) for name, value in constraints):
            return False
    elif query.lower() not in row.raw.lower():
        return False
    if status and row.get("status").lower() != status.lower():
        return False
    if component and row.get("component").lower() != component.lower():
        return False
    return True


async def _search_unfiltered(
    client: httpx.AsyncClient,
    query: str,
    constraints: list[tuple[str, str]],
    status: Optional[str],
    component: Optional[str],
) -> list[TicketSummary]:
    """Every ticket of the most recent export rows that matches the search."""
    columns = SUMMARY_COLUMNS + ("description",)
    columns += tuple(dict.fromkeys(name for name, _ in constraints if name not in columns))
    params = _export_params(columns, max_rows=FALLBACK_SEARCH_ROWS)
    result = await _fetch_export(client, "/query", params, "Ticket query")
    if isinstance(result, NotTabular):
        raise AccessDeniedError(
            "Access denied: WordPress Trac returned an HTML page instead of ticket data"
        )

    return [
        ticket_from_row(row)
        for row in ticket_rows(result.table)
        if _matches_filters(row, query, constraints, status, component)
    ]


async def search_tickets(
    client: httpx.AsyncClient,
    query: str,
    limit: Any = DEFAULT_SEARCH_LIMIT,
    status: Optional[str] = None,
    component: Optional[str] = None,
    cache: Optional[TicketCacheProtocol] = None,
) -> ResultRecord:
    """Search tickets by keyword or Trac filter expression.

    Keywords match the summary or the description. A query containing ``=``
    or ``~`` is passed through as filter constraints. Falls back once to an
    unfiltered export filtered client-side when the query is blocked.
    """
    query = (query or "").strip()
    limit = clamp(limit, MAX_SEARCH_LIMIT, DEFAULT_SEARCH_LIMIT)
    constraints = parse_filter_expression(query) if is_filter_expression(query) else []
    filters = _search_clauses(query, constraints, status, component)
    search_url = str(httpx.URL(_site_url(client, "/query"), params=filters))

    try:
        note = ""
        params = _export_params(SUMMARY_COLUMNS, max_rows=limit) + filters
        result = await _fetch_export(client, "/query", params, "Ticket query")
        if isinstance(result, NotTabular):
            logger.warning(f"Ticket query for '{query}' was blocked, retrying unfiltered")
            found = await _search_unfiltered(client, query, constraints, status, component)
            note = CLIENT_SIDE_FILTER_NOTE
        else:
            found = [ticket_from_row(row) for row in ticket_rows(result.table)]
        tickets = found[:limit]

        for ticket in tickets:
            _remember(cache, ticket)
        logger.info(f"Found {len(found)} tickets for '{query}', returning {len(tickets)}")

        metadata = {
            "query": query,
            "results": [t.model_dump() for t in tickets],
            "totalFound": len(found),
            "returned": len(tickets),
        }
        if constraints:
            metadata["filters"] = [f"{name}={value}" for name, value in constraints]
        if status:
            metadata["status"] = status
        if component:
            metadata["component"] = component
        if note:
            metadata["note"] = note

        return ResultRecord(
            id=query,
            title=f"Ticket search: {query}" if query else "Ticket search",
            text=format_ticket_search(query, tickets, note),
            url=search_url,
            metadata=metadata,
        )
    except Exception as e:
        return _failure("tickets", query, search_url, e)


# ============================================================================
# Single ticket
# ============================================================================

def ticket_detail_from_row(row: TabularRow) -> TicketDetail:
    return TicketDetail(
        **ticket_from_row(row).model_dump(),
        description=row.get("description"),
        reporter=row.get("reporter"),
        resolution=row.get("resolution"),
        keywords=row.get("keywords"),
        version=row.get("version"),
        severity=row.get("severity"),
        created=row.get("time"),
        modified=row.get("changetime"),
    )


async def _load_ticket_row(client: httpx.AsyncClient, ticket_id: int) -> TabularRow:
    resource = f"Ticket {ticket_id}"
    params = _export_params(DETAIL_COLUMNS) + [("id", str(ticket_id))]
    result = await _fetch_export(client, "/query", params, resource)
    if isinstance(result, NotTabular):
        logger.warning(f"Ticket query for #{ticket_id} was blocked, trying the ticket export")
        result = await _fetch_export(client, f"/ticket/{ticket_id}", [("format", "csv")], resource)
        if isinstance(result, NotTabular):
            raise AccessDeniedError(
                f"Access denied: WordPress Trac returned an HTML page instead of ticket {ticket_id}"
            )

    for row in ticket_rows(result.table):
        if row.ticket_id == ticket_id:
            return row
    raise NotFoundError(f"Ticket {ticket_id} not found")


async def get_ticket(
    client: httpx.AsyncClient,
    ticket_id: Any,
    include_comments: bool = True,
    comment_limit: Any = DEFAULT_COMMENT_LIMIT,
    cache: Optional[TicketCacheProtocol] = None,
) -> ResultRecord:
    """Load one ticket by exact id."""
    ticket_url = _site_url(client, f"/ticket/{ticket_id}")
    comment_limit = clamp(comment_limit, MAX_COMMENT_LIMIT, DEFAULT_COMMENT_LIMIT)

    try:
        ticket_id = int(ticket_id)
        row = await _load_ticket_row(client, ticket_id)
        ticket = ticket_detail_from_row(row)
        _remember(cache, ticket)

        comments = []
        if include_comments:
            # The CSV export carries no change log
            comments.append(TicketComment(
                author="trac-mcp",
                comment=(
                    "The full discussion is not available through the CSV export. "
                    f"Read the comments at {ticket_url}"
                ),
            ))
        logger.info(f"Successfully retrieved ticket #{ticket_id}: {ticket.title}")

        return ResultRecord(
            id=ticket_id,
            title=f"#{ticket_id}: {ticket.title}" if ticket.title else f"#{ticket_id}",
            text=format_ticket(ticket, comments),
            url=ticket_url,
            metadata={
                "ticket": ticket.model_dump(),
                "comments": [c.model_dump() for c in comments],
                "totalComments": len(comments),
                "commentLimit": comment_limit,
            },
        )
    except Exception as e:
        return _failure("ticket", ticket_id, ticket_url, e)


# ============================================================================
# Changesets
# ============================================================================

def truncate_diff(diff: str, limit: int) -> str:
    """Cut a diff to `limit` characters, marking the cut."""
    if len(diff) <= limit:
        return diff
    return diff[:limit] + DIFF_TRUNCATION_MARKER


def _is_forbidden_page(page: str) -> bool:
    return "403 forbidden" in page[:MARKUP_PROBE_LENGTH].lower()


async def _fetch_diff(client: httpx.AsyncClient, revision: int, limit: int) -> str:
    try:
        response = await client.get(f"/changeset/{revision}", params={"format": "diff"})
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"Failed to load diff for r{revision}: {e}")
        return ""

    if response.headers.get("content-type", "").startswith("text/html"):
        logger.warning(f"Diff for r{revision} came back as HTML, skipping it")
        return ""
    return truncate_diff(response.text, limit)


def _changeset_title(changeset: ChangesetInfo) -> str:
    first_line = changeset.message.splitlines()[0] if changeset.message else ""
    if len(first_line) > MAX_TITLE_LENGTH:
        first_line = first_line[:MAX_TITLE_LENGTH].rstrip() + "..."
    return f"r{changeset.revision}: {first_line}" if first_line else f"r{changeset.revision}"


async def get_changeset(
    client: httpx.AsyncClient,
    revision: Any,
    include_diff: bool = True,
    diff_limit: Any = DEFAULT_DIFF_LIMIT,
) -> ResultRecord:
    """Load a changeset page and, optionally, its diff."""
    changeset_url = _site_url(client, f"/changeset/{revision}")

    try:
        revision = int(revision)
        response = await client.get(f"/changeset/{revision}")
        _check_status(response, f"Changeset r{revision}")
        page = response.text
        if _is_forbidden_page(page):
            raise AccessDeniedError(f"Access denied: WordPress Trac refused changeset r{revision}")

        diff = ""
        if include_diff:
            limit = clamp(diff_limit, MAX_DIFF_LIMIT, DEFAULT_DIFF_LIMIT)
            diff = await _fetch_diff(client, revision, limit)

        changeset = ChangesetInfo(
            revision=revision,
            author=extract_changeset_field(page, "author"),
            date=extract_changeset_field(page, "date"),
            message=extract_changeset_field(page, "message"),
            files=extract_files(page),
            diff=diff,
        )
        logger.info(f"Successfully retrieved changeset r{revision} ({len(changeset.files)} files)")

        return ResultRecord(
            id=revision,
            title=_changeset_title(changeset),
            text=format_changeset(changeset),
            url=changeset_url,
            metadata={
                "changeset": changeset.model_dump(),
                "totalFiles": len(changeset.files),
            },
        )
    except Exception as e:
        return _failure("changeset", revision, changeset_url, e)


# ============================================================================
# Timeline
# ============================================================================

def parse_timeline(feed: str, limit: int) -> list[TimelineEvent]:
    """Events of an RSS timeline in feed order.

    Items without a title or link are dropped, as are repeated links.
    """
    events = []
    seen = set()
    for item in extract_feed_items(feed):
        title = extract_feed_field(item, "title")
        link = extract_feed_field(item, "link")
        if not title or not link:
            logger.debug("Skipping timeline item without title or link")
            continue
        if link in seen:
            continue
        seen.add(link)
        events.append(TimelineEvent(
            id=link,
            title=title,
            date=extract_feed_field(item, "date"),
            author=extract_feed_field(item, "author"),
            description=extract_feed_field(item, "description"),
        ))
        if len(events) >= limit:
            break
    return events


async def get_timeline(
    client: httpx.AsyncClient,
    days: Any = DEFAULT_TIMELINE_DAYS,
    limit: Any = DEFAULT_TIMELINE_LIMIT,
) -> ResultRecord:
    """Recent tracker activity from the RSS timeline."""
    days = clamp(days, MAX_TIMELINE_DAYS, DEFAULT_TIMELINE_DAYS)
    limit = clamp(limit, MAX_TIMELINE_LIMIT, DEFAULT_TIMELINE_LIMIT)
    timeline_url = _site_url(client, "/timeline")

    try:
        response = await client.get(f"/timeline?from={days}+days+ago&max={limit}&format=rss")
        _check_status(response, "Timeline")
        feed = response.text
        if looks_like_markup(feed):
            raise AccessDeniedError("Access denied: WordPress Trac returned an HTML page instead of the feed")

        events = parse_timeline(feed, limit)
        logger.info(f"Retrieved {len(events)} timeline events for the last {days} days")

        return ResultRecord(
            id="timeline",
            title=f"WordPress Trac timeline (last {days} days)",
            text=format_timeline(events, days),
            url=timeline_url,
            metadata={
                "events": [e.model_dump() for e in events],
                "totalEvents": len(events),
                "daysBack": days,
                "timelineUrl": timeline_url,
            },
        )
    except Exception as e:
        return _failure("timeline", "timeline", timeline_url, e)


# ============================================================================
# Metadata
# ============================================================================

def resolve_info_type(value: Any) -> TracInfoType:
    """Map a requested metadata category to a supported TracInfoType.

    Raises UnsupportedQueryError naming the supported categories.
    """
    name = str(value or "").strip().lower()
    supported = ", ".join(t.value for t in TracInfoType)
    if name in UNSUPPORTED_INFO_TYPES:
        raise UnsupportedQueryError(
            f"'{name}' is not available from the WordPress Trac CSV export. "
            f"Supported types: {supported}"
        )
    try:
        return TracInfoType(name)
    except ValueError:
        raise UnsupportedQueryError(f"Unknown info type: '{value}'. Valid types: {supported}") from None


async def get_trac_info(client: httpx.AsyncClient, info_type: Any) -> ResultRecord:
    """Distinct values of a ticket field (milestones, priorities, ...)."""
    info_url = _site_url(client, "/query")
    identifier = str(info_type)

    try:
        kind = resolve_info_type(info_type)
        column = INFO_TYPE_COLUMNS[kind]
        params = _export_params(("id", column), max_rows=INFO_EXPORT_ROWS)
        result = await _fetch_export(client, "/query", params, f"Trac {kind.value}")
        if isinstance(result, NotTabular):
            raise AccessDeniedError(
                "Access denied: WordPress Trac returned an HTML page instead of ticket data"
            )

        values = sorted({row.get(column) for row in ticket_rows(result.table) if row.get(column)})
        info = TracInfoSet(type=kind, data=values, total=len(values))
        logger.info(f"Collected {info.total} distinct {kind.value}")

        return ResultRecord(
            id=kind.value,
            title=f"WordPress Trac {kind.value}",
            text=format_trac_info(info),
            url=info_url,
            metadata=info.model_dump(),
        )
    except Exception as e:
        return _failure(identifier, identifier, info_url, e)
