"""Tests for the resource fetchers against a fake Trac."""
import httpx
import pytest

from trac_core.cache import TicketCache
from trac_core.fetchers import (
    CLIENT_SIDE_FILTER_NOTE,
    DIFF_TRUNCATION_MARKER,
    clamp,
    constraint_matches,
    get_changeset,
    get_ticket,
    get_timeline,
    get_trac_info,
    is_filter_expression,
    parse_filter_expression,
    search_tickets,
    truncate_diff,
)
from trac_core.csv_export import parse_table
from trac_core.markup import extract_feed_field, extract_feed_items

from conftest import (
    BLOCKED_PAGE,
    CHANGESET_PAGE,
    SEARCH_HEADER,
    TIMELINE_FEED,
    csv_body,
)

DETAIL_HEADER = (
    "id,summary,status,owner,type,priority,milestone,component,"
    "description,reporter,resolution,keywords,version,severity,time,changetime"
)

SEARCH_ROWS = (
    '61234,"Editor, block toolbar overlaps",new,,defect (bug),normal,6.7,Editor',
    "61200,Admin menu focus,assigned,joedolson,enhancement,low,,Administration",
    "61100,Editor crash on paste,closed,ellatrix,defect (bug),high,6.6,Editor",
)


def csv_response(*rows: str, header: str = SEARCH_HEADER) -> httpx.Response:
    return httpx.Response(200, text=csv_body(header, *rows), headers={"content-type": "text/csv"})


def html_response(body: str = BLOCKED_PAGE, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, text=body, headers={"content-type": "text/html"})


class TestClamp:
    def test_bounds(self):
        assert clamp(500, 50, 10) == 50
        assert clamp(0, 50, 10) == 1
        assert clamp(-3, 50, 10) == 1
        assert clamp(None, 50, 10) == 10
        assert clamp("abc", 50, 10) == 10
        assert clamp("25", 50, 10) == 25


class TestSearchTickets:
    """Keyword search with the client-side fallback."""

    @pytest.mark.asyncio
    async def test_filtered_query(self, fake_trac):
        trac = fake_trac(lambda request: csv_response(*SEARCH_ROWS))
        async with trac.client() as client:
            record = await search_tickets(client, "editor", limit=5, status="new", component="Editor")

        assert len(trac.requests) == 1
        params = trac.requests[0].url.params
        assert trac.requests[0].url.path == "/query"
        assert params["format"] == "csv"
        assert params["summary"] == "~editor"
        assert params["status"] == "new"
        assert params["component"] == "Editor"
        assert params["max"] == "5"
        assert params.get_list("col")[0] == "id"

        assert not record.is_error
        assert record.id == "editor"
        assert record.metadata["returned"] == 3
        first = record.metadata["results"][0]
        assert first["id"] == 61234
        assert first["title"] == "Editor, block toolbar overlaps"
        assert first["status"] == "new"
        assert first["owner"] == "unassigned"
        assert first["milestone"] == "6.7"
        assert record.metadata["results"][1]["milestone"] == "none"
        assert "note" not in record.metadata
        assert "#61234: Editor, block toolbar overlaps" in record.text

    @pytest.mark.asyncio
    async def test_limit_clamped_to_fifty(self, fake_trac):
        trac = fake_trac(lambda request: csv_response(*SEARCH_ROWS))
        async with trac.client() as client:
            await search_tickets(client, "editor", limit=500)

        assert trac.requests[0].url.params["max"] == "50"

    @pytest.mark.asyncio
    async def test_blocked_query_falls_back_once(self, fake_trac):
        def handler(request):
            if "summary" in request.url.params:
                return html_response()
            return csv_response(*SEARCH_ROWS)

        trac = fake_trac(handler)
        async with trac.client() as client:
            record = await search_tickets(client, "EDITOR", limit=10)

        assert len(trac.requests) == 2
        fallback = trac.requests[1].url.params
        assert fallback["max"] == "100"
        assert "summary" not in fallback

        assert not record.is_error
        assert [t["id"] for t in record.metadata["results"]] == [61234, 61100]
        assert record.metadata["note"] == CLIENT_SIDE_FILTER_NOTE
        assert "filtered client-side" in record.text

    @pytest.mark.asyncio
    async def test_forbidden_status_falls_back(self, fake_trac):
        def handler(request):
            if "summary" in request.url.params:
                return html_response(status_code=403)
            return csv_response(*SEARCH_ROWS)

        trac = fake_trac(handler)
        async with trac.client() as client:
            record = await search_tickets(client, "admin")

        assert len(trac.requests) == 2
        assert [t["id"] for t in record.metadata["results"]] == [61200]

    @pytest.mark.asyncio
    async def test_fallback_stops_at_limit_and_applies_filters(self, fake_trac):
        def handler(request):
            if "summary" in request.url.params:
                return html_response()
            return csv_response(*SEARCH_ROWS)

        trac = fake_trac(handler)
        async with trac.client() as client:
            limited = await search_tickets(client, "editor", limit=1)
            closed_only = await search_tickets(client, "editor", status="closed")

        assert [t["id"] for t in limited.metadata["results"]] == [61234]
        assert [t["id"] for t in closed_only.metadata["results"]] == [61100]
        assert limited.metadata["totalFound"] == 2
        assert limited.metadata["returned"] == 1

    @pytest.mark.asyncio
    async def test_keywords_match_summary_or_description(self, fake_trac):
        trac = fake_trac(lambda request: csv_response(*SEARCH_ROWS))
        async with trac.client() as client:
            await search_tickets(client, "editor", status="new")

        params = trac.requests[0].url.params
        assert params.get_list("summary") == ["~editor"]
        assert params.get_list("description") == ["~editor"]
        assert params.get_list("status") == ["new", "new"]
        query = trac.requests[0].url.query.decode()
        assert query.index("summary=") < query.index("&or=") < query.index("description=")

    @pytest.mark.asyncio
    async def test_filter_expression_passed_through(self, fake_trac):
        trac = fake_trac(lambda request: csv_response(*SEARCH_ROWS[:1]))
        async with trac.client() as client:
            record = await search_tickets(client, "summary~=toolbar&status!=closed")

        params = trac.requests[0].url.params
        assert params["summary"] == "~toolbar"
        assert params["status"] == "!closed"
        assert "description" not in params
        assert "or" not in params
        assert record.metadata["filters"] == ["summary=~toolbar", "status=!closed"]
        assert record.metadata["results"][0]["id"] == 61234

    @pytest.mark.asyncio
    async def test_fallback_matches_description(self, fake_trac):
        header = SEARCH_HEADER + ",description"
        rows = (
            "70,Widget area,new,,defect (bug),normal,,Widgets,Breaks with Gutenberg enabled",
            "71,Menu order,new,,defect (bug),normal,,Menus,Unrelated",
        )

        def handler(request):
            if request.url.params.get("max") != "100":
                return html_response()
            return csv_response(*rows, header=header)

        trac = fake_trac(handler)
        async with trac.client() as client:
            record = await search_tickets(client, "gutenberg")

        assert "description" in trac.requests[1].url.params.get_list("col")
        assert [t["id"] for t in record.metadata["results"]] == [70]

    @pytest.mark.asyncio
    async def test_fallback_evaluates_filter_expression(self, fake_trac):
        def handler(request):
            if request.url.params.get("max") != "100":
                return html_response()
            return csv_response(*SEARCH_ROWS)

        trac = fake_trac(handler)
        async with trac.client() as client:
            record = await search_tickets(client, "component=editor&status!=closed")

        assert [t["id"] for t in record.metadata["results"]] == [61234]
        assert record.metadata["totalFound"] == 1

    @pytest.mark.asyncio
    async def test_blocked_fallback_is_access_denied(self, fake_trac):
        trac = fake_trac(lambda request: html_response())
        async with trac.client() as client:
            record = await search_tickets(client, "editor")

        assert len(trac.requests) == 2
        assert record.is_error
        assert record.metadata == {"error": True}
        assert record.title == "Error loading tickets"
        assert "Access denied" in record.text

    @pytest.mark.asyncio
    async def test_header_only_is_no_results(self, fake_trac):
        trac = fake_trac(lambda request: csv_response())
        async with trac.client() as client:
            record = await search_tickets(client, "nothing")

        assert not record.is_error
        assert record.metadata["results"] == []
        assert record.text == 'No tickets found for "nothing".'

    @pytest.mark.asyncio
    async def test_results_written_to_cache(self, fake_trac):
        cache = TicketCache()
        trac = fake_trac(lambda request: csv_response(*SEARCH_ROWS))
        async with trac.client() as client:
            with_cache = await search_tickets(client, "editor", cache=cache)
            without_cache = await search_tickets(client, "editor")

        assert len(cache) == 3
        assert cache.get(61200).owner == "joedolson"
        assert with_cache == without_cache

    @pytest.mark.asyncio
    async def test_connection_error_becomes_failure_record(self, fake_trac):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        trac = fake_trac(handler)
        async with trac.client() as client:
            record = await search_tickets(client, "editor")

        assert record.is_error
        assert "connection refused" in record.text

    @pytest.mark.asyncio
    async def test_server_error_becomes_failure_record(self, fake_trac):
        trac = fake_trac(lambda request: httpx.Response(500, text="oops"))
        async with trac.client() as client:
            record = await search_tickets(client, "editor")

        assert len(trac.requests) == 1
        assert record.is_error
        assert "HTTP 500" in record.text


class TestGetTicket:
    """Single ticket lookup by exact id."""

    DETAIL_ROWS = (
        "1234,Unrelated ticket,new,,task,normal,,General,,someone,,,,,,",
        '61234,"Editor, block toolbar overlaps",reopened,,defect (bug),normal,6.7,Editor,'
        '"Steps:\n1. Open the editor",afercia,,has-patch,6.5,normal,2024-05-01,2024-06-01',
    )

    @pytest.mark.asyncio
    async def test_picks_row_with_exact_id(self, fake_trac):
        trac = fake_trac(lambda request: csv_response(*self.DETAIL_ROWS, header=DETAIL_HEADER))
        async with trac.client() as client:
            record = await get_ticket(client, 61234)

        assert trac.requests[0].url.params["id"] == "61234"
        assert record.id == 61234
        assert record.title == "#61234: Editor, block toolbar overlaps"
        assert record.url == "https://core.trac.wordpress.org/ticket/61234"

        ticket = record.metadata["ticket"]
        assert ticket["status"] == "reopened"
        assert ticket["reporter"] == "afercia"
        assert ticket["keywords"] == "has-patch"
        assert ticket["description"] == "Steps:\n1. Open the editor"
        assert "Steps:\n1. Open the editor" in record.text

    @pytest.mark.asyncio
    async def test_comments_note(self, fake_trac):
        trac = fake_trac(lambda request: csv_response(*self.DETAIL_ROWS, header=DETAIL_HEADER))
        async with trac.client() as client:
            with_comments = await get_ticket(client, 61234, comment_limit=200)
            without_comments = await get_ticket(client, 61234, include_comments=False)

        assert with_comments.metadata["totalComments"] == 1
        assert with_comments.metadata["commentLimit"] == 50
        note = with_comments.metadata["comments"][0]["comment"]
        assert "https://core.trac.wordpress.org/ticket/61234" in note

        assert without_comments.metadata["comments"] == []
        assert "No comments" in without_comments.text

    @pytest.mark.asyncio
    async def test_not_found(self, fake_trac):
        trac = fake_trac(lambda request: csv_response(header=DETAIL_HEADER))
        async with trac.client() as client:
            record = await get_ticket(client, 999999)

        assert record.is_error
        assert record.title == "Error loading ticket"
        assert record.text == "Error: Ticket 999999 not found"

    @pytest.mark.asyncio
    async def test_blocked_query_uses_ticket_export(self, fake_trac):
        def handler(request):
            if request.url.path == "/query":
                return html_response()
            return csv_response(*self.DETAIL_ROWS[1:], header=DETAIL_HEADER)

        trac = fake_trac(handler)
        async with trac.client() as client:
            record = await get_ticket(client, 61234)

        assert [r.url.path for r in trac.requests] == ["/query", "/ticket/61234"]
        assert trac.requests[1].url.params["format"] == "csv"
        assert not record.is_error
        assert record.metadata["ticket"]["id"] == 61234

    @pytest.mark.asyncio
    async def test_both_blocked_is_access_denied(self, fake_trac):
        trac = fake_trac(lambda request: html_response())
        async with trac.client() as client:
            record = await get_ticket(client, 61234)

        assert len(trac.requests) == 2
        assert record.is_error
        assert "Access denied" in record.text

    @pytest.mark.asyncio
    async def test_ticket_written_to_cache(self, fake_trac):
        cache = TicketCache()
        trac = fake_trac(lambda request: csv_response(*self.DETAIL_ROWS, header=DETAIL_HEADER))
        async with trac.client() as client:
            await get_ticket(client, 61234, cache=cache)

        assert 61234 in cache
        assert 1234 not in cache


class TestGetChangeset:
    """Changeset page scraping and diff truncation."""

    @staticmethod
    def handler_with_diff(diff: str):
        def handler(request):
            if request.url.params.get("format") == "diff":
                return httpx.Response(200, text=diff, headers={"content-type": "text/x-diff"})
            return html_response(CHANGESET_PAGE)
        return handler

    @pytest.mark.asyncio
    async def test_page_fields(self, fake_trac):
        trac = fake_trac(self.handler_with_diff("Index: a.php\n+ok\n"))
        async with trac.client() as client:
            record = await get_changeset(client, 58504)

        changeset = record.metadata["changeset"]
        assert record.id == 58504
        assert record.title == 'r58504: Administration: Fix "Add New" button labels.'
        assert record.url == "https://core.trac.wordpress.org/changeset/58504"
        assert changeset["author"] == "joedolson"
        assert changeset["files"] == ["trunk/src/wp-admin/edit.php", "trunk/src/wp-admin/post-new.php"]
        assert changeset["diff"] == "Index: a.php\n+ok\n"
        assert record.metadata["totalFiles"] == 2
        assert "Author: joedolson" in record.text

    @pytest.mark.asyncio
    async def test_diff_truncated_to_exact_limit(self, fake_trac):
        diff = "".join(f"+line {i}\n" for i in range(500))
        trac = fake_trac(self.handler_with_diff(diff))
        async with trac.client() as client:
            record = await get_changeset(client, 58504, diff_limit=120)

        assert record.metadata["changeset"]["diff"] == diff[:120] + DIFF_TRUNCATION_MARKER

    @pytest.mark.asyncio
    async def test_diff_limit_capped(self, fake_trac):
        diff = "x" * 20000
        trac = fake_trac(self.handler_with_diff(diff))
        async with trac.client() as client:
            record = await get_changeset(client, 58504, diff_limit=50000)

        assert record.metadata["changeset"]["diff"] == "x" * 10000 + DIFF_TRUNCATION_MARKER

    @pytest.mark.asyncio
    async def test_without_diff_makes_one_request(self, fake_trac):
        trac = fake_trac(self.handler_with_diff("unused"))
        async with trac.client() as client:
            record = await get_changeset(client, 58504, include_diff=False)

        assert len(trac.requests) == 1
        assert record.metadata["changeset"]["diff"] == ""
        assert "No diff available" in record.text

    @pytest.mark.asyncio
    async def test_failed_diff_keeps_changeset(self, fake_trac):
        def handler(request):
            if request.url.params.get("format") == "diff":
                return httpx.Response(500, text="error")
            return html_response(CHANGESET_PAGE)

        trac = fake_trac(handler)
        async with trac.client() as client:
            record = await get_changeset(client, 58504)

        assert not record.is_error
        assert record.metadata["changeset"]["diff"] == ""

    @pytest.mark.asyncio
    async def test_missing_revision(self, fake_trac):
        trac = fake_trac(lambda request: html_response("<html>No such changeset</html>", status_code=404))
        async with trac.client() as client:
            record = await get_changeset(client, 99999999)

        assert record.is_error
        assert record.title == "Error loading changeset"
        assert record.text == "Error: Changeset r99999999 not found"

    @pytest.mark.asyncio
    async def test_forbidden_page(self, fake_trac):
        trac = fake_trac(lambda request: html_response())
        async with trac.client() as client:
            record = await get_changeset(client, 58504)

        assert record.is_error
        assert "Access denied" in record.text

    @pytest.mark.asyncio
    async def test_unparseable_page_still_renders(self, fake_trac):
        trac = fake_trac(lambda request: html_response("<html><body>redesigned</body></html>"))
        async with trac.client() as client:
            record = await get_changeset(client, 1, include_diff=False)

        assert not record.is_error
        assert record.title == "r1"
        assert "Author: unknown" in record.text
        assert "Files changed: 0" in record.text


class TestTruncateDiff:
    def test_short_diff_untouched(self):
        assert truncate_diff("abc", 3) == "abc"

    def test_long_diff_marked(self):
        assert truncate_diff("abcdef", 4) == "abcd" + DIFF_TRUNCATION_MARKER


class TestGetTimeline:
    """RSS timeline parsing."""

    @pytest.mark.asyncio
    async def test_events_from_feed(self, fake_trac):
        trac = fake_trac(lambda request: httpx.Response(200, text=TIMELINE_FEED))
        async with trac.client() as client:
            record = await get_timeline(client)

        url = trac.requests[0].url
        assert url.path == "/timeline"
        assert b"from=7+days+ago" in url.query
        assert url.params["max"] == "20"
        assert url.params["format"] == "rss"

        # Items missing a title or a link are dropped
        items = extract_feed_items(TIMELINE_FEED)
        complete = [i for i in items if extract_feed_field(i, "title") and extract_feed_field(i, "link")]
        assert len(items) == 4
        events = record.metadata["events"]
        assert record.metadata["totalEvents"] == len(complete) == 2
        assert [e["id"] for e in events] == [
            "https://core.trac.wordpress.org/changeset/58504",
            "https://core.trac.wordpress.org/ticket/61234#comment:5",
        ]
        assert events[0]["author"] == "joedolson"
        assert events[1]["description"] == "Fixed in [58504]."
        assert record.metadata["daysBack"] == 7
        assert record.url == "https://core.trac.wordpress.org/timeline"

    @pytest.mark.asyncio
    async def test_window_and_limit_clamped(self, fake_trac):
        trac = fake_trac(lambda request: httpx.Response(200, text=TIMELINE_FEED))
        async with trac.client() as client:
            record = await get_timeline(client, days=90, limit=1000)

        url = trac.requests[0].url
        assert b"from=30+days+ago" in url.query
        assert url.params["max"] == "100"
        assert record.metadata["daysBack"] == 30

    @pytest.mark.asyncio
    async def test_limit_applies_to_events(self, fake_trac):
        trac = fake_trac(lambda request: httpx.Response(200, text=TIMELINE_FEED))
        async with trac.client() as client:
            record = await get_timeline(client, limit=1)

        assert record.metadata["totalEvents"] == 1

    @pytest.mark.asyncio
    async def test_duplicate_links_dropped(self, fake_trac):
        item = "<item><title>Same</title><link>https://example.org/1</link></item>"
        feed = f"<rss><channel>{item}{item}</channel></rss>"
        trac = fake_trac(lambda request: httpx.Response(200, text=feed))
        async with trac.client() as client:
            record = await get_timeline(client)

        assert record.metadata["totalEvents"] == 1

    @pytest.mark.asyncio
    async def test_blocked_feed(self, fake_trac):
        trac = fake_trac(lambda request: html_response())
        async with trac.client() as client:
            record = await get_timeline(client)

        assert record.is_error
        assert record.title == "Error loading timeline"


class TestGetTracInfo:
    """Metadata derived from the CSV export."""

    @pytest.mark.asyncio
    async def test_unsupported_type_fails_without_request(self, fake_trac):
        trac = fake_trac(lambda request: csv_response())
        async with trac.client() as client:
            components = await get_trac_info(client, "components")
            severities = await get_trac_info(client, "severities")

        assert trac.requests == []
        assert components.is_error
        assert components.title == "Error loading components"
        assert "milestones, priorities, types, statuses" in components.text
        assert severities.is_error

    @pytest.mark.asyncio
    async def test_unknown_type_names_valid_types(self, fake_trac):
        trac = fake_trac(lambda request: csv_response())
        async with trac.client() as client:
            record = await get_trac_info(client, "versions")

        assert trac.requests == []
        assert record.is_error
        assert "Unknown info type" in record.text
        assert "milestones, priorities, types, statuses" in record.text

    @pytest.mark.asyncio
    async def test_distinct_sorted_values(self, fake_trac):
        trac = fake_trac(lambda request: csv_response(*SEARCH_ROWS))
        async with trac.client() as client:
            priorities = await get_trac_info(client, "priorities")
            milestones = await get_trac_info(client, "milestones")

        assert trac.requests[0].url.params["max"] == "1000"
        assert "summary" not in trac.requests[0].url.params
        assert priorities.metadata == {"type": "priorities", "data": ["high", "low", "normal"], "total": 3}
        assert milestones.metadata["data"] == ["6.6", "6.7"]
        assert priorities.id == "priorities"

    @pytest.mark.asyncio
    async def test_blocked_export(self, fake_trac):
        trac = fake_trac(lambda request: html_response())
        async with trac.client() as client:
            record = await get_trac_info(client, "statuses")

        assert len(trac.requests) == 1
        assert record.is_error
        assert "Access denied" in record.text


class TestFilterExpressions:
    """Trac filter expressions accepted as search queries."""

    def test_operator_before_equals_moves_to_value(self):
        assert parse_filter_expression("summary~=editor&status!=closed") == [
            ("summary", "~editor"),
            ("status", "!closed"),
        ]

    def test_query_page_form_kept(self):
        assert parse_filter_expression("Summary=~editor") == [("summary", "~editor")]

    def test_parts_without_equals_ignored(self):
        assert parse_filter_expression("editor&status=new") == [("status", "new")]

    def test_keywords_are_not_expressions(self):
        assert not is_filter_expression("block editor")
        assert is_filter_expression("summary~=editor")

    def test_constraint_operators(self):
        row = parse_table(csv_body(SEARCH_HEADER, SEARCH_ROWS[0])).rows[0]
        assert constraint_matches(row, "component", "editor")
        assert constraint_matches(row, "status", "new|reopened")
        assert constraint_matches(row, "summary", "~toolbar")
        assert constraint_matches(row, "summary", "^editor")
        assert constraint_matches(row, "summary", "$overlaps")
        assert constraint_matches(row, "status", "!closed")
        assert not constraint_matches(row, "summary", "!~toolbar")
