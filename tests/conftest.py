"""Shared fixtures: a fake Trac served through httpx.MockTransport."""
from typing import Callable

import httpx
import pytest

from trac_core.config import Settings
from trac_core.fetchers import open_client

TRAC_BASE = "https://core.trac.wordpress.org"

SEARCH_HEADER = "id,summary,status,owner,type,priority,milestone,component"

CHANGESET_PAGE = """<!DOCTYPE html>
<html><head><title>Changeset 58504 - WordPress Trac</title></head>
<body>
<div id="content" class="changeset">
<dl id="overview">
  <dt class="property time">Timestamp:</dt>
  <dd class="time">06/25/2024 01:02:03 PM (<a class="timeline" href="/timeline?from=2024-06-25">3 months ago</a>)</dd>
  <dt class="property author">Author:</dt>
  <dd class="author"><span class="trac-author">joedolson</span></dd>
  <dt class="property message">Message:</dt>
  <dd class="message searchable">
    <p>Administration: Fix &quot;Add New&quot; button labels.<br />
Props someone.</p>
    <p>Fixes <a class="closed ticket" href="/ticket/61234" title="defect: Labels">#61234</a>.</p>
  </dd>
  <dt class="property files">Location:</dt>
  <dd class="files">
    <ul>
      <li><div class="mod"></div><a title="Show entry in browser" href="/browser/trunk/src/wp-admin/edit.php?rev=58504">trunk/src/wp-admin/edit.php</a> <span class="comment">(modified)</span> (<a title="Show differences" href="#file0">diff</a>)</li>
      <li><div class="mod"></div><a title="Show entry in browser" href="/browser/trunk/src/wp-admin/post-new.php?rev=58504">trunk/src/wp-admin/post-new.php</a> <span class="comment">(modified)</span> (<a title="Show differences" href="#file1">diff</a>)</li>
    </ul>
  </dd>
</dl>
</div>
</body></html>
"""

TIMELINE_FEED = """<?xml version="1.0"?>
<rss version="2.0" xmlns:dc="http://purl.org/dc/elements/1.1/">
<channel>
  <title>WordPress Trac</title>
  <link>https://core.trac.wordpress.org/timeline</link>
  <item>
    <title><![CDATA[Changeset [58504]: Fix labels]]></title>
    <dc:creator>joedolson</dc:creator>
    <pubDate>Tue, 25 Jun 2024 13:02:03 GMT</pubDate>
    <link>https://core.trac.wordpress.org/changeset/58504</link>
    <description><![CDATA[<p>Fix <em>labels</em>.</p>]]></description>
  </item>
  <item>
    <title>Ticket #61234 (Editor &amp; toolbar) closed</title>
    <dc:creator>afercia</dc:creator>
    <pubDate>Tue, 25 Jun 2024 12:00:00 GMT</pubDate>
    <link>https://core.trac.wordpress.org/ticket/61234#comment:5</link>
    <description>&lt;p&gt;Fixed in &lt;a href="/changeset/58504"&gt;[58504]&lt;/a&gt;.&lt;/p&gt;</description>
  </item>
  <item>
    <title>Orphan item</title>
    <description>No link here</description>
  </item>
  <item>
    <link>https://core.trac.wordpress.org/ticket/61300</link>
    <description>No title here</description>
  </item>
</channel>
</rss>
"""

BLOCKED_PAGE = "<html><head><title>403 Forbidden</title></head><body><h1>403 Forbidden</h1></body></html>"


def csv_body(header: str, *rows: str) -> str:
    """A CSV export body the way Trac serves it (BOM, CRLF)."""
    return "\ufeff" + "\r\n".join((header,) + rows) + "\r\n"


class FakeTrac:
    """Answers upstream requests through `handler` and records them."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client(self) -> httpx.AsyncClient:
        return open_client(self.settings(), transport=httpx.MockTransport(self))

    @staticmethod
    def settings() -> Settings:
        return Settings(trac_base_url=TRAC_BASE)


@pytest.fixture
def fake_trac() -> Callable[[Callable[[httpx.Request], httpx.Response]], FakeTrac]:
    return FakeTrac
