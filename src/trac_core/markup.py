"""Field extraction from Trac's rendered changeset pages and RSS timeline.

Each logical field maps to an ordered tuple of matchers covering the page
template variations Trac has shipped. Matchers are tried in order and the
first non-empty result wins; a field nothing matches is returned as "".
New template variations are handled by adding a matcher to the table.

Matchers only locate a fragment; its text is recovered with BeautifulSoup.
"""
import re
import warnings
from dataclasses import dataclass
from typing import Callable

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

# Feed links and bare paths are passed through the parser as plain text
warnings.filterwarnings("ignore", category=MarkupResemblesLocatorWarning)

FEED_ITEM_RE = re.compile(r"<item\b[^>]*>(.*?)</item>", re.DOTALL | re.IGNORECASE)

MAX_FILES = 20

# Link texts in the file list that annotate an entry rather than name a path
DECORATIVE_ENTRIES = {"modified", "added", "deleted", "copied", "moved", "edited", "diff", "view"}


def _soup(fragment: str) -> BeautifulSoup:
    return BeautifulSoup(fragment, "html.parser")


def _tidy(text: str) -> str:
    lines = [re.sub(r"[ \t\xa0]+", " ", line).strip() for line in text.splitlines()]
    text = "\n".join(lines).strip()
    return re.sub(r"\n{3,}", "\n\n", text)


def strip_tags(fragment: str) -> str:
    """Text of an HTML fragment with entities decoded, keeping line structure."""
    soup = _soup(fragment)
    for br in soup.find_all("br"):
        br.replace_with("\n")
    return _tidy(soup.get_text())


def inline_text(fragment: str) -> str:
    """strip_tags() collapsed onto a single line."""
    return " ".join(strip_tags(fragment).split())


def escaped_html_text(fragment: str) -> str:
    """Text of an entity-escaped HTML fragment, as found in plain RSS elements."""
    return strip_tags(_soup(fragment).get_text())


def escaped_inline_text(fragment: str) -> str:
    return " ".join(escaped_html_text(fragment).split())


@dataclass(frozen=True)
class Matcher:
    """A pattern whose first group holds the field, plus its cleanup."""

    pattern: re.Pattern
    transform: Callable[[str], str] = strip_tags

    def apply(self, document: str) -> str:
        match = self.pattern.search(document)
        if not match:
            return ""
        return self.transform(match.group(1))


def _m(pattern: str, transform: Callable[[str], str] = strip_tags) -> Matcher:
    return Matcher(re.compile(pattern, re.DOTALL | re.IGNORECASE), transform)


# Changeset page fields

CHANGESET_FIELDS: dict[str, tuple[Matcher, ...]] = {
    "author": (
        _m(r'<dd class="author"[^>]*>(.*?)</dd>', inline_text),
        _m(r"<dt[^>]*>\s*Author:\s*</dt>\s*<dd[^>]*>(.*?)</dd>", inline_text),
        _m(r"<th[^>]*>\s*Author:\s*</th>\s*<td[^>]*>(.*?)</td>", inline_text),
    ),
    "date": (
        _m(r'<dd class="time"[^>]*>(.*?)</dd>', inline_text),
        _m(r"<dt[^>]*>\s*(?:Timestamp|Date):\s*</dt>\s*<dd[^>]*>(.*?)</dd>", inline_text),
        _m(r"<th[^>]*>\s*(?:Timestamp|Date):\s*</th>\s*<td[^>]*>(.*?)</td>", inline_text),
    ),
    "message": (
        _m(r'<dd class="message[^"]*"[^>]*>(.*?)</dd>'),
        _m(r"<dt[^>]*>\s*Message:\s*</dt>\s*<dd[^>]*>(.*?)</dd>"),
        _m(r'<div class="message"[^>]*>\s*<p[^>]*>(.*?)</p>'),
    ),
}

# Blocks holding the changed-file list; anchors inside them name the paths
FILE_LIST_BLOCKS: tuple[Matcher, ...] = (
    _m(r'<dd class="files"[^>]*>(.*?)</dd>', lambda block: block),
    _m(r"<h2[^>]*>\s*Files:\s*</h2>(.*?)</div>", lambda block: block),
    _m(r'<ul class="entries"[^>]*>(.*?)</ul>', lambda block: block),
)

# Feed item fields: CDATA first, escaped plain text as fallback

FEED_ITEM_FIELDS: dict[str, tuple[Matcher, ...]] = {
    "title": (
        _m(r"<title>\s*<!\[CDATA\[(.*?)\]\]>\s*</title>", inline_text),
        _m(r"<title>(.*?)</title>", escaped_inline_text),
    ),
    "link": (
        _m(r"<link>\s*<!\[CDATA\[(.*?)\]\]>\s*</link>", inline_text),
        _m(r"<link>(.*?)</link>", inline_text),
    ),
    "description": (
        _m(r"<description>\s*<!\[CDATA\[(.*?)\]\]>\s*</description>"),
        _m(r"<description>(.*?)</description>", escaped_html_text),
    ),
    "date": (
        _m(r"<pubDate>(.*?)</pubDate>", inline_text),
        _m(r"<dc:date>(.*?)</dc:date>", inline_text),
    ),
    "author": (
        _m(r"<dc:creator>\s*<!\[CDATA\[(.*?)\]\]>\s*</dc:creator>", inline_text),
        _m(r"<dc:creator>(.*?)</dc:creator>", escaped_inline_text),
        _m(r"<author>(.*?)</author>", escaped_inline_text),
    ),
}


def first_match(document: str, matchers: tuple[Matcher, ...]) -> str:
    """Value of the first matcher that yields a non-empty result."""
    for matcher in matchers:
        value = matcher.apply(document)
        if value:
            return value
    return ""


def extract_changeset_field(page: str, name: str) -> str:
    """Extract author, date or message from a changeset page."""
    return first_match(page, CHANGESET_FIELDS[name])


def extract_feed_field(item: str, name: str) -> str:
    """Extract title, link, description, date or author from one feed item."""
    return first_match(item, FEED_ITEM_FIELDS[name])


def _is_path(entry: str) -> bool:
    if not entry or "(" in entry or ")" in entry:
        return False
    return entry.lower() not in DECORATIVE_ENTRIES


def extract_files(page: str, limit: int = MAX_FILES) -> list[str]:
    """Changed paths listed on a changeset page, in page order."""
    block = first_match(page, FILE_LIST_BLOCKS)
    if not block:
        return []

    files = []
    for anchor in _soup(block).find_all("a"):
        entry = " ".join(anchor.get_text().split())
        if _is_path(entry):
            files.append(entry)
            if len(files) >= limit:
                break
    return files


def extract_feed_items(feed: str) -> list[str]:
    """Raw bodies of the <item> elements of an RSS document."""
    return FEED_ITEM_RE.findall(feed)
