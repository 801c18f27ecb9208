"""Parsing of Trac's CSV ticket export.

Trac serves ticket listings as comma-separated text (``/query?format=csv``
and ``/ticket/<id>?format=csv``). When the tracker rate-limits or blocks a
client it answers the same URL with an HTML error page instead, so every
response is first classified:

- ``Tabular``: the body parsed into a header and named rows
- ``NotTabular``: the body looked like markup and was not parsed at all

Callers branch on the variant rather than probing the body themselves.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional, Union

logger = logging.getLogger("trac-core.csv_export")

BYTE_ORDER_MARK = "\ufeff"

# Only the start of a body is inspected for markup; descriptions may quote HTML
MARKUP_PROBE_LENGTH = 1024
MARKUP_MARKERS = ("<html", "<!doctype html", "403 forbidden")


@dataclass(frozen=True)
class TabularRow:
    """One data record of the export."""

    fields: list[str]
    values: dict[str, str]
    raw: str

    def get(self, name: str, default: str = "") -> str:
        value = self.values.get(name, "")
        return value if value else default

    @property
    def ticket_id(self) -> Optional[int]:
        """Integer id from the first field, or None for non-data rows."""
        if not self.fields:
            return None
        try:
            return int(self.fields[0].strip())
        except ValueError:
            return None


@dataclass(frozen=True)
class Table:
    header: list[str]
    rows: list[TabularRow] = field(default_factory=list)


@dataclass(frozen=True)
class Tabular:
    table: Table


@dataclass(frozen=True)
class NotTabular:
    body: str


ExportResult = Union[Tabular, NotTabular]


def parse_line(line: str) -> list[str]:
    """Split one CSV record into field strings.

    Double quotes group a field (``""`` inside them is a literal quote) and a
    backslash copies the next character verbatim. Unquoted fields are trimmed.
    """
    fields: list[str] = []
    buf: list[str] = []
    in_quotes = False
    quoted = False
    i = 0
    length = len(line)

    while i < length:
        ch = line[i]
        if ch == "\\" and i + 1 < length:
            buf.append(line[i + 1])
            i += 2
            continue
        if ch == '"':
            if in_quotes and i + 1 < length and line[i + 1] == '"':
                buf.append('"')
                i += 2
                continue
            if not in_quotes and not quoted and not "".join(buf).strip():
                buf = []
            in_quotes = not in_quotes
            quoted = True
            i += 1
            continue
        if ch == "," and not in_quotes:
            fields.append(_finish_field(buf, quoted))
            buf = []
            quoted = False
            i += 1
            continue
        if quoted and not in_quotes and ch.isspace():
            # Padding after a closing quote
            i += 1
            continue
        buf.append(ch)
        i += 1

    fields.append(_finish_field(buf, quoted))
    return fields


def _finish_field(buf: list[str], quoted: bool) -> str:
    text = "".join(buf)
    return text if quoted else text.strip()


def _ends_in_quotes(text: str) -> bool:
    in_quotes = False
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == '"':
            in_quotes = not in_quotes
        i += 1
    return in_quotes


def split_records(text: str) -> list[str]:
    """Split a CSV body into records.

    Lines end with ``\\n`` or ``\\r\\n``. A line that stops inside an open
    quoted field continues on the next line, since ticket descriptions keep
    their newlines. Blank lines are dropped.
    """
    if text.startswith(BYTE_ORDER_MARK):
        text = text[len(BYTE_ORDER_MARK):]

    records: list[str] = []
    pending: Optional[str] = None
    for line in text.replace("\r\n", "\n").split("\n"):
        candidate = line if pending is None else f"{pending}\n{line}"
        if _ends_in_quotes(candidate):
            pending = candidate
            continue
        pending = None
        if candidate.strip():
            records.append(candidate)

    if pending is not None and pending.strip():
        logger.debug("CSV body ended inside a quoted field")
        records.append(pending)
    return records


def parse_table(text: str) -> Table:
    """Parse a CSV body into a header and rows keyed by lower-cased column name.

    Every row carries exactly one value per header column: short rows are
    padded with empty strings and extra fields are ignored.
    """
    records = split_records(text)
    if not records:
        return Table(header=[])

    header = [name.strip().lower() for name in parse_line(records[0])]
    rows = []
    for raw in records[1:]:
        fields = parse_line(raw)
        fields = (fields + [""] * len(header))[:len(header)]
        rows.append(TabularRow(fields=fields, values=dict(zip(header, fields)), raw=raw))
    return Table(header=header, rows=rows)


def looks_like_markup(body: str) -> bool:
    """True when the body is an HTML page (error or login wall) rather than CSV."""
    head = body.lstrip()[:MARKUP_PROBE_LENGTH].lower()
    return any(marker in head for marker in MARKUP_MARKERS)


def parse_export(body: str) -> ExportResult:
    """Classify and parse an export response body."""
    if looks_like_markup(body):
        return NotTabular(body=body)
    return Tabular(table=parse_table(body))


def ticket_rows(table: Table) -> Iterator[TabularRow]:
    """Yield the rows that carry an integer ticket id, skipping the rest."""
    for row in table.rows:
        if row.ticket_id is not None:
            yield row
