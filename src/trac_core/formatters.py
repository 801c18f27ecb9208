"""Plain-text renderings used as the `text` of result records.

Every function tolerates empty fields: scraped pages and feeds routinely
lack some of them.
"""
from .schemas import (
    ChangesetInfo,
    TicketComment,
    TicketDetail,
    TicketSummary,
    TimelineEvent,
    TracInfoSet,
)

MAX_LISTED_FILES = 10


def format_ticket_summary(ticket: TicketSummary) -> str:
    """Format a search hit as a compact block."""
    title = ticket.title or "No summary"
    return f"""#{ticket.id}: {title}
Status: {ticket.status}
Owner: {ticket.owner}
Component: {ticket.component}
Type: {ticket.type}
Priority: {ticket.priority}
Milestone: {ticket.milestone}"""


def format_ticket_search(query: str, tickets: list[TicketSummary], note: str = "") -> str:
    if not tickets:
        text = f'No tickets found for "{query}".'
    else:
        items_text = "\n\n".join([format_ticket_summary(t) for t in tickets])
        text = f'Found {len(tickets)} tickets for "{query}"\n\n{items_text}'
    if note:
        text += f"\n\nNote: {note}"
    return text


def format_comment(comment: TicketComment) -> str:
    timestamp = f" ({comment.timestamp})" if comment.timestamp else ""
    return f"{comment.author}{timestamp}: {comment.comment}"


def format_ticket(ticket: TicketDetail, comments: list[TicketComment]) -> str:
    """Format a single ticket with its description and comments."""
    resolution_info = f"\nResolution: {ticket.resolution}" if ticket.resolution else ""
    keywords_info = f"\nKeywords: {ticket.keywords}" if ticket.keywords else ""
    version_info = f"\nVersion: {ticket.version}" if ticket.version else ""
    created_info = f"\nCreated: {ticket.created}" if ticket.created else ""
    modified_info = f"\nModified: {ticket.modified}" if ticket.modified else ""

    if comments:
        comments_text = "\n\n".join([format_comment(c) for c in comments])
        comments_block = f"Comments ({len(comments)}):\n{comments_text}"
    else:
        comments_block = "No comments"

    body = ticket.description or "(No description)"

    return f"""Ticket #{ticket.id}: {ticket.title or 'No summary'}

Status: {ticket.status}{resolution_info}
Component: {ticket.component}
Priority: {ticket.priority}
Type: {ticket.type}
Milestone: {ticket.milestone}{version_info}
Reporter: {ticket.reporter or 'unknown'}
Owner: {ticket.owner}{keywords_info}{created_info}{modified_info}

Description:
{body}

{comments_block}"""


def format_changeset(changeset: ChangesetInfo) -> str:
    """Format a changeset, listing at most ten files."""
    files = changeset.files
    files_text = "\n".join(files[:MAX_LISTED_FILES])
    if len(files) > MAX_LISTED_FILES:
        files_text += "\n..."
    diff_block = f"Diff:\n{changeset.diff}" if changeset.diff else "No diff available"

    return f"""Changeset r{changeset.revision}
Author: {changeset.author or 'unknown'}
Date: {changeset.date or 'unknown'}

Message:
{changeset.message or '(No message)'}

Files changed: {len(files)}
{files_text}

{diff_block}"""


def format_timeline_event(event: TimelineEvent) -> str:
    author_info = f"\nAuthor: {event.author}" if event.author else ""
    description_info = f"\n{event.description}" if event.description else ""
    return f"""{event.title}{description_info}
Date: {event.date or 'Unknown'}{author_info}
Link: {event.id}"""


def format_timeline(events: list[TimelineEvent], days: int) -> str:
    if not events:
        return f"No timeline events in the last {days} days."
    events_text = "\n\n".join([format_timeline_event(e) for e in events])
    return f"{len(events)} timeline events in the last {days} days\n\n{events_text}"


def format_trac_info(info: TracInfoSet) -> str:
    label = str(info.type).capitalize()
    if not info.data:
        return f"No {info.type} found in WordPress Trac."
    values = "\n".join(info.data)
    return f"{label} available in WordPress Trac ({info.total}):\n\n{values}"
