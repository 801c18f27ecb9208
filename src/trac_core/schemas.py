"""Pydantic schemas for normalized Trac results."""
from typing import Any

from pydantic import BaseModel, Field, ConfigDict

from .models import TracInfoType


# Result envelope

class ResultRecord(BaseModel):
    """Uniform envelope returned by every fetcher.

    `title` and `text` are never empty: failure records describe the error
    instead of omitting them.
    """

    id: int | str
    title: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    url: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return bool(self.metadata.get("error"))


def failure_record(resource: str, identifier: int | str, url: str, error: Exception | str) -> ResultRecord:
    """Build the failure-shaped record for a resource that could not be loaded."""
    message = str(error) or type(error).__name__
    return ResultRecord(
        id=identifier,
        title=f"Error loading {resource}",
        text=f"Error: {message}",
        url=url,
        metadata={"error": True},
    )


# Ticket Schemas

class TicketSummary(BaseModel):
    """One row of a ticket search."""

    id: int
    title: str = ""
    status: str = "unknown"
    owner: str = "unassigned"
    type: str = "unknown"
    priority: str = "unknown"
    milestone: str = "none"
    component: str = "unknown"

    model_config = ConfigDict(frozen=True)


class TicketDetail(TicketSummary):
    """A single ticket with the long-form fields of the export."""

    description: str = ""
    reporter: str = ""
    resolution: str = ""
    keywords: str = ""
    version: str = ""
    severity: str = ""
    created: str = ""
    modified: str = ""


class TicketComment(BaseModel):
    """A comment attached to a ticket result."""

    author: str
    timestamp: str = ""
    comment: str


# Changeset Schemas

class ChangesetInfo(BaseModel):
    """A single SVN changeset scraped from its rendered page."""

    revision: int
    author: str = ""
    date: str = ""
    message: str = ""
    files: list[str] = Field(default_factory=list)
    diff: str = ""


# Timeline Schemas

class TimelineEvent(BaseModel):
    """One item of the timeline feed; `id` is the item link."""

    id: str
    title: str
    date: str = ""
    author: str = ""
    description: str = ""

    model_config = ConfigDict(frozen=True)


# Metadata Schemas

class TracInfoSet(BaseModel):
    """Distinct values of one ticket field."""

    type: TracInfoType
    data: list[str] = Field(default_factory=list)
    total: int = 0

    model_config = ConfigDict(use_enum_values=True)
