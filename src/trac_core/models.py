"""Enumerations shared by the Trac core."""
import enum


class TracInfoType(str, enum.Enum):
    """Metadata categories that can be derived from the ticket export."""

    MILESTONES = "milestones"
    PRIORITIES = "priorities"
    TYPES = "types"
    STATUSES = "statuses"


# Categories Trac exposes elsewhere but the CSV export cannot provide
UNSUPPORTED_INFO_TYPES = ("components", "severities")

# Export column holding the values for each metadata category
INFO_TYPE_COLUMNS: dict[TracInfoType, str] = {
    TracInfoType.MILESTONES: "milestone",
    TracInfoType.PRIORITIES: "priority",
    TracInfoType.TYPES: "type",
    TracInfoType.STATUSES: "status",
}


class RouteKind(str, enum.Enum):
    """Resource a free-form query is routed to."""

    TICKET = "ticket"
    CHANGESET = "changeset"
    TIMELINE = "timeline"
    SEARCH = "search"
