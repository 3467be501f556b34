"""Utility functions for the qf CLI and the workflow services."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from qaflow.models import Ticket, TicketStatus


def status_symbol(status: str) -> str:
    """Return a symbol for status display."""
    symbols = {
        TicketStatus.BACKLOG: " ",
        TicketStatus.READY: "o",
        TicketStatus.IN_PROGRESS: ">",
        TicketStatus.AI_REVIEW: "?",
        TicketStatus.HUMAN_REVIEW: "!",
        TicketStatus.DONE: "x",
    }
    return symbols.get(status, "?")


def format_time_ago(dt: datetime) -> str:
    """Format a datetime as a relative time string."""
    now = datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    seconds = int((now - dt).total_seconds())
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 30:
        return f"{days}d ago"
    months = days // 30
    if months < 12:
        return f"{months}mo ago"
    return f"{days // 365}y ago"


def parse_duration(s: str) -> timedelta | None:
    """Parse a duration string such as '30m', '1h30m', '2d' or '45s'."""
    if not s:
        return None
    total_seconds = 0
    remaining = s.strip()

    for pattern, factor in ((r"(\d+)d", 86400), (r"(\d+)h", 3600),
                            (r"(\d+)m", 60), (r"(\d+)s", 1)):
        m = re.match(pattern, remaining)
        if m:
            total_seconds += int(m.group(1)) * factor
            remaining = remaining[m.end():]

    if remaining or total_seconds == 0:
        return None
    return timedelta(seconds=total_seconds)


def slugify(text: str, max_len: int = 50) -> str:
    """Lowercase text and collapse every non-alphanumeric run into a hyphen."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:max_len].rstrip("-")


def short_id(ticket_id: str) -> str:
    return ticket_id[:8]


def branch_name_for(ticket_id: str, title: str) -> str:
    """Deterministic feature branch name for a ticket."""
    return f"feature/{short_id(ticket_id)}-{slugify(title)}"


def truncate(s: str, max_len: int = 60) -> str:
    """Truncate a string with ellipsis."""
    if len(s) <= max_len:
        return s
    return s[:max_len - 3] + "..."


def format_ticket_row(ticket: Ticket) -> str:
    """Format a ticket as a single-line row for list display."""
    sym = status_symbol(ticket.status)
    pri = (ticket.priority or "-")[:1].upper()
    age = format_time_ago(ticket.created_at)
    return f"[{sym}] {short_id(ticket.id)} {pri} {ticket.status:<12} {truncate(ticket.title, 50)}  ({age})"
