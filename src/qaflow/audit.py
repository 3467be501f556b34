"""Append-only ticket audit log."""

from __future__ import annotations

from qaflow.errors import NotFoundError, ValidationError
from qaflow.models import CommentAuthor, CommentType, TicketComment
from qaflow.storage.interface import Storage


def add_comment(store: Storage, ticket_id: str, content: str,
                author: str = CommentAuthor.RALPH,
                comment_type: str = CommentType.COMMENT) -> TicketComment:
    """Append one comment to a ticket's audit trail."""
    if not content or not content.strip():
        raise ValidationError("Comment content is required")
    if not CommentAuthor.is_valid(author):
        raise ValidationError(f"Invalid comment author: {author}")
    if not CommentType.is_valid(comment_type):
        raise ValidationError(f"Invalid comment type: {comment_type}")
    if store.get_ticket(ticket_id) is None:
        raise NotFoundError("ticket", ticket_id)
    return store.add_comment(TicketComment(
        ticket_id=ticket_id, content=content, author=author, type=comment_type,
    ))


def add_comment_once(store: Storage, ticket_id: str, content: str,
                     author: str = CommentAuthor.RALPH,
                     comment_type: str = CommentType.COMMENT) -> TicketComment | None:
    """Append a comment unless an identical one already exists.

    Returns None when the comment was already present.
    """
    if store.has_comment(ticket_id, comment_type, content):
        return None
    return add_comment(store, ticket_id, content, author, comment_type)


def list_comments(store: Storage, ticket_id: str) -> list[TicketComment]:
    if store.get_ticket(ticket_id) is None:
        raise NotFoundError("ticket", ticket_id)
    return store.get_comments(ticket_id)
