"""Typed errors raised by the workflow services.

Every error carries a stable ``code`` and a ``details`` dict so that the
operation layer and the CLI can turn it into a structured error payload.
"""

from __future__ import annotations

from typing import Any


class QaflowError(Exception):
    """Base class for all qaflow errors."""

    code = "QAFLOW_ERROR"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error": True,
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(QaflowError):
    """Malformed or missing input, rejected before any mutation."""

    code = "VALIDATION_ERROR"


class NotFoundError(QaflowError):
    """An id did not resolve to a ticket, session, finding or project."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str, message: str | None = None) -> None:
        super().__init__(
            message or f"{entity.capitalize()} not found: {entity_id}",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class PreconditionError(QaflowError):
    """A status or finding-count gate is not satisfied."""

    code = "PRECONDITION_FAILED"


class ConcurrencyDegradation(QaflowError):
    """A secondary projection write failed after the primary commit.

    Raised by storage; services catch it, log it and report it via a flag.
    """

    code = "DEGRADED"


class CorruptArtifact(QaflowError):
    """A mirror file, marker or stored JSON blob is unreadable or incomplete."""

    code = "CORRUPT_ARTIFACT"

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Corrupt artifact {path}: {reason}", details={"path": path})
        self.path = path
        self.reason = reason


class EnforcementDenial(QaflowError):
    """An enforcement hook blocks the call. The message carries the remediation."""

    code = "ENFORCEMENT_DENIED"


class GitError(QaflowError):
    """The version-control collaborator failed."""

    code = "GIT_ERROR"
