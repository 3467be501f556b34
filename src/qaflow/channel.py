"""Filesystem channels shared between the state owner and the enforcement hooks.

A channel is a single file with a ``write``/``read``/``clear`` contract.
``read`` never raises for bad content: it returns a ``ChannelRead`` tagged
as present, absent or corrupt, so a hook on the hot path of a tool call
can decide its own policy.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from qaflow.errors import CorruptArtifact
from qaflow.models import format_timestamp, now_utc, parse_timestamp


PRESENT = "present"
ABSENT = "absent"
CORRUPT = "corrupt"


@dataclass
class ChannelRead:
    status: str
    value: Any = None
    error: CorruptArtifact | None = None

    @property
    def is_present(self) -> bool:
        return self.status == PRESENT

    @property
    def is_absent(self) -> bool:
        return self.status == ABSENT

    @property
    def is_corrupt(self) -> bool:
        return self.status == CORRUPT


class FileChannel:
    """Base channel over one file. Subclasses define encode/decode."""

    def __init__(self, path: str) -> None:
        self.path = path

    def _encode(self, value: Any) -> str:
        raise NotImplementedError

    def _decode(self, text: str) -> Any:
        """Return the decoded value or raise ValueError with the reason."""
        raise NotImplementedError

    def write(self, value: Any) -> None:
        """Atomically replace the file contents. Raises OSError on failure."""
        directory = os.path.dirname(self.path)
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(self._encode(value))
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def read(self) -> ChannelRead:
        try:
            with open(self.path) as f:
                text = f.read()
        except FileNotFoundError:
            return ChannelRead(ABSENT)
        except (OSError, UnicodeDecodeError) as e:
            return ChannelRead(CORRUPT, error=CorruptArtifact(self.path, str(e)))
        try:
            return ChannelRead(PRESENT, value=self._decode(text))
        except ValueError as e:
            return ChannelRead(CORRUPT, error=CorruptArtifact(self.path, str(e)))

    def clear(self) -> bool:
        """Remove the file. Returns False when there was nothing to remove."""
        try:
            os.remove(self.path)
        except FileNotFoundError:
            return False
        return True


class MirrorStateChannel(FileChannel):
    """The session mirror file consumed by the write-gate."""

    REQUIRED_KEYS = ("sessionId", "currentState")

    def _encode(self, value: dict) -> str:
        return json.dumps(value, indent=2) + "\n"

    def _decode(self, text: str) -> dict:
        # json.JSONDecodeError is a ValueError
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("mirror state is not a JSON object")
        missing = [k for k in self.REQUIRED_KEYS
                   if not isinstance(data.get(k), str) or not data.get(k)]
        if missing:
            raise ValueError(f"missing required fields: {', '.join(missing)}")
        return data


class ReviewMarkerChannel(FileChannel):
    """The review marker consumed by the push-gate: a bare ISO-8601 timestamp."""

    def _encode(self, value: datetime) -> str:
        return (format_timestamp(value) or "") + "\n"

    def _decode(self, text: str) -> datetime:
        stamp = parse_timestamp(text)
        if stamp is None:
            raise ValueError("marker is empty")
        return stamp

    def touch(self) -> datetime:
        stamp = now_utc()
        self.write(stamp)
        return stamp
