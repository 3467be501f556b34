"""Best-effort annotation of a project's requirements file (plans/prd.json)."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass

import structlog


logger = structlog.get_logger(__name__)

PRD_RELATIVE_PATH = os.path.join("plans", "prd.json")


@dataclass
class PrdUpdate:
    success: bool
    message: str

    def to_dict(self) -> dict:
        return {"success": self.success, "message": self.message}


def mark_story_passed(project_path: str, ticket_id: str) -> PrdUpdate:
    """Set ``passes: true`` on the user story whose id is the ticket id.

    Never raises: every failure is logged and returned as an unsuccessful
    ``PrdUpdate`` so the caller's transition is not blocked.
    """
    prd_path = os.path.join(project_path, PRD_RELATIVE_PATH)
    if not os.path.exists(prd_path):
        return PrdUpdate(False, f"No PRD file at {prd_path}")

    try:
        with open(prd_path) as f:
            prd = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("prd_read_failed", path=prd_path, error=str(e))
        return PrdUpdate(False, f"Could not read PRD: {e}")

    stories = prd.get("userStories") if isinstance(prd, dict) else None
    if not isinstance(stories, list):
        return PrdUpdate(False, "PRD has no userStories list")

    story = next((s for s in stories if isinstance(s, dict) and s.get("id") == ticket_id), None)
    if story is None:
        return PrdUpdate(False, f"Ticket {ticket_id} not found in PRD")
    if story.get("passes") is True:
        return PrdUpdate(True, f"Story {ticket_id} already marked as passing")

    story["passes"] = True
    try:
        with open(prd_path, "w") as f:
            json.dump(prd, f, indent=2)
            f.write("\n")
    except OSError as e:
        logger.warning("prd_write_failed", path=prd_path, error=str(e))
        return PrdUpdate(False, f"Could not write PRD: {e}")

    logger.info("prd_story_passed", ticket_id=ticket_id, path=prd_path)
    return PrdUpdate(True, f"Marked story {ticket_id} as passing in {PRD_RELATIVE_PATH}")
