"""Plain-text export of meeting notes."""
from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from meetnotes.core.errors import ExportFormatNotSupportedError
from meetnotes.db.models import Meeting


@dataclass(slots=True)
class ExportDocument:
    content: str
    filename: str
    media_type: str = "text/plain"


def _heading(title: str) -> str:
    return f"{title}\n{'-' * len(title)}\n"


def _numbered(items: list[dict[str, Any]], render: Callable[[dict[str, Any]], str]) -> str:
    return "".join(f"{i}. {render(item)}\n" for i, item in enumerate(items, start=1))


def _action_item(item: dict[str, Any]) -> str:
    line = item.get("text", "")
    if item.get("assignee"):
        line += f" (Assigned to: {item['assignee']})"
    if item.get("due_date"):
        line += f" (Due: {item['due_date']})"
    return line


def _topic(item: dict[str, Any]) -> str:
    line = item.get("name", "")
    if item.get("description"):
        line += f": {item['description']}"
    return line


def render_text(meeting: Meeting) -> str:
    parts = ["MEETING NOTES\n=============\n\n", f"Title: {meeting.title}\n"]
    if meeting.description:
        parts.append(f"Description: {meeting.description}\n")
    parts.append(f"Date: {meeting.created_at:%Y-%m-%d %H:%M}\n")
    parts.append(f"Status: {meeting.status}\n\n")

    if meeting.summary:
        parts.append(_heading("SUMMARY") + f"{meeting.summary}\n\n")
    if meeting.action_items:
        parts.append(_heading("ACTION ITEMS") + _numbered(meeting.action_items, _action_item) + "\n")
    if meeting.key_decisions:
        parts.append(
            _heading("KEY DECISIONS") + _numbered(meeting.key_decisions, lambda d: d.get("text", "")) + "\n"
        )
    if meeting.topics:
        parts.append(_heading("TOPICS DISCUSSED") + _numbered(meeting.topics, _topic) + "\n")
    if meeting.transcript:
        parts.append(_heading("FULL TRANSCRIPT") + f"{meeting.transcript}\n")
    return "".join(parts)


def safe_filename(title: str) -> str:
    return re.sub(r"[^a-z0-9]", "_", title, flags=re.IGNORECASE) or "meeting"


def export_meeting(meeting: Meeting, fmt: str = "txt") -> ExportDocument:
    """Render notes for download. DOCX is served as text until a real writer exists."""
    fmt = (fmt or "txt").lower()
    if fmt == "pdf":
        raise ExportFormatNotSupportedError(fmt)
    return ExportDocument(content=render_text(meeting), filename=f"{safe_filename(meeting.title)}.txt")
