"""Tag, note and activity-log helpers for external customer records.

All functions are pure so repeated syncs can be reasoned about without a CRM:
- merge_tags(): prefix-namespaced tags are replaced, never accumulated
- append_note(): history is only ever appended to
- append_event(): JSON activity log capped at the newest EVENT_LOG_LIMIT entries
- apply_stage_tag(): at most one funnel-stage tag is present at a time
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from src.sampling.crm.schemas import CustomerStage

# Tags under these prefixes are owned by the sync and rewritten on every pass
MANAGED_TAG_PREFIXES: tuple[str, ...] = (
    "tier:",
    "state:",
    "city:",
    "store:",
    "display:",
    "status:",
    "activated:",
    "sampling:",
)

# Each writer only replaces the namespaces it writes back
ENTITY_TAG_PREFIXES: tuple[str, ...] = ("tier:", "state:", "city:", "store:", "sampling:")
ACTIVATION_TAG_PREFIXES: tuple[str, ...] = (
    "store:",
    "display:",
    "state:",
    "status:",
    "activated:",
)

STAGE_TAGS: tuple[str, ...] = tuple(stage.value for stage in CustomerStage)

EVENT_LOG_LIMIT = 50


def parse_tags(raw: str | list[str] | None) -> list[str]:
    """Split a comma-separated tag string, dropping blanks and duplicates."""
    if not raw:
        return []
    parts = raw if isinstance(raw, list) else raw.split(",")
    tags: list[str] = []
    for part in parts:
        tag = part.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def format_tags(tags: list[str]) -> str:
    return ", ".join(tags)


def merge_tags(
    existing: list[str],
    new: list[str],
    prefixes: tuple[str, ...] = MANAGED_TAG_PREFIXES,
) -> list[str]:
    """Replace managed tags with the current values, keeping everything else.

    Args:
        existing: Tags currently on the external record.
        new: Tags describing the current local snapshot.
        prefixes: Namespaces owned by the sync.

    Returns:
        Unmanaged existing tags followed by the new tags, without duplicates.
    """
    kept = [tag for tag in existing if not tag.startswith(prefixes)]
    merged: list[str] = []
    for tag in kept + new:
        if tag and tag not in merged:
            merged.append(tag)
    return merged


def apply_stage_tag(existing: list[str], stage: CustomerStage | str) -> list[str]:
    """Swap whatever stage tag is present for the given one.

    Raises:
        ValueError: If stage is not a known CustomerStage.
    """
    stage_value = CustomerStage(stage).value
    tags = [tag for tag in existing if tag not in STAGE_TAGS]
    tags.append(stage_value)
    return tags


def append_note(existing: str | None, line: str, now: datetime | None = None) -> str:
    """Append one timestamped line to a customer note."""
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    entry = f"[{stamp}] {line}"
    if not existing:
        return entry
    return f"{existing.rstrip()}\n{entry}"


def append_event(
    raw_log: str | None,
    message: str,
    now: datetime | None = None,
    limit: int = EVENT_LOG_LIMIT,
) -> list[dict[str, Any]]:
    """Append an event to a JSON-encoded activity log, keeping the newest entries.

    Unreadable or non-list logs are treated as empty rather than failing the
    sync.

    Returns:
        The new log, at most `limit` entries, oldest first.
    """
    events: list[dict[str, Any]] = []
    if raw_log:
        try:
            parsed = json.loads(raw_log)
        except (TypeError, ValueError):
            parsed = []
        if isinstance(parsed, list):
            events = [e for e in parsed if isinstance(e, dict)]

    events.append(
        {
            "timestamp": (now or datetime.now(timezone.utc)).isoformat(),
            "message": message,
        }
    )
    return events[-limit:]
