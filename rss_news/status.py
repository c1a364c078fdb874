"""Read-only projection of per-feed retry state."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import List, Optional

from .state import NewsState


@dataclass(frozen=True)
class FeedStatus:
    name: str
    url: str
    attempts: int
    last_error: Optional[str]
    next_eligible_at: Optional[datetime]


def export_status(state: NewsState) -> List[FeedStatus]:
    """Return the status of every registered feed, sorted by name."""
    feeds, retry = state.cycle_inputs()
    rows = []
    for name in sorted(feeds):
        entry = retry.get(name)
        rows.append(
            FeedStatus(
                name=name,
                url=feeds[name],
                attempts=entry.attempts if entry else 0,
                last_error=entry.last_error if entry else None,
                next_eligible_at=entry.next_eligible_at if entry else None,
            )
        )
    return rows


def status_to_json(rows: List[FeedStatus], indent: Optional[int] = 2) -> str:
    payload = []
    for row in rows:
        item = asdict(row)
        if row.next_eligible_at is not None:
            item["next_eligible_at"] = row.next_eligible_at.isoformat()
        payload.append(item)
    return json.dumps(payload, indent=indent, ensure_ascii=False)
