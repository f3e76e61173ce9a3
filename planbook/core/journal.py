"""Append-only JSONL journal of sync activity (fallbacks, migrations, saves)."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel, Field, ValidationError


class SyncEvent(BaseModel):
    """Structured record for one sync decision."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stage: str = Field(..., description="Sync stage, e.g. 'load', 'save', 'fallback' or 'migrate'.")
    message: str = Field(..., description="Human-readable description of the event.")
    entity: str | None = Field(default=None, description="Table or entity the event concerns.")
    payload: Dict[str, Any] = Field(default_factory=dict)


class SyncJournal:
    """Append-only JSONL logger for sync decisions."""

    def __init__(self, output_path: Path):
        self.output_path = output_path
        self.output_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, event: SyncEvent | Dict[str, Any]) -> SyncEvent:
        """Write a single event to disk and return the normalized object."""
        if not isinstance(event, SyncEvent):
            event = SyncEvent(**event)
        line = event.model_dump_json()
        with self.output_path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        return event

    def tail(self, limit: int = 20) -> List[SyncEvent]:
        """Return the newest ``limit`` events, oldest first. Unparseable lines are skipped."""
        if not self.output_path.exists():
            return []
        events: List[SyncEvent] = []
        for line in self.output_path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                events.append(SyncEvent.model_validate(json.loads(line)))
            except (ValueError, ValidationError):
                continue
        return events[-limit:] if limit > 0 else events


__all__ = ["SyncEvent", "SyncJournal"]
