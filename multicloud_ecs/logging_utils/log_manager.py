"""
Centralized event log.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

import aiofiles

from ..utils.directories import get_secure_app_directory
from .events import LogEvent

_ENVELOPE_FIELDS = {"event_type", "timestamp", "correlation_id", "provider_code", "metadata"}


class LogManager:
    """Keeps operator events in memory and appends them to a JSONL file."""

    def __init__(self, log_dir: Optional[str] = None, max_events: int = 1000):
        if log_dir is None:
            self.log_dir = get_secure_app_directory("multicloud-ecs", "logs")
        else:
            self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger("LogManager")

        self.max_events = max_events
        self.events: List[LogEvent] = []

        self.event_log_file = self.log_dir / "events.jsonl"

    async def emit_event(self, event: LogEvent) -> None:
        """Record an event."""
        self.events.append(event)
        if len(self.events) > self.max_events:
            del self.events[: len(self.events) - self.max_events]

        await self._write_event_to_file(event)

    async def _write_event_to_file(self, event: LogEvent) -> None:
        """Append one JSON line; metadata keys are flattened into the record."""
        record = {
            "event_type": event.event_type,
            "timestamp": event.timestamp.isoformat() if event.timestamp else "",
            "correlation_id": event.correlation_id,
            "provider_code": event.provider_code,
        }
        for key, value in vars(event).items():
            if key not in _ENVELOPE_FIELDS:
                record[key] = value
        record.update(event.metadata or {})

        try:
            async with aiofiles.open(self.event_log_file, "a") as f:
                await f.write(json.dumps(record, default=str) + "\n")
        except OSError as e:
            self.logger.error(
                f"Failed to append event to {self.event_log_file}: {e}",
                extra={"event_type": event.event_type},
            )

    def get_events(self, event_type: Optional[str] = None) -> List[LogEvent]:
        """Get recorded events, optionally filtered by type."""
        if event_type is None:
            return list(self.events)
        return [event for event in self.events if event.event_type == event_type]

    def get_events_for_correlation(self, correlation_id: str) -> List[LogEvent]:
        return [e for e in self.events if e.correlation_id == correlation_id]

    def get_recent_events(self, count: int = 50) -> List[LogEvent]:
        """Get the most recent events."""
        return self.events[-count:] if len(self.events) > count else self.events
