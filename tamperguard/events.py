"""
TamperGuard - Event Log

Append-only trail of pipeline state changes.

Entries always go to a bounded in-memory buffer. When a state path is
configured they are also appended to `tamperguard_events.jsonl` there. A
failing disk never interrupts a tick; write errors are only counted.
"""

import json
from collections import deque
from dataclasses import dataclass, asdict, field
from datetime import datetime
from pathlib import Path
from typing import List, Dict, Any, Optional

LOG_FILENAME = 'tamperguard_events.jsonl'


@dataclass
class EventEntry:
    """A single event log entry."""
    timestamp: str
    tick: int
    event: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class EventLog:
    """
    Event trail for the detection pipeline.

    Records threat, response and recovery transitions, forensic captures
    and drops, and permanent lockdown.
    """

    def __init__(self, state_path: Optional[Path] = None, max_recent: int = 1000):
        """
        Initialize the event log.

        Args:
            state_path: Directory for the JSONL file, or None for memory only
            max_recent: Number of entries kept in memory
        """
        self.state_path = Path(state_path) if state_path else None
        self.recent: deque = deque(maxlen=max_recent)
        self.write_errors = 0
        self.total_events = 0

    @property
    def log_path(self) -> Optional[Path]:
        if not self.state_path:
            return None
        return self.state_path / LOG_FILENAME

    def log(self, tick: int, event: str, details: Dict[str, Any] = None) -> EventEntry:
        """Record one event."""
        entry = EventEntry(
            timestamp=datetime.now().isoformat(),
            tick=tick,
            event=event,
            details=details or {}
        )
        self.recent.append(entry)
        self.total_events += 1

        if self.log_path:
            try:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.log_path, 'a') as f:
                    f.write(entry.to_json() + '\n')
            except OSError:
                self.write_errors += 1

        return entry

    def get_entries(self, limit: int = 100, event: Optional[str] = None) -> List[EventEntry]:
        """
        Get recent entries.

        Reads the JSONL file back when one is configured, otherwise the
        in-memory buffer.

        Args:
            limit: Maximum number of entries to return
            event: Filter by event name
        """
        if self.log_path and self.log_path.exists():
            entries = []
            with open(self.log_path, 'r') as f:
                for line in f:
                    if line.strip():
                        entries.append(EventEntry(**json.loads(line)))
        else:
            entries = list(self.recent)

        if event:
            entries = [e for e in entries if e.event == event]
        return entries[-limit:]

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about logged events."""
        events_by_type: Dict[str, int] = {}
        for e in self.recent:
            events_by_type[e.event] = events_by_type.get(e.event, 0) + 1

        return {
            'total_events': self.total_events,
            'buffered': len(self.recent),
            'write_errors': self.write_errors,
            'log_path': str(self.log_path) if self.log_path else None,
            'events_by_type': events_by_type
        }

    def clear(self):
        """Drop buffered entries and truncate the file."""
        self.recent.clear()
        self.total_events = 0
        if self.log_path and self.log_path.exists():
            self.log_path.write_text('')
