"""Event journal: one JSON object per line for every quarry event.

Enabled by QUARRY_EVENTS_PATH. Lines look like::

    {"event": "QueryExecuted", "ts": "2026-01-05T10:00:00+00:00", "source_id": "pg1", ...}
"""

from __future__ import annotations

import json
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from quarry.observability.emitter import QuarryEventLinker
from quarry.observability.events import ALL_EVENTS


class JsonlSink:
    """Appends dicts to ``path``; the file is reopened per line so rotation is safe."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def write(self, record: dict[str, Any]) -> None:
        line = json.dumps(record, default=str)
        with self._lock, self.path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")


def event_record(event: Any) -> dict[str, Any]:
    return {
        "event": type(event).__name__,
        "ts": datetime.now(timezone.utc).isoformat(),
        **asdict(event),
    }


def register_jsonl_subscriber(path: str) -> JsonlSink:
    """Journal every event type to ``path``."""
    sink = JsonlSink(path)

    @QuarryEventLinker.on(*ALL_EVENTS)
    def _journal(event: Any) -> None:
        sink.write(event_record(event))

    return sink
