from __future__ import annotations
import json, os
from pathlib import Path
from typing import Iterable, Mapping

from ..ports.storage import EventSink, ResultSink
from ..domain.models import EventRecord


def _write_json(path: str, payload: object) -> Path:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w") as f:
        json.dump(payload, f, indent=2)
    os.replace(tmp, path)
    return Path(path)


class JSONEventSink(EventSink):
    """`events-<addr>-<event>.json`: an array of camelCase event records."""
    def __init__(self, path: str) -> None:
        self.path = path

    def write_events(self, events: Iterable[EventRecord]) -> Path:
        return _write_json(self.path, [e.to_json() for e in events])


class JSONResultSink(ResultSink):
    def __init__(self, path: str) -> None:
        self.path = path

    def write_result(self, document: Mapping[str, object]) -> Path:
        return _write_json(self.path, dict(document))


def events_filename(address: str, event_name: str) -> str:
    return f"events-{address[:8]}-{event_name}.json"


def roles_filename(address: str) -> str:
    return f"roles-{address[:8]}.json"
