# rolescope/ports/storage.py
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping, Protocol
from ..domain.models import ChunkRec, EventRecord


class ManifestSink(Protocol):
    """Port for appending chunk status records (e.g., JSONL manifest)."""

    async def append(self, rec: ChunkRec) -> None:
        """Append a manifest record atomically (callers handle ordering/locking)."""


class EventSink(Protocol):
    """Port for persisting a decoded, ordered EventRecord sequence."""

    def write_events(self, events: Iterable[EventRecord]) -> Path:
        """Persist the records and return where they went."""


class ResultSink(Protocol):
    """Port for persisting a JSON-shaped result document (roles, slot reads)."""

    def write_result(self, document: Mapping[str, object]) -> Path:
        """Persist the document and return where it went."""
