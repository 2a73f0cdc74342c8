from __future__ import annotations
import json, os
from pathlib import Path
from typing import Iterable

import pyarrow as pa
import pyarrow.parquet as pq

from ..ports.storage import EventSink
from ..domain.models import EventRecord

EVENTS_SCHEMA = pa.schema([
    ("transaction_hash", pa.string()),
    ("event_name", pa.string()),
    ("block_number", pa.int64()),
    ("log_index", pa.int64()),
    ("timestamp", pa.string()),
    ("sender_address", pa.string()),
    ("parameters", pa.string()),     # JSON object, values as strings
])

def events_to_table(events: Iterable[EventRecord]) -> pa.Table:
    evs = list(events)
    if not evs:
        return pa.Table.from_arrays([pa.array([], type=f.type) for f in EVENTS_SCHEMA], schema=EVENTS_SCHEMA)
    return pa.Table.from_arrays(
        arrays=[
            pa.array([e.transaction_hash for e in evs], pa.string()),
            pa.array([e.event_name for e in evs], pa.string()),
            pa.array([e.block_number for e in evs], pa.int64()),
            pa.array([e.log_index for e in evs], pa.int64()),
            pa.array([e.timestamp for e in evs], pa.string()),
            pa.array([e.sender_address for e in evs], pa.string()),
            pa.array([json.dumps(dict(e.parameters), separators=(",", ":")) for e in evs], pa.string()),
        ],
        schema=EVENTS_SCHEMA,
    )

class ParquetEventSink(EventSink):
    """Single parquet file per event stream, rows kept in ledger order."""
    def __init__(self, path: str, codec: str = "zstd") -> None:
        self.path = path
        self.codec = codec
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    def write_events(self, events: Iterable[EventRecord]) -> Path:
        tmp = self.path + ".tmp"
        table = events_to_table(events)
        table = table.sort_by([("block_number", "ascending"), ("log_index", "ascending")])
        pq.write_table(table, tmp, compression=self.codec)
        os.replace(tmp, self.path)
        return Path(self.path)
