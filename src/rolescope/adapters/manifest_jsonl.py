from __future__ import annotations
import os, json, asyncio
from dataclasses import asdict
from ..ports.storage import ManifestSink
from ..domain.models import ChunkRec

class JSONLManifest(ManifestSink):
    """Append-only chunk log: one JSON object per finished chunk."""
    def __init__(self, path: str) -> None:
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self._lock = asyncio.Lock()

    async def append(self, rec: ChunkRec) -> None:
        line = json.dumps(asdict(rec), separators=(",", ":")) + "\n"
        async with self._lock:
            with open(self.path, "a") as f:
                f.write(line); f.flush(); os.fsync(f.fileno())


def read_manifest(path: str) -> list[ChunkRec]:
    """Records in file order; blank lines are ignored, a missing file reads as empty."""
    if not os.path.exists(path):
        return []
    out: list[ChunkRec] = []
    with open(path) as f:
        for line in f:
            if line.strip():
                out.append(ChunkRec(**json.loads(line)))
    return out


def failed_chunks(records: list[ChunkRec]) -> list[tuple[int, int]]:
    """Ranges whose latest record is a failure."""
    last: dict[tuple[int, int], ChunkRec] = {}
    for r in records:
        last[(r.from_block, r.to_block)] = r
    return sorted(k for k, r in last.items() if r.status == "failed")
