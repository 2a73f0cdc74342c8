from __future__ import annotations
from ..domain.models import BlockRange

# below this many blocks a chunk is never split again
MIN_CHUNK_SPAN = 10
REDUCTION_FACTOR = 10

def plan_chunks(span: BlockRange, max_chunk: int) -> list[BlockRange]:
    """Contiguous, non-overlapping chunks of at most `max_chunk` blocks covering `span` exactly."""
    if max_chunk < 1:
        raise ValueError(f"max_chunk must be >= 1 (got {max_chunk})")
    out: list[BlockRange] = []
    b = span.start
    while b <= span.end:
        fb, tb = b, min(span.end, b + max_chunk - 1)
        out.append(BlockRange(fb, tb))
        b = tb + 1
    return out

def reduced_limit(governing_limit: int) -> int:
    return governing_limit // REDUCTION_FACTOR

def replan_on_timeout(chunk: BlockRange, governing_limit: int) -> tuple[list[BlockRange], int] | None:
    """
    Sub-chunks for a chunk that timed out, with the limit that governs them.

    Returns None once the chunk is at minimum granularity: it is no larger than
    a tenth of the limit, or the reduced limit would drop below MIN_CHUNK_SPAN.
    """
    limit = reduced_limit(governing_limit)
    if limit < MIN_CHUNK_SPAN or chunk.span() <= limit:
        return None
    return plan_chunks(chunk, limit), limit

def merge_intervals(intervals: list[tuple[int,int]]) -> list[tuple[int,int]]:
    if not intervals: return []
    intervals = sorted(intervals)
    merged: list[list[int]] = [[intervals[0][0], intervals[0][1]]]
    for s, e in intervals[1:]:
        ms, me = merged[-1]
        if s <= me + 1: merged[-1][1] = max(me, e)
        else: merged.append([s, e])
    return [(s, e) for s, e in merged]
