from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Sequence

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from .errors import MissingContextError, TransportError
from .models import BlockInfo, EventRecord, RawLog, TxInfo
from .schema import EventParam, EventSpec

logger = logging.getLogger(__name__)

TxLookup = Callable[[str], Awaitable[TxInfo | None]]
BlockLookup = Callable[[int], Awaitable[BlockInfo | None]]

# indexed reference types are stored as their keccak hash, not their value
_HASHED_INDEXED = ("string", "bytes", "tuple")

# ---------- value normalization ----------------------------------------------

def _hexstr_to_bytes(s: str) -> bytes:
    h = s[2:] if s[:2].lower() == "0x" else s
    if len(h) % 2: h = "0" + h
    return bytes.fromhex(h) if h else b""

def _as_string(v: Any) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, int):
        return str(v)
    if isinstance(v, (bytes, bytearray)):
        return "0x" + bytes(v).hex()
    if isinstance(v, (list, tuple)):
        return json.dumps([_as_string(x) for x in v], separators=(",", ":"))
    return str(v)

def _normalize(param: EventParam, v: Any) -> str:
    if param.type == "address" and isinstance(v, str):
        return to_checksum_address(v)
    if param.type == "address[]" and isinstance(v, (list, tuple)):
        return json.dumps([to_checksum_address(a) for a in v], separators=(",", ":"))
    return _as_string(v)

# ---------- topic/data splitting ---------------------------------------------

def _is_hashed_indexed(p: EventParam) -> bool:
    return p.type in _HASHED_INDEXED or p.type.startswith("tuple") or p.type.endswith("]")

def _decode_indexed(p: EventParam, topic: str) -> Any:
    raw = _hexstr_to_bytes(topic)
    if _is_hashed_indexed(p):
        return raw
    return abi_decode([p.canonical_type()], raw.rjust(32, b"\0"))[0]

def decode_values(log: RawLog, spec: EventSpec) -> list[tuple[EventParam, Any]]:
    """Decode every declared parameter, in declaration order."""
    topics: Sequence[str] = log.topics if spec.anonymous else log.topics[1:]
    indexed = spec.indexed
    if len(topics) < len(indexed):
        raise ValueError(f"log has {len(topics)} indexed topic(s), {spec.name} declares {len(indexed)}")

    data = _hexstr_to_bytes(log.data_hex)
    non_indexed = spec.non_indexed
    data_values = abi_decode([p.canonical_type() for p in non_indexed], data) if non_indexed else ()

    it_topics = iter(topics)
    it_data = iter(data_values)
    out: list[tuple[EventParam, Any]] = []
    for p in spec.params:
        if p.indexed:
            out.append((p, _decode_indexed(p, next(it_topics))))
        else:
            out.append((p, next(it_data)))
    return out

# ---------- parameter extraction ---------------------------------------------

def extract_named(values: list[tuple[EventParam, Any]]) -> dict[str, str]:
    out: dict[str, str] = {}
    for p, v in values:
        if not p.name:
            raise KeyError("unnamed parameter")
        if p.name in out:
            raise KeyError(f"duplicate parameter name {p.name!r}")
        out[p.name] = _normalize(p, v)
    return out

def extract_positional(values: list[tuple[EventParam, Any]]) -> dict[str, str]:
    """Key by name or position, then drop keys that are bare indices."""
    out: dict[str, str] = {}
    for i, (p, v) in enumerate(values):
        key = p.name or str(i)
        if key.isdigit():
            continue
        out.setdefault(key, _normalize(p, v))
    return out

def extract_parameters(log: RawLog, spec: EventSpec) -> dict[str, str]:
    try:
        values = decode_values(log, spec)
    except (DecodingError, ValueError, StopIteration) as e:
        logger.warning("could not decode %s args in tx %s (log %d): %s", spec.name, log.tx_hash, log.log_index, e)
        return {}
    try:
        return extract_named(values)
    except (KeyError, ValueError, TypeError) as e:
        logger.debug("named extraction failed for %s in tx %s (%s); using positional keys", spec.name, log.tx_hash, e)
        return extract_positional(values)

def iso_timestamp(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")

# ---------- public API --------------------------------------------------------

async def decode_log(
    log: RawLog,
    spec: EventSpec,
    *,
    block_lookup: BlockLookup,
    tx_lookup: TxLookup,
) -> EventRecord:
    """Turn one raw log into an EventRecord; raises MissingContextError if tx/block is unavailable."""
    try:
        tx = await tx_lookup(log.tx_hash)
        block = await block_lookup(log.block_number)
    except TransportError as e:
        raise MissingContextError(log.tx_hash, log.block_number) from e
    if tx is None or block is None:
        raise MissingContextError(log.tx_hash, log.block_number)

    return EventRecord(
        transaction_hash=log.tx_hash,
        event_name=spec.name,
        block_number=log.block_number,
        log_index=log.log_index,
        timestamp=iso_timestamp(block.timestamp),
        sender_address=to_checksum_address(tx.sender),
        parameters=extract_parameters(log, spec),
    )


class EventDecoder:
    """Decodes logs of one event, caching block lookups shared by logs in the same block."""

    def __init__(self, spec: EventSpec, *, block_lookup: BlockLookup, tx_lookup: TxLookup) -> None:
        self.spec = spec
        self._tx_lookup = tx_lookup
        self._block_lookup = block_lookup
        # one lookup per block, shared by every log awaiting it
        self._blocks: dict[int, asyncio.Future[BlockInfo | None]] = {}

    async def _cached_block(self, number: int) -> BlockInfo | None:
        pending = self._blocks.get(number)
        if pending is None:
            pending = asyncio.ensure_future(self._block_lookup(number))
            self._blocks[number] = pending
        try:
            block = await pending
        except TransportError:
            self._forget(number, pending)
            raise
        if block is None:
            self._forget(number, pending)
        return block

    def _forget(self, number: int, pending: asyncio.Future[BlockInfo | None]) -> None:
        if self._blocks.get(number) is pending:
            del self._blocks[number]

    async def decode(self, log: RawLog) -> EventRecord:
        return await decode_log(log, self.spec, block_lookup=self._cached_block, tx_lookup=self._tx_lookup)

    async def decode_all(self, logs: Sequence[RawLog], *, concurrency: int = 8) -> tuple[list[EventRecord], int]:
        """
        Decode concurrently, keeping input order. Records whose context is
        missing are skipped and counted instead of failing the batch.
        """
        sem = asyncio.Semaphore(max(1, concurrency))

        async def one(log: RawLog) -> EventRecord | None:
            async with sem:
                try:
                    return await self.decode(log)
                except MissingContextError as e:
                    logger.warning("%s", e)
                    return None

        results = await asyncio.gather(*(one(log) for log in logs))
        out = [r for r in results if r is not None]
        return out, len(results) - len(out)
