from __future__ import annotations

import asyncio
import copy
from typing import Callable, Iterable, Optional

from rolescope.application.retry import RetryExecutor, RetryPolicy
from rolescope.domain.errors import TransportError
from rolescope.domain.models import BlockInfo, ChunkRec, RawLog, TxInfo
from rolescope.domain.value_types import Address

CONTRACT = "0x1111111111111111111111111111111111111111"
NODE_URL = "https://node.test"
FALLBACK_URL = "https://fallback.test"

FailHook = Callable[[int, int, "FakeRPC"], Optional[Exception]]


def word(hex_body: str) -> str:
    """Left-pad a hex value to a 32-byte topic."""
    h = hex_body[2:] if hex_body.startswith("0x") else hex_body
    return "0x" + h.lower().rjust(64, "0")


def make_log(block: int, index: int, topics: Iterable[str], data: str = "0x",
             tx: str | None = None, address: str = CONTRACT) -> RawLog:
    return RawLog(
        address=Address(address.lower()),
        topics=tuple(t.lower() for t in topics),
        data_hex=data,
        block_number=block,
        tx_hash=tx or "0x" + f"{block:032x}{index:032x}",
        log_index=index,
    )


class FakeRPC:
    """In-memory node. `fail(from, to, rpc)` may return an exception to raise for an eth_getLogs range."""

    def __init__(
        self,
        url: str = NODE_URL,
        *,
        logs: Iterable[RawLog] = (),
        blocks: dict[int, int] | None = None,
        txs: dict[str, TxInfo] | None = None,
        storage: dict[str, str] | None = None,
        tags: dict[str, int | None] | None = None,
        latest: int = 1_000_000,
        fail: FailHook | None = None,
    ) -> None:
        self.url = url
        self.timeout_s = 20.0
        self.logs = sorted(logs, key=lambda l: l.order_key())
        self.blocks = blocks or {}
        self.txs = txs or {}
        self.storage = storage or {}
        self.tags = tags or {}
        self.latest = latest
        self.fail = fail
        self.calls: list[tuple[int, int]] = []
        self.stats = {"in_flight": 0, "max_in_flight": 0, "closed": 0}

    async def get_logs(self, address, topic0s, from_block, to_block):
        self.calls.append((from_block, to_block))
        self.stats["in_flight"] += 1
        self.stats["max_in_flight"] = max(self.stats["max_in_flight"], self.stats["in_flight"])
        try:
            await asyncio.sleep(0)
            if self.fail is not None:
                exc = self.fail(from_block, to_block, self)
                if exc is not None:
                    raise exc
            wanted = {t.lower() for t in topic0s}
            return [
                l for l in self.logs
                if from_block <= l.block_number <= to_block
                and l.topic0 in wanted
                and l.address == str(address).lower()
            ]
        finally:
            self.stats["in_flight"] -= 1

    async def latest_block(self) -> int:
        return self.latest

    async def get_block(self, block):
        if isinstance(block, str):
            if block not in self.tags:
                raise TransportError(f"unsupported block tag {block}", code=-32602)
            n = self.tags[block]
            return None if n is None else BlockInfo(number=n, timestamp=0)
        ts = self.blocks.get(block)
        return None if ts is None else BlockInfo(number=block, timestamp=ts)

    async def get_transaction(self, tx_hash):
        return self.txs.get(tx_hash)

    async def get_storage_at(self, address, slot):
        return self.storage.get(slot, "0x" + "0" * 64)

    def with_timeout(self, timeout_s: float) -> FakeRPC:
        clone = copy.copy(self)
        clone.timeout_s = timeout_s
        return clone

    async def aclose(self) -> None:
        self.stats["closed"] += 1


class Sleeps:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def executor(fallback: FakeRPC | None = None, sleeps: Sleeps | None = None) -> RetryExecutor:
    def connect(url, *, timeout_s=None):
        if fallback is None:
            raise AssertionError(f"unexpected fallback connection to {url}")
        return fallback
    return RetryExecutor(connect, RetryPolicy(), sleep=sleeps or Sleeps())


class ListManifest:
    def __init__(self) -> None:
        self.records: list[ChunkRec] = []

    async def append(self, rec: ChunkRec) -> None:
        self.records.append(rec)
