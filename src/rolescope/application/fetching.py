from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Sequence

from ..domain.errors import RolescopeError, TransportError, classify_failure
from ..domain.models import BlockRange, ChunkRec, FetchReport, RawLog
from ..domain.value_types import Address, FailureKind, Status, Topic0
from ..ports.rpc import RPCClient
from ..ports.storage import ManifestSink
from .planning import merge_intervals, plan_chunks, replan_on_timeout
from .providers import max_block_range
from .retry import RetryContext, RetryExecutor

logger = logging.getLogger(__name__)


class IncompleteFetchError(RolescopeError):
    """Raised instead of returning a partial log set when completeness is required."""

    def __init__(self, report: FetchReport) -> None:
        super().__init__(f"log fetch incomplete: {report.describe()}")
        self.report = report


@dataclass(slots=True)
class FetchResult:
    logs: list[RawLog]
    report: FetchReport


@dataclass(slots=True)
class _Tally:
    """Progress counters shared by chunk workers; every update goes through the lock."""
    succeeded: int = 0
    failed: int = 0
    resplits: int = 0
    total_logs: int = 0
    failures: Counter[FailureKind] = field(default_factory=Counter)
    failed_ranges: list[tuple[int, int]] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def ok(self, logs: int) -> None:
        async with self.lock:
            self.succeeded += 1
            self.total_logs += logs

    async def fail(self, chunk: BlockRange, kind: FailureKind) -> None:
        async with self.lock:
            self.failed += 1
            self.failures[kind] += 1
            self.failed_ranges.append((chunk.start, chunk.end))

    async def resplit(self) -> None:
        async with self.lock:
            self.resplits += 1

    def report(self) -> FetchReport:
        return FetchReport(
            total_chunks=self.succeeded + self.failed,
            succeeded=self.succeeded,
            failed=self.failed,
            failures=dict(self.failures),
            resplits=self.resplits,
            failed_ranges=tuple(BlockRange(s, e) for s, e in merge_intervals(self.failed_ranges)),
        )


class ChunkedLogFetcher:
    """
    Fetches eth_getLogs over spans larger than the provider allows.

    Spans within the governing limit go out as one retried query, which is
    re-planned like any other chunk if it times out. Larger
    spans are planned into chunks and fetched concurrently (at most
    `concurrency` queries in flight); results are concatenated in chunk
    order, which is ledger order since chunks are disjoint and increasing.
    A chunk that times out is re-planned at a tenth of its limit; any other
    exhausted chunk contributes nothing and is counted in the report.
    """

    def __init__(
        self,
        rpc: RPCClient,
        retry: RetryExecutor,
        *,
        fallback_url: str | None = None,
        max_range_override: int | None = None,
        concurrency: int = 8,
        manifest: ManifestSink | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1 (got {concurrency})")
        self.rpc = rpc
        self.retry = retry
        self.fallback_url = fallback_url
        self.max_range_override = max_range_override
        self.concurrency = concurrency
        self.manifest = manifest

    @property
    def governing_limit(self) -> int:
        return max_block_range(self.rpc.url, self.max_range_override)

    def _context(self, chunk: BlockRange) -> RetryContext:
        return RetryContext(operation=f"eth_getLogs {chunk}", fallback_url=self.fallback_url)

    async def _query(self, address: Address, topic0s: Sequence[Topic0], chunk: BlockRange, ctx: RetryContext) -> list[RawLog]:
        return await self.retry.run_node(
            lambda conn: conn.get_logs(address, list(topic0s), chunk.start, chunk.end),
            self.rpc,
            ctx,
        )

    async def _append_manifest(self, chunk: BlockRange, status: Status, err: TransportError | None, logs: int,
                               attempts: int) -> None:
        if self.manifest is None:
            return
        await self.manifest.append(ChunkRec(
            from_block=chunk.start, to_block=chunk.end, status=status,
            attempts=attempts, error=None if err is None else str(err),
            failure=None if err is None else classify_failure(err),
            logs=logs, updated_at=time.time(),
        ))

    async def _fetch_chunk(
        self,
        address: Address,
        topic0s: Sequence[Topic0],
        chunk: BlockRange,
        limit: int,
        sem: asyncio.Semaphore,
        tally: _Tally,
    ) -> list[RawLog]:
        ctx = self._context(chunk)
        try:
            async with sem:
                logs = await self._query(address, topic0s, chunk, ctx)
        except TransportError as e:
            kind = classify_failure(e)
            if kind == "timeout":
                plan = replan_on_timeout(chunk, limit)
                if plan is not None:
                    sub_chunks, sub_limit = plan
                    logger.warning(
                        "blocks %s timed out; splitting into %d chunk(s) of <= %d blocks",
                        chunk, len(sub_chunks), sub_limit,
                    )
                    await tally.resplit()
                    parts = await asyncio.gather(*(
                        self._fetch_chunk(address, topic0s, c, sub_limit, sem, tally) for c in sub_chunks
                    ))
                    return [log for part in parts for log in part]
            logger.error("Error querying blocks %s (%s): %s", chunk, kind, e)
            await tally.fail(chunk, kind)
            await self._append_manifest(chunk, "failed", e, 0, ctx.attempt_count)
            return []

        await tally.ok(len(logs))
        await self._append_manifest(chunk, "done", None, len(logs), ctx.attempt_count)
        return logs

    async def fetch(
        self,
        address: Address,
        topic0s: Sequence[Topic0],
        span: BlockRange,
        *,
        require_complete: bool = False,
    ) -> FetchResult:
        limit = self.governing_limit
        tally = _Tally()

        if span.span() <= limit:
            ctx = self._context(span)
            try:
                logs = await self._query(address, topic0s, span, ctx)
            except TransportError as e:
                plan = replan_on_timeout(span, limit) if classify_failure(e) == "timeout" else None
                if plan is None:
                    raise
                chunks, limit = plan
                logger.warning("blocks %s timed out; splitting into %d chunk(s) of <= %d blocks",
                               span, len(chunks), limit)
                await tally.resplit()
            else:
                await self._append_manifest(span, "done", None, len(logs), ctx.attempt_count)
                return FetchResult(logs=logs, report=FetchReport(total_chunks=1, succeeded=1, failed=0))
        else:
            chunks = plan_chunks(span, limit)
            logger.info("Block range too large (%d to %d), splitting into %d chunks of <= %d blocks",
                        span.start, span.end, len(chunks), limit)

        sem = asyncio.Semaphore(self.concurrency)
        parts = await asyncio.gather(*(
            self._fetch_chunk(address, topic0s, c, limit, sem, tally) for c in chunks
        ))
        logs = [log for part in parts for log in part]
        report = tally.report()

        logger.info("Retrieved %d total events across %d chunk(s): %s", len(logs), report.total_chunks, report.describe())
        if report.failures:
            logger.warning("chunk failures by category: %s", dict(report.failures))
        if require_complete and not report.complete:
            raise IncompleteFetchError(report)
        return FetchResult(logs=logs, report=report)
