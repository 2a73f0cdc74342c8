from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from eth_utils import to_checksum_address

from ..domain.decoding import EventDecoder
from ..domain.errors import ExplorerError, RolescopeError, SchemaMismatchError
from ..domain.models import (
    BlockInfo, BlockRange, CreationInfo, EventRecord, FetchReport, RoleAssignmentState, TxInfo,
)
from ..domain.roles import GRANTED, REVOKED, reconstruct, to_output
from ..domain.schema import EventSchema
from ..domain.value_types import Address, Topic0
from ..ports.explorer import ExplorerClient
from ..ports.rpc import RPCClient
from ..ports.storage import ManifestSink
from .fetching import ChunkedLogFetcher
from .retry import RetryContext, RetryExecutor
from .utils import first_success

logger = logging.getLogger(__name__)

T = TypeVar("T")

# EIP-1967: keccak256("eip1967.proxy.admin") - 1 / keccak256("eip1967.proxy.implementation") - 1
ADMIN_SLOT = "0xb53127684a568b3173ae13b9f8a6016e243e63b6e8ee1178d6a717850b5d6103"
IMPLEMENTATION_SLOT = "0x360894a13ba1a3210667c828492db98dca3e2076cc3735a920a3ca505d382bbc"
ZERO_ADDRESS = "0x" + "0" * 40


@dataclass(slots=True)
class Services:
    """Everything a use case talks to: the node (behind retries), explorers, optional manifest."""

    rpc: RPCClient
    retry: RetryExecutor
    fallback_url: str | None = None
    explorers: list[tuple[str, ExplorerClient]] = field(default_factory=list)
    manifest: ManifestSink | None = None
    concurrency: int = 8
    max_block_range: int | None = None

    async def node(self, operation: str, fn: Callable[[RPCClient], Awaitable[T]]) -> T:
        return await self.retry.run_node(fn, self.rpc, RetryContext(operation, self.fallback_url))

    async def http(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        return await self.retry.run_http(fn, RetryContext(operation))

    def fetcher(self) -> ChunkedLogFetcher:
        return ChunkedLogFetcher(
            self.rpc, self.retry,
            fallback_url=self.fallback_url,
            max_range_override=self.max_block_range,
            concurrency=self.concurrency,
            manifest=self.manifest,
        )

    async def tx(self, tx_hash: str) -> TxInfo | None:
        return await self.node(f"getTransaction {tx_hash}", lambda c: c.get_transaction(tx_hash))

    async def block(self, number: int) -> BlockInfo | None:
        return await self.node(f"getBlock {number}", lambda c: c.get_block(number))

    def decoder_for(self, schema: EventSchema, event_name: str) -> EventDecoder:
        return EventDecoder(schema.event(event_name), block_lookup=self.block, tx_lookup=self.tx)

    async def aclose(self) -> None:
        for _, explorer in self.explorers:
            await explorer.aclose()
        await self.rpc.aclose()


# ---------------------------------------------------------------------------
# Schema and block-span resolution
# ---------------------------------------------------------------------------


async def fetch_schema(services: Services, address: Address) -> EventSchema:
    """ABI from the configured explorers, first that answers wins."""
    if not services.explorers:
        raise ExplorerError("no block explorer configured (set ETHERSCAN_API_KEY or pass --abi)")
    abi = await first_success(
        [(name, _bind_http(services, f"{name} getabi", lambda ex=ex: ex.get_abi(address)))
         for name, ex in services.explorers],
        what=f"ABI for {address}",
    )
    return EventSchema.from_abi(abi)


def _bind_http(services: Services, operation: str, fn: Callable[[], Awaitable[T]]) -> Callable[[], Awaitable[T]]:
    async def run() -> T:
        return await services.http(operation, fn)
    return run


async def find_creation_block(services: Services, address: Address) -> CreationInfo:
    """
    Deployment block of `address`.

    Tries each explorer's contract-creation lookup, then the oldest
    transaction touching the address. Falls back to block 0 when nothing
    answers, so callers can still scan from genesis.
    """
    strategies = [
        (f"{name} getcontractcreation", _bind_http(services, f"{name} getcontractcreation",
                                                   lambda ex=ex: ex.get_creation_tx(address)))
        for name, ex in services.explorers
    ] + [
        (f"{name} first transaction", _bind_http(services, f"{name} txlist", lambda ex=ex: ex.get_first_tx(address)))
        for name, ex in services.explorers
    ]
    try:
        tx_hash = await first_success(strategies, what=f"creation transaction of {address}")
        tx = await services.tx(tx_hash)
    except RolescopeError as e:
        logger.warning("Could not determine contract creation block, using block 0 as default (%s)", e)
        return CreationInfo(block_number=0)
    if tx is None or tx.block_number is None:
        logger.warning("Creation tx %s not found on node, using block 0 as default", tx_hash)
        return CreationInfo(block_number=0, tx_hash=tx_hash)
    return CreationInfo(block_number=tx.block_number, tx_hash=tx_hash, creator=to_checksum_address(tx.sender))


def parse_block_arg(value: str) -> int:
    v = value.strip().lower()
    n = int(v, 16) if v.startswith("0x") else int(v)
    if n < 0:
        raise ValueError(f"block number must be >= 0 (got {value})")
    return n


async def latest_finalized_block(services: Services) -> int:
    for tag in ("finalized", "latest"):
        try:
            blk = await services.node(f"getBlock {tag}", lambda c, tag=tag: c.get_block(tag))
        except RolescopeError as e:
            logger.debug("block tag %s unavailable: %s", tag, e)
            continue
        if blk is not None:
            return blk.number
    return await services.node("eth_blockNumber", lambda c: c.latest_block())


async def resolve_block_span(
    services: Services,
    address: Address,
    from_block: str | None = None,
    to_block: str | None = None,
) -> BlockRange:
    if from_block:
        start = parse_block_arg(from_block)
        logger.info("Using provided fromBlock: %d", start)
    else:
        start = (await find_creation_block(services, address)).block_number
        logger.info("Using contract creation block: %d", start)

    if to_block:
        end = parse_block_arg(to_block)
        logger.info("Using provided toBlock: %d", end)
    else:
        end = await latest_finalized_block(services)
        logger.info("Using latest finalized block: %d", end)

    if start > end:
        raise ValueError(f"fromBlock ({start}) must be <= toBlock ({end})")
    return BlockRange(start, end)


# ---------------------------------------------------------------------------
# find-events / find-roles
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class EventsResult:
    records: list[EventRecord]
    report: FetchReport
    missing_context: int = 0


@dataclass(slots=True)
class RolesResult:
    contract_address: str
    state: RoleAssignmentState
    grants: EventsResult
    revokes: EventsResult

    @property
    def complete(self) -> bool:
        return self.grants.report.complete and self.revokes.report.complete

    def describe(self) -> str:
        g, r = self.grants.report, self.revokes.report
        if self.complete:
            return "complete result"
        ok, total = g.succeeded + r.succeeded, g.total_chunks + r.total_chunks
        return f"result based on {ok}/{total} successful chunks"

    def to_output(self) -> dict[str, object]:
        return to_output(self.contract_address, self.state)


async def find_events(
    services: Services,
    address: Address,
    event_name: str,
    span: BlockRange,
    schema: EventSchema,
    *,
    require_complete: bool = False,
) -> EventsResult:
    spec = schema.event(event_name)
    fetched = await services.fetcher().fetch(
        Address(address.lower()), [Topic0(spec.topic0)], span, require_complete=require_complete,
    )
    decoder = services.decoder_for(schema, event_name)
    records, missing = await decoder.decode_all(fetched.logs, concurrency=services.concurrency)
    return EventsResult(records=records, report=fetched.report, missing_context=missing)


async def find_roles(
    services: Services,
    address: Address,
    span: BlockRange,
    schema: EventSchema,
    *,
    require_complete: bool = False,
) -> RolesResult:
    if not (schema.has_event(GRANTED) and schema.has_event(REVOKED)):
        raise SchemaMismatchError(
            "Contract does not implement AccessControl interface. Missing RoleGranted/RoleRevoked events."
        )
    logger.info("Fetching %s events...", GRANTED)
    grants = await find_events(services, address, GRANTED, span, schema, require_complete=require_complete)
    logger.info("Fetching %s events...", REVOKED)
    revokes = await find_events(services, address, REVOKED, span, schema, require_complete=require_complete)
    logger.info("Found %d %s events and %d %s events.", len(grants.records), GRANTED, len(revokes.records), REVOKED)

    state = reconstruct(grants.records, revokes.records)
    if state.skipped_events:
        logger.warning("%d role event(s) skipped for missing role/account fields", state.skipped_events)
    return RolesResult(contract_address=address, state=state, grants=grants, revokes=revokes)


# ---------------------------------------------------------------------------
# Storage reads
# ---------------------------------------------------------------------------


def normalize_slot(slot: str) -> str:
    s = slot.strip().lower()
    try:
        n = int(s, 16) if s.startswith("0x") else int(s)
    except ValueError:
        raise ValueError(f"Invalid slot format. Must be decimal or hex: {slot}") from None
    return hex(n)


def _word_as_address(word: str) -> str:
    h = word[2:] if word.startswith("0x") else word
    return "0x" + h.rjust(64, "0")[-40:]


async def read_slot(services: Services, address: Address, slot: str) -> dict[str, Any]:
    slot_hex = normalize_slot(slot)
    data = await services.node(f"Get storage at {slot_hex}", lambda c: c.get_storage_at(address, slot_hex))
    return {
        "contractAddress": address,
        "slot": slot_hex,
        "storageData": data,
        "interpretations": {
            "asAddress": _word_as_address(data),
            "asDecimal": str(int(data, 16)),
            "asHex": data,
        },
    }


async def get_proxy_admin(services: Services, address: Address) -> dict[str, Any] | None:
    """EIP-1967 admin and implementation of a transparent proxy, or None if no admin is set."""
    admin_word = await services.node(f"Get storage at {ADMIN_SLOT}", lambda c: c.get_storage_at(address, ADMIN_SLOT))
    impl_word = await services.node(
        f"Get storage at {IMPLEMENTATION_SLOT}", lambda c: c.get_storage_at(address, IMPLEMENTATION_SLOT),
    )
    admin = _word_as_address(admin_word)
    if admin == ZERO_ADDRESS:
        return None
    impl = _word_as_address(impl_word)
    return {
        "proxyAddress": address,
        "adminAddress": to_checksum_address(admin),
        "implementationAddress": None if impl == ZERO_ADDRESS else to_checksum_address(impl),
    }


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@asynccontextmanager
async def open_services(
    rpc: RPCClient,
    retry: RetryExecutor,
    *,
    fallback_url: str | None = None,
    explorers: list[tuple[str, ExplorerClient]] | None = None,
    manifest: ManifestSink | None = None,
    concurrency: int = 8,
    max_block_range: int | None = None,
) -> AsyncIterator[Services]:
    services = Services(
        rpc=rpc, retry=retry, fallback_url=fallback_url, explorers=explorers or [],
        manifest=manifest, concurrency=concurrency, max_block_range=max_block_range,
    )
    try:
        yield services
    finally:
        await services.aclose()
