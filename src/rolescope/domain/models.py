from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping
from .value_types import Address, FailureKind, RoleId, Status, Topic0

@dataclass(slots=True, frozen=True)
class BlockRange:
    """Inclusive [start, end] block span."""
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.start > self.end:
            raise ValueError(f"invalid block range [{self.start}, {self.end}]")

    def span(self) -> int: return self.end - self.start + 1

    def __str__(self) -> str: return f"[{self.start},{self.end}]"

@dataclass(slots=True, frozen=True)
class RawLog:
    address: Address
    topics: tuple[str, ...]            # all topics, lowercased with 0x
    data_hex: str
    block_number: int
    tx_hash: str
    log_index: int

    @property
    def topic0(self) -> Topic0 | None:
        return Topic0(self.topics[0]) if self.topics else None

    def order_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

@dataclass(slots=True, frozen=True)
class EventRecord:
    transaction_hash: str
    event_name: str
    block_number: int
    log_index: int
    timestamp: str                     # ISO-8601 UTC
    sender_address: str
    parameters: Mapping[str, str]      # big ints as decimal strings

    def order_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

    def to_json(self) -> dict[str, object]:
        return {
            "transactionHash": self.transaction_hash,
            "eventName": self.event_name,
            "blockNumber": self.block_number,
            "logIndex": self.log_index,
            "timestamp": self.timestamp,
            "senderAddress": self.sender_address,
            "parameters": dict(self.parameters),
        }

@dataclass(slots=True, frozen=True)
class ChunkRec:
    from_block: int
    to_block: int
    status: Status = "pending"
    attempts: int = 0
    error: str | None = None
    failure: FailureKind | None = None
    logs: int = 0
    updated_at: float = 0.0

@dataclass(slots=True, frozen=True)
class FetchReport:
    """Completion tally of one chunked fetch."""
    total_chunks: int
    succeeded: int
    failed: int
    failures: Mapping[FailureKind, int] = field(default_factory=dict)
    resplits: int = 0
    failed_ranges: tuple[BlockRange, ...] = ()

    @property
    def complete(self) -> bool:
        return self.failed == 0

    def describe(self) -> str:
        if self.complete:
            return f"complete result ({self.succeeded} chunk(s))"
        return f"result based on {self.succeeded}/{self.succeeded + self.failed} successful chunks"

@dataclass(slots=True, frozen=True)
class RoleAssignmentState:
    """Role id -> current holders. Read-only once built."""
    holders: Mapping[RoleId, tuple[Address, ...]]
    skipped_events: int = 0

    @classmethod
    def build(cls, holders: dict[RoleId, list[Address]], skipped_events: int = 0) -> RoleAssignmentState:
        frozen = {role: tuple(accounts) for role, accounts in holders.items()}
        return cls(holders=MappingProxyType(frozen), skipped_events=skipped_events)

@dataclass(slots=True, frozen=True)
class CreationInfo:
    block_number: int
    tx_hash: str | None = None
    creator: str | None = None

@dataclass(slots=True, frozen=True)
class TxInfo:
    hash: str
    sender: str
    block_number: int | None = None

@dataclass(slots=True, frozen=True)
class BlockInfo:
    number: int
    timestamp: int
    hash: str | None = None
