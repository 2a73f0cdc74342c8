# rolescope/ports/rpc.py
from __future__ import annotations

from typing import Protocol, Sequence
from ..domain.models import BlockInfo, RawLog, TxInfo
from ..domain.value_types import Address, Topic0


class RPCClient(Protocol):
    """Port defining the contract for an Ethereum JSON-RPC node connection."""

    url: str

    async def get_logs(
        self,
        address: Address,
        topic0s: Sequence[Topic0],
        from_block: int,
        to_block: int,
    ) -> list[RawLog]:
        """Return normalized, typed logs for [from_block, to_block] inclusive, in ledger order."""

    async def latest_block(self) -> int:
        """Return the latest block number as an integer."""

    async def get_block(self, block: int | str) -> BlockInfo | None:
        """Return a block by number or tag ("finalized", "latest"), or None if unknown."""

    async def get_transaction(self, tx_hash: str) -> TxInfo | None:
        """Return the transaction, or None if the node does not know it."""

    async def get_storage_at(self, address: Address, slot: str) -> str:
        """Return the 32-byte storage word at `slot` as 0x-hex."""

    def with_timeout(self, timeout_s: float) -> RPCClient:
        """Return a connection to the same endpoint with a different request timeout."""

    async def aclose(self) -> None:
        """Release the underlying connection pool."""


class RPCFactory(Protocol):
    """Opens a fresh connection to an endpoint (used for fallback retries)."""

    def __call__(self, url: str, *, timeout_s: float | None = None) -> RPCClient: ...
