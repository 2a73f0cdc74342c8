# rolescope/ports/explorer.py
from __future__ import annotations

from typing import Any, Protocol
from ..domain.value_types import Address


class ExplorerClient(Protocol):
    """Port for a block-explorer API (Etherscan-compatible or Blockscout)."""

    async def get_abi(self, address: Address) -> list[dict[str, Any]]:
        """Return the verified contract ABI, raising ExplorerError when unavailable."""

    async def get_creation_tx(self, address: Address) -> str:
        """Return the hash of the transaction that deployed `address`, raising ExplorerError when unknown."""

    async def get_first_tx(self, address: Address) -> str:
        """Return the hash of the oldest transaction touching `address`."""

    async def aclose(self) -> None:
        """Release the underlying HTTP client."""
