from __future__ import annotations
import json
import httpx
from typing import Any
from ..domain.errors import ExplorerError
from ..domain.value_types import Address
from ..ports.explorer import ExplorerClient

ETHERSCAN_V2_API = "https://api.etherscan.io/v2/api"

class EtherscanExplorer(ExplorerClient):
    """
    Etherscan-compatible `module/action` API.

    Works for the multichain v2 endpoint (pass `chain_id`), the legacy
    per-network endpoints, and Blockscout's `/api` compatibility layer.
    """
    def __init__(
        self,
        api_url: str,
        api_key: str | None = None,
        chain_id: int | None = None,
        timeout_s: float = 20.0,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.chain_id = chain_id
        self.client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_s), transport=transport)

    async def _get(self, **params: Any) -> Any:
        if self.chain_id is not None:
            params["chainid"] = self.chain_id
        if self.api_key:
            params["apikey"] = self.api_key
        r = await self.client.get(self.api_url, params=params)
        r.raise_for_status()
        try:
            data = r.json()
        except ValueError as e:
            raise ExplorerError(f"{self.api_url} {params.get('action')}: non-JSON response") from e
        if not isinstance(data, dict):
            raise ExplorerError(f"{self.api_url} {params.get('action')}: unexpected response shape")
        if str(data.get("status")) != "1":
            raise ExplorerError(f"{self.api_url} {params.get('action')}: {data.get('message')} ({data.get('result')})")
        return data["result"]

    async def get_abi(self, address: Address) -> list[dict[str, Any]]:
        res = await self._get(module="contract", action="getabi", address=str(address))
        abi = json.loads(res) if isinstance(res, str) else res
        if not isinstance(abi, list):
            raise ExplorerError(f"unexpected ABI payload for {address}")
        return abi

    async def get_creation_tx(self, address: Address) -> str:
        res = await self._get(module="contract", action="getcontractcreation", contractaddresses=str(address))
        if not res or not res[0].get("txHash"):
            raise ExplorerError(f"no creation record for {address}")
        return str(res[0]["txHash"]).lower()

    async def get_first_tx(self, address: Address) -> str:
        """Oldest transaction touching `address`; for contracts this is normally the deployment."""
        res = await self._get(module="account", action="txlist", address=str(address),
                              startblock=0, endblock=99_999_999, page=1, offset=1, sort="asc")
        if not res:
            raise ExplorerError(f"no transactions for {address}")
        return str(res[0]["hash"]).lower()

    async def aclose(self) -> None:
        await self.client.aclose()
