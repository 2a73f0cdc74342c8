from __future__ import annotations
import httpx
from typing import Any, Sequence
from ..domain.errors import RateLimitError, RpcTimeoutError, TransportError, is_rate_limit, is_timeout
from ..domain.models import BlockInfo, RawLog, TxInfo
from ..domain.value_types import Address, Topic0
from ..ports.rpc import RPCClient

DEFAULT_TIMEOUT_S = 20.0

def _to_hex_block(n: int) -> str: return hex(int(n))
def _hex_int(x: str | int) -> int: return x if isinstance(x, int) else int(x, 16)
def _is_topic_hash(x: str) -> bool: return isinstance(x, str) and x.startswith("0x") and len(x)==66
def _normalize_topic0_list(t0s: Sequence[Topic0]) -> list[str]:
    out: list[str] = []
    for t in t0s:
        s = str(t).strip().lower()
        out.append(s)
    return out

def _build_topics_param(topic0s: Sequence[Topic0]) -> list[list[str]]:
    t0s = _normalize_topic0_list(topic0s)
    if not all(_is_topic_hash(x) for x in t0s):
        raise ValueError(f"Invalid topic0(s): {t0s}")
    return [t0s]

def _rpc_error(method: str, err: Any, endpoint: str) -> TransportError:
    code = err.get("code") if isinstance(err, dict) else None
    msg = err.get("message") if isinstance(err, dict) else str(err)
    exc = TransportError(f"{method} RPC error code={code} message={msg}", code=code, endpoint=endpoint)
    if is_rate_limit(exc):
        return RateLimitError(str(exc), code=code, endpoint=endpoint)
    if is_timeout(exc):
        return RpcTimeoutError(str(exc), code=code, endpoint=endpoint)
    return exc

class HttpxRPC(RPCClient):
    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        max_conn: int = 64,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = rpc_url
        self.timeout_s = timeout_s
        self.max_conn = max_conn
        self._transport = transport
        self.client = httpx.AsyncClient(
            http2=True,
            transport=transport,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn//2)),
        )

    def with_timeout(self, timeout_s: float) -> HttpxRPC:
        return HttpxRPC(self.url, timeout_s=timeout_s, max_conn=self.max_conn, transport=self._transport)

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc":"2.0","id":1,"method":method,"params":params}
        try:
            r = await self.client.post(self.url, json=payload)
        except httpx.TimeoutException as e:
            raise RpcTimeoutError(f"{method} timeout after {self.timeout_s:.0f}s: {e!r}", endpoint=self.url) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} request failed: {e!r}", endpoint=self.url) from e

        if r.status_code == 429:
            raise RateLimitError(f"{method} HTTP 429 Too Many Requests", code=429, endpoint=self.url)
        if r.status_code in (408, 504):
            raise RpcTimeoutError(f"{method} HTTP {r.status_code}", code=r.status_code, endpoint=self.url)
        if r.is_error:
            raise TransportError(f"{method} HTTP {r.status_code}", code=r.status_code, endpoint=self.url)
        try:
            data = r.json()
        except ValueError as e:
            raise TransportError(f"{method} returned non-JSON body", endpoint=self.url) from e
        if "error" in data:
            raise _rpc_error(method, data["error"], self.url)
        return data.get("result")

    async def latest_block(self) -> int:
        return _hex_int(await self._call("eth_blockNumber", []))

    async def get_logs(self, address: Address, topic0s: Sequence[Topic0], from_block: int, to_block: int) -> list[RawLog]:
        res = await self._call("eth_getLogs", [{
            "address": str(address).lower(),
            "fromBlock": _to_hex_block(from_block),
            "toBlock": _to_hex_block(to_block),
            "topics": _build_topics_param(topic0s),
        }])
        typed: list[RawLog] = []
        for rl in res or []:
            typed.append(RawLog(
                address=Address(rl["address"].lower()),
                topics=tuple(t.lower() for t in rl.get("topics", [])),
                data_hex=rl.get("data") or "0x",
                block_number=_hex_int(rl["blockNumber"]),
                tx_hash=rl["transactionHash"].lower(),
                log_index=_hex_int(rl["logIndex"]),
            ))
        return typed

    async def get_block(self, block: int | str) -> BlockInfo | None:
        tag = block if isinstance(block, str) else _to_hex_block(block)
        res = await self._call("eth_getBlockByNumber", [tag, False])
        if not res:
            return None
        return BlockInfo(number=_hex_int(res["number"]), timestamp=_hex_int(res["timestamp"]), hash=res.get("hash"))

    async def get_transaction(self, tx_hash: str) -> TxInfo | None:
        res = await self._call("eth_getTransactionByHash", [tx_hash])
        if not res:
            return None
        bn = res.get("blockNumber")
        return TxInfo(hash=res["hash"].lower(), sender=res["from"], block_number=_hex_int(bn) if bn else None)

    async def get_storage_at(self, address: Address, slot: str) -> str:
        return str(await self._call("eth_getStorageAt", [str(address), slot, "latest"]))

    async def aclose(self) -> None:
        await self.client.aclose()

def open_rpc(url: str, *, timeout_s: float | None = None) -> HttpxRPC:
    return HttpxRPC(url, timeout_s=DEFAULT_TIMEOUT_S if timeout_s is None else timeout_s)
