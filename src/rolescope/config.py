from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from dotenv import load_dotenv

from .application.retry import EXTENDED_TIMEOUT_FACTOR, RETRY_DELAY_S
from .adapters.explorer_httpx import ETHERSCAN_V2_API


@dataclass(frozen=True)
class NetworkInfo:
    name: str
    chain_id: int
    rpc_url: str
    explorer: str                 # "etherscan" | "blockscout"
    explorer_url: str
    alchemy_slug: str | None = None
    legacy_api_url: str | None = None


NETWORKS: dict[str, NetworkInfo] = {
    "mainnet": NetworkInfo("mainnet", 1, "https://rpc.payload.de", "etherscan", "https://etherscan.io",
                           alchemy_slug="eth-mainnet", legacy_api_url="https://api.etherscan.io/api"),
    "bnb": NetworkInfo("bnb", 56, "https://bscrpc.com", "etherscan", "https://bscscan.com",
                       alchemy_slug="bnb-mainnet", legacy_api_url="https://api.bscscan.com/api"),
    "arbitrum": NetworkInfo("arbitrum", 42161, "https://arbitrum.llamarpc.com", "etherscan", "https://arbiscan.io",
                            alchemy_slug="arb-mainnet", legacy_api_url="https://api.arbiscan.io/api"),
    "polygon": NetworkInfo("polygon", 137, "https://polygon.llamarpc.com", "etherscan", "https://polygonscan.com",
                           alchemy_slug="polygon-mainnet", legacy_api_url="https://api.polygonscan.com/api"),
    "flare": NetworkInfo("flare", 14, "https://rpc.ankr.com/flare", "etherscan", "https://flare-explorer.flare.network"),
    "blast": NetworkInfo("blast", 81457, "https://rpc.blast.io", "etherscan", "https://blastscan.io",
                         alchemy_slug="blast-mainnet", legacy_api_url="https://api.blastscan.io/api"),
    "soneium": NetworkInfo("soneium", 1868, "https://soneium.drpc.org", "blockscout", "https://soneium.blockscout.com"),
}


@dataclass(frozen=True)
class FetchConfig:
    """Node access and fetch tuning for one run."""

    rpc_url: str
    fallback_rpc_url: str | None = None
    concurrency: int = 8
    timeout_s: float = 20.0
    max_block_range: int | None = None    # overrides the provider table
    retry_delay_s: float = RETRY_DELAY_S
    extended_timeout_factor: float = EXTENDED_TIMEOUT_FACTOR
    manifest_path: str = ""


@dataclass(frozen=True)
class ExplorerConfig:
    api_key: str | None
    chain_id: int | None
    api_url: str = ETHERSCAN_V2_API
    legacy_api_url: str | None = None
    blockscout_url: str | None = None
    timeout_s: float = 20.0


@dataclass(frozen=True)
class Settings:
    network: NetworkInfo | None
    fetch: FetchConfig
    explorer: ExplorerConfig


def _rpc_urls(net: NetworkInfo | None, env: Mapping[str, str]) -> tuple[str, str | None]:
    """
    Primary and fallback RPC: Alchemy first when a key is set, public RPC behind it.

    An explicit primary may sit on any chain, so it only ever falls back to
    an explicit alternative.
    """
    explicit = env.get("RPC_URL")
    alternative = env.get("ALTERNATIVE_RPC_URL") or None
    if explicit:
        return explicit, alternative
    if net is None:
        raise ValueError("no RPC URL: pass --rpc-url, set RPC_URL, or choose a known --network")
    key = env.get("ALCHEMY_API_KEY")
    if key and net.alchemy_slug:
        return f"https://{net.alchemy_slug}.g.alchemy.com/v2/{key}", alternative or net.rpc_url
    return net.rpc_url, alternative


def load_settings(
    network: str | None = "mainnet",
    *,
    rpc_url: str | None = None,
    fallback_rpc_url: str | None = None,
    concurrency: int | None = None,
    timeout_s: float | None = None,
    max_block_range: int | None = None,
    manifest_path: str = "",
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Merge explicit options over environment variables (a .env file is read when present)."""
    if env is None:
        load_dotenv()
        env = os.environ

    net = NETWORKS.get(network) if network else None
    if network and net is None:
        raise ValueError(f"unknown network {network!r}; known: {', '.join(sorted(NETWORKS))}")

    merged = dict(env)
    if rpc_url:
        merged["RPC_URL"] = rpc_url
    if fallback_rpc_url:
        merged["ALTERNATIVE_RPC_URL"] = fallback_rpc_url
    primary, fallback = _rpc_urls(net, merged)

    fetch = FetchConfig(
        rpc_url=primary,
        fallback_rpc_url=fallback,
        concurrency=concurrency or int(env.get("ROLESCOPE_CONCURRENCY", "8")),
        timeout_s=timeout_s or float(env.get("ROLESCOPE_TIMEOUT_S", "20")),
        max_block_range=max_block_range,
        manifest_path=manifest_path,
    )
    explorer = ExplorerConfig(
        api_key=env.get("ETHERSCAN_API_KEY") or None,
        chain_id=net.chain_id if net else None,
        legacy_api_url=net.legacy_api_url if net else None,
        blockscout_url=net.explorer_url if net and net.explorer == "blockscout" else None,
    )
    return Settings(network=net, fetch=fetch, explorer=explorer)
