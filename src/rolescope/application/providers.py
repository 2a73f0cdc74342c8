from __future__ import annotations
from enum import Enum
from urllib.parse import urlparse

class ProviderType(str, Enum):
    ALCHEMY = "alchemy"
    BLOCKSCOUT = "blockscout"
    SONIC = "sonic"
    DEFAULT = "default"

# max eth_getLogs span per provider class (blocks)
RPC_MAX_BLOCK_RANGE: dict[ProviderType, int] = {
    ProviderType.ALCHEMY: 10,        # strict 10-block limit on free tiers
    ProviderType.BLOCKSCOUT: 9_900,  # just under 10k
    ProviderType.SONIC: 50_000,
    ProviderType.DEFAULT: 1_000,     # conservative for public RPCs
}

# host substrings -> provider class, checked in order
HOST_PATTERNS: tuple[tuple[str, ProviderType], ...] = (
    ("alchemy.com", ProviderType.ALCHEMY),
    ("alchemyapi.io", ProviderType.ALCHEMY),
    ("blockscout", ProviderType.BLOCKSCOUT),
    ("soniclabs.com", ProviderType.SONIC),
    ("sonic", ProviderType.SONIC),
)

def classify_provider(url: str) -> ProviderType:
    host = (urlparse(url).hostname or url).lower()
    for pattern, kind in HOST_PATTERNS:
        if pattern in host:
            return kind
    return ProviderType.DEFAULT

def max_block_range(url: str, override: int | None = None) -> int:
    """Governing eth_getLogs span for `url`; an explicit override wins."""
    if override is not None:
        if override < 1:
            raise ValueError(f"max block range must be >= 1 (got {override})")
        return override
    return RPC_MAX_BLOCK_RANGE[classify_provider(url)]
