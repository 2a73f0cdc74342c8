from __future__ import annotations

from .value_types import FailureKind


class RolescopeError(Exception):
    """Base class for every error raised by rolescope."""


class TransportError(RolescopeError):
    """A node or HTTP call failed (generic, retried once)."""

    def __init__(self, message: str, *, code: int | str | None = None, endpoint: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.endpoint = endpoint


class RpcTimeoutError(TransportError):
    """The call exceeded its deadline; retryable with a longer timeout or another endpoint."""


class RateLimitError(TransportError):
    """The provider throttled us; only a fallback endpoint or a smaller query helps."""


class MissingContextError(RolescopeError):
    """A log's parent transaction or block could not be fetched."""

    def __init__(self, tx_hash: str, block_number: int) -> None:
        super().__init__(f"failed to fetch transaction or block data for tx {tx_hash} (block {block_number})")
        self.tx_hash = tx_hash
        self.block_number = block_number


class SchemaMismatchError(RolescopeError):
    """The requested event is absent from the supplied schema."""


class ExplorerError(RolescopeError):
    """A block-explorer lookup returned no usable result."""


_TIMEOUT_MARKERS = ("timeout", "timed out", "deadline exceeded", "connection aborted", "econnaborted", "etimedout")
_RATE_LIMIT_MARKERS = ("429", "rate limit", "rate-limit", "ratelimit", "too many requests", "-32005", "exceeded its compute units")


def _normalized(exc: BaseException) -> str:
    code = getattr(exc, "code", None)
    parts = [type(exc).__name__, str(exc)]
    if code is not None:
        parts.append(str(code))
    return " ".join(parts).lower()


def is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, RpcTimeoutError | TimeoutError):
        return True
    if isinstance(exc, RateLimitError):
        return False
    text = _normalized(exc)
    return any(m in text for m in _TIMEOUT_MARKERS)


def is_rate_limit(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitError):
        return True
    if isinstance(exc, RpcTimeoutError):
        return False
    text = _normalized(exc)
    return any(m in text for m in _RATE_LIMIT_MARKERS)


def classify_failure(exc: BaseException) -> FailureKind:
    """Bucket any transport failure into timeout / rate_limit / other."""
    if is_timeout(exc):
        return "timeout"
    if is_rate_limit(exc):
        return "rate_limit"
    return "other"
