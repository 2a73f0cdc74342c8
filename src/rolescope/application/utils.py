from __future__ import annotations

import logging
from typing import Awaitable, Callable, Sequence, TypeVar

import httpx

from ..domain.errors import ExplorerError, RolescopeError

logger = logging.getLogger(__name__)

T = TypeVar("T")
Strategy = tuple[str, Callable[[], Awaitable[T]]]


async def first_success(strategies: Sequence[Strategy[T]], what: str) -> T:
    """Run (name, thunk) strategies in order; the first result wins."""
    errors: list[str] = []
    for name, attempt in strategies:
        try:
            result = await attempt()
        except (RolescopeError, httpx.HTTPError) as e:
            logger.debug("%s: strategy %s failed: %s", what, name, e)
            errors.append(f"{name}: {e}")
            continue
        logger.debug("%s: resolved via %s", what, name)
        return result
    raise ExplorerError(f"could not determine {what} ({'; '.join(errors) or 'no strategies'})")
