"""Single-retry wrappers for node and HTTP calls.

Node calls: a timeout is retried once on the same endpoint with a much
longer timeout; if that fails too (or the first failure was not a timeout)
and a fallback endpoint is configured, we wait a fixed delay and try once
more on a fresh connection to the fallback. HTTP calls are retried once on
the same endpoint after the delay. Nothing is retried beyond that.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

import httpx

from ..domain.errors import RolescopeError, TransportError, classify_failure, is_timeout
from ..domain.value_types import FailureKind
from ..ports.rpc import RPCClient, RPCFactory

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_DELAY_S = 1.0
EXTENDED_TIMEOUT_FACTOR = 30


@dataclass(slots=True, frozen=True)
class Attempt:
    endpoint: str
    ok: bool
    error: str | None = None
    failure: FailureKind | None = None
    timeout_s: float | None = None


@dataclass(slots=True)
class RetryContext:
    """Per-operation retry bookkeeping; discard once the operation resolves."""
    operation: str
    fallback_url: str | None = None
    attempts: list[Attempt] = field(default_factory=list)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    def record(self, endpoint: str, error: BaseException | None = None, timeout_s: float | None = None) -> None:
        if error is None:
            self.attempts.append(Attempt(endpoint, True, timeout_s=timeout_s))
        else:
            self.attempts.append(Attempt(endpoint, False, str(error), classify_failure(error), timeout_s))


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    delay_s: float = RETRY_DELAY_S
    extended_timeout_factor: float = EXTENDED_TIMEOUT_FACTOR

    @property
    def extended_timeout_s(self) -> float:
        return self.delay_s * self.extended_timeout_factor


class RetryExecutor:
    def __init__(
        self,
        connect: RPCFactory,
        policy: RetryPolicy = RetryPolicy(),
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.connect = connect
        self.policy = policy
        self._sleep = sleep

    async def run_node(
        self,
        operation: Callable[[RPCClient], Awaitable[T]],
        connection: RPCClient,
        ctx: RetryContext,
    ) -> T:
        try:
            result = await operation(connection)
            ctx.record(connection.url)
            return result
        except TransportError as e:
            ctx.record(connection.url, e)
            last: TransportError = e

        if is_timeout(last):
            timeout_s = self.policy.extended_timeout_s
            logger.warning("%s timed out on %s; retrying with %.0fs timeout", ctx.operation, connection.url, timeout_s)
            patient = connection.with_timeout(timeout_s)
            try:
                result = await operation(patient)
                ctx.record(patient.url, timeout_s=timeout_s)
                logger.info("%s succeeded with extended timeout", ctx.operation)
                return result
            except TransportError as e:
                ctx.record(patient.url, e, timeout_s=timeout_s)
                last = e
            finally:
                await patient.aclose()

        if not ctx.fallback_url:
            logger.error("%s failed (no alternative RPC available): %s", ctx.operation, last)
            raise last

        logger.warning("%s failed with primary RPC: %s", ctx.operation, last)
        logger.info("Retrying %s with alternative RPC after %.1fs...", ctx.operation, self.policy.delay_s)
        await self._sleep(self.policy.delay_s)

        alternative = self.connect(ctx.fallback_url)
        try:
            result = await operation(alternative)
            ctx.record(alternative.url)
            logger.info("%s succeeded with alternative RPC", ctx.operation)
            return result
        except TransportError as e:
            ctx.record(alternative.url, e)
            logger.error("%s failed with alternative RPC: %s", ctx.operation, e)
            raise
        finally:
            await alternative.aclose()

    async def run_http(
        self,
        operation: Callable[[], Awaitable[T]],
        ctx: RetryContext,
        *,
        endpoint: str = "http",
    ) -> T:
        try:
            result = await operation()
            ctx.record(endpoint)
            return result
        except (httpx.HTTPError, RolescopeError) as e:
            ctx.record(endpoint, e)
            logger.warning("%s failed: %s", ctx.operation, e)

        logger.info("Retrying %s after %.1fs...", ctx.operation, self.policy.delay_s)
        await self._sleep(self.policy.delay_s)
        try:
            result = await operation()
            ctx.record(endpoint)
            logger.info("%s succeeded on retry", ctx.operation)
            return result
        except (httpx.HTTPError, RolescopeError) as e:
            ctx.record(endpoint, e)
            logger.error("%s failed on retry: %s", ctx.operation, e)
            raise
