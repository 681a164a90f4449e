"""
Per-provider circuit breakers.

A provider that keeps failing (transport errors, 5xx) is not called again
until its pause is over; webhooks answer 503 meanwhile and the provider
redelivers later. After the pause a few probe calls decide whether the
circuit closes again or reopens.

    async with mercadopago_breaker.call():
        response = await client.get(...)
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from enum import Enum
from typing import AsyncIterator

from shared.config.constants import Providers
from shared.config.logging import get_logger
from shared.config.settings import settings

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    name: str
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 30.0
    half_open_max_calls: int = 2


@dataclass
class CircuitBreakerStats:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    state_changes: int = 0
    last_failure_time: float | None = None
    last_success_time: float | None = None


class CircuitBreakerError(Exception):
    """The call was refused without reaching the provider."""

    def __init__(self, breaker_name: str, retry_after: float):
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        super().__init__(f"{breaker_name} circuit is open, retry in {retry_after:.1f}s")


class CircuitBreaker:
    """
    Consecutive-failure breaker guarded by an asyncio lock, so concurrent
    webhook handlers on one event loop see a consistent state.
    """

    def __init__(self, config: CircuitBreakerConfig):
        self.config = config
        self.stats = CircuitBreakerStats()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._probe_successes = 0
        self._probes_in_flight = 0
        self._last_failure_time: float | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    def remaining_open_seconds(self) -> float:
        if self._last_failure_time is None:
            return 0.0
        return max(0.0, self._last_failure_time + self.config.timeout_seconds - time.time())

    def _set_state(self, state: CircuitState) -> None:
        if state is self._state:
            return
        logger.info(
            "Circuit breaker state change",
            breaker=self.config.name,
            old_state=self._state.value,
            new_state=state.value,
            failures=self._consecutive_failures,
        )
        self._state = state
        self.stats.state_changes += 1
        self._probe_successes = 0
        self._probes_in_flight = 0
        if state is CircuitState.CLOSED:
            self._consecutive_failures = 0

    async def _admit(self) -> None:
        """Raise CircuitBreakerError unless a call may go through now."""
        async with self._lock:
            if self._state is CircuitState.OPEN:
                wait = self.remaining_open_seconds()
                if wait > 0:
                    self.stats.rejected_calls += 1
                    raise CircuitBreakerError(self.config.name, wait)
                self._set_state(CircuitState.HALF_OPEN)

            if self._state is CircuitState.HALF_OPEN:
                if self._probes_in_flight >= self.config.half_open_max_calls:
                    self.stats.rejected_calls += 1
                    raise CircuitBreakerError(self.config.name, 1.0)
                self._probes_in_flight += 1

    async def record_success(self) -> None:
        async with self._lock:
            self.stats.total_calls += 1
            self.stats.successful_calls += 1
            self.stats.last_success_time = time.time()

            if self._state is CircuitState.HALF_OPEN:
                self._probes_in_flight = max(0, self._probes_in_flight - 1)
                self._probe_successes += 1
                if self._probe_successes >= self.config.success_threshold:
                    self._set_state(CircuitState.CLOSED)
            else:
                self._consecutive_failures = 0

    async def record_failure(self, error: Exception | None = None) -> None:
        async with self._lock:
            now = time.time()
            self.stats.total_calls += 1
            self.stats.failed_calls += 1
            self.stats.last_failure_time = now
            self._last_failure_time = now
            self._consecutive_failures += 1

            logger.warning(
                "Provider call failed",
                breaker=self.config.name,
                error=str(error) if error else None,
                failures=self._consecutive_failures,
                threshold=self.config.failure_threshold,
            )

            # A failed probe reopens immediately
            if (
                self._state is CircuitState.HALF_OPEN
                or self._consecutive_failures >= self.config.failure_threshold
            ):
                self._set_state(CircuitState.OPEN)

    @asynccontextmanager
    async def call(self) -> AsyncIterator[None]:
        """
        Guard one provider call. Any exception escaping the block counts as a
        failure and is re-raised.

        Raises:
            CircuitBreakerError: the circuit is open
        """
        await self._admit()
        try:
            yield
        except Exception as e:
            await self.record_failure(e)
            raise
        await self.record_success()

    async def reset(self) -> None:
        async with self._lock:
            self._set_state(CircuitState.CLOSED)
            self._consecutive_failures = 0
            self._last_failure_time = None
        logger.info("Circuit breaker reset", breaker=self.config.name)

    def snapshot(self) -> dict:
        data = {"state": self._state.value}
        data.update(
            (key, value)
            for key, value in asdict(self.stats).items()
            if not key.endswith("_time")
        )
        if self._state is CircuitState.OPEN:
            data["retry_after"] = round(self.remaining_open_seconds(), 1)
        return data


def _provider_breaker(provider: str) -> CircuitBreaker:
    return CircuitBreaker(
        CircuitBreakerConfig(
            name=provider,
            failure_threshold=settings.provider_breaker_failure_threshold,
            timeout_seconds=settings.provider_breaker_timeout_seconds,
        )
    )


mercadopago_breaker = _provider_breaker(Providers.MERCADOPAGO)
appmax_breaker = _provider_breaker(Providers.APPMAX)
pagarme_breaker = _provider_breaker(Providers.PAGARME)

BREAKERS: dict[str, CircuitBreaker] = {
    Providers.MERCADOPAGO: mercadopago_breaker,
    Providers.APPMAX: appmax_breaker,
    Providers.PAGARME: pagarme_breaker,
}


def get_all_breaker_stats() -> dict[str, dict]:
    """Snapshot of every provider breaker (detailed health check, `breakers` CLI)."""
    return {name: breaker.snapshot() for name, breaker in BREAKERS.items()}
