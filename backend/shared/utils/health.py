"""
Dependency health checks.

A check is an async function returning optional details. Wrapping it with
`health_check_with_timeout` turns it into one that never raises and always
returns a HealthCheckResult; `aggregate_health_checks` runs several at once.

    @health_check_with_timeout(timeout=3.0, component="database")
    async def check_database_health(db):
        db.execute(text("SELECT 1"))
"""

from __future__ import annotations

import asyncio
import functools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from shared.config.logging import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheckResult:
    component: str
    status: HealthStatus
    latency_ms: float
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status.value, "latency_ms": round(self.latency_ms, 2)}
        if self.error:
            data["error"] = self.error
        if self.details:
            data["details"] = self.details
        return data


def health_check_with_timeout(timeout: float, component: str):
    def decorator(check: Callable[..., Awaitable[dict | None]]) -> Callable[..., Awaitable[HealthCheckResult]]:
        @functools.wraps(check)
        async def run(*args: Any, **kwargs: Any) -> HealthCheckResult:
            started = time.perf_counter()

            def elapsed() -> float:
                return (time.perf_counter() - started) * 1000

            try:
                details = await asyncio.wait_for(check(*args, **kwargs), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Health check timed out", component=component, timeout=timeout)
                return HealthCheckResult(
                    component, HealthStatus.UNHEALTHY, elapsed(), error=f"timeout after {timeout}s"
                )
            except Exception as e:
                logger.warning("Health check failed", component=component, error=str(e))
                return HealthCheckResult(component, HealthStatus.UNHEALTHY, elapsed(), error=str(e))
            return HealthCheckResult(
                component, HealthStatus.HEALTHY, elapsed(), details=details or {}
            )

        return run

    return decorator


async def aggregate_health_checks(checks: list[Awaitable[HealthCheckResult]]) -> dict[str, Any]:
    """Overall status is healthy only when every component is."""
    results: list[HealthCheckResult] = await asyncio.gather(*checks)
    return {
        "status": (
            HealthStatus.HEALTHY if all(r.healthy for r in results) else HealthStatus.UNHEALTHY
        ).value,
        "components": {r.component: r.to_dict() for r in results},
    }
