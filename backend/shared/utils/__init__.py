"""
Utilities module: health check helpers.
"""

from shared.utils.health import (
    HealthStatus,
    HealthCheckResult,
    health_check_with_timeout,
    aggregate_health_checks,
)

__all__ = [
    "HealthStatus",
    "HealthCheckResult",
    "health_check_with_timeout",
    "aggregate_health_checks",
]
