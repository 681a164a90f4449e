"""
Payment domain exceptions.

Raised by the payment services and translated into HTTP status codes by the
webhook router (each provider variant keeps its own mapping).
"""

from __future__ import annotations


class PaymentError(Exception):
    """Base class for payment reconciliation errors."""


class InvalidNotificationError(PaymentError):
    """The notification body is not a JSON object or cannot be parsed."""


class MissingCredentialsError(PaymentError):
    """A provider credential required by the variant is not configured."""

    def __init__(self, provider: str, tenant_id: str | None = None):
        self.provider = provider
        self.tenant_id = tenant_id
        scope = f"tenant {tenant_id}" if tenant_id else "platform"
        super().__init__(f"No {provider} credential configured for {scope}")


class ProviderUnavailableError(PaymentError):
    """
    The provider could not be queried: transport error, non-2xx response or
    an open circuit breaker. The webhook answers 5xx so the provider retries.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(f"{provider}: {message}")

    @property
    def circuit_open(self) -> bool:
        return self.retry_after is not None


class PersistenceError(PaymentError):
    """The paid transition (or subscription extension) could not be committed."""
