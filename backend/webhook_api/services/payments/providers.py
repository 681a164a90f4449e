"""
Payment provider API clients.

The reconcilers never trust a webhook body: the payment is re-fetched from
the provider with the tenant's credential and normalized into ProviderPayment.

Every request goes through the provider's circuit breaker. Transport errors,
5xx responses and an open circuit count against the breaker; 4xx responses
(unknown payment id, revoked token) do not, but still raise
ProviderUnavailableError so the webhook answers with a server error and the
provider retries later.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from shared.config.constants import (
    APPMAX_APPROVED_STATUSES,
    MERCADOPAGO_APPROVED_STATUSES,
    MERCADOPAGO_PAYMENT_METHOD_ALIASES,
    PAGARME_APPROVED_STATUSES,
    Limits,
    Providers,
)
from shared.config.logging import get_logger
from shared.config.settings import settings

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerError,
    appmax_breaker,
    mercadopago_breaker,
    pagarme_breaker,
)
from .credentials import TenantCredentials
from .errors import MissingCredentialsError, ProviderUnavailableError
from .external_reference import extract_link_fragments

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderPayment:
    """Authoritative payment state as reported by the provider API."""

    provider: str
    payment_id: str
    status: str | None
    approved: bool
    external_reference: str | None = None
    preference_id: str | None = None
    link_fragments: tuple[str, ...] = ()
    observation_fragments: tuple[str, ...] = ()
    payment_method: str | None = None
    installments: int | None = None
    amount: Decimal | None = None
    raw: dict = field(default_factory=dict, repr=False, compare=False)


# =============================================================================
# Helpers
# =============================================================================


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _int(value: Any) -> int | None:
    try:
        return int(value) if value is not None and not isinstance(value, bool) else None
    except (TypeError, ValueError):
        return None


def _decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _is_structured_reference(reference: str | None) -> bool:
    """Structured references are resolved by key; they are not link fragments."""
    if not reference:
        return False
    lowered = reference.lower()
    return "orders:" in lowered or lowered.startswith("subscription:")


class ProviderClient(ABC):
    """
    Base for provider clients: breaker, timeout and error translation.

    Subclasses set provider and breaker and implement fetch_payment.
    """

    provider: str = ""
    breaker: CircuitBreaker

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout if timeout is not None else settings.provider_timeout_seconds
        self._transport = transport

    async def _get_json(
        self,
        path: str,
        params: dict | None = None,
        headers: dict | None = None,
        auth: tuple[str, str] | None = None,
    ) -> Any:
        try:
            async with self.breaker.call():
                async with httpx.AsyncClient(
                    base_url=self._base_url,
                    timeout=self._timeout,
                    transport=self._transport,
                ) as client:
                    response = await client.get(path, params=params, headers=headers, auth=auth)
                if response.status_code >= 500:
                    response.raise_for_status()
        except CircuitBreakerError as e:
            logger.warning("Provider circuit open", provider=self.provider, retry_after=e.retry_after)
            raise ProviderUnavailableError(
                self.provider, "circuit breaker open", retry_after=e.retry_after
            ) from e
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailableError(
                self.provider,
                f"HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(self.provider, f"request failed: {e}") from e

        if not response.is_success:
            logger.warning(
                "Provider rejected request",
                provider=self.provider,
                path=path,
                status_code=response.status_code,
            )
            raise ProviderUnavailableError(
                self.provider,
                f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailableError(
                self.provider, "response is not JSON", status_code=response.status_code
            ) from e

    @abstractmethod
    async def fetch_payment(self, payment_id: str) -> ProviderPayment:
        """Authoritative state of one payment, by the id a notification carried."""


# =============================================================================
# Mercado Pago
# =============================================================================


class MercadoPagoClient(ProviderClient):
    provider = Providers.MERCADOPAGO
    breaker = mercadopago_breaker

    def __init__(
        self,
        access_token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url or settings.mercadopago_api_url, timeout, transport)
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def get_payment(self, payment_id: str) -> ProviderPayment:
        data = await self._get_json(f"/v1/payments/{payment_id}", headers=self._headers)
        return self._parse_payment(_dict(data), payment_id)

    fetch_payment = get_payment

    async def search_payments(
        self, external_reference: str, status: str | None = "approved"
    ) -> list[ProviderPayment]:
        params = {"external_reference": external_reference}
        if status:
            params["status"] = status
        data = await self._get_json("/v1/payments/search", params=params, headers=self._headers)
        results = _dict(data).get("results") or []
        return [
            self._parse_payment(item, _text(item.get("id")) or "")
            for item in results
            if isinstance(item, dict)
        ]

    @staticmethod
    def _parse_payment(data: dict, payment_id: str) -> ProviderPayment:
        status = (_text(data.get("status")) or "").lower() or None
        external_reference = _text(data.get("external_reference"))
        preference_id = _text(data.get("preference_id"))
        additional_reference = _text(_dict(data.get("additional_info")).get("external_reference"))
        qr_code = _text(
            _dict(_dict(data.get("point_of_interaction")).get("transaction_data")).get("qr_code")
        )

        fragments = extract_link_fragments(
            preference_id,
            *(
                ref
                for ref in (external_reference, additional_reference)
                if not _is_structured_reference(ref)
            ),
            qr_code,
        )

        method = _text(data.get("payment_method_id"))
        if method:
            method = MERCADOPAGO_PAYMENT_METHOD_ALIASES.get(method.lower(), method.lower())

        return ProviderPayment(
            provider=Providers.MERCADOPAGO,
            payment_id=_text(data.get("id")) or payment_id,
            status=status,
            approved=status in MERCADOPAGO_APPROVED_STATUSES,
            external_reference=external_reference,
            preference_id=preference_id,
            link_fragments=tuple(fragments),
            payment_method=method,
            installments=_int(data.get("installments")),
            amount=_decimal(data.get("transaction_amount")),
            raw=data,
        )


# =============================================================================
# AppMax
# =============================================================================


class AppmaxClient(ProviderClient):
    provider = Providers.APPMAX
    breaker = appmax_breaker

    def __init__(
        self,
        access_token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url or settings.appmax_api_url, timeout, transport)
        self._access_token = access_token

    async def get_order(self, order_id: str) -> ProviderPayment:
        body = await self._get_json(
            f"/order/{order_id}", params={"access-token": self._access_token}
        )
        body = _dict(body)
        data = body.get("data") if isinstance(body.get("data"), dict) else body

        appmax_id = _text(data.get("id")) or order_id
        status = (_text(data.get("status")) or _text(data.get("payment_status")) or "").lower() or None
        link_fragments = (appmax_id,) if len(appmax_id) >= Limits.MIN_LINK_FRAGMENT_LENGTH else ()

        return ProviderPayment(
            provider=Providers.APPMAX,
            payment_id=appmax_id,
            status=status,
            approved=status in APPMAX_APPROVED_STATUSES,
            external_reference=_text(data.get("external_reference")),
            link_fragments=link_fragments,
            observation_fragments=(f"order_id: {appmax_id}",),
            payment_method=(_text(data.get("payment_type")) or "").lower() or None,
            installments=_int(data.get("installments")),
            amount=_decimal(data.get("total")),
            raw=data,
        )

    fetch_payment = get_order


# =============================================================================
# Pagar.me
# =============================================================================


class PagarmeClient(ProviderClient):
    provider = Providers.PAGARME
    breaker = pagarme_breaker

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url or settings.pagarme_api_url, timeout, transport)
        self._auth = (api_key, "")

    async def get_payment(self, payment_id: str) -> ProviderPayment:
        """Fetch an order ("or_...") or a charge (anything else)."""
        resource = "orders" if payment_id.startswith("or_") else "charges"
        data = await self._get_json(f"/core/v5/{resource}/{payment_id}", auth=self._auth)
        return self._parse(_dict(data), payment_id)

    fetch_payment = get_payment

    async def list_orders(self, **filters: str) -> list[ProviderPayment]:
        """
        List orders matching query filters, e.g. code="chk_..." or
        **{"metadata[external_reference]": "tenant:...;orders:42"}.
        """
        data = await self._get_json("/core/v5/orders", params=filters, auth=self._auth)
        items = _dict(data).get("data") or []
        return [
            self._parse(item, _text(item.get("id")) or "")
            for item in items
            if isinstance(item, dict)
        ]

    @staticmethod
    def _parse(data: dict, payment_id: str) -> ProviderPayment:
        order = _dict(data.get("order"))
        metadata = _dict(data.get("metadata")) or _dict(order.get("metadata"))
        external_reference = (
            _text(metadata.get("external_reference"))
            or _text(data.get("code"))
            or _text(order.get("code"))
        )

        charge = data
        charges = data.get("charges")
        if isinstance(charges, list) and charges and isinstance(charges[0], dict):
            charge = charges[0]

        # Pagar.me amounts are in cents
        amount = _decimal(data.get("amount"))
        if amount is not None:
            amount = amount / 100

        status = (_text(data.get("status")) or "").lower() or None
        resolved_id = _text(data.get("id")) or payment_id
        ids = (resolved_id, _text(order.get("id")), _text(data.get("code")))
        link_fragments = tuple(
            dict.fromkeys(i for i in ids if i and len(i) >= Limits.MIN_LINK_FRAGMENT_LENGTH)
        )

        return ProviderPayment(
            provider=Providers.PAGARME,
            payment_id=resolved_id,
            status=status,
            approved=status in PAGARME_APPROVED_STATUSES,
            external_reference=external_reference,
            link_fragments=link_fragments,
            payment_method=(_text(charge.get("payment_method")) or "").lower() or None,
            installments=_int(_dict(charge.get("last_transaction")).get("installments")),
            amount=amount,
            raw=data,
        )


# =============================================================================
# Factory (FastAPI dependency)
# =============================================================================


class PaymentGateways:
    """
    Builds provider clients for a set of credentials.

    A transport can be injected so tests answer provider calls with
    httpx.MockTransport instead of the network.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        self._transport = transport
        self._timeout = timeout

    def mercadopago(self, credentials: TenantCredentials) -> MercadoPagoClient:
        if not credentials.mercadopago_access_token:
            raise MissingCredentialsError(Providers.MERCADOPAGO, credentials.tenant_id)
        return MercadoPagoClient(
            credentials.mercadopago_access_token,
            timeout=self._timeout,
            transport=self._transport,
        )

    def appmax(self, credentials: TenantCredentials) -> AppmaxClient:
        if not credentials.appmax_access_token:
            raise MissingCredentialsError(Providers.APPMAX, credentials.tenant_id)
        base_url = (
            settings.appmax_sandbox_api_url
            if credentials.appmax_environment == "sandbox"
            else settings.appmax_api_url
        )
        return AppmaxClient(
            credentials.appmax_access_token,
            base_url=base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    def pagarme(self, credentials: TenantCredentials) -> PagarmeClient:
        if not credentials.pagarme_api_key:
            raise MissingCredentialsError(Providers.PAGARME, credentials.tenant_id)
        return PagarmeClient(
            credentials.pagarme_api_key,
            timeout=self._timeout,
            transport=self._transport,
        )

    def for_provider(self, provider: str, credentials: TenantCredentials) -> ProviderClient:
        builders = {
            Providers.MERCADOPAGO: self.mercadopago,
            Providers.APPMAX: self.appmax,
            Providers.PAGARME: self.pagarme,
        }
        return builders[provider](credentials)


def get_payment_gateways() -> PaymentGateways:
    """FastAPI dependency; overridden in tests."""
    return PaymentGateways()
