"""
Provider notification normalization.

Each provider posts a differently shaped body (and Mercado Pago alone has two
shapes: `{type, data: {id}}` and the older `{topic, resource}`). The parsers
below map every shape into one PaymentNotification so the reconcilers never
look at raw bodies.

Bodies are never trusted for payment state: `status` is only used to decide
whether a push is a payment event; approval always comes from the provider API.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from shared.config.constants import (
    APPMAX_APPROVED_STATUSES,
    APPMAX_PAYMENT_EVENTS,
    PAGARME_APPROVED_STATUSES,
    PAGARME_PAYMENT_EVENTS,
    Providers,
)

from .errors import InvalidNotificationError


@dataclass(frozen=True)
class PaymentNotification:
    """Canonical form of an inbound provider push."""

    provider: str
    event_type: str | None
    payment_id: str | None
    external_reference: str | None = None
    status: str | None = None
    is_payment_event: bool = False


def _require_object(body: Any) -> dict:
    if not isinstance(body, dict):
        raise InvalidNotificationError(
            f"Notification body must be a JSON object, got {type(body).__name__}"
        )
    return body


def _as_text(value: Any) -> str | None:
    """Normalize ids that providers send either as numbers or strings."""
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _lower(value: Any) -> str | None:
    text = _as_text(value)
    return text.lower() if text else None


# =============================================================================
# Mercado Pago
# =============================================================================


def parse_mercadopago_notification(body: Any) -> PaymentNotification:
    """
    Parse a Mercado Pago webhook or IPN body.

    Only `payment` notifications are payment events; `merchant_order` and every
    other topic is acknowledged without processing.
    """
    body = _require_object(body)
    event_type = _lower(body.get("type")) or _lower(body.get("topic"))

    payment_id = None
    data = body.get("data")
    if isinstance(data, dict):
        payment_id = _as_text(data.get("id"))
    if payment_id is None:
        payment_id = _payment_id_from_resource(body.get("resource"))

    return PaymentNotification(
        provider=Providers.MERCADOPAGO,
        event_type=event_type,
        payment_id=payment_id,
        is_payment_event=event_type == "payment",
    )


def _payment_id_from_resource(resource: Any) -> str | None:
    """IPN sends either the bare id or the full resource URL (".../v1/payments/123")."""
    text = _as_text(resource)
    if not text:
        return None
    return _as_text(text.rstrip("/").rsplit("/", 1)[-1])


# =============================================================================
# AppMax
# =============================================================================


def parse_appmax_notification(body: Any) -> PaymentNotification:
    body = _require_object(body)
    event_type = _lower(body.get("event")) or _lower(body.get("type"))

    data = body.get("data")
    if not isinstance(data, dict):
        data = body.get("body")
    if not isinstance(data, dict):
        data = body

    payment_id = _as_text(data.get("order_id")) or _as_text(data.get("id"))
    status = _lower(data.get("status")) or _lower(data.get("payment_status"))
    external_reference = _as_text(data.get("external_reference")) or _as_text(
        body.get("external_reference")
    )

    return PaymentNotification(
        provider=Providers.APPMAX,
        event_type=event_type,
        payment_id=payment_id,
        external_reference=external_reference,
        status=status,
        is_payment_event=(
            event_type in APPMAX_PAYMENT_EVENTS or status in APPMAX_APPROVED_STATUSES
        ),
    )


# =============================================================================
# Pagar.me
# =============================================================================


def parse_pagarme_notification(body: Any) -> PaymentNotification:
    body = _require_object(body)
    event_type = _lower(body.get("type")) or _lower(body.get("event"))

    data = body.get("data")
    if not isinstance(data, dict):
        data = {}

    payment_id = _as_text(data.get("id")) or _as_text(body.get("id"))
    status = _lower(data.get("status")) or _lower(body.get("current_status"))

    metadata = data.get("metadata")
    external_reference = None
    if isinstance(metadata, dict):
        external_reference = _as_text(metadata.get("external_reference"))
    external_reference = external_reference or _as_text(data.get("code"))

    return PaymentNotification(
        provider=Providers.PAGARME,
        event_type=event_type,
        payment_id=payment_id,
        external_reference=external_reference,
        status=status,
        is_payment_event=(
            event_type in PAGARME_PAYMENT_EVENTS or status in PAGARME_APPROVED_STATUSES
        ),
    )
