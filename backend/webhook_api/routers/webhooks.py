"""
Payment provider webhooks.

One endpoint per provider. Each keeps its own HTTP status conventions because
providers decide whether to retry from the status code:
- Mercado Pago order: strict (400 on malformed input, 404 when no order matches)
- Subscription: 400 on malformed input, 200 for unknown tenants
- AppMax: 200 on anything that is not a provider or database failure, so that
  a malformed push does not start a retry storm
- Pagar.me: 400 on malformed input, 200 when no order matches

Provider or database failures always answer 5xx so the notification is
redelivered; the paid transition is idempotent.

Every delivery writes exactly one webhook_logs row typed "<variant>_<outcome>".
"""

import json
from dataclasses import dataclass
from typing import Any, Callable

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from shared.config.logging import webhook_logger as logger
from shared.infrastructure.db import get_db
from shared.config.constants import Providers
from webhook_api.services.payments import (
    InvalidNotificationError,
    MissingCredentialsError,
    OrderPaymentReconciler,
    PaymentGateways,
    PaymentNotification,
    PersistenceError,
    ProviderUnavailableError,
    ReconcileOutcome,
    SideEffects,
    SubscriptionOutcome,
    SubscriptionReconciler,
    WebhookAuditLog,
    get_payment_gateways,
    get_side_effects,
    load_tenant_credentials,
    parse_appmax_notification,
    parse_mercadopago_notification,
    parse_pagarme_notification,
    platform_credentials,
)
from webhook_api.services.payments.credentials import TenantCredentials
from webhook_api.services.payments.providers import ProviderClient
from webhook_api.routers.signature import verify_mercadopago_signature


router = APIRouter(prefix="/webhooks", tags=["webhooks"])


# =============================================================================
# Per-variant status conventions
# =============================================================================


@dataclass(frozen=True)
class StatusPolicy:
    variant: str
    invalid: int
    missing_credentials: int
    not_found: int
    unexpected: int


MERCADOPAGO_ORDER = StatusPolicy("mercadopago_order", invalid=400, missing_credentials=500, not_found=404, unexpected=500)
MERCADOPAGO_RETURN = StatusPolicy("mercadopago_return", invalid=400, missing_credentials=500, not_found=404, unexpected=500)
SUBSCRIPTION = StatusPolicy("subscription", invalid=400, missing_credentials=500, not_found=200, unexpected=500)
APPMAX = StatusPolicy("appmax", invalid=200, missing_credentials=200, not_found=200, unexpected=200)
PAGARME = StatusPolicy("pagarme", invalid=400, missing_credentials=500, not_found=200, unexpected=500)


_INVALID_JSON = object()


async def _read_body(request: Request) -> tuple[Any, Any]:
    """Return (parsed body or _INVALID_JSON, payload to audit)."""
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else None
    except (ValueError, UnicodeDecodeError):
        return _INVALID_JSON, {"raw": raw[:2000].decode("utf-8", errors="replace")}
    if body is None:
        return _INVALID_JSON, None
    return body, body


def _reply(
    audit: WebhookAuditLog,
    policy: StatusPolicy,
    outcome: str,
    status_code: int,
    content: dict[str, Any],
    payload: Any,
    tenant_id: str | None,
    error_message: str | None = None,
) -> JSONResponse:
    audit.record(
        f"{policy.variant}_{outcome}",
        status_code,
        payload=payload,
        tenant_id=tenant_id,
        response=content,
        error_message=error_message,
    )
    return JSONResponse(content=content, status_code=status_code)


async def _reconcile_order_payment(
    policy: StatusPolicy,
    notification: PaymentNotification,
    tenant_id: str,
    db: Session,
    build_gateway: Callable[[TenantCredentials], ProviderClient],
    side_effects: SideEffects,
    payload: Any,
) -> JSONResponse:
    """Shared order flow once the notification is known to be a payment with an id."""
    audit = WebhookAuditLog(db)
    try:
        gateway = build_gateway(load_tenant_credentials(db, tenant_id))
        result = await OrderPaymentReconciler(db, gateway, side_effects).reconcile(
            notification, tenant_id
        )
    except MissingCredentialsError as e:
        logger.error("Provider credential missing", variant=policy.variant, tenant_id=tenant_id)
        return _reply(
            audit, policy, "missing_credentials", policy.missing_credentials,
            {"error": "Provider not configured"}, payload, tenant_id, str(e),
        )
    except ProviderUnavailableError as e:
        status_code = 503 if e.circuit_open else 502
        logger.error(
            "Provider re-fetch failed",
            variant=policy.variant,
            payment_id=notification.payment_id,
            error=str(e),
        )
        return _reply(
            audit, policy, "provider_error", status_code,
            {"error": "Payment provider unavailable"}, payload, tenant_id, str(e),
        )
    except PersistenceError as e:
        return _reply(
            audit, policy, "persistence_error", 500,
            {"error": "Failed to update order"}, payload, tenant_id, str(e),
        )
    except Exception as e:
        db.rollback()
        logger.error(
            "Unexpected webhook error",
            variant=policy.variant,
            payment_id=notification.payment_id,
            exc_info=True,
        )
        return _reply(
            audit, policy, "error", policy.unexpected,
            {"error": "Internal error"}, payload, tenant_id, str(e),
        )

    status_code = policy.not_found if result.outcome == ReconcileOutcome.NOT_FOUND else 200
    logger.info(
        "Payment webhook processed",
        variant=policy.variant,
        tenant_id=tenant_id,
        payment_id=result.payment_id,
        outcome=result.outcome.value,
        order_ids=result.order_ids,
    )
    return _reply(audit, policy, result.outcome.value, status_code, result.as_response(), payload, tenant_id)


async def _order_webhook(
    policy: StatusPolicy,
    request: Request,
    tenant_id: str | None,
    db: Session,
    parse: Callable[[Any], PaymentNotification],
    build_gateway: Callable[[TenantCredentials], ProviderClient],
    side_effects: SideEffects,
    verify: Callable[[PaymentNotification], bool] | None = None,
) -> JSONResponse:
    audit = WebhookAuditLog(db)
    body, payload = await _read_body(request)
    if body is _INVALID_JSON:
        return _reply(audit, policy, "invalid", policy.invalid, {"error": "Invalid JSON"}, payload, tenant_id)

    try:
        notification = parse(body)
    except InvalidNotificationError as e:
        return _reply(audit, policy, "invalid", policy.invalid, {"error": str(e)}, payload, tenant_id)

    logger.info(
        "Webhook received",
        variant=policy.variant,
        tenant_id=tenant_id,
        event_type=notification.event_type,
        payment_id=notification.payment_id,
    )

    if not notification.is_payment_event:
        return _reply(
            audit, policy, "ignored", 200,
            {"status": "ignored", "reason": "not a payment notification"}, payload, tenant_id,
        )
    if not tenant_id:
        return _reply(audit, policy, "invalid", policy.invalid, {"error": "tenant_id is required"}, payload, None)
    if not notification.payment_id:
        return _reply(audit, policy, "invalid", policy.invalid, {"error": "No payment id"}, payload, tenant_id)
    if verify is not None and not verify(notification):
        return _reply(audit, policy, "unauthorized", 401, {"error": "Invalid webhook signature"}, payload, tenant_id)

    return await _reconcile_order_payment(
        policy, notification, tenant_id, db, build_gateway, side_effects, payload
    )


def _signature_check(x_signature: str | None, x_request_id: str | None):
    def verify(notification: PaymentNotification) -> bool:
        return verify_mercadopago_signature(x_signature, x_request_id, notification.payment_id or "")
    return verify


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/mercadopago")
async def mercadopago_webhook(
    request: Request,
    tenant_id: str | None = Query(None),
    db: Session = Depends(get_db),
    gateways: PaymentGateways = Depends(get_payment_gateways),
    side_effects: SideEffects = Depends(get_side_effects),
    x_signature: str | None = Header(None),
    x_request_id: str | None = Header(None),
) -> JSONResponse:
    """
    Mercado Pago order payment notifications.

    Configured per tenant as /webhooks/mercadopago?tenant_id=<uuid>.
    """
    return await _order_webhook(
        MERCADOPAGO_ORDER, request, tenant_id, db,
        parse_mercadopago_notification, gateways.mercadopago, side_effects,
        verify=_signature_check(x_signature, x_request_id),
    )


@router.post("/appmax")
async def appmax_webhook(
    request: Request,
    tenant_id: str | None = Query(None),
    db: Session = Depends(get_db),
    gateways: PaymentGateways = Depends(get_payment_gateways),
    side_effects: SideEffects = Depends(get_side_effects),
) -> JSONResponse:
    """AppMax order notifications. Malformed pushes are acknowledged with 200."""
    return await _order_webhook(
        APPMAX, request, tenant_id, db,
        parse_appmax_notification, gateways.appmax, side_effects,
    )


@router.post("/pagarme")
async def pagarme_webhook(
    request: Request,
    tenant_id: str | None = Query(None),
    db: Session = Depends(get_db),
    gateways: PaymentGateways = Depends(get_payment_gateways),
    side_effects: SideEffects = Depends(get_side_effects),
) -> JSONResponse:
    return await _order_webhook(
        PAGARME, request, tenant_id, db,
        parse_pagarme_notification, gateways.pagarme, side_effects,
    )


@router.get("/mercadopago/return")
async def mercadopago_return(
    payment_id: str | None = Query(None),
    collection_id: str | None = Query(None),
    tenant_id: str | None = Query(None),
    db: Session = Depends(get_db),
    gateways: PaymentGateways = Depends(get_payment_gateways),
    side_effects: SideEffects = Depends(get_side_effects),
) -> JSONResponse:
    """
    Checkout return page fallback.

    The buyer lands here after paying; the payment is re-fetched and
    reconciled like a webhook. The status query parameter is ignored.
    """
    policy = MERCADOPAGO_RETURN
    payment_id = payment_id or collection_id
    payload = {"payment_id": payment_id, "tenant_id": tenant_id}
    if not tenant_id or not payment_id:
        return _reply(
            WebhookAuditLog(db), policy, "invalid", policy.invalid,
            {"error": "payment_id and tenant_id are required"}, payload, tenant_id,
        )

    notification = PaymentNotification(
        provider=Providers.MERCADOPAGO,
        event_type="payment",
        payment_id=payment_id,
        is_payment_event=True,
    )
    return await _reconcile_order_payment(
        policy, notification, tenant_id, db, gateways.mercadopago, side_effects, payload
    )


@router.post("/mercadopago/subscription")
async def mercadopago_subscription_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateways: PaymentGateways = Depends(get_payment_gateways),
    x_signature: str | None = Header(None),
    x_request_id: str | None = Header(None),
) -> JSONResponse:
    """
    Platform subscription payments (paid with the platform's own Mercado Pago
    account). The tenant comes from the payment's external reference.
    """
    policy = SUBSCRIPTION
    audit = WebhookAuditLog(db)
    body, payload = await _read_body(request)
    if body is _INVALID_JSON:
        return _reply(audit, policy, "invalid", policy.invalid, {"error": "Invalid JSON"}, payload, None)

    try:
        notification = parse_mercadopago_notification(body)
    except InvalidNotificationError as e:
        return _reply(audit, policy, "invalid", policy.invalid, {"error": str(e)}, payload, None)

    if not notification.is_payment_event:
        return _reply(
            audit, policy, "ignored", 200,
            {"status": "ignored", "reason": "not a payment notification"}, payload, None,
        )
    if not notification.payment_id:
        return _reply(audit, policy, "invalid", policy.invalid, {"error": "No payment id"}, payload, None)
    if not verify_mercadopago_signature(x_signature, x_request_id, notification.payment_id):
        return _reply(audit, policy, "unauthorized", 401, {"error": "Invalid webhook signature"}, payload, None)

    try:
        gateway = gateways.mercadopago(platform_credentials())
        result = await SubscriptionReconciler(db, gateway).reconcile(notification)
    except MissingCredentialsError as e:
        logger.error("Platform Mercado Pago token not configured")
        return _reply(
            audit, policy, "missing_credentials", policy.missing_credentials,
            {"error": "Provider not configured"}, payload, None, str(e),
        )
    except ProviderUnavailableError as e:
        return _reply(
            audit, policy, "provider_error", 503 if e.circuit_open else 502,
            {"error": "Payment provider unavailable"}, payload, None, str(e),
        )
    except PersistenceError as e:
        return _reply(
            audit, policy, "persistence_error", 500,
            {"error": "Failed to renew subscription"}, payload, None, str(e),
        )
    except Exception as e:
        db.rollback()
        logger.error("Unexpected subscription webhook error", exc_info=True)
        return _reply(
            audit, policy, "error", policy.unexpected,
            {"error": "Internal error"}, payload, None, str(e),
        )

    status_code = policy.not_found if result.outcome == SubscriptionOutcome.NOT_FOUND else 200
    return _reply(
        audit, policy, result.outcome.value, status_code, result.as_response(), payload, result.tenant_id
    )
