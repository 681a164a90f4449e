"""
Pending payment recheck.

Safety net for lost webhooks: walks recent unpaid orders that have a payment
link, asks the provider behind the link whether the payment went through and
applies the same conditioned paid transition as the webhooks.

The provider is detected from the link itself:
- Mercado Pago: approved payments searched by "tenant:<id>;orders:<id>"
- AppMax: the order id in ".../checkout/<id>" is fetched
- Pagar.me: the last path segment is the checkout code; orders are listed by
  code, then by metadata external reference
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shared.config.constants import Providers
from shared.config.logging import get_logger
from webhook_api.models import Order

from .audit import WebhookAuditLog
from .credentials import TenantCredentials, load_tenant_credentials
from .errors import MissingCredentialsError, ProviderUnavailableError
from .order_store import OrderStore
from .providers import PaymentGateways, ProviderPayment
from .side_effects import SideEffects

logger = get_logger(__name__)

_APPMAX_CHECKOUT_RE = re.compile(r"checkout/(\d+)")


class RecheckStatus:
    MARKED_PAID = "marked_paid"
    ALREADY_PAID = "already_paid"
    NOT_PAID = "not_paid"
    SKIPPED = "skip"
    API_ERROR = "api_error"
    ERROR = "error"


@dataclass(frozen=True)
class RecheckResult:
    order_id: int
    status: str
    source: str | None = None
    reason: str | None = None
    tenant_id: str | None = None


def detect_provider(payment_link: str | None) -> str | None:
    link = (payment_link or "").lower()
    if "pagar.me" in link:
        return Providers.PAGARME
    if "mercadopago" in link:
        return Providers.MERCADOPAGO
    if "appmax" in link:
        return Providers.APPMAX
    return None


def order_reference(order: Order) -> str:
    return f"tenant:{order.tenant_id};orders:{order.id}"


class PendingPaymentRechecker:
    def __init__(
        self,
        db: Session,
        gateways: PaymentGateways | None = None,
        side_effects: SideEffects | None = None,
        audit: WebhookAuditLog | None = None,
    ):
        self._db = db
        self._gateways = gateways or PaymentGateways()
        self._side_effects = side_effects or SideEffects()
        self._audit = audit or WebhookAuditLog(db)
        self._store = OrderStore(db, exclude_cancelled=True)
        self._credentials: dict[str, TenantCredentials] = {}

    def pending_orders(self, since: datetime, tenant_id: str | None = None) -> list[Order]:
        stmt = (
            select(Order)
            .where(
                Order.is_paid.is_(False),
                Order.is_cancelled.is_(False),
                Order.payment_link.is_not(None),
                Order.created_at >= since,
            )
            .order_by(Order.id)
        )
        if tenant_id:
            stmt = stmt.where(Order.tenant_id == tenant_id)
        return list(self._db.scalars(stmt).all())

    async def run(self, since: datetime, tenant_id: str | None = None) -> list[RecheckResult]:
        """Recheck every pending order. Failures are reported per order, never raised."""
        orders = self.pending_orders(since, tenant_id)
        logger.info("Rechecking pending payments", orders=len(orders), since=since.isoformat())

        results = [await self._recheck(order) for order in orders]

        summary: dict[str, int] = {}
        for result in results:
            summary[result.status] = summary.get(result.status, 0) + 1
        self._audit.record(
            "recheck_completed",
            200,
            payload={"since": since.isoformat(), "tenant_id": tenant_id},
            tenant_id=tenant_id,
            response=summary,
        )
        return results

    async def _recheck(self, order: Order) -> RecheckResult:
        order_id, tenant_id = order.id, order.tenant_id
        provider = detect_provider(order.payment_link)
        if provider is None:
            return RecheckResult(order_id, RecheckStatus.SKIPPED, reason="unknown_gateway", tenant_id=tenant_id)

        try:
            credentials = self._tenant_credentials(tenant_id)
            client = self._gateways.for_provider(provider, credentials)
            if provider == Providers.MERCADOPAGO:
                payment = await self._find_mercadopago(client, order)
            elif provider == Providers.APPMAX:
                payment = await self._find_appmax(client, order)
            else:
                payment = await self._find_pagarme(client, order)
        except MissingCredentialsError:
            return RecheckResult(
                order_id, RecheckStatus.SKIPPED, provider, f"no_{provider}_credentials", tenant_id
            )
        except _SkipOrder as e:
            return RecheckResult(order_id, RecheckStatus.SKIPPED, provider, str(e), tenant_id)
        except ProviderUnavailableError as e:
            return RecheckResult(order_id, RecheckStatus.API_ERROR, provider, str(e), tenant_id)
        except Exception as e:
            self._db.rollback()
            logger.error(
                "Recheck failed for order", order_id=order_id, tenant_id=tenant_id, exc_info=True
            )
            return RecheckResult(order_id, RecheckStatus.ERROR, provider, str(e), tenant_id)

        if payment is None:
            return RecheckResult(order_id, RecheckStatus.NOT_PAID, provider, tenant_id=tenant_id)

        try:
            changed = self._store.mark_paid(
                tenant_id, order_id, payment.payment_method, payment.installments
            )
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.error("Recheck failed to mark order as paid", order_id=order_id, exc_info=True)
            return RecheckResult(order_id, RecheckStatus.ERROR, provider, str(e), tenant_id)

        if not changed:
            return RecheckResult(order_id, RecheckStatus.ALREADY_PAID, provider, tenant_id=tenant_id)

        logger.info(
            "Order marked as paid by recheck",
            order_id=order_id,
            tenant_id=tenant_id,
            provider=provider,
            payment_id=payment.payment_id,
        )
        await self._side_effects.run_for_paid_order(self._db, order)
        return RecheckResult(order_id, RecheckStatus.MARKED_PAID, provider, tenant_id=tenant_id)

    def _tenant_credentials(self, tenant_id: str) -> TenantCredentials:
        if tenant_id not in self._credentials:
            self._credentials[tenant_id] = load_tenant_credentials(self._db, tenant_id)
        return self._credentials[tenant_id]

    async def _find_mercadopago(self, client, order: Order) -> ProviderPayment | None:
        for reference in (order_reference(order), str(order.id)):
            approved = [p for p in await client.search_payments(reference) if p.approved]
            if approved:
                return approved[0]
        return None

    async def _find_appmax(self, client, order: Order) -> ProviderPayment | None:
        match = _APPMAX_CHECKOUT_RE.search(order.payment_link or "")
        if not match:
            raise _SkipOrder("no_appmax_order_id")
        payment = await client.get_order(match.group(1))
        return payment if payment.approved else None

    async def _find_pagarme(self, client, order: Order) -> ProviderPayment | None:
        checkout_id = (order.payment_link or "").rstrip("/").rsplit("/", 1)[-1].split("?")[0]
        if not checkout_id:
            raise _SkipOrder("no_checkout_id")
        for filters in (
            {"code": checkout_id},
            {"metadata[external_reference]": order_reference(order)},
        ):
            try:
                candidates = await client.list_orders(**filters)
            except ProviderUnavailableError as e:
                if e.status_code is None:
                    raise
                logger.info("Pagar.me order listing rejected", order_id=order.id, filters=filters)
                continue
            paid = [p for p in candidates if p.approved]
            if paid:
                return paid[0]
        return None


class _SkipOrder(Exception):
    """The order's payment link does not carry the id the provider needs."""
