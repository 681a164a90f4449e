"""
Order payment reconciliation.

Turns a normalized provider notification into at most one unpaid -> paid
transition per order:

1. Non-payment events and notifications without a payment id stop early.
2. The payment is re-fetched from the provider (the body is never trusted).
3. Unapproved payments stop without touching the database.
4. The order is resolved within the tenant, first strategy that matches wins:
   numeric external reference, "tenant:...;orders:1,2" reference, payment
   link fragments, observation fragments.
5. Each resolved order is flipped with a conditioned UPDATE and committed.
6. Side effects run after the commit; their failures are only logged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shared.config.logging import get_logger
from webhook_api.models import Order

from .errors import PersistenceError
from .external_reference import parse_order_ids, parse_positive_int, parse_tenant_id
from .notifications import PaymentNotification
from .order_store import OrderStore
from .providers import ProviderPayment, ProviderClient
from .side_effects import SideEffectResult, SideEffects

logger = get_logger(__name__)


class ReconcileOutcome(str, Enum):
    IGNORED = "ignored"
    INVALID = "invalid"
    NOT_APPROVED = "not_approved"
    NOT_FOUND = "not_found"
    ALREADY_PAID = "already_paid"
    PAID = "paid"


@dataclass
class ReconcileResult:
    outcome: ReconcileOutcome
    payment_id: str | None = None
    order_ids: list[int] = field(default_factory=list)
    already_paid_ids: list[int] = field(default_factory=list)
    side_effects: list[SideEffectResult] = field(default_factory=list)
    payment_status: str | None = None

    def as_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.outcome.value}
        if self.payment_id:
            body["payment_id"] = self.payment_id
        if self.payment_status:
            body["payment_status"] = self.payment_status
        if self.order_ids:
            body["order_ids"] = self.order_ids
        if self.already_paid_ids:
            body["already_paid_ids"] = self.already_paid_ids
        if self.side_effects:
            body["side_effects"] = {
                r.name: "skipped" if r.skipped else ("ok" if r.ok else "failed")
                for r in self.side_effects
            }
        return body


def resolve_orders(
    store: OrderStore,
    tenant_id: str,
    payment: ProviderPayment,
    unpaid_only: bool = True,
) -> list[Order]:
    """
    Find the tenant's orders a payment belongs to. First matching strategy wins.

    Only identifiers returned by the provider are used. A reference carried
    in the notification body never selects an order.
    """
    reference = payment.external_reference

    order_id = parse_positive_int(reference)
    if order_id is not None:
        order = store.find_by_id(tenant_id, order_id, unpaid_only=unpaid_only)
        if order:
            return [order]

    order_ids = parse_order_ids(reference)
    if order_ids:
        reference_tenant = parse_tenant_id(reference)
        if reference_tenant and reference_tenant != tenant_id.lower():
            logger.warning(
                "External reference names another tenant",
                tenant_id=tenant_id,
                reference_tenant=reference_tenant,
                payment_id=payment.payment_id,
            )
        else:
            orders = store.find_by_ids(tenant_id, order_ids, unpaid_only=unpaid_only)
            if orders:
                return orders

    for fragment in payment.link_fragments:
        order = store.find_by_payment_link(tenant_id, fragment, unpaid_only=unpaid_only)
        if order:
            return [order]

    for fragment in payment.observation_fragments:
        order = store.find_by_observation(tenant_id, fragment, unpaid_only=unpaid_only)
        if order:
            return [order]

    return []


class OrderPaymentReconciler:
    """
    Reconciles payment notifications against a tenant's orders.

    gateway is a provider client (MercadoPagoClient, AppmaxClient,
    PagarmeClient) already built with the tenant's credentials.
    """

    def __init__(
        self,
        db: Session,
        gateway: ProviderClient,
        side_effects: SideEffects | None = None,
    ):
        self._db = db
        self._gateway = gateway
        self._side_effects = side_effects or SideEffects()
        self._store = OrderStore(db)

    async def reconcile(self, notification: PaymentNotification, tenant_id: str) -> ReconcileResult:
        """
        Raises:
            ProviderUnavailableError: the provider could not be queried
            PersistenceError: the paid transition could not be committed
        """
        if not notification.is_payment_event:
            logger.info(
                "Ignoring non-payment notification",
                provider=notification.provider,
                event_type=notification.event_type,
            )
            return ReconcileResult(ReconcileOutcome.IGNORED)

        if not notification.payment_id:
            return ReconcileResult(ReconcileOutcome.INVALID)

        payment = await self._gateway.fetch_payment(notification.payment_id)
        result = ReconcileResult(
            ReconcileOutcome.NOT_APPROVED,
            payment_id=payment.payment_id,
            payment_status=payment.status,
        )

        if not payment.approved:
            logger.info(
                "Payment not approved, nothing to do",
                provider=payment.provider,
                payment_id=payment.payment_id,
                status=payment.status,
            )
            return result

        orders = resolve_orders(self._store, tenant_id, payment)
        if not orders:
            already_paid = resolve_orders(self._store, tenant_id, payment, unpaid_only=False)
            if already_paid:
                result.outcome = ReconcileOutcome.ALREADY_PAID
                result.already_paid_ids = [o.id for o in already_paid]
            else:
                result.outcome = ReconcileOutcome.NOT_FOUND
            logger.info(
                "No unpaid order for approved payment",
                tenant_id=tenant_id,
                payment_id=payment.payment_id,
                external_reference=payment.external_reference,
                outcome=result.outcome.value,
            )
            return result

        paid_orders = self._mark_paid(tenant_id, orders, payment, result)

        if not paid_orders:
            result.outcome = ReconcileOutcome.ALREADY_PAID
            return result

        result.outcome = ReconcileOutcome.PAID
        for order in paid_orders:
            logger.info(
                "Order marked as paid",
                order_id=order.id,
                tenant_id=tenant_id,
                provider=payment.provider,
                payment_id=payment.payment_id,
            )
            result.side_effects.extend(await self._side_effects.run_for_paid_order(self._db, order))
        return result

    def _mark_paid(
        self,
        tenant_id: str,
        orders: list[Order],
        payment: ProviderPayment,
        result: ReconcileResult,
    ) -> list[Order]:
        paid_orders = []
        try:
            for order in orders:
                if self._store.mark_paid(
                    tenant_id, order.id, payment.payment_method, payment.installments
                ):
                    paid_orders.append(order)
                    result.order_ids.append(order.id)
                else:
                    result.already_paid_ids.append(order.id)
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.error(
                "Failed to mark orders as paid",
                tenant_id=tenant_id,
                order_ids=[o.id for o in orders],
                payment_id=payment.payment_id,
                exc_info=True,
            )
            raise PersistenceError(str(e)) from e
        return paid_orders
