"""
Subscription renewal from platform payments.

A subscription payment carries "subscription:<tenant>;plan:<plan>;days:<n>"
as its external reference. An approved payment sets the tenant's
subscription_ends_at to now + plan days, stores the plan and unblocks the
tenant.

Extending a date is not idempotent, so each applied payment id is recorded
in the processed payment ledger within the same transaction. A redelivery
hits the unique constraint and is reported as DUPLICATE.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from shared.config.constants import LedgerPurpose, SubscriptionPlans
from shared.config.logging import get_logger
from shared.config.settings import settings
from webhook_api.models import ProcessedPayment, Tenant

from .errors import PersistenceError
from .external_reference import SubscriptionReference, parse_subscription_reference
from .notifications import PaymentNotification
from .providers import ProviderClient

logger = get_logger(__name__)


class SubscriptionOutcome(str, Enum):
    IGNORED = "ignored"
    INVALID = "invalid"
    NOT_APPROVED = "not_approved"
    NOT_SUBSCRIPTION = "not_subscription"
    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    RENEWED = "renewed"


@dataclass
class SubscriptionResult:
    outcome: SubscriptionOutcome
    payment_id: str | None = None
    tenant_id: str | None = None
    plan_id: str | None = None
    plan_days: int | None = None
    subscription_ends_at: datetime | None = None

    def as_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.outcome.value}
        for key in ("payment_id", "tenant_id", "plan_id", "plan_days"):
            value = getattr(self, key)
            if value is not None:
                body[key] = value
        if self.subscription_ends_at:
            body["subscription_ends_at"] = self.subscription_ends_at.isoformat()
        return body


def plan_days(reference: SubscriptionReference) -> int:
    """Known plans have fixed durations; otherwise the reference's days, then the default."""
    return (
        SubscriptionPlans.DAYS.get(reference.plan_id)
        or reference.days
        or settings.subscription_default_days
    )


class SubscriptionReconciler:
    def __init__(
        self,
        db: Session,
        gateway: ProviderClient,
        ledger_enabled: bool | None = None,
    ):
        self._db = db
        self._gateway = gateway
        self._ledger_enabled = (
            settings.subscription_payment_ledger_enabled if ledger_enabled is None else ledger_enabled
        )

    async def reconcile(self, notification: PaymentNotification) -> SubscriptionResult:
        """
        Raises:
            ProviderUnavailableError: the provider could not be queried
            PersistenceError: the renewal could not be committed
        """
        if not notification.is_payment_event:
            return SubscriptionResult(SubscriptionOutcome.IGNORED)
        if not notification.payment_id:
            return SubscriptionResult(SubscriptionOutcome.INVALID)

        payment = await self._gateway.fetch_payment(notification.payment_id)
        result = SubscriptionResult(SubscriptionOutcome.NOT_APPROVED, payment_id=payment.payment_id)
        if not payment.approved:
            logger.info(
                "Subscription payment not approved",
                payment_id=payment.payment_id,
                status=payment.status,
            )
            return result

        reference = parse_subscription_reference(payment.external_reference)
        if reference is None:
            logger.info(
                "Approved payment is not a subscription payment",
                payment_id=payment.payment_id,
                external_reference=payment.external_reference,
            )
            result.outcome = SubscriptionOutcome.NOT_SUBSCRIPTION
            return result

        days = plan_days(reference)
        result.tenant_id = reference.tenant_id
        result.plan_id = reference.plan_id
        result.plan_days = days

        tenant = self._db.get(Tenant, reference.tenant_id)
        if tenant is None:
            logger.warning("Subscription tenant not found", tenant_id=reference.tenant_id)
            result.outcome = SubscriptionOutcome.NOT_FOUND
            return result

        ends_at = datetime.now(timezone.utc) + timedelta(days=days)
        try:
            if self._ledger_enabled:
                self._db.add(
                    ProcessedPayment(
                        provider=payment.provider,
                        provider_payment_id=payment.payment_id,
                        purpose=LedgerPurpose.SUBSCRIPTION,
                        tenant_id=tenant.id,
                    )
                )
                self._db.flush()
            else:
                logger.warning(
                    "Processed payment ledger disabled, redeliveries extend the subscription again",
                    payment_id=payment.payment_id,
                )

            tenant.subscription_ends_at = ends_at
            tenant.plan_type = reference.plan_id
            tenant.is_blocked = False
            self._db.commit()
        except IntegrityError:
            self._db.rollback()
            logger.info(
                "Subscription payment already applied",
                payment_id=payment.payment_id,
                tenant_id=reference.tenant_id,
            )
            result.outcome = SubscriptionOutcome.DUPLICATE
            return result
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.error(
                "Failed to renew subscription",
                tenant_id=reference.tenant_id,
                payment_id=payment.payment_id,
                exc_info=True,
            )
            raise PersistenceError(str(e)) from e

        logger.info(
            "Subscription renewed",
            tenant_id=tenant.id,
            plan=reference.plan_id,
            days=days,
            ends_at=ends_at.isoformat(),
        )
        result.outcome = SubscriptionOutcome.RENEWED
        result.subscription_ends_at = ends_at
        return result
