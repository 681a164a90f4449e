"""
Order Store: tenant-scoped order lookups and the paid transition.

Every query filters by tenant_id. Lookups default to unpaid orders only;
mark_paid is a single conditioned UPDATE so concurrent redeliveries of the
same payment flip is_paid at most once.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from shared.config.logging import get_logger
from webhook_api.models import Order

logger = get_logger(__name__)


def _fragment_pattern(fragment: str) -> re.Pattern[str]:
    """fragment as a whole token: no letter or digit directly before or after it."""
    return re.compile(rf"(?<![0-9a-z]){re.escape(fragment)}(?![0-9a-z])", re.IGNORECASE)


class OrderStore:
    """
    Data access for orders during payment reconciliation.

    Webhook variants match cancelled orders too (a late payment for a
    cancelled order is still recorded); the recheck job passes
    exclude_cancelled=True.
    """

    def __init__(self, db: Session, exclude_cancelled: bool = False):
        self._db = db
        self._exclude_cancelled = exclude_cancelled

    def _scoped(self, tenant_id: str, unpaid_only: bool):
        stmt = select(Order).where(Order.tenant_id == tenant_id)
        if unpaid_only:
            stmt = stmt.where(Order.is_paid.is_(False))
        if self._exclude_cancelled:
            stmt = stmt.where(Order.is_cancelled.is_(False))
        return stmt

    def find_by_id(self, tenant_id: str, order_id: int, unpaid_only: bool = True) -> Order | None:
        return self._db.scalar(self._scoped(tenant_id, unpaid_only).where(Order.id == order_id))

    def find_by_ids(
        self, tenant_id: str, order_ids: Iterable[int], unpaid_only: bool = True
    ) -> list[Order]:
        ids = list(dict.fromkeys(order_ids))
        if not ids:
            return []
        return list(
            self._db.scalars(
                self._scoped(tenant_id, unpaid_only).where(Order.id.in_(ids)).order_by(Order.id)
            ).all()
        )

    def _find_by_fragment(
        self, column, tenant_id: str, fragment: str, unpaid_only: bool
    ) -> Order | None:
        if not fragment:
            return None
        # LIKE narrows the candidates, the regex rejects "55" inside "5501"
        pattern = _fragment_pattern(fragment)
        stmt = (
            self._scoped(tenant_id, unpaid_only)
            .where(column.icontains(fragment, autoescape=True))
            .order_by(Order.id)
        )
        for order in self._db.scalars(stmt):
            if pattern.search(getattr(order, column.key) or ""):
                return order
        return None

    def find_by_payment_link(
        self, tenant_id: str, fragment: str, unpaid_only: bool = True
    ) -> Order | None:
        """First order (lowest id) whose payment_link contains fragment as a whole token."""
        return self._find_by_fragment(Order.payment_link, tenant_id, fragment, unpaid_only)

    def find_by_observation(
        self, tenant_id: str, fragment: str, unpaid_only: bool = True
    ) -> Order | None:
        return self._find_by_fragment(Order.observation, tenant_id, fragment, unpaid_only)

    def mark_paid(
        self,
        tenant_id: str,
        order_id: int,
        payment_method: str | None = None,
        installments: int | None = None,
    ) -> bool:
        """
        Flip is_paid for one order. Returns True iff this call changed the row.

        Does not commit; the caller owns the transaction.
        """
        values: dict = {"is_paid": True, "updated_at": func.now()}
        if payment_method:
            values["payment_method"] = payment_method
        if installments:
            values["payment_installments"] = installments

        result = self._db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.tenant_id == tenant_id,
                Order.is_paid.is_(False),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        changed = result.rowcount == 1
        if not changed:
            logger.info("Order already paid, update skipped", order_id=order_id, tenant_id=tenant_id)
        return changed
