"""
Order Model.

Orders are created by the checkout flow with is_paid=False. Payment
reconciliation is the only writer of is_paid=True.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, TimestampMixin


class Order(TimestampMixin, Base):
    """
    A customer order belonging to one tenant.

    payment_link holds the checkout URL generated for the order; it embeds the
    provider's preference/order id and is used as a fallback lookup key.
    observation is free text where some checkouts record "order_id: <id>".
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.id"), nullable=False, index=True
    )
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payment_link: Mapped[Optional[str]] = mapped_column(Text)
    observation: Mapped[Optional[str]] = mapped_column(Text)
    total_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    customer_phone: Mapped[Optional[str]] = mapped_column(String(32))
    payment_method: Mapped[Optional[str]] = mapped_column(String(32))
    payment_installments: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        Index("ix_orders_tenant_is_paid", "tenant_id", "is_paid"),
    )

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, tenant_id='{self.tenant_id}', is_paid={self.is_paid})>"
