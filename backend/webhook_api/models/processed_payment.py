"""
Processed payment ledger.

A provider payment id can be applied at most once per purpose. The unique
constraint is what makes concurrent redeliveries safe: the second insert fails.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK


class ProcessedPayment(Base):
    """Marks a provider payment as already applied for a purpose (e.g. subscription)."""

    __tablename__ = "processed_payments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    provider_payment_id: Mapped[str] = mapped_column(String(128), nullable=False)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "provider", "provider_payment_id", "purpose",
            name="uq_processed_payment_provider_id_purpose",
        ),
    )
