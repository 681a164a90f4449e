"""
Webhook audit log. Write-only from the service's point of view.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK


class WebhookLog(Base):
    """
    One row per received provider notification, typed "<variant>_<outcome>"
    (e.g. "mercadopago_order_paid", "appmax_not_found", "subscription_error").
    """

    __tablename__ = "webhook_logs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    webhook_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[Optional[Any]] = mapped_column(JSON)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    response: Mapped[Optional[str]] = mapped_column(Text)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_webhook_logs_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<WebhookLog(id={self.id}, type='{self.webhook_type}', status={self.status_code})>"
