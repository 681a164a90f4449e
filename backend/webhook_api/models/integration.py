"""
Per-tenant integration settings.

Each row belongs to one tenant; at most one row per tenant and integration.
Only rows with is_active=True are used.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, TimestampMixin


class _TenantIntegration(TimestampMixin):
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.id"), nullable=False, unique=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class MercadoPagoIntegration(_TenantIntegration, Base):
    __tablename__ = "integration_mp"

    access_token: Mapped[Optional[str]] = mapped_column(Text)


class AppmaxIntegration(_TenantIntegration, Base):
    __tablename__ = "integration_appmax"

    access_token: Mapped[Optional[str]] = mapped_column(Text)
    environment: Mapped[str] = mapped_column(String(16), default="production", nullable=False)


class PagarmeIntegration(_TenantIntegration, Base):
    __tablename__ = "integration_pagarme"

    api_key: Mapped[Optional[str]] = mapped_column(Text)


class BlingIntegration(_TenantIntegration, Base):
    __tablename__ = "integration_bling"

    access_token: Mapped[Optional[str]] = mapped_column(Text)
    sync_orders: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class WhatsAppIntegration(_TenantIntegration, Base):
    __tablename__ = "integration_whatsapp"

    api_url: Mapped[Optional[str]] = mapped_column(Text)
