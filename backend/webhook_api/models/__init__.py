"""
SQLAlchemy ORM Models Package.

- base: Base class, TimestampMixin, BigIntPK
- tenant: Tenant
- order: Order
- integration: per-tenant provider and notifier settings
- webhook_log: WebhookLog (audit)
- processed_payment: ProcessedPayment (ledger)
"""

from .base import Base, BigIntPK, TimestampMixin
from .tenant import Tenant
from .order import Order
from .integration import (
    MercadoPagoIntegration,
    AppmaxIntegration,
    PagarmeIntegration,
    BlingIntegration,
    WhatsAppIntegration,
)
from .webhook_log import WebhookLog
from .processed_payment import ProcessedPayment

__all__ = [
    "Base",
    "BigIntPK",
    "TimestampMixin",
    "Tenant",
    "Order",
    "MercadoPagoIntegration",
    "AppmaxIntegration",
    "PagarmeIntegration",
    "BlingIntegration",
    "WhatsAppIntegration",
    "WebhookLog",
    "ProcessedPayment",
]
