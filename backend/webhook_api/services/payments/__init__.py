"""
Payment reconciliation services.

- notifications: provider body -> PaymentNotification
- providers: authoritative re-fetch (Mercado Pago, AppMax, Pagar.me)
- reconciler: order paid transition
- subscription: tenant subscription renewal
- recheck: pending payment safety net
- side_effects / audit: best-effort follow-ups
"""

from .audit import WebhookAuditLog
from .credentials import TenantCredentials, load_tenant_credentials, platform_credentials
from .errors import (
    InvalidNotificationError,
    MissingCredentialsError,
    PaymentError,
    PersistenceError,
    ProviderUnavailableError,
)
from .notifications import (
    PaymentNotification,
    parse_appmax_notification,
    parse_mercadopago_notification,
    parse_pagarme_notification,
)
from .order_store import OrderStore
from .providers import (
    AppmaxClient,
    MercadoPagoClient,
    PagarmeClient,
    PaymentGateways,
    ProviderPayment,
    get_payment_gateways,
)
from .recheck import PendingPaymentRechecker, RecheckResult, RecheckStatus, detect_provider
from .reconciler import OrderPaymentReconciler, ReconcileOutcome, ReconcileResult
from .side_effects import (
    BlingSyncTrigger,
    SideEffectResult,
    SideEffects,
    WhatsAppNotifier,
    get_side_effects,
)
from .subscription import SubscriptionOutcome, SubscriptionReconciler, SubscriptionResult

__all__ = [
    "WebhookAuditLog",
    "TenantCredentials",
    "load_tenant_credentials",
    "platform_credentials",
    "InvalidNotificationError",
    "MissingCredentialsError",
    "PaymentError",
    "PersistenceError",
    "ProviderUnavailableError",
    "PaymentNotification",
    "parse_appmax_notification",
    "parse_mercadopago_notification",
    "parse_pagarme_notification",
    "OrderStore",
    "AppmaxClient",
    "MercadoPagoClient",
    "PagarmeClient",
    "PaymentGateways",
    "ProviderPayment",
    "get_payment_gateways",
    "PendingPaymentRechecker",
    "RecheckResult",
    "RecheckStatus",
    "detect_provider",
    "OrderPaymentReconciler",
    "ReconcileOutcome",
    "ReconcileResult",
    "BlingSyncTrigger",
    "SideEffectResult",
    "WhatsAppNotifier",
    "SideEffects",
    "get_side_effects",
    "SubscriptionOutcome",
    "SubscriptionReconciler",
    "SubscriptionResult",
]
