"""
Centralized constants for the payment webhook service.

Usage:
    from shared.config.constants import Providers, MERCADOPAGO_APPROVED_STATUSES

    if payment["status"] in MERCADOPAGO_APPROVED_STATUSES:
        ...
"""

from typing import Final


# =============================================================================
# Payment Providers
# =============================================================================


class Providers:
    """Payment provider identifiers used in logs, ledgers and gateway detection."""

    MERCADOPAGO: Final[str] = "mercadopago"
    APPMAX: Final[str] = "appmax"
    PAGARME: Final[str] = "pagarme"


# =============================================================================
# Provider Status Vocabularies
# =============================================================================

MERCADOPAGO_APPROVED_STATUSES: Final[frozenset[str]] = frozenset({"approved"})
APPMAX_APPROVED_STATUSES: Final[frozenset[str]] = frozenset({"approved", "paid", "captured"})
PAGARME_APPROVED_STATUSES: Final[frozenset[str]] = frozenset({"paid"})

# Event names that announce a confirmed payment in push notifications
APPMAX_PAYMENT_EVENTS: Final[frozenset[str]] = frozenset(
    {"payment.approved", "order.paid", "payment.captured"}
)
PAGARME_PAYMENT_EVENTS: Final[frozenset[str]] = frozenset(
    {"charge.paid", "order.paid", "transaction.paid", "payment.paid"}
)


# =============================================================================
# Mercado Pago payment method normalization
# =============================================================================

MERCADOPAGO_PAYMENT_METHOD_ALIASES: Final[dict[str, str]] = {
    "account_money": "pix",
    "bolbradesco": "boleto",
    "pec": "boleto",
}


# =============================================================================
# Subscription Plans
# =============================================================================


class SubscriptionPlans:
    """Plan id -> days of access granted per payment."""

    BASIC: Final[str] = "basic"
    PRO: Final[str] = "pro"
    ENTERPRISE: Final[str] = "enterprise"

    DAYS: Final[dict[str, int]] = {BASIC: 30, PRO: 185, ENTERPRISE: 365}


# =============================================================================
# Processed payment ledger purposes
# =============================================================================


class LedgerPurpose:
    SUBSCRIPTION: Final[str] = "subscription"


# =============================================================================
# Limits
# =============================================================================


class Limits:
    """Application limits."""

    # Shorter fragments would match unrelated payment links
    MIN_LINK_FRAGMENT_LENGTH: Final[int] = 6
    # Audit payloads larger than this are truncated before persisting
    MAX_AUDIT_RESPONSE_LENGTH: Final[int] = 2000
    WEBHOOK_LOGS_DEFAULT_LIMIT: Final[int] = 20
