"""
Tenant credential loading.

Provider credentials are read once per request from the tenant's active
integration rows and passed explicitly to the provider clients.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from shared.config.logging import get_logger, mask_token
from shared.config.settings import settings
from webhook_api.models import AppmaxIntegration, MercadoPagoIntegration, PagarmeIntegration

logger = get_logger(__name__)


@dataclass(frozen=True)
class TenantCredentials:
    tenant_id: str | None
    mercadopago_access_token: str | None = None
    appmax_access_token: str | None = None
    appmax_environment: str = "production"
    pagarme_api_key: str | None = None

    def __repr__(self) -> str:
        # Tokens must never reach logs through a repr
        return (
            f"<TenantCredentials(tenant_id={self.tenant_id!r}, "
            f"mercadopago={bool(self.mercadopago_access_token)}, "
            f"appmax={bool(self.appmax_access_token)}, "
            f"pagarme={bool(self.pagarme_api_key)})>"
        )


def _active(db: Session, model, tenant_id: str):
    return db.scalar(
        select(model).where(model.tenant_id == tenant_id, model.is_active.is_(True))
    )


def load_tenant_credentials(db: Session, tenant_id: str) -> TenantCredentials:
    """
    Build the credentials of a tenant from its active integrations.

    The Mercado Pago token falls back to the platform token when the tenant has
    no active integration of its own.
    """
    mp = _active(db, MercadoPagoIntegration, tenant_id)
    appmax = _active(db, AppmaxIntegration, tenant_id)
    pagarme = _active(db, PagarmeIntegration, tenant_id)

    mp_token = mp.access_token if mp and mp.access_token else None
    if mp_token is None and settings.mercadopago_access_token:
        logger.debug(
            "Using platform Mercado Pago token",
            tenant_id=tenant_id,
            token=mask_token(settings.mercadopago_access_token),
        )
        mp_token = settings.mercadopago_access_token

    return TenantCredentials(
        tenant_id=tenant_id,
        mercadopago_access_token=mp_token,
        appmax_access_token=appmax.access_token if appmax else None,
        appmax_environment=(appmax.environment if appmax else None) or "production",
        pagarme_api_key=pagarme.api_key if pagarme else None,
    )


def platform_credentials() -> TenantCredentials:
    """Credentials of the platform itself (subscription payments)."""
    return TenantCredentials(
        tenant_id=None,
        mercadopago_access_token=settings.mercadopago_access_token or None,
    )
