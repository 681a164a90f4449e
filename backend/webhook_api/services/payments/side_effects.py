"""
Best-effort side effects of a paid order.

WhatsApp confirmation and Bling ERP sync run after the paid transition has
been committed. Each returns a SideEffectResult; nothing here raises, so a
failing notifier can never change the webhook response or undo the payment.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from shared.config.logging import get_logger, mask_phone
from shared.config.settings import settings
from webhook_api.models import BlingIntegration, Order, WhatsAppIntegration

logger = get_logger(__name__)


@dataclass(frozen=True)
class SideEffectResult:
    name: str
    ok: bool
    skipped: bool = False
    error: str | None = None

    @classmethod
    def skip(cls, name: str, reason: str) -> "SideEffectResult":
        return cls(name=name, ok=True, skipped=True, error=reason)

    @classmethod
    def failed(cls, name: str, error: str) -> "SideEffectResult":
        return cls(name=name, ok=False, error=error)


class _HttpSideEffect:
    name = ""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        self._transport = transport
        self._timeout = timeout if timeout is not None else settings.side_effect_timeout_seconds

    async def _post(self, url: str, payload: dict, headers: dict | None = None) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(url, json=payload, headers=headers)
        response.raise_for_status()
        return response


class WhatsAppNotifier(_HttpSideEffect):
    """Asks the tenant's WhatsApp server to send the paid-order template."""

    name = "whatsapp"

    async def send_paid_order(self, db: Session, order: Order) -> SideEffectResult:
        if not settings.paid_order_whatsapp_enabled:
            return SideEffectResult.skip(self.name, "disabled")
        if not order.customer_phone:
            return SideEffectResult.skip(self.name, "order has no customer phone")

        try:
            integration = db.scalar(
                select(WhatsAppIntegration).where(
                    WhatsAppIntegration.tenant_id == order.tenant_id,
                    WhatsAppIntegration.is_active.is_(True),
                )
            )
            server_url = (integration.api_url if integration else None) or settings.whatsapp_server_url
            await self._post(
                f"{server_url.rstrip('/')}/send",
                {"number": order.customer_phone, "order_id": order.id},
            )
        except Exception as e:
            logger.warning(
                "Paid order WhatsApp confirmation failed",
                order_id=order.id,
                phone=mask_phone(order.customer_phone),
                error=str(e),
            )
            return SideEffectResult.failed(self.name, str(e))

        logger.info(
            "Paid order WhatsApp confirmation sent",
            order_id=order.id,
            phone=mask_phone(order.customer_phone),
        )
        return SideEffectResult(name=self.name, ok=True)


class BlingSyncTrigger(_HttpSideEffect):
    """Pushes a paid order to the Bling ERP sync endpoint."""

    name = "bling"

    async def sync_order(self, db: Session, order: Order) -> SideEffectResult:
        if not settings.bling_sync_url:
            return SideEffectResult.skip(self.name, "sync endpoint not configured")

        try:
            integration = db.scalar(
                select(BlingIntegration).where(
                    BlingIntegration.tenant_id == order.tenant_id,
                    BlingIntegration.is_active.is_(True),
                )
            )
            if not integration or not integration.sync_orders or not integration.access_token:
                return SideEffectResult.skip(self.name, "order sync not enabled for tenant")

            headers = {}
            if settings.bling_sync_token:
                headers["Authorization"] = f"Bearer {settings.bling_sync_token}"
            await self._post(
                settings.bling_sync_url,
                {"action": "send_order", "order_id": order.id, "tenant_id": order.tenant_id},
                headers=headers,
            )
        except Exception as e:
            logger.warning("Bling order sync failed", order_id=order.id, error=str(e))
            return SideEffectResult.failed(self.name, str(e))

        logger.info("Bling order sync triggered", order_id=order.id, tenant_id=order.tenant_id)
        return SideEffectResult(name=self.name, ok=True)


class SideEffects:
    """Runs every paid-order side effect and collects the results."""

    def __init__(
        self,
        whatsapp: WhatsAppNotifier | None = None,
        bling: BlingSyncTrigger | None = None,
    ):
        self.whatsapp = whatsapp or WhatsAppNotifier()
        self.bling = bling or BlingSyncTrigger()

    async def run_for_paid_order(self, db: Session, order: Order) -> list[SideEffectResult]:
        results = []
        for name, effect in (
            (self.whatsapp.name, self.whatsapp.send_paid_order),
            (self.bling.name, self.bling.sync_order),
        ):
            try:
                results.append(await effect(db, order))
            except Exception as e:
                logger.error("Side effect raised", side_effect=name, order_id=order.id, error=str(e))
                results.append(SideEffectResult.failed(name, str(e)))
        return results


def get_side_effects() -> SideEffects:
    """FastAPI dependency; overridden in tests."""
    return SideEffects()
