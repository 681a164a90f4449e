"""
Tests for the pending payment recheck job.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from conftest import OTHER_TENANT_ID, TENANT_ID, approved_mp_payment
from webhook_api.models import Order, Tenant, WebhookLog
from webhook_api.services.payments import (
    PendingPaymentRechecker,
    RecheckStatus,
    WebhookAuditLog,
    detect_provider,
)
from webhook_api.services.payments import recheck as recheck_module
from webhook_api.services.payments.credentials import load_tenant_credentials


def since_last_week() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=7)


@pytest.fixture
def rechecker(db_session, gateways, side_effects):
    return PendingPaymentRechecker(db_session, gateways, side_effects, WebhookAuditLog(db_session))


class TestDetectProvider:

    @pytest.mark.parametrize("link,expected", [
        ("https://www.mercadopago.com.br/checkout/v1/redirect?pref_id=123-abc", "mercadopago"),
        ("https://appmax.com.br/checkout/98765", "appmax"),
        ("https://payment-link.pagar.me/pl_abc123", "pagarme"),
        ("https://example.com/pay", None),
        (None, None),
    ])
    def test_detect(self, link, expected):
        assert detect_provider(link) == expected


class TestPendingPaymentRechecker:

    @pytest.mark.asyncio
    async def test_mercadopago_search_by_structured_reference(
        self, db_session, seed_tenant, make_order, provider_api, side_effects, rechecker
    ):
        make_order(42, payment_link="https://www.mercadopago.com.br/checkout/v1/redirect?pref_id=1-abcdef")
        reference = f"tenant:{TENANT_ID};orders:42"
        provider_api.mp_search[reference] = [approved_mp_payment("999", reference)]

        results = await rechecker.run(since_last_week())

        assert [(r.order_id, r.status, r.source) for r in results] == [(42, RecheckStatus.MARKED_PAID, "mercadopago")]
        db_session.expire_all()
        assert db_session.get(Order, 42).is_paid
        assert side_effects.paid_order_ids == [42]

    @pytest.mark.asyncio
    async def test_mercadopago_falls_back_to_plain_order_id(
        self, db_session, seed_tenant, make_order, provider_api, rechecker
    ):
        make_order(42, payment_link="https://mercadopago.com.br/x")
        provider_api.mp_search["42"] = [approved_mp_payment("999", "42")]

        results = await rechecker.run(since_last_week())

        assert results[0].status == RecheckStatus.MARKED_PAID

    @pytest.mark.asyncio
    async def test_mercadopago_unpaid(self, db_session, seed_tenant, make_order, provider_api, rechecker):
        make_order(42, payment_link="https://mercadopago.com.br/x")

        results = await rechecker.run(since_last_week())

        assert results[0].status == RecheckStatus.NOT_PAID
        assert len(provider_api.requests) == 2

    @pytest.mark.asyncio
    async def test_appmax_checkout_id(self, db_session, seed_tenant, make_order, provider_api, rechecker):
        make_order(42, payment_link="https://appmax.com.br/checkout/98765")
        provider_api.appmax_orders["98765"] = {"id": 98765, "status": "approved"}

        results = await rechecker.run(since_last_week())

        assert results[0].status == RecheckStatus.MARKED_PAID
        assert provider_api.requests[0].url.path.endswith("/order/98765")

    @pytest.mark.asyncio
    async def test_appmax_link_without_id_is_skipped(self, db_session, seed_tenant, make_order, rechecker):
        make_order(42, payment_link="https://appmax.com.br/loja")

        results = await rechecker.run(since_last_week())

        assert results[0].status == RecheckStatus.SKIPPED
        assert results[0].reason == "no_appmax_order_id"

    @pytest.mark.asyncio
    async def test_pagarme_listed_by_code(self, db_session, seed_tenant, make_order, provider_api, rechecker):
        make_order(42, payment_link="https://payment-link.pagar.me/pl_abc123")
        provider_api.pagarme_lists["pl_abc123"] = [{"id": "or_1", "status": "paid", "code": "pl_abc123"}]

        results = await rechecker.run(since_last_week())

        assert results[0].status == RecheckStatus.MARKED_PAID

    @pytest.mark.asyncio
    async def test_pagarme_listed_by_metadata(self, db_session, seed_tenant, make_order, provider_api, rechecker):
        make_order(42, payment_link="https://payment-link.pagar.me/pl_abc123")
        provider_api.pagarme_lists[f"tenant:{TENANT_ID};orders:42"] = [{"id": "or_1", "status": "paid"}]

        results = await rechecker.run(since_last_week())

        assert results[0].status == RecheckStatus.MARKED_PAID
        assert len(provider_api.requests) == 2

    @pytest.mark.asyncio
    async def test_unknown_gateway_is_skipped(self, db_session, seed_tenant, make_order, provider_api, rechecker):
        make_order(42, payment_link="https://example.com/pay/42")

        results = await rechecker.run(since_last_week())

        assert results[0].status == RecheckStatus.SKIPPED
        assert results[0].reason == "unknown_gateway"
        assert provider_api.requests == []

    @pytest.mark.asyncio
    async def test_missing_credentials_are_skipped(self, db_session, make_order, rechecker):
        db_session.add(Tenant(id=TENANT_ID, name="Sem integração"))
        db_session.commit()
        make_order(42, payment_link="https://appmax.com.br/checkout/98765")

        results = await rechecker.run(since_last_week())

        assert results[0].status == RecheckStatus.SKIPPED
        assert results[0].reason == "no_appmax_credentials"

    @pytest.mark.asyncio
    async def test_provider_error_is_reported(self, db_session, seed_tenant, make_order, provider_api, rechecker):
        make_order(42, payment_link="https://appmax.com.br/checkout/98765")
        provider_api.fail_with = 500

        results = await rechecker.run(since_last_week())

        assert results[0].status == RecheckStatus.API_ERROR
        db_session.expire_all()
        assert not db_session.get(Order, 42).is_paid

    @pytest.mark.asyncio
    async def test_selection(self, db_session, seed_tenant, other_tenant, make_order, rechecker):
        make_order(1, payment_link="https://example.com/1")
        make_order(2, payment_link="https://example.com/2", is_paid=True)
        make_order(3, payment_link="https://example.com/3", is_cancelled=True)
        make_order(4)
        make_order(5, tenant_id=other_tenant.id, payment_link="https://example.com/5")

        assert [o.id for o in rechecker.pending_orders(since_last_week())] == [1, 5]
        assert [o.id for o in rechecker.pending_orders(since_last_week(), TENANT_ID)] == [1]
        future = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(days=1)
        assert rechecker.pending_orders(future) == []

    @pytest.mark.asyncio
    async def test_run_is_audited(self, db_session, seed_tenant, make_order, rechecker):
        make_order(1, payment_link="https://example.com/1")

        await rechecker.run(since_last_week(), tenant_id=TENANT_ID)

        log = db_session.scalars(select(WebhookLog)).one()
        assert log.webhook_type == "recheck_completed"
        assert log.tenant_id == TENANT_ID
        assert "skip" in log.response

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_stop_the_run(
        self, db_session, seed_tenant, other_tenant, make_order, provider_api, rechecker, monkeypatch
    ):
        make_order(1, payment_link="https://mercadopago.com.br/1")
        make_order(5, tenant_id=OTHER_TENANT_ID, payment_link="https://mercadopago.com.br/5")
        reference = f"tenant:{OTHER_TENANT_ID};orders:5"
        provider_api.mp_search[reference] = [approved_mp_payment("999", reference)]

        def flaky_credentials(db, tenant_id):
            if tenant_id == TENANT_ID:
                raise OperationalError("SELECT", {}, Exception("connection lost"))
            return load_tenant_credentials(db, tenant_id)

        monkeypatch.setattr(recheck_module, "load_tenant_credentials", flaky_credentials)

        results = await rechecker.run(since_last_week())

        assert [(r.order_id, r.status) for r in results] == [
            (1, RecheckStatus.ERROR),
            (5, RecheckStatus.MARKED_PAID),
        ]
        assert db_session.scalars(select(WebhookLog)).one().webhook_type == "recheck_completed"
