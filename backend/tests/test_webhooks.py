"""
Tests for the payment webhook endpoints: per-variant status codes, audit
rows and CORS headers.
"""

import hashlib
import hmac
import time

import pytest
from sqlalchemy import select

from conftest import TENANT_ID, RecordingSideEffects, approved_mp_payment
from shared.config.settings import settings
from webhook_api.models import Order, Tenant, WebhookLog
from webhook_api.services.payments import get_side_effects
from webhook_api.services.payments.circuit_breaker import CircuitState, mercadopago_breaker


MP_URL = f"/webhooks/mercadopago?tenant_id={TENANT_ID}"
PAYMENT_BODY = {"type": "payment", "data": {"id": "999"}}


def audit_types(db_session):
    db_session.expire_all()
    return [row.webhook_type for row in db_session.scalars(select(WebhookLog).order_by(WebhookLog.id))]


def is_paid(db_session, order_id):
    db_session.expire_all()
    return db_session.get(Order, order_id).is_paid


class TestMercadoPagoOrderWebhook:
    """POST /webhooks/mercadopago"""

    def test_end_to_end_payment_and_redelivery(self, client, db_session, seed_tenant, make_order, provider_api, side_effects):
        """Order 42 is paid once; the identical redelivery is acknowledged without changes."""
        make_order(42)
        provider_api.mp_payments["999"] = approved_mp_payment("999", "42")

        first = client.post(MP_URL, json=PAYMENT_BODY)
        second = client.post(MP_URL, json=PAYMENT_BODY)

        assert first.status_code == 200
        assert first.json()["status"] == "paid"
        assert first.json()["order_ids"] == [42]
        assert second.status_code == 200
        assert second.json()["status"] == "already_paid"
        assert is_paid(db_session, 42)
        assert side_effects.paid_order_ids == [42]
        assert audit_types(db_session) == ["mercadopago_order_paid", "mercadopago_order_already_paid"]

    def test_unknown_order_answers_404_with_one_audit_row(self, client, db_session, seed_tenant, make_order, provider_api):
        make_order(42)
        provider_api.mp_payments["999"] = approved_mp_payment("999", "77")

        response = client.post(MP_URL, json=PAYMENT_BODY)

        assert response.status_code == 404
        assert not is_paid(db_session, 42)
        assert audit_types(db_session) == ["mercadopago_order_not_found"]
        log = db_session.scalars(select(WebhookLog)).one()
        assert log.tenant_id == TENANT_ID
        assert log.payload == PAYMENT_BODY

    def test_merchant_order_is_acknowledged(self, client, db_session, seed_tenant, provider_api):
        response = client.post(MP_URL, json={"topic": "merchant_order", "resource": "https://x/merchant_orders/1"})

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert provider_api.requests == []
        assert audit_types(db_session) == ["mercadopago_order_ignored"]

    def test_pending_payment_is_acknowledged(self, client, db_session, seed_tenant, make_order, provider_api):
        make_order(42)
        provider_api.mp_payments["999"] = approved_mp_payment("999", "42", status="pending")

        response = client.post(MP_URL, json=PAYMENT_BODY)

        assert response.status_code == 200
        assert response.json()["status"] == "not_approved"
        assert not is_paid(db_session, 42)

    @pytest.mark.parametrize("kwargs", [
        {"content": "{not json", "headers": {"Content-Type": "application/json"}},
        {"json": {"type": "payment", "data": {}}},
        {"json": ["payment"]},
    ])
    def test_malformed_input_answers_400(self, client, db_session, seed_tenant, kwargs):
        response = client.post(MP_URL, **kwargs)

        assert response.status_code == 400
        assert audit_types(db_session) == ["mercadopago_order_invalid"]

    def test_missing_tenant_answers_400(self, client, db_session, seed_tenant):
        response = client.post("/webhooks/mercadopago", json=PAYMENT_BODY)
        assert response.status_code == 400

    def test_provider_failure_answers_502(self, client, db_session, seed_tenant, make_order, provider_api):
        make_order(42)
        provider_api.fail_with = 500

        response = client.post(MP_URL, json=PAYMENT_BODY)

        assert response.status_code == 502
        assert not is_paid(db_session, 42)
        log = db_session.scalars(select(WebhookLog)).one()
        assert log.webhook_type == "mercadopago_order_provider_error"
        assert "HTTP 500" in log.error_message

    def test_open_circuit_answers_503(self, client, db_session, seed_tenant, provider_api):
        mercadopago_breaker._state = CircuitState.OPEN
        mercadopago_breaker._last_failure_time = time.time()

        response = client.post(MP_URL, json=PAYMENT_BODY)

        assert response.status_code == 503
        assert provider_api.requests == []

    def test_missing_credentials_answers_500(self, client, db_session):
        db_session.add(Tenant(id=TENANT_ID, name="Sem integração"))
        db_session.commit()

        response = client.post(MP_URL, json=PAYMENT_BODY)

        assert response.status_code == 500
        assert audit_types(db_session) == ["mercadopago_order_missing_credentials"]

    def test_side_effect_failure_does_not_change_response(self, client, db_session, seed_tenant, make_order, provider_api):
        from webhook_api.main import app

        app.dependency_overrides[get_side_effects] = lambda: RecordingSideEffects(fail=True)
        make_order(42)
        provider_api.mp_payments["999"] = approved_mp_payment("999", "42")

        response = client.post(MP_URL, json=PAYMENT_BODY)

        assert response.status_code == 200
        assert response.json()["side_effects"] == {"whatsapp": "failed"}
        assert is_paid(db_session, 42)


class TestMercadoPagoSignature:
    SECRET = "whsec-test"

    @pytest.fixture(autouse=True)
    def webhook_secret(self, monkeypatch):
        monkeypatch.setattr(settings, "mercadopago_webhook_secret", self.SECRET)

    def sign(self, data_id, request_id, ts="1700000000"):
        manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
        digest = hmac.new(self.SECRET.encode(), manifest.encode(), hashlib.sha256).hexdigest()
        return f"ts={ts},v1={digest}"

    def test_missing_signature_is_rejected(self, client, db_session, seed_tenant, provider_api):
        response = client.post(MP_URL, json=PAYMENT_BODY)

        assert response.status_code == 401
        assert provider_api.requests == []
        assert audit_types(db_session) == ["mercadopago_order_unauthorized"]

    def test_valid_signature_is_processed(self, client, db_session, seed_tenant, make_order, provider_api):
        make_order(42)
        provider_api.mp_payments["999"] = approved_mp_payment("999", "42")

        response = client.post(
            MP_URL,
            json=PAYMENT_BODY,
            headers={"x-signature": self.sign("999", "req-1"), "x-request-id": "req-1"},
        )

        assert response.status_code == 200
        assert is_paid(db_session, 42)


class TestMercadoPagoReturn:
    """GET /webhooks/mercadopago/return"""

    def test_uses_provider_status_not_query_status(self, client, db_session, seed_tenant, make_order, provider_api):
        make_order(42)
        provider_api.mp_payments["999"] = approved_mp_payment("999", "42", status="rejected")

        response = client.get(
            "/webhooks/mercadopago/return",
            params={"payment_id": "999", "tenant_id": TENANT_ID, "status": "approved"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "not_approved"
        assert not is_paid(db_session, 42)

    def test_collection_id_alias(self, client, db_session, seed_tenant, make_order, provider_api):
        make_order(42)
        provider_api.mp_payments["999"] = approved_mp_payment("999", "42")

        response = client.get(
            "/webhooks/mercadopago/return",
            params={"collection_id": "999", "tenant_id": TENANT_ID},
        )

        assert response.status_code == 200
        assert is_paid(db_session, 42)
        assert audit_types(db_session) == ["mercadopago_return_paid"]

    def test_missing_parameters(self, client, db_session):
        response = client.get("/webhooks/mercadopago/return", params={"payment_id": "999"})
        assert response.status_code == 400


class TestAppmaxWebhook:
    """POST /webhooks/appmax: everything but provider/database failures answers 200."""

    URL = f"/webhooks/appmax?tenant_id={TENANT_ID}"

    def test_paid_order_resolved_by_observation(self, client, db_session, seed_tenant, make_order, provider_api):
        make_order(42, observation="Pedido Appmax order_id: 5501")
        provider_api.appmax_orders["5501"] = {"id": 5501, "status": "approved"}

        response = client.post(self.URL, json={"event": "order.paid", "data": {"order_id": 5501}})

        assert response.status_code == 200
        assert response.json()["status"] == "paid"
        assert is_paid(db_session, 42)
        assert "access-token=appmax-token" in str(provider_api.requests[0].url)

    def test_provider_reference_resolves_order(self, client, db_session, seed_tenant, make_order, provider_api):
        make_order(42)
        provider_api.appmax_orders["5501"] = {"id": 5501, "status": "paid", "external_reference": "42"}

        response = client.post(self.URL, json={"event": "order.paid", "data": {"id": 5501}})

        assert response.status_code == 200
        assert response.json()["order_ids"] == [42]
        assert is_paid(db_session, 42)

    def test_body_reference_never_selects_an_order(self, client, db_session, seed_tenant, make_order, provider_api):
        """One approved AppMax order replayed with different references pays nothing."""
        make_order(42)
        make_order(43)
        provider_api.appmax_orders["5501"] = {"id": 5501, "status": "paid"}

        for reference in ("42", "43"):
            response = client.post(
                self.URL,
                json={"event": "order.paid", "data": {"id": 5501}, "external_reference": reference},
            )
            assert response.status_code == 200
            assert response.json()["status"] == "not_found"

        assert not is_paid(db_session, 42)
        assert not is_paid(db_session, 43)

    def test_shorter_order_id_does_not_match_longer_one(self, client, db_session, seed_tenant, make_order, provider_api):
        make_order(7, observation="Pedido Appmax order_id: 5501")
        provider_api.appmax_orders["55"] = {"id": 55, "status": "approved"}

        response = client.post(self.URL, json={"event": "order.paid", "data": {"order_id": 55}})

        assert response.status_code == 200
        assert response.json()["status"] == "not_found"
        assert not is_paid(db_session, 7)

    @pytest.mark.parametrize("url,kwargs", [
        (URL, {"content": "garbage", "headers": {"Content-Type": "application/json"}}),
        (URL, {"json": {"event": "order.paid", "data": {}}}),
        ("/webhooks/appmax", {"json": {"event": "order.paid", "data": {"order_id": 1}}}),
    ])
    def test_malformed_input_answers_200(self, client, db_session, seed_tenant, url, kwargs):
        response = client.post(url, **kwargs)

        assert response.status_code == 200
        assert audit_types(db_session) == ["appmax_invalid"]

    def test_unknown_order_answers_200(self, client, db_session, seed_tenant, provider_api):
        provider_api.appmax_orders["5501"] = {"id": 5501, "status": "approved"}

        response = client.post(self.URL, json={"event": "order.paid", "data": {"order_id": 5501}})

        assert response.status_code == 200
        assert response.json()["status"] == "not_found"

    def test_missing_credentials_answers_200(self, client, db_session):
        db_session.add(Tenant(id=TENANT_ID, name="Sem integração"))
        db_session.commit()

        response = client.post(self.URL, json={"event": "order.paid", "data": {"order_id": 5501}})

        assert response.status_code == 200
        assert audit_types(db_session) == ["appmax_missing_credentials"]

    def test_provider_failure_answers_502(self, client, db_session, seed_tenant, provider_api):
        provider_api.fail_with = 503

        response = client.post(self.URL, json={"event": "order.paid", "data": {"order_id": 5501}})

        assert response.status_code == 502


class TestPagarmeWebhook:
    URL = f"/webhooks/pagarme?tenant_id={TENANT_ID}"

    def test_charge_paid(self, client, db_session, seed_tenant, make_order, provider_api):
        make_order(42)
        provider_api.pagarme_resources["ch_abc123"] = {
            "id": "ch_abc123",
            "status": "paid",
            "amount": 15000,
            "payment_method": "credit_card",
            "metadata": {"external_reference": f"tenant:{TENANT_ID};orders:42"},
        }

        response = client.post(self.URL, json={"type": "charge.paid", "data": {"id": "ch_abc123"}})

        assert response.status_code == 200
        assert is_paid(db_session, 42)
        assert provider_api.requests[0].url.path == "/core/v5/charges/ch_abc123"
        assert provider_api.requests[0].headers["authorization"].startswith("Basic ")

    def test_order_id_uses_orders_endpoint(self, client, db_session, seed_tenant, provider_api):
        provider_api.pagarme_resources["or_xyz789"] = {"id": "or_xyz789", "status": "pending"}

        response = client.post(self.URL, json={"type": "order.paid", "data": {"id": "or_xyz789"}})

        assert response.status_code == 200
        assert response.json()["status"] == "not_approved"
        assert provider_api.requests[0].url.path == "/core/v5/orders/or_xyz789"

    def test_malformed_input_answers_400(self, client, db_session, seed_tenant):
        response = client.post(self.URL, json={"type": "charge.paid", "data": {}})
        assert response.status_code == 400

    def test_unknown_order_answers_200(self, client, db_session, seed_tenant, provider_api):
        provider_api.pagarme_resources["ch_abc123"] = {"id": "ch_abc123", "status": "paid", "code": "77"}

        response = client.post(self.URL, json={"type": "charge.paid", "data": {"id": "ch_abc123"}})

        assert response.status_code == 200
        assert response.json()["status"] == "not_found"


class TestSubscriptionWebhook:
    URL = "/webhooks/mercadopago/subscription"

    @pytest.fixture
    def platform_token(self, monkeypatch):
        monkeypatch.setattr(settings, "mercadopago_access_token", "APP-platform")

    def test_renews_subscription(self, client, db_session, seed_tenant, provider_api, platform_token):
        provider_api.mp_payments["5001"] = approved_mp_payment(
            "5001", f"subscription:{TENANT_ID};plan:enterprise"
        )

        response = client.post(self.URL, json={"type": "payment", "data": {"id": "5001"}})

        assert response.status_code == 200
        assert response.json()["status"] == "renewed"
        assert response.json()["plan_days"] == 365
        assert provider_api.requests[0].headers["authorization"] == "Bearer APP-platform"
        assert audit_types(db_session) == ["subscription_renewed"]

    def test_redelivery_is_duplicate(self, client, db_session, seed_tenant, provider_api, platform_token):
        provider_api.mp_payments["5001"] = approved_mp_payment(
            "5001", f"subscription:{TENANT_ID};plan:pro"
        )

        client.post(self.URL, json={"type": "payment", "data": {"id": "5001"}})
        response = client.post(self.URL, json={"type": "payment", "data": {"id": "5001"}})

        assert response.status_code == 200
        assert response.json()["status"] == "duplicate"

    def test_unknown_tenant_answers_200(self, client, db_session, provider_api, platform_token):
        provider_api.mp_payments["5001"] = approved_mp_payment("5001", "subscription:nobody;plan:pro")

        response = client.post(self.URL, json={"type": "payment", "data": {"id": "5001"}})

        assert response.status_code == 200
        assert response.json()["status"] == "not_found"

    def test_missing_platform_token_answers_500(self, client, db_session):
        response = client.post(self.URL, json={"type": "payment", "data": {"id": "5001"}})
        assert response.status_code == 500

    def test_invalid_json_answers_400(self, client, db_session):
        response = client.post(self.URL, content="{", headers={"Content-Type": "application/json"})
        assert response.status_code == 400


class TestWebhookCors:
    @pytest.mark.parametrize("path", [
        "/webhooks/mercadopago",
        "/webhooks/appmax",
        "/webhooks/pagarme",
        "/webhooks/mercadopago/subscription",
    ])
    def test_preflight(self, client, path):
        response = client.options(
            path,
            headers={"Origin": "https://www.mercadopago.com.br", "Access-Control-Request-Method": "POST"},
        )

        assert response.status_code == 200
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "POST" in response.headers["Access-Control-Allow-Methods"]

    def test_other_methods_answer_405_with_cors(self, client):
        response = client.get("/webhooks/mercadopago")

        assert response.status_code == 405
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    def test_error_responses_carry_cors(self, client, db_session):
        response = client.post("/webhooks/mercadopago", content="{", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "content-type" in response.headers["Access-Control-Allow-Headers"]
