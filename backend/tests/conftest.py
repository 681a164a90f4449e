"""
Pytest configuration and fixtures for backend tests.

Provider APIs are answered by FakeProviderAPI through httpx.MockTransport;
paid-order side effects are recorded instead of sent.
"""

import asyncio
import os

# Must be set before the application modules read their settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["MERCADOPAGO_ACCESS_TOKEN"] = ""
os.environ["MERCADOPAGO_WEBHOOK_SECRET"] = ""

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shared.infrastructure.db import get_db
from webhook_api.main import app
from webhook_api.models import (
    AppmaxIntegration,
    Base,
    MercadoPagoIntegration,
    Order,
    PagarmeIntegration,
    Tenant,
)
from webhook_api.services.payments import (
    PaymentGateways,
    SideEffectResult,
    get_payment_gateways,
    get_side_effects,
)
from webhook_api.services.payments.circuit_breaker import BREAKERS


TENANT_ID = "11111111-1111-1111-1111-111111111111"
OTHER_TENANT_ID = "22222222-2222-2222-2222-222222222222"


# SQLite in-memory database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# =============================================================================
# Fakes
# =============================================================================


class FakeProviderAPI:
    """
    In-memory stand-in for the Mercado Pago, AppMax and Pagar.me APIs.

    Register resources in the dicts; every request is kept in `requests`.
    Set `fail_with` to an HTTP status to make every call fail.
    """

    def __init__(self):
        self.mp_payments: dict[str, dict] = {}
        self.mp_search: dict[str, list[dict]] = {}
        self.appmax_orders: dict[str, dict] = {}
        self.pagarme_resources: dict[str, dict] = {}
        self.pagarme_lists: dict[str, list[dict]] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: int | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"message": "failure"})

        path = request.url.path
        host = request.url.host

        if host == "api.mercadopago.com":
            if path == "/v1/payments/search":
                ref = request.url.params.get("external_reference", "")
                return httpx.Response(200, json={"results": self.mp_search.get(ref, [])})
            payment_id = path.rsplit("/", 1)[-1]
            if payment_id in self.mp_payments:
                return httpx.Response(200, json=self.mp_payments[payment_id])
            return httpx.Response(404, json={"message": "Payment not found"})

        if "appmax" in host:
            order_id = path.rsplit("/", 1)[-1]
            if order_id in self.appmax_orders:
                return httpx.Response(200, json={"success": True, "data": self.appmax_orders[order_id]})
            return httpx.Response(404, json={"success": False})

        if host == "api.pagar.me":
            if path == "/core/v5/orders":
                key = request.url.params.get("code") or request.url.params.get(
                    "metadata[external_reference]", ""
                )
                return httpx.Response(200, json={"data": self.pagarme_lists.get(key, [])})
            resource_id = path.rsplit("/", 1)[-1]
            if resource_id in self.pagarme_resources:
                return httpx.Response(200, json=self.pagarme_resources[resource_id])
            return httpx.Response(404, json={"message": "Not found"})

        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class RecordingSideEffects:
    """Records which orders would have triggered WhatsApp/Bling."""

    def __init__(self, fail: bool = False):
        self.paid_order_ids: list[int] = []
        self.fail = fail

    async def run_for_paid_order(self, db, order):
        self.paid_order_ids.append(order.id)
        if self.fail:
            return [SideEffectResult.failed("whatsapp", "server down")]
        return [SideEffectResult(name="whatsapp", ok=True)]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Breakers are module-level singletons; start every test closed."""
    for breaker in BREAKERS.values():
        asyncio.run(breaker.reset())
    yield


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    Uses SQLite in-memory for isolation.
    """
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def provider_api():
    return FakeProviderAPI()


@pytest.fixture
def gateways(provider_api):
    return PaymentGateways(transport=provider_api.transport, timeout=5.0)


@pytest.fixture
def side_effects():
    return RecordingSideEffects()


@pytest.fixture(scope="function")
def client(db_session, gateways, side_effects):
    """
    Create a test client with database, provider and side effect overrides.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateways] = lambda: gateways
    app.dependency_overrides[get_side_effects] = lambda: side_effects

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def seed_tenant(db_session):
    """Tenant with active Mercado Pago, AppMax and Pagar.me integrations."""
    tenant = Tenant(id=TENANT_ID, name="Loja Teste")
    db_session.add(tenant)
    db_session.add_all([
        MercadoPagoIntegration(tenant_id=TENANT_ID, access_token="TEST-mp-token", is_active=True),
        AppmaxIntegration(tenant_id=TENANT_ID, access_token="appmax-token", is_active=True),
        PagarmeIntegration(tenant_id=TENANT_ID, api_key="sk_test_pagarme", is_active=True),
    ])
    db_session.commit()
    return tenant


@pytest.fixture
def other_tenant(db_session):
    tenant = Tenant(id=OTHER_TENANT_ID, name="Outra Loja")
    db_session.add(tenant)
    db_session.add(
        MercadoPagoIntegration(tenant_id=OTHER_TENANT_ID, access_token="TEST-other-token", is_active=True)
    )
    db_session.commit()
    return tenant


@pytest.fixture
def make_order(db_session):
    """Factory creating an order for a tenant (unpaid by default)."""
    def _make(order_id: int, tenant_id: str = TENANT_ID, **fields) -> Order:
        order = Order(id=order_id, tenant_id=tenant_id, **fields)
        db_session.add(order)
        db_session.commit()
        return order
    return _make


def approved_mp_payment(payment_id: str, external_reference: str | None, **fields) -> dict:
    payment = {
        "id": int(payment_id) if payment_id.isdigit() else payment_id,
        "status": "approved",
        "external_reference": external_reference,
        "payment_method_id": "pix",
        "installments": 1,
        "transaction_amount": 150.0,
    }
    payment.update(fields)
    return payment
