import os
from typing import Generator
from unittest.mock import MagicMock

import pytest

# Pas de Redis en tests: le rate limiting est désactivé au démarrage de l'app
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

from fastapi.testclient import TestClient

from storefront.app import app as fastapi_app
from storefront.cart.service import CartStore
from storefront.cart.views import get_cart_store
from storefront.checkout.service import CheckoutService
from storefront.checkout.views import get_checkout_service
from storefront.jobs.views import get_ledger
from storefront.notifications.dispatcher import NotificationDispatcher
from storefront.notifications.views import get_dispatcher
from storefront.orders.ledger import OrderLedger
from tests.fakes import (
    FakeAttemptsRepo,
    FakeCartRepo,
    FakeGateway,
    FakeNotificationsRepo,
    FakeOrdersRepo,
    FakeResolver,
)


def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


CATALOG = {
    "A": {"name": "Tee-shirt", "price": "10.00", "image_url": "https://img.example.test/a.png"},
    "B": {"name": "Mug", "price": "5.00"},
    "C": {"name": "Casquette", "price": "7.50"},
}
VARIANTS = {
    "A-XL": {"product_id": "A", "name": "XL", "price": "12.00"},
    "B-RED": {"product_id": "B", "name": "Rouge"},
}


@pytest.fixture
def cart_repo():
    return FakeCartRepo()


@pytest.fixture
def resolver():
    return FakeResolver(dict(CATALOG), dict(VARIANTS))


@pytest.fixture
def cart_store(cart_repo, resolver):
    return CartStore(repo=cart_repo, resolver=resolver)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def attempts_repo():
    return FakeAttemptsRepo()


@pytest.fixture
def orders_repo():
    return FakeOrdersRepo()


@pytest.fixture
def notifications_repo():
    return FakeNotificationsRepo()


@pytest.fixture
def sent_emails():
    return []


@pytest.fixture
def dispatcher(notifications_repo, sent_emails, cart_store, orders_repo):
    def _send(to, subject, html):
        sent_emails.append({"to": to, "subject": subject, "html": html})
        return {"ok": True}
    return NotificationDispatcher(repo=notifications_repo, send=_send, cart_store=cart_store, orders_repo=orders_repo)


@pytest.fixture
def ledger(orders_repo, attempts_repo, gateway):
    return OrderLedger(repo=orders_repo, attempts_repo=attempts_repo, gateway=gateway)


@pytest.fixture
def checkout_service(cart_store, gateway, ledger, attempts_repo, dispatcher):
    return CheckoutService(
        cart_store=cart_store,
        gateway=gateway,
        ledger=ledger,
        attempts=attempts_repo,
        notifier=dispatcher,
    )


@pytest.fixture
def filled_cart(cart_store):
    """Panier de référence: 2 x A (10.00) + 1 x B (5.00) = 25.00."""
    cart_store.add_item("sess-1", "A", None, 2)
    return cart_store.add_item("sess-1", "B", None, 1)


# Aucun accès réseau à Supabase pendant les tests
@pytest.fixture(scope="function", autouse=True)
def mock_supabase(monkeypatch):
    monkeypatch.setattr("storefront.infra.supabase_client.get_service_supabase", lambda: MagicMock())


@pytest.fixture(scope="session")
def app():
    return fastapi_app


@pytest.fixture()
def client(app, cart_store, checkout_service, dispatcher, ledger) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_cart_store] = lambda: cart_store
    app.dependency_overrides[get_checkout_service] = lambda: checkout_service
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_ledger] = lambda: ledger
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()

