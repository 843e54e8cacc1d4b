import logging
from decimal import Decimal

import pytest

from storefront.checkout.validator import CheckoutValidator
from storefront.errors import PersistenceFailureError
from storefront.payments.gateway import Completed


@pytest.fixture
def intent(cart_store, filled_cart):
    return CheckoutValidator(cart_store).prepare_checkout("sess-1", "25.00", attempt_nonce="n1", customer_email="a@example.com")


@pytest.fixture
def completed():
    return Completed("pi_42", Decimal("25.00"), "https://pay.example.test/r/42")


def test_commit_creates_order_with_items(ledger, orders_repo, intent, completed):
    order = ledger.commit(completed, intent)

    assert order.payment_reference == "pi_42"
    assert order.total_amount == Decimal("25.00")
    assert order.items_complete is True
    assert order.items_total == Decimal("25.00")
    rows = [i for i in orders_repo.items if i["order_id"] == order.id]
    assert sorted((r["product_id"], r["quantity"], r["price_at_time"]) for r in rows) == [("A", 2, "10.00"), ("B", 1, "5.00")]
    assert orders_repo.repairs == []


def test_commit_is_idempotent_by_payment_reference(ledger, orders_repo, intent, completed):
    first = ledger.commit(completed, intent)
    second = ledger.commit(completed, intent)

    assert second.id == first.id
    assert len(orders_repo.orders) == 1
    assert len(orders_repo.items) == 2


def test_variant_name_is_kept_in_item_name(ledger, cart_store):
    cart_store.add_item("sess-v", "A", "A-XL", 1)
    intent = CheckoutValidator(cart_store).prepare_checkout("sess-v", "12.00")
    order = ledger.commit(Completed("pi_v", Decimal("12.00")), intent)
    assert order.items[0].product_name == "Tee-shirt (XL)"
    assert order.items[0].price_at_time == Decimal("12.00")


def test_items_insert_retried_once(ledger, orders_repo, intent, completed):
    orders_repo.fail_items_times = 1
    order = ledger.commit(completed, intent)
    assert order.items_complete is True
    assert orders_repo.repairs == []


def test_items_failure_queues_repair(ledger, orders_repo, intent, completed, caplog):
    orders_repo.fail_items_times = 2
    with caplog.at_level(logging.CRITICAL, logger="storefront.orders.ledger"):
        order = ledger.commit(completed, intent)

    assert order.items_complete is False
    assert len(orders_repo.orders) == 1
    repair = orders_repo.repairs[0]
    assert repair["kind"] == "missing_items"
    assert repair["order_id"] == order.id
    assert len(repair["payload"]["items"]) == 2
    assert any(r.levelno == logging.CRITICAL for r in caplog.records)


def test_order_failure_queues_missing_order_repair(ledger, orders_repo, intent, completed):
    orders_repo.fail_order_insert = True
    with pytest.raises(PersistenceFailureError) as exc:
        ledger.commit(completed, intent)

    assert exc.value.details == {"paymentId": "pi_42"}
    repair = orders_repo.repairs[0]
    assert repair["kind"] == "missing_order"
    assert repair["payment_reference"] == "pi_42"
    assert repair["idempotency_key"] == intent.idempotency_key
    assert repair["payload"]["charge"]["amount_captured"] == "25.00"


def test_amount_mismatch_is_recorded(ledger, orders_repo, intent, caplog):
    with caplog.at_level(logging.ERROR, logger="storefront.orders.ledger"):
        order = ledger.commit(Completed("pi_43", Decimal("24.00")), intent)

    assert order.total_amount == Decimal("24.00")
    assert [r["kind"] for r in orders_repo.repairs] == ["amount_mismatch"]
    assert any("amount mismatch" in r.getMessage() for r in caplog.records)
