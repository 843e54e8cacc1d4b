from decimal import Decimal

import pytest

from storefront.checkout.validator import CheckoutValidator
from storefront.errors import PersistenceFailureError
from storefront.payments.gateway import Completed


@pytest.fixture
def intent(cart_store, filled_cart):
    return CheckoutValidator(cart_store).prepare_checkout("sess-1", "25.00", attempt_nonce="n1")


def _attempt(attempts_repo, intent, status, **fields):
    attempts_repo.insert_attempt({
        "idempotency_key": intent.idempotency_key,
        "session_id": intent.session_id,
        "attempt_nonce": intent.attempt_nonce,
        "amount": str(intent.total),
        "currency": intent.currency,
        "intent": intent.to_json(),
    })
    attempts_repo.update_attempt(intent.idempotency_key, {"status": status, **fields})


def test_missing_order_repair_creates_order(ledger, orders_repo, attempts_repo, intent):
    _attempt(attempts_repo, intent, "charged", gateway_reference="pi_9", amount_captured="25.00")
    orders_repo.fail_order_insert = True
    with pytest.raises(PersistenceFailureError):
        ledger.commit(Completed("pi_9", Decimal("25.00")), intent)
    orders_repo.fail_order_insert = False

    created = []
    report = ledger.reconcile(on_order=created.append)

    assert report["repairs_resolved"] == 1
    assert len(orders_repo.orders) == 1
    assert orders_repo.repairs[0]["status"] == "resolved"
    assert attempts_repo.rows[intent.idempotency_key]["status"] == "committed"
    assert [o.payment_reference for o in created] == ["pi_9"]


def test_failed_repair_stays_pending(ledger, orders_repo, intent):
    orders_repo.fail_order_insert = True
    with pytest.raises(PersistenceFailureError):
        ledger.commit(Completed("pi_9", Decimal("25.00")), intent)

    report = ledger.reconcile()

    assert report["repairs_failed"] == 1
    assert orders_repo.repairs[0]["status"] == "pending"
    assert orders_repo.repairs[0]["last_error"]


def test_missing_items_repair_inserts_items(ledger, orders_repo, intent):
    orders_repo.fail_items_times = 2
    order = ledger.commit(Completed("pi_10", Decimal("25.00")), intent)
    assert orders_repo.count_order_items(order.id) == 0

    report = ledger.reconcile()

    assert report["repairs_resolved"] == 1
    assert orders_repo.count_order_items(order.id) == 2
    assert report["orders_missing_items"] == []


def test_unknown_attempt_with_charge_is_committed(ledger, orders_repo, attempts_repo, gateway, intent):
    _attempt(attempts_repo, intent, "unknown")
    gateway.charges[intent.idempotency_key] = Completed("pi_11", Decimal("25.00"))

    report = ledger.reconcile()

    assert report["attempts_committed"] == 1
    assert "pi_11" in orders_repo.orders
    assert attempts_repo.rows[intent.idempotency_key]["status"] == "committed"


def test_stale_pending_without_charge_is_released(ledger, attempts_repo, intent):
    _attempt(attempts_repo, intent, "pending")

    report = ledger.reconcile()

    assert report["attempts_released"] == 1
    assert attempts_repo.rows[intent.idempotency_key]["status"] == "unknown"


def test_charged_attempt_committed_without_gateway_call(ledger, orders_repo, attempts_repo, gateway, intent):
    _attempt(attempts_repo, intent, "charged", gateway_reference="pi_12", amount_captured="25.00")

    report = ledger.reconcile()

    assert report["attempts_committed"] == 1
    assert gateway.calls == []
    assert "pi_12" in orders_repo.orders


def test_reconcile_is_idempotent(ledger, orders_repo, attempts_repo, intent):
    _attempt(attempts_repo, intent, "charged", gateway_reference="pi_13", amount_captured="25.00")
    ledger.reconcile()
    report = ledger.reconcile()

    assert report["attempts_committed"] == 0
    assert len(orders_repo.orders) == 1
