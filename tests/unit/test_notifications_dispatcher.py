from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront.errors import EmptyCartError, NotificationError
from storefront.notifications.dispatcher import NotificationDispatcher, render_email
from storefront.orders.models import Order, OrderItem


def _order(order_id="0a1b2c3d-0000-4000-8000-000000000001", email="client@example.com", name="Tee-shirt"):
    return Order(
        id=order_id,
        payment_reference="pi_1",
        total_amount=Decimal("25.00"),
        currency="usd",
        customer_email=email,
        items=[OrderItem(order_id=order_id, product_id="A", quantity=2, price_at_time="12.50", product_name=name)],
    )


def test_order_created_is_queued_once(dispatcher, notifications_repo):
    order = _order()
    key = dispatcher.notify_order_created(order)
    again = dispatcher.notify_order_created(order)

    assert key == again == f"order_confirmation:{order.id}"
    assert len(notifications_repo.outbox) == 1
    assert notifications_repo.outbox[key]["recipient"] == "client@example.com"


def test_order_created_never_raises(dispatcher, notifications_repo):
    notifications_repo.fail_enqueue = True
    assert dispatcher.notify_order_created(_order()) is None


def test_deliver_sends_and_logs(dispatcher, notifications_repo, sent_emails):
    key = dispatcher.notify_order_created(_order())

    assert dispatcher.deliver(key) == "sent"
    assert len(sent_emails) == 1
    assert sent_emails[0]["subject"] == "Confirmation de votre commande #0A1B2C3D"
    assert notifications_repo.outbox[key]["status"] == "sent"
    assert notifications_repo.email_logs[0]["email_type"] == "order_confirmation"

    # Un second passage ne renvoie pas l'email
    assert dispatcher.deliver(key) == "sent"
    assert len(sent_emails) == 1


def test_deliver_skips_already_logged_email(dispatcher, notifications_repo, sent_emails):
    order = _order()
    notifications_repo.insert_email_log(email_type="order_confirmation", status="sent", order_id=order.id)
    key = dispatcher.notify_order_created(order)

    assert dispatcher.deliver(key) == "skipped"
    assert sent_emails == []


def test_deliver_without_recipient_is_skipped(dispatcher, sent_emails):
    key = dispatcher.notify_order_created(_order(email=None))
    assert dispatcher.deliver(key) == "skipped"
    assert sent_emails == []


def test_deliver_unknown_key(dispatcher):
    assert dispatcher.deliver("order_confirmation:nope") == "missing"


def test_send_failure_retries_then_fails(notifications_repo, cart_store, orders_repo):
    def _send(to, subject, html):
        raise NotificationError("HTTP 500")

    dispatcher = NotificationDispatcher(repo=notifications_repo, send=_send, cart_store=cart_store,
                                        orders_repo=orders_repo, max_attempts=2)
    key = dispatcher.notify_order_created(_order())

    assert dispatcher.deliver(key) == "pending"
    assert notifications_repo.outbox[key]["attempts"] == 1
    assert dispatcher.deliver(key) == "failed"
    assert notifications_repo.outbox[key]["last_error"] == "HTTP 500"
    assert notifications_repo.email_logs == []


def test_drain_outbox_counts(dispatcher, sent_emails):
    dispatcher.notify_order_created(_order())
    dispatcher.notify_order_created(_order(order_id="ffffffff-0000-4000-8000-000000000002", email=None))

    assert dispatcher.drain_outbox() == {"sent": 1, "skipped": 1}
    assert len(sent_emails) == 1


def test_email_html_is_escaped():
    html = render_email("order_confirmation", _order(name="<script>x</script>").to_email_context())["html"]
    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_abandoned_cart_sets_recovery_token(dispatcher, filled_cart, cart_repo, notifications_repo, sent_emails):
    key = dispatcher.notify_abandoned_cart("sess-1", "client@example.com")

    assert key.startswith("abandoned_cart:sess-1:")
    token = cart_repo.rows["sess-1"]["cart_recovery_token"]
    assert token
    assert cart_repo.rows["sess-1"]["customer_email"] == "client@example.com"
    payload = notifications_repo.outbox[key]["payload"]
    assert payload["recovery_url"].endswith(f"/checkout?recovery={token}")
    assert payload["total_amount"] == 25.0

    assert dispatcher.deliver(key) == "sent"
    assert token in sent_emails[0]["html"]



def test_second_abandoned_cart_email_carries_the_new_link(dispatcher, filled_cart, cart_repo, notifications_repo, sent_emails):
    first = dispatcher.notify_abandoned_cart("sess-1", "client@example.com")
    assert dispatcher.deliver(first) == "sent"
    first_token = cart_repo.rows["sess-1"]["cart_recovery_token"]

    second = dispatcher.notify_abandoned_cart("sess-1", "client@example.com")
    assert second != first
    assert dispatcher.deliver(second) == "sent"
    second_token = cart_repo.rows["sess-1"]["cart_recovery_token"]

    assert second_token != first_token
    assert len(sent_emails) == 2
    assert second_token in sent_emails[1]["html"]
    assert first_token not in sent_emails[1]["html"]
    # Rejouer la livraison d'une relance déjà envoyée n'envoie rien
    assert dispatcher.deliver(second) == "sent"
    assert len(sent_emails) == 2


def test_abandoned_cart_requires_items(dispatcher):
    with pytest.raises(EmptyCartError):
        dispatcher.notify_abandoned_cart("empty", "client@example.com")


def test_reorder_reminders_window(dispatcher, orders_repo, notifications_repo):
    now = datetime(2024, 6, 20, 9, 0, tzinfo=timezone.utc)
    rows = {
        "pi_old": ("11111111-0000-4000-8000-000000000001", now - timedelta(days=14, hours=-3), "a@example.com"),
        "pi_noemail": ("22222222-0000-4000-8000-000000000002", now - timedelta(days=14), None),
        "pi_recent": ("33333333-0000-4000-8000-000000000003", now - timedelta(days=3), "b@example.com"),
    }
    for ref, (order_id, created, email) in rows.items():
        orders_repo.orders[ref] = {
            "id": order_id,
            "payment_reference": ref,
            "status": "completed",
            "total_amount": "10.00",
            "currency": "usd",
            "customer_email": email,
            "created_at": created.isoformat(),
        }

    assert dispatcher.queue_reorder_reminders(14, now=now) == 1
    assert list(notifications_repo.outbox) == ["reorder_reminder:11111111-0000-4000-8000-000000000001"]
    # Deuxième passage le même jour: déjà en file
    assert dispatcher.queue_reorder_reminders(14, now=now) == 0
