def test_abandoned_cart_queues_and_sends(client, filled_cart, sent_emails, cart_repo):
    res = client.post("/api/v1/notifications/abandoned-cart",
                      json={"sessionId": "sess-1", "customerEmail": "client@example.com"})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["dedupKey"].startswith("abandoned_cart:sess-1:")
    assert sent_emails[0]["subject"] == "Votre panier vous attend"
    assert cart_repo.rows["sess-1"]["cart_recovery_token"] in sent_emails[0]["html"]


def test_abandoned_cart_empty(client):
    res = client.post("/api/v1/notifications/abandoned-cart",
                      json={"sessionId": "nobody", "customerEmail": "client@example.com"})
    assert res.status_code == 400


def test_abandoned_cart_invalid_email(client, filled_cart):
    res = client.post("/api/v1/notifications/abandoned-cart",
                      json={"sessionId": "sess-1", "customerEmail": "pas-un-email"})
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "VALIDATION_FAILED"
