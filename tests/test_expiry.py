from services.expiry import expire_stale_orders


def _age_order(app, order_id, created_at="2000-01-01T00:00:00.000000Z"):
    with app.extensions["packshop"]["db"].cursor(for_write=True) as cur:
        cur.execute("UPDATE orders SET created_at = ? WHERE id = ?", (created_at, order_id))


def test_expire_stale_orders(app, store, new_order):
    old = new_order()
    fresh = new_order()
    _age_order(app, old["orderId"])

    stats = expire_stale_orders(store, older_than_minutes=60)

    assert stats == {"checked": 1, "expired": 1, "skipped": 0}
    assert store.get(old["orderId"]).status == "expired"
    assert store.get(old["orderId"]).delivered_at is None
    assert store.get(fresh["orderId"]).status == "pending_payment"


def test_paid_after_expiry_does_not_deliver(app, store, new_order, send_webhook, deliverer):
    order = new_order()
    _age_order(app, order["orderId"])
    expire_stale_orders(store, older_than_minutes=60)

    r = send_webhook({"event": "paid", "ref": order["paymentReference"]})

    assert r.status_code == 200
    assert r.get_json()["outcome"] == "duplicate"
    assert r.get_json()["status"] == "expired"
    assert deliverer.calls == []


def test_delivered_orders_are_not_expired(app, store, new_order, send_webhook):
    order = new_order()
    send_webhook({"event": "paid", "ref": order["paymentReference"]})
    _age_order(app, order["orderId"])

    assert expire_stale_orders(store, older_than_minutes=60)["checked"] == 0
    assert store.get(order["orderId"]).status == "delivered"


def test_expire_orders_command(app, store, new_order):
    order = new_order()
    _age_order(app, order["orderId"])

    result = app.test_cli_runner().invoke(args=["expire-orders", "--minutes", "30"])

    assert result.exit_code == 0
    assert "expirados=1" in result.output
    assert store.get(order["orderId"]).status == "expired"
