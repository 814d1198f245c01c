from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from marketplace import models, schemas
from marketplace.checkout import place_order
from marketplace.database import SessionLocal
from marketplace.errors import OutOfStock


def _add_to_cart(client, auth, user, product, qty):
    resp = client.post(f"/api/cart/{product.id}", json={"quantity": qty}, headers=auth(user))
    assert resp.status_code == 201, resp.text


def test_two_vendor_checkout_from_cart(client, db, factory, provider, notifier, auth, checkout_body):
    seller_a = factory.seller()
    seller_b = factory.seller()
    buyer = factory.user()
    p1 = factory.product(seller_a, price="10.00", stock=5, min_threshold=2)
    p2 = factory.product(seller_b, price="25.00", stock=1, min_threshold=2)
    _add_to_cart(client, auth, buyer, p1, 2)
    _add_to_cart(client, auth, buyer, p2, 1)

    resp = client.post("/api/checkout", json=checkout_body(), headers=auth(buyer))

    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["totalAmount"] == "45.00"
    assert body["shippingAmount"] == "0.00"
    assert body["status"] == "pending"
    assert body["orderNumber"].startswith("CMD-")
    assert body["paymentIntentId"] == "pi_test_1"
    assert body["clientSecret"] == "pi_test_1_secret"
    assert provider.created[0]["amount"] == 4500

    db.expire_all()
    order = db.get(models.Order, body["orderId"])
    assert order.item_count == 3
    assert sum(i.total_price for i in order.items) == order.total_amount
    ledger = {t.seller_id: t.amount for t in order.transactions}
    assert ledger == {seller_a.id: Decimal("20.00"), seller_b.id: Decimal("25.00")}
    assert all(t.status == "pending" for t in order.transactions)

    assert db.get(models.Product, p1.id).stock == 3
    assert db.get(models.Product, p2.id).stock == 0
    alerts = db.query(models.StockAlert).all()
    assert [(a.product_id, a.alert_type) for a in alerts] == [(p2.id, "critical")]

    assert db.query(models.CartItem).filter_by(user_id=buyer.id).count() == 0
    assert sorted(notifier.rooms()) == sorted([f"user-{seller_a.id}", f"user-{seller_b.id}", f"user-{buyer.id}"])
    types = sorted(n.type for n in db.query(models.Notification).all())
    assert types == ["new_order", "new_order", "order_confirmation"]

    events = db.query(models.EventOutbox).all()
    assert [e.event_type for e in events] == ["order.placed"]
    assert events[0].payload["order_id"] == order.id


def test_one_transaction_per_vendor(client, db, factory, auth, checkout_body):
    sellers = [factory.seller() for _ in range(3)]
    buyer = factory.user()
    lines = [
        (factory.product(sellers[0], price="3.50"), 2),
        (factory.product(sellers[0], price="1.25"), 4),
        (factory.product(sellers[1], price="99.99"), 1),
        (factory.product(sellers[2], price="0.10"), 7),
    ]

    resp = client.post("/api/checkout", json=checkout_body(lines), headers=auth(buyer))

    assert resp.status_code == 201, resp.text
    db.expire_all()
    order = db.get(models.Order, resp.json()["orderId"])
    assert len(order.transactions) == 3
    assert sum(t.amount for t in order.transactions) == order.total_amount == Decimal("112.69")
    by_seller = {t.seller_id: t.amount for t in order.transactions}
    assert by_seller[sellers[0].id] == Decimal("12.00")


def test_client_prices_are_ignored(client, db, factory, auth, checkout_body):
    seller = factory.seller()
    buyer = factory.user()
    product = factory.product(seller, price="40.00")
    body = checkout_body()
    body["cartItems"] = [{"productId": product.id, "quantity": 1, "price": "0.01", "vendorId": buyer.id}]

    resp = client.post("/api/checkout", json=body, headers=auth(buyer))

    assert resp.status_code == 201, resp.text
    assert resp.json()["totalAmount"] == "40.00"
    db.expire_all()
    order = db.get(models.Order, resp.json()["orderId"])
    assert order.transactions[0].seller_id == seller.id


def test_last_unit_sells_once(client, db, factory, provider, auth, checkout_body):
    seller = factory.seller()
    first, second = factory.user(), factory.user()
    product = factory.product(seller, price="15.00", stock=1)

    ok = client.post("/api/checkout", json=checkout_body([(product, 1)]), headers=auth(first))
    late = client.post("/api/checkout", json=checkout_body([(product, 1)]), headers=auth(second))

    assert ok.status_code == 201
    assert late.status_code == 409
    assert late.json()["error"] == "out_of_stock"
    db.expire_all()
    assert db.get(models.Product, product.id).stock == 0
    assert db.query(models.Order).count() == 1
    # the second buyer's intent must not stay open
    assert provider.cancelled == ["pi_test_2"]


def test_interleaved_checkouts_on_last_unit(db, factory, provider, notifier, checkout_body):
    first, second = factory.user(), factory.user()
    product = factory.product(factory.seller(), price="15.00", stock=1)
    req = schemas.CheckoutRequest.model_validate(checkout_body([(product, 1)]))
    assert product.stock == 1

    other = SessionLocal()
    try:
        place_order(other, other.get(models.User, first.id), req, provider, notifier)
    finally:
        other.close()

    # this session still sees one unit on its loaded product
    assert product.stock == 1
    with pytest.raises(OutOfStock):
        place_order(db, second, req, provider, notifier)

    db.expire_all()
    assert db.get(models.Product, product.id).stock == 0
    assert db.query(models.Order).count() == 1
    assert provider.cancelled == ["pi_test_2"]


def test_empty_cart(client, factory, provider, auth, checkout_body):
    buyer = factory.user()

    resp = client.post("/api/checkout", json=checkout_body(), headers=auth(buyer))

    assert resp.status_code == 400
    assert resp.json()["error"] == "empty_cart"
    assert provider.created == []


def test_explicit_empty_items_do_not_fall_back_to_cart(client, db, factory, provider, auth, checkout_body):
    buyer = factory.user()
    product = factory.product(factory.seller(), price="10.00", stock=5)
    _add_to_cart(client, auth, buyer, product, 3)

    resp = client.post("/api/checkout", json=checkout_body([]), headers=auth(buyer))

    assert resp.status_code == 400
    assert resp.json()["error"] == "empty_cart"
    assert provider.created == []
    db.expire_all()
    assert db.get(models.Product, product.id).stock == 5
    assert db.query(models.CartItem).filter_by(user_id=buyer.id).count() == 1


def test_concurrent_submit_with_same_key_replays_winner(db, factory, provider, notifier, checkout_body):
    buyer = factory.user()
    product = factory.product(factory.seller(), price="12.00", stock=5)
    req = schemas.CheckoutRequest.model_validate(checkout_body([(product, 1)], idempotencyKey="dup-key"))
    create = provider.create_intent
    by_key = {}

    def create_intent(amount, currency, idempotency_key=None, **kwargs):
        # same key, same intent; the first caller lets a second request commit meanwhile
        if idempotency_key in by_key:
            return by_key[idempotency_key]
        intent = create(amount, currency, idempotency_key=idempotency_key, **kwargs)
        by_key[idempotency_key] = intent
        other = SessionLocal()
        try:
            place_order(other, other.get(models.User, buyer.id), req, provider, notifier)
        finally:
            other.close()
        return intent

    provider.create_intent = create_intent

    result = place_order(db, buyer, req, provider, notifier)

    db.expire_all()
    winner = db.query(models.Order).one()
    assert result["orderId"] == winner.id
    assert result["paymentIntentId"] == winner.payment_intent_id == "pi_test_1"
    assert result["clientSecret"] == "pi_test_1_secret"
    assert provider.cancelled == []
    assert db.get(models.Product, product.id).stock == 4


def test_failed_checkout_keeps_intent_held_by_committed_order(db, factory, provider, notifier, checkout_body):
    buyer = factory.user()
    product = factory.product(factory.seller(), price="12.00", stock=1)
    first = schemas.CheckoutRequest.model_validate(checkout_body([(product, 1)], idempotencyKey="k-1"))
    place_order(db, buyer, first, provider, notifier)
    create = provider.create_intent

    def create_intent(amount, currency, **kwargs):
        # provider hands back an intent that is already bound to an order
        create(amount, currency, **kwargs)
        return provider.retrieve_intent("pi_test_1")

    provider.create_intent = create_intent
    second = schemas.CheckoutRequest.model_validate(checkout_body([(product, 1)]))

    with pytest.raises(IntegrityError):
        place_order(db, buyer, second, provider, notifier)

    assert provider.cancelled == []
    db.expire_all()
    assert db.query(models.Order).count() == 1


def test_unknown_and_inactive_products(client, factory, auth, checkout_body):
    seller = factory.seller()
    buyer = factory.user()
    inactive = factory.product(seller, is_active=False)
    body = checkout_body()
    body["cartItems"] = [{"productId": "missing", "quantity": 1}]

    assert client.post("/api/checkout", json=body, headers=auth(buyer)).status_code == 404
    resp = client.post("/api/checkout", json=checkout_body([(inactive, 1)]), headers=auth(buyer))
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_declared_amount_must_match(client, db, factory, provider, auth, checkout_body):
    seller = factory.seller()
    buyer = factory.user()
    product = factory.product(seller, price="10.00")

    resp = client.post("/api/checkout", json=checkout_body([(product, 2)], amount="19.00"), headers=auth(buyer))

    assert resp.status_code == 400
    assert resp.json()["details"][0]["field"] == "amount"
    assert provider.created == []
    assert db.query(models.Order).count() == 0

    ok = client.post("/api/checkout", json=checkout_body([(product, 2)], amount="20.00"), headers=auth(buyer))
    assert ok.status_code == 201


def test_provider_failure_writes_nothing(client, db, factory, provider, notifier, auth, checkout_body):
    seller = factory.seller()
    buyer = factory.user()
    product = factory.product(seller, stock=4)
    _add_to_cart(client, auth, buyer, product, 2)
    provider.fail_create = True

    resp = client.post("/api/checkout", json=checkout_body(), headers=auth(buyer))

    assert resp.status_code == 502
    db.expire_all()
    assert db.query(models.Order).count() == 0
    assert db.query(models.Transaction).count() == 0
    assert db.get(models.Product, product.id).stock == 4
    assert db.query(models.CartItem).filter_by(user_id=buyer.id).count() == 1
    assert notifier.sent == []


def test_idempotency_key_replays_order(client, db, factory, provider, auth, checkout_body):
    seller = factory.seller()
    buyer = factory.user()
    product = factory.product(seller, stock=10)
    body = checkout_body([(product, 1)], idempotencyKey="key-123")

    first = client.post("/api/checkout", json=body, headers=auth(buyer))
    again = client.post("/api/checkout", json=body, headers=auth(buyer))

    assert first.status_code == 201 and again.status_code == 201
    assert again.json()["orderId"] == first.json()["orderId"]
    assert again.json()["clientSecret"] == first.json()["clientSecret"]
    assert len(provider.created) == 1
    db.expire_all()
    assert db.get(models.Product, product.id).stock == 9


def test_idempotency_key_of_another_user(client, factory, auth, checkout_body):
    seller = factory.seller()
    product = factory.product(seller)
    body = checkout_body([(product, 1)], idempotencyKey="shared")

    client.post("/api/checkout", json=body, headers=auth(factory.user()))
    resp = client.post("/api/checkout", json=body, headers=auth(factory.user()))

    assert resp.status_code == 400
    assert resp.json()["error"] == "conflict"


def test_cash_on_delivery_skips_intent(client, db, factory, provider, auth, checkout_body):
    seller = factory.seller()
    buyer = factory.user()
    product = factory.product(seller)

    resp = client.post("/api/checkout", json=checkout_body([(product, 1)], paymentMethod="cash_on_delivery"),
                       headers=auth(buyer))

    assert resp.status_code == 201
    assert resp.json()["clientSecret"] is None
    assert resp.json()["paymentIntentId"] is None
    assert provider.created == []


def test_shipping_is_charged_on_top(client, db, factory, provider, auth, checkout_body):
    seller = factory.seller()
    buyer = factory.user()
    product = factory.product(seller, price="30.00")
    store = db.query(models.Store).filter_by(owner_id=seller.id).one()
    carrier = models.Carrier(name="Colissimo")
    zone = models.ShippingZone(shop_id=store.id, name="Rhone", cities=["Lyon"])
    zone.carriers.append(models.ShippingZoneCarrier(carrier=carrier, price=Decimal("4.90"), delivery_time="48h"))
    db.add(zone)
    db.commit()

    body = checkout_body([(product, 1)], shipping={"zoneId": zone.id, "carrierId": carrier.id}, amount="34.90")
    resp = client.post("/api/checkout", json=body, headers=auth(buyer))

    assert resp.status_code == 201, resp.text
    assert resp.json()["totalAmount"] == "30.00"
    assert resp.json()["shippingAmount"] == "4.90"
    assert provider.created[0]["amount"] == 3490
    db.expire_all()
    order = db.get(models.Order, resp.json()["orderId"])
    assert order.shipping_option["carrierName"] == "Colissimo"
    assert sum(t.amount for t in order.transactions) == Decimal("30.00")


def test_request_validation_errors(client, factory, auth):
    buyer = factory.user()

    resp = client.post("/api/checkout", json={"paymentMethod": "card"}, headers=auth(buyer))

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "validation_error"
    assert any(d["field"].startswith("shippingAddress") for d in body["details"])


def test_checkout_requires_identity(client, checkout_body):
    assert client.post("/api/checkout", json=checkout_body()).status_code == 401
    assert client.post("/api/checkout", json=checkout_body(), headers={"X-User-Id": "nobody"}).status_code == 401
