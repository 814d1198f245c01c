import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["NOTIFIER"] = "log"
os.environ.pop("RABBITMQ_URL", None)

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from marketplace import models  # noqa: E402
from marketplace.database import Base, SessionLocal, engine  # noqa: E402
from marketplace.deps import get_notifier, get_payment_provider  # noqa: E402
from marketplace.errors import PaymentProviderError  # noqa: E402
from marketplace.main import app  # noqa: E402
from marketplace.notifications import Notifier  # noqa: E402
from marketplace.payments import PaymentIntent, to_minor_units  # noqa: E402


class FakePaymentProvider:
    def __init__(self):
        self.created = []
        self.cancelled = []
        self.statuses = {}
        self.fail_create = False

    def create_intent(self, amount, currency, **kwargs):
        if self.fail_create:
            raise PaymentProviderError("Payment provider request failed")
        intent_id = f"pi_test_{len(self.created) + 1}"
        self.created.append({"id": intent_id, "amount": to_minor_units(amount), "currency": currency, **kwargs})
        self.statuses[intent_id] = "requires_confirmation"
        return PaymentIntent(id=intent_id, status="requires_confirmation",
                             client_secret=f"{intent_id}_secret", amount=to_minor_units(amount),
                             currency=currency)

    def retrieve_intent(self, intent_id):
        if intent_id not in self.statuses:
            raise PaymentProviderError("No such payment_intent")
        return PaymentIntent(id=intent_id, status=self.statuses[intent_id], client_secret=f"{intent_id}_secret")

    def cancel_intent(self, intent_id):
        self.cancelled.append(intent_id)
        self.statuses[intent_id] = "canceled"
        return PaymentIntent(id=intent_id, status="canceled")


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def emit(self, room, event, payload):
        self.sent.append((room, event, payload))

    def rooms(self):
        return [room for room, _, _ in self.sent]


class Factory:
    def __init__(self, db):
        self.db = db
        self._n = 0

    def _seq(self):
        self._n += 1
        return self._n

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        return obj

    def user(self, role="client", **kw):
        n = self._seq()
        fields = dict(
            username=f"{role}{n}",
            email=f"{role}{n}@example.com",
            first_name=role.title(),
            last_name=str(n),
            role=role,
            email_verified=True,
        )
        fields.update(kw)
        return self._save(models.User(**fields))

    def seller(self, store_status="approved", **kw):
        seller = self.user("seller", **kw)
        self._save(models.Store(owner_id=seller.id, store_name=f"Shop {seller.username}", status=store_status))
        return seller

    def category(self):
        n = self._seq()
        return self._save(models.Category(slug=f"cat-{n}", name=f"Category {n}"))

    def product(self, vendor, price="10.00", stock=10, min_threshold=0, category=None, **kw):
        n = self._seq()
        category = category or self.category()
        fields = dict(
            vendor_id=vendor.id,
            category_id=category.id,
            name=f"Product {n}",
            slug=f"product-{n}",
            sku=f"SKU-{n}",
            price=Decimal(price),
            stock=stock,
            min_threshold=min_threshold,
        )
        fields.update(kw)
        for key in ("original_price", "purchase_price"):
            if isinstance(fields.get(key), str):
                fields[key] = Decimal(fields[key])
        return self._save(models.Product(**fields))

    def order(self, buyer, lines, status="pending", payment_status="pending", created_at=None,
              payment_intent_id=None, payment_method="card"):
        """Build an order with its ledger directly, bypassing checkout."""
        total = sum((Decimal(p.price) * q for p, q in lines), Decimal("0.00"))
        order = models.Order(
            order_number=f"CMD-T{self._seq():05d}",
            user_id=buyer.id,
            customer_name=buyer.full_name,
            customer_email=buyer.email,
            customer_phone="0600000000",
            status=status,
            payment_status=payment_status,
            payment_method=payment_method,
            payment_intent_id=payment_intent_id,
            total_amount=total,
            item_count=sum(q for _, q in lines),
            shipping_address={"city": "Lyon"},
        )
        if created_at is not None:
            order.created_at = created_at
        vendors = {}
        for product, qty in lines:
            line_total = Decimal(product.price) * qty
            order.items.append(models.OrderItem(product_id=product.id, quantity=qty,
                                                unit_price=product.price, total_price=line_total))
            vendors[product.vendor_id] = vendors.get(product.vendor_id, Decimal("0.00")) + line_total
        for vendor_id, amount in vendors.items():
            order.transactions.append(models.Transaction(seller_id=vendor_id, amount=amount,
                                                         status="pending", payment_method=payment_method))
        return self._save(order)


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def provider():
    return FakePaymentProvider()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(provider, notifier):
    app.dependency_overrides[get_payment_provider] = lambda: provider
    app.dependency_overrides[get_notifier] = lambda: notifier
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth():
    return lambda user: {"X-User-Id": user.id}


@pytest.fixture
def checkout_body():
    def build(lines=None, **extra):
        body = {
            "shippingAddress": {
                "fullName": "Jane Buyer",
                "phone": "0600000000",
                "street": "1 rue de la Paix",
                "city": "Lyon",
                "state": "",
                "zipCode": "69001",
                "email": "jane@example.com",
            },
            "paymentMethod": "card",
            "currency": "usd",
        }
        if lines is not None:
            body["cartItems"] = [{"productId": p.id, "quantity": q} for p, q in lines]
        body.update(extra)
        return body
    return build
