"""Checkout and payment confirmation.

``place_order`` turns a cart into an order, its lines, one ledger
transaction per vendor and the matching stock decrements, all in one
database transaction. ``confirm_payment`` applies the provider's view of a
payment intent exactly once per (intent, status) pair.
"""
import logging
import uuid
from collections import OrderedDict
from datetime import timedelta
from decimal import Decimal
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import config, models
from .crud import clear_cart, get_cart
from .database import is_postgres
from .errors import Conflict, EmptyCart, NotFound, PaymentProviderError, ValidationError
from .events import already_processed, mark_processed, record_event
from .models import utcnow
from .notifications import create_notification, dispatch
from .orders import fail_payment
from .payments import FAILED_STATUSES, SUCCEEDED
from .shipping import resolve_shipping_option
from .stock import decrement_stock, raise_alert_if_low

logger = logging.getLogger(__name__)

CONFIRMATION_SERVICE = "payment-confirmation"
CENT = Decimal("0.01")


def new_order_number() -> str:
    return "CMD-" + uuid.uuid4().hex[:8].upper()


def _requested_lines(db: Session, user: models.User, req) -> "OrderedDict[str, int]":
    if req.cart_items is not None:
        pairs = [(line.product_id, line.quantity) for line in req.cart_items]
    else:
        pairs = [(item.product_id, item.quantity) for item in get_cart(db, user.id)]
    lines = OrderedDict()
    for product_id, qty in pairs:
        lines[product_id] = lines.get(product_id, 0) + qty
    return lines


def _resolve_products(db: Session, lines) -> List[tuple]:
    """Price and vendor always come from the product row."""
    resolved = []
    for product_id, qty in lines.items():
        product = db.get(models.Product, product_id)
        if product is None or product.deleted_at is not None:
            raise NotFound(f"Product {product_id} not found")
        if not product.is_active:
            raise ValidationError(
                f"Product {product.name} is not available",
                details=[{"field": "cartItems", "message": f"product {product_id} is inactive"}],
            )
        unit = Decimal(product.price).quantize(CENT)
        resolved.append((product, qty, unit, (unit * qty).quantize(CENT)))
    return resolved


def _result(order: models.Order, client_secret=None) -> dict:
    return {
        "clientSecret": client_secret,
        "paymentIntentId": order.payment_intent_id,
        "orderId": order.id,
        "orderNumber": order.order_number,
        "totalAmount": str(Decimal(order.total_amount).quantize(CENT)),
        "shippingAmount": str(Decimal(order.shipping_amount).quantize(CENT)),
        "status": order.status,
    }


def _replay(provider, order: models.Order) -> dict:
    secret = None
    if order.payment_intent_id:
        secret = provider.retrieve_intent(order.payment_intent_id).client_secret
    logger.info("[checkout] idempotent replay order=%s", order.id)
    return _result(order, secret)


def _order_for_key(db: Session, user: models.User, key: str):
    existing = db.query(models.Order).filter(models.Order.idempotency_key == key).first()
    if existing is not None and existing.user_id != user.id:
        raise Conflict("idempotencyKey", "Idempotency key already used")
    return existing


def _release_unreferenced(db: Session, provider, intent):
    """Cancel an intent left behind by a failed checkout unless a committed order holds it."""
    if intent is None:
        return
    holder = db.query(models.Order.id).filter(models.Order.payment_intent_id == intent.id).first()
    if holder is not None:
        logger.info("[checkout] intent %s belongs to order %s, not cancelling", intent.id, holder.id)
        return
    try:
        provider.cancel_intent(intent.id)
    except PaymentProviderError as e:
        logger.error("[checkout] could not cancel intent %s after failure: %s", intent.id, e)


def place_order(db: Session, user: models.User, req, provider, notifier) -> dict:
    if req.idempotency_key:
        existing = _order_for_key(db, user, req.idempotency_key)
        if existing is not None:
            return _replay(provider, existing)

    lines = _requested_lines(db, user, req)
    if not lines:
        raise EmptyCart()
    resolved = _resolve_products(db, lines)

    total = sum((line_total for _, _, _, line_total in resolved), Decimal("0.00"))
    by_vendor = OrderedDict()
    for product, _, _, line_total in resolved:
        by_vendor[product.vendor_id] = by_vendor.get(product.vendor_id, Decimal("0.00")) + line_total

    shipping_option, shipping_amount = None, Decimal("0.00")
    if req.shipping is not None:
        shipping_option, shipping_amount = resolve_shipping_option(db, req.shipping.zone_id, req.shipping.carrier_id)
    charge = total + shipping_amount

    if req.amount is not None and abs(Decimal(req.amount) - charge) > CENT:
        raise ValidationError(
            "Amount does not match the cart total",
            details=[{"field": "amount", "message": f"expected {charge}"}],
        )

    address = req.shipping_address
    order_number = new_order_number()
    currency = req.currency.lower()

    intent = None
    if req.payment_method == "card":
        intent = provider.create_intent(
            charge,
            currency,
            description=f"Order {order_number}",
            receipt_email=address.email,
            metadata={"userId": user.id, "orderNumber": order_number},
            idempotency_key=req.idempotency_key,
        )

    try:
        order = models.Order(
            order_number=order_number,
            user_id=user.id,
            customer_name=address.full_name,
            customer_email=address.email,
            customer_phone=address.phone,
            status="pending",
            payment_status="pending",
            payment_method=req.payment_method,
            payment_intent_id=intent.id if intent else None,
            idempotency_key=req.idempotency_key,
            currency=currency,
            total_amount=total,
            shipping_amount=shipping_amount,
            item_count=sum(qty for _, qty, _, _ in resolved),
            shipping_address=address.model_dump(by_alias=True, mode="json"),
            shipping_option=shipping_option,
            zone_id=req.shipping.zone_id if req.shipping else None,
            carrier_id=req.shipping.carrier_id if req.shipping else None,
            carrier_name=shipping_option["carrierName"] if shipping_option else None,
            delivery_date=utcnow() + timedelta(days=config.DELIVERY_ESTIMATE_DAYS),
        )
        db.add(order)
        for product, qty, unit, line_total in resolved:
            order.items.append(models.OrderItem(
                product_id=product.id, quantity=qty, unit_price=unit, total_price=line_total,
            ))
        for vendor_id, amount in by_vendor.items():
            order.transactions.append(models.Transaction(
                seller_id=vendor_id, amount=amount, currency=currency,
                status="pending", payment_method=req.payment_method,
            ))
        db.flush()

        for product, qty, _, _ in resolved:
            remaining = decrement_stock(db, product.id, qty)
            raise_alert_if_low(db, product, remaining)

        clear_cart(db, user.id, commit=False)

        notes = []
        for vendor_id, amount in by_vendor.items():
            count = sum(qty for p, qty, _, _ in resolved if p.vendor_id == vendor_id)
            notes.append(create_notification(
                db,
                user_id=vendor_id,
                type="new_order",
                title="New order",
                message=f"New order {order_number}: {count} item(s) for {amount} {currency.upper()}",
                data={"orderId": order.id, "orderNumber": order_number, "amount": str(amount)},
            ))
        notes.append(create_notification(
            db,
            user_id=user.id,
            type="order_confirmation",
            title="Order confirmed",
            message=f"Your order {order_number} has been placed",
            data={"orderId": order.id, "orderNumber": order_number, "totalAmount": str(total)},
        ))

        record_event(db, "order.placed", {
            "order_id": order.id,
            "order_number": order_number,
            "user_id": user.id,
            "currency": currency,
            "total_amount": str(total),
            "shipping_amount": str(shipping_amount),
            "items": [{"product_id": p.id, "vendor_id": p.vendor_id, "qty": q, "unit_price": str(u)}
                      for p, q, u, _ in resolved],
        })
        db.commit()
    except IntegrityError:
        db.rollback()
        _release_unreferenced(db, provider, intent)
        # a concurrent request with the same key may have committed first
        winner = _order_for_key(db, user, req.idempotency_key) if req.idempotency_key else None
        if winner is None:
            raise
        return _replay(provider, winner)
    except Exception:
        db.rollback()
        _release_unreferenced(db, provider, intent)
        raise

    logger.info("[checkout] order=%s number=%s user=%s total=%s shipping=%s vendors=%d",
                order.id, order_number, user.id, total, shipping_amount, len(by_vendor))
    dispatch(notifier, notes)
    return _result(order, intent.client_secret if intent else None)


# --- payment confirmation ---

def _apply_intent_status(db: Session, order: models.Order, status: str) -> List[models.Notification]:
    """Apply one provider status to an order. Caller commits."""
    key = f"{order.payment_intent_id}:{status}"
    if already_processed(db, CONFIRMATION_SERVICE, key):
        logger.info("[checkout] skip already processed %s", key)
        return []

    data = {"orderId": order.id, "orderNumber": order.order_number}
    if status == SUCCEEDED:
        order.payment_status = "paid"
        for t in order.transactions:
            if t.status == "pending":
                t.status = "paid"
        record_event(db, "payment.completed", {"order_id": order.id, "payment_intent_id": order.payment_intent_id})
        note = create_notification(db, user_id=order.user_id, type="payment_received", title="Payment received",
                                   message=f"Payment for order {order.order_number} was received", data=data)
    elif status in FAILED_STATUSES:
        fail_payment(db, order)
        record_event(db, "payment.failed", {"order_id": order.id, "reason": status})
        note = create_notification(db, user_id=order.user_id, type="payment_failed", title="Payment failed",
                                   message=f"Payment for order {order.order_number} failed", data=data)
    else:
        # still in flight; leave it for a later confirmation
        return []

    mark_processed(db, CONFIRMATION_SERVICE, key)
    logger.info("[checkout] order=%s intent=%s -> %s", order.id, order.payment_intent_id, status)
    return [note]


def confirm_payment(db: Session, provider, notifier, intent_id: str) -> dict:
    intent = provider.retrieve_intent(intent_id)
    order = db.query(models.Order).filter(models.Order.payment_intent_id == intent_id).first()
    if order is None:
        raise NotFound("No order for this payment intent")
    try:
        notes = _apply_intent_status(db, order, intent.status)
        db.commit()
    except Exception:
        db.rollback()
        raise
    dispatch(notifier, notes)
    return {"id": order.id, "status": order.status}


def reconcile_pending_payments(db: Session, provider, notifier, older_than: timedelta = None,
                               limit: int = None) -> int:
    """Sweep stale unpaid intents and apply whatever the provider now reports."""
    older_than = older_than if older_than is not None else timedelta(seconds=config.RECONCILE_AGE_SEC)
    cutoff = utcnow() - older_than
    q = (
        db.query(models.Order)
        .filter(
            models.Order.payment_intent_id.isnot(None),
            models.Order.payment_status == "pending",
            models.Order.created_at < cutoff,
        )
        .order_by(models.Order.created_at)
        .limit(limit or config.RECONCILE_BATCH_SIZE)
    )
    if is_postgres(db):
        q = q.with_for_update(skip_locked=True)

    notes = []
    applied = 0
    try:
        for order in q.all():
            try:
                intent = provider.retrieve_intent(order.payment_intent_id)
            except PaymentProviderError as e:
                logger.warning("[reconcile] order=%s lookup failed: %s", order.id, e)
                continue
            new_notes = _apply_intent_status(db, order, intent.status)
            if new_notes:
                applied += 1
                notes.extend(new_notes)
        db.commit()
    except Exception:
        db.rollback()
        raise
    dispatch(notifier, notes)
    if applied:
        logger.info("[reconcile] applied %d confirmation(s)", applied)
    return applied
