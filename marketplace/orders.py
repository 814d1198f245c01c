"""Order lifecycle.

Every status change goes through ``TRANSITIONS``; anything not listed there
raises ``InvalidTransition``. Side effects (ledger rows, stock, store
counters, buyer notifications, outbox events) are written in the same
transaction as the status change and notifications are pushed after commit.
"""
import logging
from typing import List

from sqlalchemy.orm import Session

from . import models
from .crud import bump_store_counters
from .errors import Forbidden, InvalidTransition, NotFound, PaymentProviderError, ValidationError
from .events import record_event
from .notifications import create_notification, dispatch
from .stock import restock_order

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "pending": {"processing", "shipped", "cancelled", "refunded", "failed"},
    "processing": {"shipped", "cancelled", "refunded"},
    "shipped": {"delivered", "cancelled", "refunded"},
    "delivered": set(),
    "cancelled": set(),
    "refunded": set(),
    "failed": set(),
}

# ledger rows in these states are settled and never move again
_CLOSED_TX = {"failed", "cancelled", "refunded"}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def ensure_transition(order: models.Order, target: str):
    if not can_transition(order.status, target):
        raise InvalidTransition(order.status, target)


def _set_transactions(order: models.Order, status: str):
    for t in order.transactions:
        if t.status not in _CLOSED_TX:
            t.status = status


# --- read side ---

def _load(db: Session, order_id: str) -> models.Order:
    order = db.get(models.Order, order_id)
    if order is None or order.deleted_at is not None:
        raise NotFound("Order not found")
    return order


def _is_participant(order: models.Order, user: models.User) -> bool:
    if user.role == "admin" or order.user_id == user.id:
        return True
    return any(t.seller_id == user.id for t in order.transactions)


def list_orders(db: Session, user: models.User, status: str = None) -> List[models.Order]:
    q = db.query(models.Order).filter(models.Order.deleted_at.is_(None))
    if user.role == "seller":
        sold = db.query(models.Transaction.order_id).filter(models.Transaction.seller_id == user.id)
        q = q.filter(models.Order.id.in_(sold))
    elif user.role != "admin":
        q = q.filter(models.Order.user_id == user.id)
    if status:
        q = q.filter(models.Order.status == status)
    return q.order_by(models.Order.created_at.desc()).all()


def get_order(db: Session, user: models.User, order_id: str) -> models.Order:
    order = _load(db, order_id)
    if not _is_participant(order, user):
        raise NotFound("Order not found")
    return order


def _managed(db: Session, user: models.User, order_id: str) -> models.Order:
    order = _load(db, order_id)
    if user.role == "admin":
        return order
    if user.role == "seller" and any(t.seller_id == user.id for t in order.transactions):
        return order
    raise Forbidden("You can't manage this order")


def _buyer_note(db: Session, order: models.Order, type: str, title: str, message: str) -> models.Notification:
    return create_notification(
        db,
        user_id=order.user_id,
        type=type,
        title=title,
        message=message,
        data={"orderId": order.id, "orderNumber": order.order_number, "status": order.status},
    )


def _commit(db: Session, notifier, notes):
    db.commit()
    dispatch(notifier, notes)


# --- transitions ---

def mark_processing(db: Session, notifier, user: models.User, order_id: str) -> models.Order:
    order = _managed(db, user, order_id)
    ensure_transition(order, "processing")
    order.status = "processing"
    note = _buyer_note(db, order, "order_processing", "Order in preparation",
                       f"Your order {order.order_number} is being prepared")
    _commit(db, notifier, [note])
    logger.info("[orders] %s -> processing by %s", order.id, user.id)
    return order


def ship_order(db: Session, notifier, user: models.User, order_id: str, req) -> models.Order:
    order = _managed(db, user, order_id)
    ensure_transition(order, "shipped")
    order.status = "shipped"
    order.carrier_name = req.carrier
    order.tracking_number = req.tracking_number
    if req.estimated_delivery is not None:
        order.delivery_date = req.estimated_delivery.replace(tzinfo=None)
    note = _buyer_note(db, order, "order_shipped", "Order shipped",
                       f"Your order {order.order_number} was shipped with {req.carrier} "
                       f"(tracking {req.tracking_number})")
    record_event(db, "order.shipped", {
        "order_id": order.id,
        "order_number": order.order_number,
        "carrier": req.carrier,
        "tracking_number": req.tracking_number,
    })
    _commit(db, notifier, [note])
    logger.info("[orders] %s shipped carrier=%s tracking=%s", order.id, req.carrier, req.tracking_number)
    return order


def deliver_order(db: Session, notifier, user: models.User, order_id: str) -> models.Order:
    order = _managed(db, user, order_id)
    ensure_transition(order, "delivered")
    order.status = "delivered"
    if order.payment_method == "cash_on_delivery" and order.payment_status == "pending":
        order.payment_status = "paid"
    for t in order.transactions:
        if t.status in _CLOSED_TX:
            continue
        t.status = "completed"
        bump_store_counters(db, t.seller_id, orders=1, revenue=t.amount)
    note = _buyer_note(db, order, "order_delivered", "Order delivered",
                       f"Your order {order.order_number} was delivered")
    record_event(db, "order.delivered", {"order_id": order.id, "order_number": order.order_number})
    _commit(db, notifier, [note])
    logger.info("[orders] %s delivered", order.id)
    return order


def _cancel(db: Session, order: models.Order, reason: str):
    ensure_transition(order, "cancelled")
    order.status = "cancelled"
    order.cancel_reason = reason
    _set_transactions(order, "cancelled")
    restock_order(db, order)
    record_event(db, "order.cancelled", {"order_id": order.id, "reason": reason})
    return _buyer_note(db, order, "order_cancelled", "Order cancelled",
                       f"Your order {order.order_number} was cancelled"
                       + (f": {reason}" if reason else ""))


def _release_intent(provider, order: models.Order):
    if not order.payment_intent_id or order.payment_status == "paid":
        return
    try:
        provider.cancel_intent(order.payment_intent_id)
    except PaymentProviderError as e:
        logger.warning("[orders] could not cancel intent %s: %s", order.payment_intent_id, e)


def cancel_order(db: Session, notifier, provider, user: models.User, order_id: str,
                 reason: str = None) -> models.Order:
    order = _managed(db, user, order_id)
    note = _cancel(db, order, reason)
    _commit(db, notifier, [note])
    _release_intent(provider, order)
    logger.info("[orders] %s cancelled by %s", order.id, user.id)
    return order


def refund_order(db: Session, notifier, user: models.User, order_id: str, reason: str = None,
                 restock_items: bool = False) -> models.Order:
    if user.role != "admin":
        raise Forbidden("Only admins can refund orders")
    order = _load(db, order_id)
    ensure_transition(order, "refunded")
    order.status = "refunded"
    order.payment_status = "refunded"
    order.cancel_reason = reason or order.cancel_reason
    for t in order.transactions:
        t.status = "refunded"
    if restock_items:
        restock_order(db, order)
    record_event(db, "order.refunded", {"order_id": order.id, "restocked": restock_items})
    note = _buyer_note(db, order, "order_refunded", "Order refunded",
                       f"Your order {order.order_number} was refunded")
    _commit(db, notifier, [note])
    logger.info("[orders] %s refunded restock=%s", order.id, restock_items)
    return order


def flag_order(db: Session, notifier, provider, user: models.User, order_id: str, req) -> models.Order:
    if user.role != "admin":
        raise Forbidden("Only admins can flag orders")
    order = _load(db, order_id)
    reason = f"Flagged ({req.severity}): {req.reason}"
    buyer = _cancel(db, order, reason)
    admins = create_notification(
        db,
        user_id=None,
        type="order_flagged",
        title="Order flagged",
        message=f"Order {order.order_number} was flagged: {req.reason}",
        data={"orderId": order.id, "severity": req.severity, "description": req.description,
              "flaggedBy": user.id},
    )
    _commit(db, notifier, [buyer, admins])
    _release_intent(provider, order)
    logger.warning("[orders] %s flagged severity=%s reason=%s", order.id, req.severity, req.reason)
    return order


def fail_payment(db: Session, order: models.Order) -> bool:
    """Apply a failed payment. Returns True when the order itself moved to failed."""
    order.payment_status = "failed"
    # only an unfulfilled order can fail; later states keep their own flow
    if order.status != "pending":
        return False
    order.status = "failed"
    _set_transactions(order, "failed")
    restock_order(db, order)
    return True


def update_status(db: Session, notifier, provider, user: models.User, order_id: str,
                  status: str) -> models.Order:
    order = _managed(db, user, order_id)
    ensure_transition(order, status)
    if status == "processing":
        return mark_processing(db, notifier, user, order_id)
    if status == "delivered":
        return deliver_order(db, notifier, user, order_id)
    if status == "cancelled":
        return cancel_order(db, notifier, provider, user, order_id)
    if status == "refunded":
        return refund_order(db, notifier, user, order_id)
    if status == "shipped":
        raise ValidationError(
            "Shipping requires a carrier and a tracking number",
            details=[{"field": "trackingNumber", "message": "use the ship action"}],
        )
    # failed
    if user.role != "admin":
        raise Forbidden("Only admins can mark an order as failed")
    fail_payment(db, order)
    note = _buyer_note(db, order, "order_failed", "Order failed",
                       f"Your order {order.order_number} could not be completed")
    _commit(db, notifier, [note])
    return order
