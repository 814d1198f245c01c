"""Read-only KPI aggregates for the client, seller and admin dashboards."""
import math
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import config, models
from .models import utcnow

REVENUE_STATUS = "delivered"
NOT_SPENT = ("failed", "cancelled", "refunded")


def percentage_change(current, previous) -> float:
    current, previous = float(current or 0), float(previous or 0)
    if current == 0 and previous == 0:
        return 0.0
    if previous == 0:
        return 100.0
    return (current - previous) / previous * 100


def _whole(value) -> int:
    """Nearest integer, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def month_bounds(now: datetime = None) -> Tuple[datetime, datetime, datetime]:
    """(previous month start, current month start, next month start)."""
    now = now or utcnow()
    current = datetime(now.year, now.month, 1)
    if now.month == 1:
        previous = datetime(now.year - 1, 12, 1)
    else:
        previous = datetime(now.year, now.month - 1, 1)
    if now.month == 12:
        following = datetime(now.year + 1, 1, 1)
    else:
        following = datetime(now.year, now.month + 1, 1)
    return previous, current, following


def client_stats(db: Session, user_id: str) -> dict:
    total_orders = (
        db.query(func.count(models.Order.id))
        .filter(models.Order.user_id == user_id, models.Order.deleted_at.is_(None))
        .scalar()
    )
    wishlist_items = (
        db.query(func.count(models.WishlistItem.id))
        .filter(models.WishlistItem.user_id == user_id)
        .scalar()
    )
    spent = (
        db.query(func.coalesce(func.sum(models.Order.total_amount), 0))
        .filter(models.Order.user_id == user_id, models.Order.deleted_at.is_(None),
                models.Order.status.notin_(NOT_SPENT))
        .scalar()
    )
    return {
        "totalOrders": int(total_orders or 0),
        "wishlistItems": int(wishlist_items or 0),
        "totalSpent": str(Decimal(spent or 0).quantize(Decimal("0.01"))),
    }


def _seller_sales(db: Session, seller_id: str, start: datetime, end: datetime):
    row = (
        db.query(
            func.coalesce(func.sum(models.OrderItem.total_price), 0),
            func.count(func.distinct(models.Order.id)),
        )
        .join(models.Product, models.Product.id == models.OrderItem.product_id)
        .join(models.Order, models.Order.id == models.OrderItem.order_id)
        .filter(
            models.Product.vendor_id == seller_id,
            models.Order.status == REVENUE_STATUS,
            models.Order.deleted_at.is_(None),
            models.Order.created_at >= start,
            models.Order.created_at < end,
        )
        .one()
    )
    return Decimal(row[0] or 0), int(row[1] or 0)


def _created_between(db: Session, column, start: datetime, end: datetime, *criteria) -> int:
    return int(
        db.query(func.count())
        .select_from(column.class_)
        .filter(column >= start, column < end, *criteria)
        .scalar()
        or 0
    )


def seller_stats(db: Session, seller_id: str, now: datetime = None) -> dict:
    previous, current, following = month_bounds(now)

    revenue, orders = _seller_sales(db, seller_id, current, following)
    prev_revenue, prev_orders = _seller_sales(db, seller_id, previous, current)

    products = (
        db.query(func.count(models.Product.id))
        .filter(models.Product.vendor_id == seller_id, models.Product.is_active.is_(True),
                models.Product.deleted_at.is_(None))
        .scalar()
    )
    promotions = (
        db.query(func.count(models.Promotion.id))
        .filter(models.Promotion.vendor_id == seller_id)
        .scalar()
    )
    own_product = models.Product.vendor_id == seller_id
    own_promo = models.Promotion.vendor_id == seller_id
    new_products = _created_between(db, models.Product.created_at, current, following, own_product)
    prev_products = _created_between(db, models.Product.created_at, previous, current, own_product)
    new_promos = _created_between(db, models.Promotion.created_at, current, following, own_promo)
    prev_promos = _created_between(db, models.Promotion.created_at, previous, current, own_promo)

    return {
        "turnover": _whole(revenue),
        "turnoverChange": _whole(percentage_change(revenue, prev_revenue)),
        "orders": orders,
        "ordersChange": _whole(percentage_change(orders, prev_orders)),
        "products": int(products or 0),
        "productsChange": _whole(percentage_change(new_products, prev_products)),
        "promotions": int(promotions or 0),
        "promotionsChange": _whole(percentage_change(new_promos, prev_promos)),
    }


def _delivered(db: Session, start: datetime = None, end: datetime = None):
    q = db.query(
        func.coalesce(func.sum(models.Order.total_amount), 0),
        func.count(models.Order.id),
    ).filter(models.Order.status == REVENUE_STATUS, models.Order.deleted_at.is_(None))
    if start is not None:
        q = q.filter(models.Order.created_at >= start, models.Order.created_at < end)
    total, count = q.one()
    return Decimal(total or 0) * config.COMMISSION_RATE, int(count or 0)


def admin_stats(db: Session, now: datetime = None) -> dict:
    previous, current, following = month_bounds(now)

    revenue, orders = _delivered(db)
    month_revenue, month_orders = _delivered(db, current, following)
    prev_revenue, prev_orders = _delivered(db, previous, current)

    approved = models.Store.status == "approved"
    sellers = db.query(func.count(models.Store.id)).filter(approved, models.Store.deleted_at.is_(None)).scalar()
    new_shops = _created_between(db, models.Store.created_at, current, following, approved)
    prev_shops = _created_between(db, models.Store.created_at, previous, current, approved)

    client_filter = (
        models.User.role == "client",
        models.User.email_verified.is_(True),
        models.User.is_active.is_(True),
    )
    clients = db.query(func.count(models.User.id)).filter(*client_filter).scalar()
    new_clients = _created_between(db, models.User.created_at, current, following, *client_filter)
    prev_clients = _created_between(db, models.User.created_at, previous, current, *client_filter)

    return {
        "totalRevenue": math.floor(revenue),
        "totalSellers": int(sellers or 0),
        "totalOrders": orders,
        "totalClients": int(clients or 0),
        "revenueChange": _whole(percentage_change(month_revenue, prev_revenue)),
        "shopsChange": _whole(percentage_change(new_shops, prev_shops)),
        "ordersChange": _whole(percentage_change(month_orders, prev_orders)),
        "clientsChange": _whole(percentage_change(new_clients, prev_clients)),
    }
