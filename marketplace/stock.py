import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from . import config, models
from .errors import NotFound, OutOfStock
from .models import utcnow

logger = logging.getLogger(__name__)


def decrement_stock(db: Session, product_id: str, qty: int) -> int:
    """Conditional decrement; fails instead of driving stock negative."""
    result = db.execute(
        update(models.Product)
        .where(models.Product.id == product_id, models.Product.stock >= qty)
        .values(stock=models.Product.stock - qty)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise OutOfStock(product_id, qty)
    return db.execute(select(models.Product.stock).where(models.Product.id == product_id)).scalar_one()


def restore_stock(db: Session, product_id: str, qty: int):
    db.execute(
        update(models.Product)
        .where(models.Product.id == product_id)
        .values(stock=models.Product.stock + qty)
        .execution_options(synchronize_session="fetch")
    )


def alert_for(stock: int, min_threshold: int):
    """Return (alert_type, message) for a post-change stock level, or None."""
    if stock == 0:
        return "critical", "Completely out of stock"
    if stock <= min_threshold:
        return "important", f"Low stock: only {stock} left"
    return None


def raise_alert_if_low(db: Session, product: models.Product, new_stock: int) -> Optional[models.StockAlert]:
    verdict = alert_for(new_stock, product.min_threshold)
    if verdict is None:
        return None
    alert_type, message = verdict
    alert = models.StockAlert(
        product_id=product.id,
        seller_id=product.vendor_id,
        alert_type=alert_type,
        message=message,
        status="active",
    )
    db.add(alert)
    logger.info("[stock] %s alert product=%s stock=%s", alert_type, product.id, new_stock)
    return alert


def _seller_product(db: Session, seller_id: str, product_id: str) -> models.Product:
    product = (
        db.query(models.Product)
        .filter(models.Product.id == product_id, models.Product.vendor_id == seller_id,
                models.Product.deleted_at.is_(None))
        .first()
    )
    if product is None:
        raise NotFound("Product not found or you don't have permission to modify it")
    return product


def adjust_stock(db: Session, seller_id: str, product_id: str, adjustment) -> dict:
    product = _seller_product(db, seller_id, product_id)
    old_stock = product.stock
    if adjustment.adjustment_type == "increase":
        new_stock = old_stock + adjustment.quantity
    else:
        new_stock = max(0, old_stock - adjustment.quantity)
    product.stock = new_stock
    if new_stock < old_stock:
        raise_alert_if_low(db, product, new_stock)
    db.commit()
    logger.info(
        "[stock] adjustment product=%s seller=%s %s -> %s type=%s reason=%s",
        product_id, seller_id, old_stock, new_stock, adjustment.adjustment_type, adjustment.reason,
    )
    return {"product": product, "oldStock": old_stock, "newStock": new_stock}


def list_alerts(db: Session, seller_id: str) -> List[models.StockAlert]:
    return (
        db.query(models.StockAlert)
        .filter(models.StockAlert.seller_id == seller_id)
        .order_by(models.StockAlert.created_at.desc())
        .all()
    )


def _seller_alert(db: Session, seller_id: str, alert_id: str) -> models.StockAlert:
    alert = db.get(models.StockAlert, alert_id)
    if alert is None or alert.seller_id != seller_id:
        raise NotFound("Stock alert not found")
    return alert


def resolve_alert(db: Session, seller_id: str, alert_id: str) -> models.StockAlert:
    alert = _seller_alert(db, seller_id, alert_id)
    if alert.status != "resolved":
        alert.status = "resolved"
        alert.resolved_by = seller_id
        alert.resolved_at = utcnow()
        db.commit()
    return alert


def delete_alert(db: Session, seller_id: str, alert_id: str):
    db.delete(_seller_alert(db, seller_id, alert_id))
    db.commit()


# --- replenishment ---

def reorder_cutoff(product: models.Product) -> int:
    return product.min_threshold if product.min_threshold > 0 else config.LOW_STOCK_CUTOFF


def suggested_quantity(product: models.Product) -> int:
    return max(reorder_cutoff(product) * 2 - product.stock, 0)


def replenishment_suggestions(db: Session, seller_id: str) -> List[dict]:
    products = (
        db.query(models.Product)
        .filter(models.Product.vendor_id == seller_id, models.Product.is_active.is_(True),
                models.Product.deleted_at.is_(None))
        .order_by(models.Product.stock.asc())
        .all()
    )
    out = []
    for p in products:
        if p.stock >= reorder_cutoff(p):
            continue
        qty = suggested_quantity(p)
        unit_cost = Decimal(p.purchase_price or 0)
        out.append({
            "id": p.id,
            "sku": p.sku,
            "name": p.name,
            "brand": p.brand,
            "stock": p.stock,
            "minThreshold": p.min_threshold,
            "purchasePrice": str(unit_cost.quantize(Decimal("0.01"))),
            "replenishmentStatus": p.replenishment_status,
            "suggestedQty": qty,
            "totalCost": str((unit_cost * qty).quantize(Decimal("0.01"))),
        })
    return out


def mark_replenishment_ordered(db: Session, seller_id: str, product_ids: List[str]) -> int:
    result = db.execute(
        update(models.Product)
        .where(models.Product.vendor_id == seller_id, models.Product.id.in_(product_ids))
        .values(replenishment_status="order")
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
    return result.rowcount


def restock(db: Session, seller_id: str, product_id: str) -> models.Product:
    product = _seller_product(db, seller_id, product_id)
    qty = product.suggested_quantity or suggested_quantity(product)
    product.stock = product.stock + qty
    product.replenishment_status = "restocked"
    now = utcnow()
    (
        db.query(models.StockAlert)
        .filter(models.StockAlert.product_id == product.id, models.StockAlert.status == "active")
        .update({"status": "resolved", "resolved_by": seller_id, "resolved_at": now},
                synchronize_session="fetch")
    )
    db.commit()
    logger.info("[stock] restocked product=%s +%s -> %s", product.id, qty, product.stock)
    return product


def restock_order(db: Session, order: models.Order):
    for item in order.items:
        restore_stock(db, item.product_id, item.quantity)
    logger.info("[stock] restored %d line(s) for order=%s", len(order.items), order.id)
