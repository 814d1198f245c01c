import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from . import models
from .errors import Conflict, Forbidden, NotFound, ValidationError
from .models import utcnow

logger = logging.getLogger(__name__)


# --- users / stores ---

def get_user(db: Session, user_id: str) -> Optional[models.User]:
    return (
        db.query(models.User)
        .filter(models.User.id == user_id, models.User.deleted_at.is_(None))
        .first()
    )


def get_store_by_owner(db: Session, owner_id: str) -> Optional[models.Store]:
    return (
        db.query(models.Store)
        .filter(models.Store.owner_id == owner_id, models.Store.deleted_at.is_(None))
        .first()
    )


def create_store(db: Session, owner: models.User, store_name: str) -> models.Store:
    if owner.role != "seller":
        raise Forbidden("Only sellers can open a store")
    if get_store_by_owner(db, owner.id) is not None:
        raise Conflict("storeName", "You already have a store")
    store = models.Store(owner_id=owner.id, store_name=store_name)
    # count products listed before the store existed
    store.product_count = _active_product_count(db, owner.id)
    db.add(store)
    db.commit()
    return store


def update_store_status(db: Session, store_id: str, status: str) -> models.Store:
    store = db.get(models.Store, store_id)
    if store is None or store.deleted_at is not None:
        raise NotFound("Store not found")
    store.status = status
    db.commit()
    return store


def bump_store_counters(db: Session, owner_id: str, *, products: int = 0, orders: int = 0,
                        revenue: Decimal = Decimal("0")):
    """Single-statement increments; safe under concurrent writers."""
    db.execute(
        update(models.Store)
        .where(models.Store.owner_id == owner_id)
        .values(
            product_count=models.Store.product_count + products,
            order_count=models.Store.order_count + orders,
            total_revenue=models.Store.total_revenue + revenue,
        )
        .execution_options(synchronize_session="fetch")
    )


def _active_product_count(db: Session, vendor_id: str) -> int:
    return (
        db.query(func.count(models.Product.id))
        .filter(models.Product.vendor_id == vendor_id, models.Product.deleted_at.is_(None))
        .scalar()
    )


def reconcile_store_counters(db: Session, store_id: str) -> models.Store:
    """Recompute the cached counters from products and completed transactions."""
    store = db.get(models.Store, store_id)
    if store is None:
        raise NotFound("Store not found")
    store.product_count = _active_product_count(db, store.owner_id)
    store.order_count = (
        db.query(func.count(func.distinct(models.Transaction.order_id)))
        .filter(models.Transaction.seller_id == store.owner_id, models.Transaction.status == "completed")
        .scalar()
    )
    store.total_revenue = (
        db.query(func.coalesce(func.sum(models.Transaction.amount), 0))
        .filter(models.Transaction.seller_id == store.owner_id, models.Transaction.status == "completed")
        .scalar()
    )
    db.commit()
    logger.info("[crud] reconciled store=%s products=%s orders=%s revenue=%s",
                store.id, store.product_count, store.order_count, store.total_revenue)
    return store


# --- categories ---

def list_categories(db: Session) -> List[models.Category]:
    return (
        db.query(models.Category)
        .filter(models.Category.is_active.is_(True), models.Category.deleted_at.is_(None))
        .order_by(models.Category.sort_order, models.Category.name)
        .all()
    )


def get_category(db: Session, category_id: str) -> models.Category:
    c = db.get(models.Category, category_id)
    if c is None or c.deleted_at is not None:
        raise NotFound("Category not found")
    return c


def create_category(db: Session, data) -> models.Category:
    if db.query(models.Category.id).filter(models.Category.slug == data.slug).first():
        raise Conflict("slug", f"Category slug '{data.slug}' already exists")
    if data.parent_id:
        get_category(db, data.parent_id)
    c = models.Category(slug=data.slug, name=data.name, parent_id=data.parent_id, sort_order=data.sort_order)
    db.add(c)
    db.commit()
    return c


def update_category(db: Session, category_id: str, data) -> models.Category:
    c = get_category(db, category_id)
    changes = data.model_dump(exclude_unset=True)
    if changes.get("parent_id") == category_id:
        raise ValidationError("A category cannot be its own parent",
                              details=[{"field": "parentId", "message": "self reference"}])
    for field, value in changes.items():
        setattr(c, field, value)
    db.commit()
    return c


def delete_category(db: Session, category_id: str):
    c = get_category(db, category_id)
    in_use = (
        db.query(models.Product.id)
        .filter(models.Product.category_id == c.id, models.Product.deleted_at.is_(None))
        .first()
    )
    if in_use:
        raise Conflict("categoryId", "Category still has products")
    c.deleted_at = utcnow()
    c.is_active = False
    db.commit()


# --- products ---

def list_products(db: Session, *, category_id: str = None, vendor_id: str = None, search: str = None,
                  include_inactive: bool = False) -> List[models.Product]:
    q = db.query(models.Product).filter(models.Product.deleted_at.is_(None))
    if not include_inactive:
        q = q.filter(models.Product.is_active.is_(True))
    if category_id:
        q = q.filter(models.Product.category_id == category_id)
    if vendor_id:
        q = q.filter(models.Product.vendor_id == vendor_id)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(models.Product.name.ilike(like), models.Product.sku.ilike(like),
                         models.Product.brand.ilike(like)))
    return q.order_by(models.Product.created_at.desc()).all()


def get_product(db: Session, product_id: str) -> models.Product:
    p = db.get(models.Product, product_id)
    if p is None or p.deleted_at is not None:
        raise NotFound(f"Product {product_id} not found")
    return p


def create_product(db: Session, seller: models.User, data) -> models.Product:
    if db.query(models.Product.id).filter(models.Product.sku == data.sku).first():
        raise Conflict("sku", f"SKU '{data.sku}' is already in use")
    if db.query(models.Product.id).filter(models.Product.slug == data.slug).first():
        raise Conflict("slug", f"Slug '{data.slug}' is already in use")
    get_category(db, data.category_id)
    p = models.Product(vendor_id=seller.id, **data.model_dump())
    db.add(p)
    bump_store_counters(db, seller.id, products=1)
    db.commit()
    logger.info("[crud] product created id=%s vendor=%s sku=%s", p.id, seller.id, p.sku)
    return p


def update_product(db: Session, seller: models.User, product_id: str, data) -> models.Product:
    p = get_product(db, product_id)
    if p.vendor_id != seller.id and seller.role != "admin":
        raise Forbidden("You don't own this product")
    changes = data.model_dump(exclude_unset=True)
    if changes.get("category_id"):
        get_category(db, changes["category_id"])
    for field, value in changes.items():
        setattr(p, field, value)
    db.commit()
    return p


def delete_product(db: Session, seller: models.User, product_id: str):
    p = get_product(db, product_id)
    if p.vendor_id != seller.id and seller.role != "admin":
        raise Forbidden("You don't own this product")
    p.deleted_at = utcnow()
    p.is_active = False
    bump_store_counters(db, p.vendor_id, products=-1)
    db.commit()


# --- promotions ---

def create_promotion(db: Session, seller: models.User, data) -> models.Promotion:
    if db.query(models.Promotion.id).filter(models.Promotion.code == data.code).first():
        raise Conflict("code", f"Promotion code '{data.code}' already exists")
    if data.end_date <= data.start_date:
        raise ValidationError("endDate must be after startDate",
                              details=[{"field": "endDate", "message": "must be after startDate"}])
    promo = models.Promotion(vendor_id=seller.id, **data.model_dump())
    db.add(promo)
    db.commit()
    return promo


# --- cart ---

def get_cart(db: Session, user_id: str) -> List[models.CartItem]:
    return (
        db.query(models.CartItem)
        .join(models.Product, models.Product.id == models.CartItem.product_id)
        .filter(models.CartItem.user_id == user_id, models.Product.deleted_at.is_(None))
        .order_by(models.CartItem.created_at.desc())
        .all()
    )


def cart_count(db: Session, user_id: str) -> int:
    return int(
        db.query(func.coalesce(func.sum(models.CartItem.quantity), 0))
        .filter(models.CartItem.user_id == user_id)
        .scalar()
    )


def add_to_cart(db: Session, user_id: str, product_id: str, quantity: int) -> models.CartItem:
    get_product(db, product_id)
    item = (
        db.query(models.CartItem)
        .filter(models.CartItem.user_id == user_id, models.CartItem.product_id == product_id)
        .first()
    )
    if item:
        item.quantity += quantity
    else:
        item = models.CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
        db.add(item)
    db.commit()
    return item


def set_cart_quantity(db: Session, user_id: str, product_id: str, quantity: int):
    q = db.query(models.CartItem).filter(models.CartItem.user_id == user_id,
                                         models.CartItem.product_id == product_id)
    if quantity <= 0:
        q.delete(synchronize_session=False)
    else:
        if q.update({"quantity": quantity}, synchronize_session="fetch") == 0:
            raise NotFound("Item is not in the cart")
    db.commit()


def remove_from_cart(db: Session, user_id: str, product_id: str):
    (
        db.query(models.CartItem)
        .filter(models.CartItem.user_id == user_id, models.CartItem.product_id == product_id)
        .delete(synchronize_session=False)
    )
    db.commit()


def clear_cart(db: Session, user_id: str, commit: bool = True):
    db.query(models.CartItem).filter(models.CartItem.user_id == user_id).delete(synchronize_session=False)
    if commit:
        db.commit()


# --- wishlist ---

def get_wishlist(db: Session, user_id: str) -> List[models.WishlistItem]:
    return (
        db.query(models.WishlistItem)
        .join(models.Product, models.Product.id == models.WishlistItem.product_id)
        .filter(models.WishlistItem.user_id == user_id, models.Product.deleted_at.is_(None))
        .order_by(models.WishlistItem.created_at.desc())
        .all()
    )


def add_to_wishlist(db: Session, user_id: str, product_id: str) -> models.WishlistItem:
    get_product(db, product_id)
    existing = (
        db.query(models.WishlistItem)
        .filter(models.WishlistItem.user_id == user_id, models.WishlistItem.product_id == product_id)
        .first()
    )
    if existing:
        return existing
    item = models.WishlistItem(user_id=user_id, product_id=product_id)
    db.add(item)
    db.commit()
    return item


def remove_from_wishlist(db: Session, user_id: str, product_id: str):
    (
        db.query(models.WishlistItem)
        .filter(models.WishlistItem.user_id == user_id, models.WishlistItem.product_id == product_id)
        .delete(synchronize_session=False)
    )
    db.commit()


def in_wishlist(db: Session, user_id: str, product_id: str) -> bool:
    return (
        db.query(models.WishlistItem.id)
        .filter(models.WishlistItem.user_id == user_id, models.WishlistItem.product_id == product_id)
        .first()
        is not None
    )


# --- seller ledger ---

def seller_transactions(db: Session, seller_id: str, status: str = None):
    q = (
        db.query(models.Transaction, models.Order)
        .join(models.Order, models.Order.id == models.Transaction.order_id)
        .filter(models.Transaction.seller_id == seller_id)
    )
    if status:
        q = q.filter(models.Transaction.status == status)
    return q.order_by(models.Transaction.created_at.desc()).all()


def seller_revenue(db: Session, seller_id: str) -> dict:
    rows = seller_transactions(db, seller_id, status="completed")
    total = sum((Decimal(t.amount) for t, _ in rows), Decimal("0"))
    return {"total": total, "currency": rows[0][0].currency if rows else "usd", "rows": rows}
