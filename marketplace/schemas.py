from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- checkout ---

class CartLine(CamelModel):
    product_id: str
    quantity: int = Field(gt=0)
    # accepted for compatibility, always re-resolved from the product row
    price: Optional[Decimal] = None
    vendor_id: Optional[str] = None


class ShippingAddress(CamelModel):
    full_name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = ""
    zip_code: str = ""
    email: EmailStr
    country: Optional[str] = None


class ShippingSelection(CamelModel):
    zone_id: str
    carrier_id: str


class CheckoutRequest(CamelModel):
    cart_items: Optional[List[CartLine]] = None
    shipping_address: ShippingAddress
    payment_method: Literal["card", "cash_on_delivery"] = "card"
    currency: str = Field(default="usd", min_length=3, max_length=3)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    shipping: Optional[ShippingSelection] = None
    idempotency_key: Optional[str] = None


class ConfirmPaymentRequest(CamelModel):
    payment_intent_id: str = Field(min_length=1)


# --- order actions ---

class StatusUpdate(CamelModel):
    status: Literal["pending", "processing", "shipped", "delivered", "cancelled", "refunded", "failed"]


class ShipRequest(CamelModel):
    carrier: str = Field(min_length=1)
    tracking_number: str = Field(min_length=1)
    estimated_delivery: Optional[datetime] = None
    notes: Optional[str] = None


class CancelRequest(CamelModel):
    reason: Optional[str] = None


class RefundRequest(CamelModel):
    reason: Optional[str] = None
    restock_items: bool = False


class FlagRequest(CamelModel):
    reason: str = Field(min_length=1)
    severity: Literal["low", "medium", "high"] = "medium"
    description: Optional[str] = None


# --- catalog ---

class CategoryCreate(CamelModel):
    slug: str = Field(min_length=1)
    name: str = Field(min_length=1)
    parent_id: Optional[str] = None
    sort_order: int = 0


class CategoryUpdate(CamelModel):
    name: Optional[str] = None
    parent_id: Optional[str] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class ProductCreate(CamelModel):
    category_id: str
    name: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    sku: str = Field(min_length=1)
    brand: str = "Unknown Brand"
    price: Decimal = Field(gt=0)
    original_price: Optional[Decimal] = None
    purchase_price: Optional[Decimal] = None
    stock: int = Field(default=0, ge=0)
    min_threshold: int = Field(default=0, ge=0)
    suggested_quantity: int = Field(default=0, ge=0)


class ProductUpdate(CamelModel):
    name: Optional[str] = None
    category_id: Optional[str] = None
    brand: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, gt=0)
    original_price: Optional[Decimal] = None
    purchase_price: Optional[Decimal] = None
    min_threshold: Optional[int] = Field(default=None, ge=0)
    suggested_quantity: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class StockAdjustment(CamelModel):
    adjustment_type: Literal["increase", "decrease"]
    quantity: int = Field(gt=0)
    reason: str = Field(min_length=1)
    notes: Optional[str] = None


class ReplenishmentOrder(CamelModel):
    product_ids: List[str] = Field(min_length=1)


class PromotionCreate(CamelModel):
    code: str = Field(min_length=1)
    discount_type: Literal["percent", "fixed"]
    value: Decimal = Field(gt=0)
    start_date: datetime
    end_date: datetime


# --- cart / wishlist / stores ---

class CartAdd(CamelModel):
    quantity: int = Field(default=1, gt=0)


class CartQuantity(CamelModel):
    quantity: int


class StoreCreate(CamelModel):
    store_name: str = Field(min_length=1)


class StoreStatusUpdate(CamelModel):
    status: Literal["pending_validation", "approved", "suspended"]


# --- shipping ---

class CarrierCreate(CamelModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    tracking_url: Optional[str] = None
    base_price: Decimal = Field(default=Decimal("0"), ge=0)
    delivers_nationwide: bool = False
    is_active: bool = True


class CarrierUpdate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    tracking_url: Optional[str] = None
    base_price: Optional[Decimal] = Field(default=None, ge=0)
    delivers_nationwide: Optional[bool] = None
    is_active: Optional[bool] = None


class ZoneCarrierIn(CamelModel):
    carrier_id: str
    price: Decimal = Field(ge=0)
    delivery_time: Optional[str] = None
    is_active: bool = True


class ZoneCreate(CamelModel):
    name: str = Field(min_length=1)
    # a list, or a comma/space separated string
    cities: List[str] | str
    is_active: bool = True
    zone_carriers: List[ZoneCarrierIn] = []


class ZoneUpdate(CamelModel):
    name: Optional[str] = None
    cities: Optional[List[str] | str] = None
    is_active: Optional[bool] = None
    zone_carriers: Optional[List[ZoneCarrierIn]] = None


# --- serializers ---

def money(value) -> str:
    return str(Decimal(value or 0).quantize(Decimal("0.01")))


def _ts(value):
    return value.isoformat() if value else None


def order_to_dict(order, with_items: bool = False) -> dict:
    out = {
        "id": order.id,
        "orderNumber": order.order_number,
        "userId": order.user_id,
        "customerName": order.customer_name,
        "customerEmail": order.customer_email,
        "customerPhone": order.customer_phone,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "paymentMethod": order.payment_method,
        "paymentIntentId": order.payment_intent_id,
        "currency": order.currency,
        "totalAmount": money(order.total_amount),
        "shippingAmount": money(order.shipping_amount),
        "itemCount": order.item_count,
        "shippingAddress": order.shipping_address,
        "shippingOption": order.shipping_option,
        "carrierName": order.carrier_name,
        "trackingNumber": order.tracking_number,
        "deliveryDate": _ts(order.delivery_date),
        "createdAt": _ts(order.created_at),
    }
    if with_items:
        out["items"] = [
            {
                "id": i.id,
                "productId": i.product_id,
                "quantity": i.quantity,
                "unitPrice": money(i.unit_price),
                "totalPrice": money(i.total_price),
            }
            for i in order.items
        ]
        out["transactions"] = [transaction_to_dict(t) for t in order.transactions]
    return out


def transaction_to_dict(t) -> dict:
    return {
        "id": t.id,
        "orderId": t.order_id,
        "sellerId": t.seller_id,
        "amount": money(t.amount),
        "currency": t.currency,
        "status": t.status,
        "paymentMethod": t.payment_method,
        "createdAt": _ts(t.created_at),
    }


def product_to_dict(p) -> dict:
    return {
        "id": p.id,
        "vendorId": p.vendor_id,
        "categoryId": p.category_id,
        "name": p.name,
        "slug": p.slug,
        "sku": p.sku,
        "brand": p.brand,
        "price": money(p.price),
        "originalPrice": money(p.original_price) if p.original_price is not None else None,
        "purchasePrice": money(p.purchase_price) if p.purchase_price is not None else None,
        "stock": p.stock,
        "minThreshold": p.min_threshold,
        "suggestedQuantity": p.suggested_quantity,
        "replenishmentStatus": p.replenishment_status,
        "isActive": p.is_active,
    }


def category_to_dict(c) -> dict:
    return {
        "id": c.id,
        "slug": c.slug,
        "name": c.name,
        "parentId": c.parent_id,
        "isActive": c.is_active,
        "sortOrder": c.sort_order,
    }


def notification_to_dict(n) -> dict:
    return {
        "id": n.id,
        "userId": n.user_id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "data": n.data or {},
        "isRead": n.is_read,
        "createdAt": _ts(n.created_at),
    }


def alert_to_dict(a) -> dict:
    return {
        "id": a.id,
        "productId": a.product_id,
        "productName": a.product.name if a.product else None,
        "alertType": a.alert_type,
        "message": a.message,
        "status": a.status,
        "resolvedBy": a.resolved_by,
        "resolvedAt": _ts(a.resolved_at),
        "createdAt": _ts(a.created_at),
    }


def store_to_dict(s) -> dict:
    return {
        "id": s.id,
        "ownerId": s.owner_id,
        "storeName": s.store_name,
        "status": s.status,
        "productCount": s.product_count,
        "orderCount": s.order_count,
        "totalRevenue": money(s.total_revenue),
    }


def carrier_to_dict(c) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "trackingUrl": c.tracking_url,
        "basePrice": money(c.base_price),
        "deliversNationwide": c.delivers_nationwide,
        "isActive": c.is_active,
    }


def zone_to_dict(z) -> dict:
    return {
        "id": z.id,
        "shopId": z.shop_id,
        "name": z.name,
        "cities": z.cities or [],
        "isActive": z.is_active,
        "carriers": [
            {
                "id": zc.id,
                "carrierId": zc.carrier_id,
                "carrierName": zc.carrier.name if zc.carrier else None,
                "price": money(zc.price),
                "deliveryTime": zc.delivery_time,
                "isActive": zc.is_active,
            }
            for zc in z.carriers
        ],
    }
