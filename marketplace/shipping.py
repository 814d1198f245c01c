import logging
import re
from decimal import Decimal
from typing import List, Tuple

from sqlalchemy.orm import Session

from . import models
from .errors import Forbidden, NotFound, ValidationError

logger = logging.getLogger(__name__)

_CITY_SPLIT = re.compile(r"[\s,;]+")


def normalize_cities(cities) -> List[str]:
    if cities is None:
        return []
    if isinstance(cities, str):
        cities = _CITY_SPLIT.split(cities)
    return [c.strip() for c in cities if c and c.strip()]


# --- carriers ---

def list_carriers(db: Session, active_only: bool = False) -> List[models.Carrier]:
    q = db.query(models.Carrier)
    if active_only:
        q = q.filter(models.Carrier.is_active.is_(True))
    return q.order_by(models.Carrier.name).all()


def get_carrier(db: Session, carrier_id: str) -> models.Carrier:
    c = db.get(models.Carrier, carrier_id)
    if c is None:
        raise NotFound("Carrier not found")
    return c


def create_carrier(db: Session, data) -> models.Carrier:
    c = models.Carrier(**data.model_dump())
    db.add(c)
    db.commit()
    return c


def update_carrier(db: Session, carrier_id: str, data) -> models.Carrier:
    c = get_carrier(db, carrier_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(c, field, value)
    db.commit()
    return c


def delete_carrier(db: Session, carrier_id: str):
    db.delete(get_carrier(db, carrier_id))
    db.commit()


# --- zones ---

def _shop_for(db: Session, user: models.User) -> models.Store:
    store = (
        db.query(models.Store)
        .filter(models.Store.owner_id == user.id, models.Store.deleted_at.is_(None))
        .first()
    )
    if store is None:
        raise NotFound("You don't have a store yet")
    return store


def _zone_carriers(db: Session, rows) -> List[models.ShippingZoneCarrier]:
    out = []
    for row in rows:
        get_carrier(db, row.carrier_id)
        out.append(models.ShippingZoneCarrier(
            carrier_id=row.carrier_id,
            price=row.price,
            delivery_time=row.delivery_time,
            is_active=row.is_active,
        ))
    return out


def list_zones(db: Session, shop_id: str) -> List[models.ShippingZone]:
    return (
        db.query(models.ShippingZone)
        .filter(models.ShippingZone.shop_id == shop_id)
        .order_by(models.ShippingZone.created_at)
        .all()
    )


def _owned_zone(db: Session, user: models.User, zone_id: str) -> models.ShippingZone:
    zone = db.get(models.ShippingZone, zone_id)
    if zone is None:
        raise NotFound("Shipping zone not found")
    if user.role != "admin" and zone.shop_id != _shop_for(db, user).id:
        raise Forbidden("This zone belongs to another shop")
    return zone


def create_zone(db: Session, user: models.User, data) -> models.ShippingZone:
    store = _shop_for(db, user)
    cities = normalize_cities(data.cities)
    if not cities:
        raise ValidationError("At least one city is required",
                              details=[{"field": "cities", "message": "must not be empty"}])
    zone = models.ShippingZone(shop_id=store.id, name=data.name, cities=cities, is_active=data.is_active)
    zone.carriers = _zone_carriers(db, data.zone_carriers)
    db.add(zone)
    db.commit()
    logger.info("[shipping] zone created id=%s shop=%s cities=%d", zone.id, store.id, len(cities))
    return zone


def update_zone(db: Session, user: models.User, zone_id: str, data) -> models.ShippingZone:
    zone = _owned_zone(db, user, zone_id)
    changes = data.model_dump(exclude_unset=True)
    if "name" in changes and changes["name"]:
        zone.name = changes["name"]
    if "is_active" in changes and changes["is_active"] is not None:
        zone.is_active = changes["is_active"]
    if data.cities is not None:
        zone.cities = normalize_cities(data.cities)
    if data.zone_carriers is not None:
        # the submitted list replaces the previous pricing
        zone.carriers = _zone_carriers(db, data.zone_carriers)
    db.commit()
    return zone


def delete_zone(db: Session, user: models.User, zone_id: str):
    db.delete(_owned_zone(db, user, zone_id))
    db.commit()


def options_by_city(db: Session, city: str) -> List[dict]:
    needle = (city or "").strip().lower()
    if not needle:
        raise ValidationError("city is required", details=[{"field": "city", "message": "required"}])
    zones = (
        db.query(models.ShippingZone)
        .filter(models.ShippingZone.is_active.is_(True))
        .order_by(models.ShippingZone.created_at)
        .all()
    )
    seen = set()
    out = []
    for zone in zones:
        if needle not in (c.lower() for c in zone.cities or []):
            continue
        for zc in zone.carriers:
            if not zc.is_active or zc.carrier is None or not zc.carrier.is_active:
                continue
            if zc.carrier_id in seen:
                continue
            seen.add(zc.carrier_id)
            out.append({
                "zoneId": zone.id,
                "carrierId": zc.carrier_id,
                "carrierName": zc.carrier.name,
                "region": zone.name,
                "price": str(Decimal(zc.price).quantize(Decimal("0.01"))),
                "deliveryTime": zc.delivery_time,
            })
    return out


def resolve_shipping_option(db: Session, zone_id: str, carrier_id: str) -> Tuple[dict, Decimal]:
    """Denormalized shipping option for an order plus the price to charge."""
    zc = (
        db.query(models.ShippingZoneCarrier)
        .join(models.ShippingZone, models.ShippingZone.id == models.ShippingZoneCarrier.zone_id)
        .filter(
            models.ShippingZoneCarrier.zone_id == zone_id,
            models.ShippingZoneCarrier.carrier_id == carrier_id,
            models.ShippingZoneCarrier.is_active.is_(True),
            models.ShippingZone.is_active.is_(True),
        )
        .first()
    )
    if zc is None:
        raise NotFound("Shipping option not available")
    price = Decimal(zc.price).quantize(Decimal("0.01"))
    option = {
        "carrierName": zc.carrier.name,
        "region": zc.zone.name,
        "price": str(price),
        "deliveryTime": zc.delivery_time,
    }
    return option, price
