from decimal import Decimal

import pytest

from marketplace import models
from marketplace.errors import NotFound
from marketplace.shipping import normalize_cities, resolve_shipping_option


def test_normalize_cities():
    assert normalize_cities("Lyon, Paris;Nice  Lille") == ["Lyon", "Paris", "Nice", "Lille"]
    assert normalize_cities([" Lyon ", "", "Paris"]) == ["Lyon", "Paris"]
    assert normalize_cities(None) == []


def _carrier(client, auth, admin, name, price="0"):
    resp = client.post("/api/carriers", json={"name": name, "basePrice": price}, headers=auth(admin))
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


def test_zone_crud_and_city_lookup(client, factory, auth):
    admin = factory.user("admin")
    seller = factory.seller()
    other = factory.seller()
    dhl = _carrier(client, auth, admin, "DHL")
    ups = _carrier(client, auth, admin, "UPS")

    created = client.post("/api/shipping-zones", json={
        "name": "South",
        "cities": "Lyon, Marseille",
        "zoneCarriers": [{"carrierId": dhl, "price": "5.00", "deliveryTime": "2-3 days"}],
    }, headers=auth(seller))
    assert created.status_code == 201, created.text
    assert created.json()["cities"] == ["Lyon", "Marseille"]
    client.post("/api/shipping-zones", json={
        "name": "Rhone express",
        "cities": ["lyon"],
        "zoneCarriers": [
            {"carrierId": dhl, "price": "9.00"},
            {"carrierId": ups, "price": "7.50", "deliveryTime": "24h"},
        ],
    }, headers=auth(other))

    options = client.get("/api/shipping-options/LYON").json()

    # one option per carrier, the first zone wins
    assert [(o["carrierName"], o["price"]) for o in options] == [("DHL", "5.00"), ("UPS", "7.50")]
    assert client.get("/api/shipping-options/Paris").json() == []

    zone_id = created.json()["id"]
    updated = client.patch(f"/api/shipping-zones/{zone_id}", json={
        "zoneCarriers": [{"carrierId": ups, "price": "6.00"}],
    }, headers=auth(seller)).json()
    assert [(c["carrierName"], c["price"]) for c in updated["carriers"]] == [("UPS", "6.00")]
    assert client.patch(f"/api/shipping-zones/{zone_id}", json={"name": "x"}, headers=auth(other)).status_code == 403

    assert len(client.get("/api/shipping-zones", headers=auth(seller)).json()) == 1
    assert client.delete(f"/api/shipping-zones/{zone_id}", headers=auth(seller)).status_code == 204
    assert client.get("/api/shipping-zones", headers=auth(seller)).json() == []


def test_zone_needs_a_city(client, factory, auth):
    seller = factory.seller()

    resp = client.post("/api/shipping-zones", json={"name": "Nowhere", "cities": " , "}, headers=auth(seller))

    assert resp.status_code == 400


def test_resolve_shipping_option(db, factory):
    seller = factory.seller()
    store = db.query(models.Store).filter_by(owner_id=seller.id).one()
    carrier = models.Carrier(name="Chronopost")
    zone = models.ShippingZone(shop_id=store.id, name="Paris", cities=["Paris"])
    zone.carriers.append(models.ShippingZoneCarrier(carrier=carrier, price=Decimal("12.00"), delivery_time="24h"))
    db.add(zone)
    db.commit()

    option, price = resolve_shipping_option(db, zone.id, carrier.id)

    assert price == Decimal("12.00")
    assert option == {"carrierName": "Chronopost", "region": "Paris", "price": "12.00", "deliveryTime": "24h"}
    with pytest.raises(NotFound):
        resolve_shipping_option(db, zone.id, "missing")
