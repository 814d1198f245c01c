from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import crud, models, schemas, shipping
from ..database import get_db
from ..deps import require_admin, require_seller, require_seller_or_admin
from ..errors import NotFound
from ..schemas import carrier_to_dict, zone_to_dict

router = APIRouter(prefix="/api", tags=["shipping"])


@router.get("/carriers")
def list_carriers(db: Session = Depends(get_db)):
    return [carrier_to_dict(c) for c in shipping.list_carriers(db)]


@router.post("/carriers", status_code=201)
def create_carrier(body: schemas.CarrierCreate, user: models.User = Depends(require_admin),
                   db: Session = Depends(get_db)):
    return carrier_to_dict(shipping.create_carrier(db, body))


@router.patch("/carriers/{carrier_id}")
def update_carrier(carrier_id: str, body: schemas.CarrierUpdate, user: models.User = Depends(require_admin),
                   db: Session = Depends(get_db)):
    return carrier_to_dict(shipping.update_carrier(db, carrier_id, body))


@router.delete("/carriers/{carrier_id}", status_code=204)
def delete_carrier(carrier_id: str, user: models.User = Depends(require_admin), db: Session = Depends(get_db)):
    shipping.delete_carrier(db, carrier_id)


@router.get("/shipping-zones")
def my_zones(user: models.User = Depends(require_seller), db: Session = Depends(get_db)):
    store = crud.get_store_by_owner(db, user.id)
    if store is None:
        raise NotFound("You don't have a store yet")
    return [zone_to_dict(z) for z in shipping.list_zones(db, store.id)]


@router.post("/shipping-zones", status_code=201)
def create_zone(body: schemas.ZoneCreate, user: models.User = Depends(require_seller),
                db: Session = Depends(get_db)):
    return zone_to_dict(shipping.create_zone(db, user, body))


@router.patch("/shipping-zones/{zone_id}")
def update_zone(zone_id: str, body: schemas.ZoneUpdate, user: models.User = Depends(require_seller_or_admin),
                db: Session = Depends(get_db)):
    return zone_to_dict(shipping.update_zone(db, user, zone_id, body))


@router.delete("/shipping-zones/{zone_id}", status_code=204)
def delete_zone(zone_id: str, user: models.User = Depends(require_seller_or_admin),
                db: Session = Depends(get_db)):
    shipping.delete_zone(db, user, zone_id)


@router.get("/shipping-options/{city}")
def options_by_city(city: str, db: Session = Depends(get_db)):
    return shipping.options_by_city(db, city)
