from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..database import get_db
from ..deps import get_notifier, require_admin, require_seller
from ..errors import NotFound
from ..notifications import notify
from ..schemas import store_to_dict

router = APIRouter(prefix="/api/stores", tags=["stores"])

STATUS_MESSAGES = {
    "approved": "Your store {name} has been approved",
    "suspended": "Your store {name} has been suspended",
    "pending_validation": "Your store {name} is awaiting validation",
}


@router.post("", status_code=201)
def create_store(body: schemas.StoreCreate, user: models.User = Depends(require_seller),
                 db: Session = Depends(get_db)):
    return store_to_dict(crud.create_store(db, user, body.store_name))


@router.get("/mine")
def my_store(user: models.User = Depends(require_seller), db: Session = Depends(get_db)):
    store = crud.get_store_by_owner(db, user.id)
    if store is None:
        raise NotFound("You don't have a store yet")
    return store_to_dict(store)


@router.patch("/{store_id}/status")
def update_status(store_id: str, body: schemas.StoreStatusUpdate, user: models.User = Depends(require_admin),
                  db: Session = Depends(get_db), notifier=Depends(get_notifier)):
    store = crud.update_store_status(db, store_id, body.status)
    notify(
        db,
        notifier,
        user_id=store.owner_id,
        type="store_status",
        title="Store status updated",
        message=STATUS_MESSAGES[store.status].format(name=store.store_name),
        data={"storeId": store.id, "status": store.status},
    )
    return store_to_dict(store)


@router.post("/{store_id}/reconcile")
def reconcile(store_id: str, user: models.User = Depends(require_admin), db: Session = Depends(get_db)):
    return store_to_dict(crud.reconcile_store_counters(db, store_id))
