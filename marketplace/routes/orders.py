from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, orders, schemas
from ..database import get_db
from ..deps import get_current_user, get_notifier, get_payment_provider, require_admin
from ..schemas import order_to_dict

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.get("")
def list_orders(
    status: Optional[str] = None,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [order_to_dict(o) for o in orders.list_orders(db, user, status)]


@router.get("/{order_id}")
def get_order(order_id: str, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return order_to_dict(orders.get_order(db, user, order_id), with_items=True)


@router.patch("/{order_id}/status")
def update_status(
    order_id: str,
    body: schemas.StatusUpdate,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
    provider=Depends(get_payment_provider),
):
    order = orders.update_status(db, notifier, provider, user, order_id, body.status)
    return order_to_dict(order)


@router.post("/{order_id}/process")
def process(order_id: str, user: models.User = Depends(get_current_user), db: Session = Depends(get_db),
            notifier=Depends(get_notifier)):
    return order_to_dict(orders.mark_processing(db, notifier, user, order_id))


@router.post("/{order_id}/ship")
def ship(
    order_id: str,
    body: schemas.ShipRequest,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
):
    return order_to_dict(orders.ship_order(db, notifier, user, order_id, body))


@router.post("/{order_id}/deliver")
def deliver(order_id: str, user: models.User = Depends(get_current_user), db: Session = Depends(get_db),
            notifier=Depends(get_notifier)):
    return order_to_dict(orders.deliver_order(db, notifier, user, order_id))


@router.post("/{order_id}/cancel")
def cancel(
    order_id: str,
    body: Optional[schemas.CancelRequest] = None,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
    provider=Depends(get_payment_provider),
):
    body = body or schemas.CancelRequest()
    return order_to_dict(orders.cancel_order(db, notifier, provider, user, order_id, body.reason))


@router.post("/{order_id}/refund")
def refund(
    order_id: str,
    body: Optional[schemas.RefundRequest] = None,
    user: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
):
    body = body or schemas.RefundRequest()
    return order_to_dict(orders.refund_order(db, notifier, user, order_id, body.reason, body.restock_items))


@router.post("/{order_id}/flag")
def flag(
    order_id: str,
    body: schemas.FlagRequest,
    user: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
    provider=Depends(get_payment_provider),
):
    return order_to_dict(orders.flag_order(db, notifier, provider, user, order_id, body))
