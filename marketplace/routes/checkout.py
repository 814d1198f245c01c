from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import checkout, models, schemas
from ..database import get_db
from ..deps import get_current_user, get_notifier, get_payment_provider

router = APIRouter(prefix="/api/checkout", tags=["checkout"])


@router.post("", status_code=201)
def create_checkout(
    req: schemas.CheckoutRequest,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    provider=Depends(get_payment_provider),
    notifier=Depends(get_notifier),
):
    return checkout.place_order(db, user, req, provider, notifier)


@router.post("/confirm")
def confirm(
    req: schemas.ConfirmPaymentRequest,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    provider=Depends(get_payment_provider),
    notifier=Depends(get_notifier),
):
    return checkout.confirm_payment(db, provider, notifier, req.payment_intent_id)
