from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import crud, models, schemas, stock
from ..database import get_db
from ..deps import require_seller
from ..schemas import alert_to_dict, money, order_to_dict, product_to_dict, transaction_to_dict

router = APIRouter(prefix="/api", tags=["inventory"])


@router.get("/stock-alerts")
def list_alerts(user: models.User = Depends(require_seller), db: Session = Depends(get_db)):
    return [alert_to_dict(a) for a in stock.list_alerts(db, user.id)]


@router.post("/stock-alerts/{alert_id}/resolve")
def resolve_alert(alert_id: str, user: models.User = Depends(require_seller), db: Session = Depends(get_db)):
    return alert_to_dict(stock.resolve_alert(db, user.id, alert_id))


@router.delete("/stock-alerts/{alert_id}", status_code=204)
def delete_alert(alert_id: str, user: models.User = Depends(require_seller), db: Session = Depends(get_db)):
    stock.delete_alert(db, user.id, alert_id)


@router.patch("/seller/products/{product_id}/adjust-stock")
def adjust_stock(
    product_id: str,
    body: schemas.StockAdjustment,
    user: models.User = Depends(require_seller),
    db: Session = Depends(get_db),
):
    result = stock.adjust_stock(db, user.id, product_id, body)
    return {
        "product": product_to_dict(result["product"]),
        "oldStock": result["oldStock"],
        "newStock": result["newStock"],
    }


@router.get("/replenishment")
def replenishment(user: models.User = Depends(require_seller), db: Session = Depends(get_db)):
    return stock.replenishment_suggestions(db, user.id)


@router.post("/replenishment/order")
def replenishment_order(
    body: schemas.ReplenishmentOrder,
    user: models.User = Depends(require_seller),
    db: Session = Depends(get_db),
):
    return {"updated": stock.mark_replenishment_ordered(db, user.id, body.product_ids)}


@router.post("/replenishment/{product_id}/restock")
def restock(product_id: str, user: models.User = Depends(require_seller), db: Session = Depends(get_db)):
    return product_to_dict(stock.restock(db, user.id, product_id))


@router.get("/seller/transactions")
def seller_transactions(
    status: Optional[str] = None,
    user: models.User = Depends(require_seller),
    db: Session = Depends(get_db),
):
    return [
        {**transaction_to_dict(t), "order": order_to_dict(o)}
        for t, o in crud.seller_transactions(db, user.id, status)
    ]


@router.get("/seller/revenue")
def seller_revenue(user: models.User = Depends(require_seller), db: Session = Depends(get_db)):
    revenue = crud.seller_revenue(db, user.id)
    return {
        "total": money(revenue["total"]),
        "currency": revenue["currency"],
        "transactions": len(revenue["rows"]),
    }
