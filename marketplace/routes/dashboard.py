from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import dashboard, models
from ..database import get_db
from ..deps import get_current_user, require_admin, require_seller

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/client")
def client(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return dashboard.client_stats(db, user.id)


@router.get("/seller")
def seller(user: models.User = Depends(require_seller), db: Session = Depends(get_db)):
    return dashboard.seller_stats(db, user.id)


@router.get("/admin")
def admin(user: models.User = Depends(require_admin), db: Session = Depends(get_db)):
    return dashboard.admin_stats(db)
