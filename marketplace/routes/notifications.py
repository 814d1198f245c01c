from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import models, notifications
from ..database import get_db
from ..deps import get_current_user
from ..schemas import notification_to_dict

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [notification_to_dict(n) for n in notifications.list_notifications(db, user, limit)]


@router.patch("/{notification_id}/read")
def mark_read(notification_id: str, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return notification_to_dict(notifications.mark_read(db, user, notification_id))


@router.delete("/{notification_id}", status_code=204)
def delete(notification_id: str, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    notifications.delete_notification(db, user, notification_id)
