from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from . import crud, models
from .database import get_db
from .errors import Forbidden, Unauthenticated
from .notifications import Notifier, build_notifier
from .payments import PaymentProvider


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> models.User:
    # the session layer in front of the API resolves the caller into this header
    if not x_user_id:
        raise Unauthenticated("Authentication required")
    user = crud.get_user(db, x_user_id)
    if user is None or not user.is_active:
        raise Unauthenticated("Unknown or inactive user")
    return user


def require_role(*roles):
    def checker(user: models.User = Depends(get_current_user)) -> models.User:
        if user.role not in roles:
            raise Forbidden(f"Requires role: {', '.join(roles)}")
        return user
    return checker


require_seller = require_role("seller")
require_admin = require_role("admin")
require_seller_or_admin = require_role("seller", "admin")


@lru_cache()
def get_notifier() -> Notifier:
    return build_notifier()


@lru_cache()
def get_payment_provider() -> PaymentProvider:
    return PaymentProvider()
