from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..database import get_db
from ..deps import get_current_user
from ..schemas import money, product_to_dict

router = APIRouter(prefix="/api", tags=["cart"])


def _cart_line(item: models.CartItem) -> dict:
    return {
        "id": item.id,
        "productId": item.product_id,
        "quantity": item.quantity,
        "lineTotal": money(item.product.price * item.quantity),
        "product": product_to_dict(item.product),
    }


@router.get("/cart")
def get_cart(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [_cart_line(i) for i in crud.get_cart(db, user.id)]


@router.get("/cart/count")
def cart_count(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"count": crud.cart_count(db, user.id)}


@router.post("/cart/{product_id}", status_code=201)
def add_to_cart(product_id: str, body: Optional[schemas.CartAdd] = None,
                user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    quantity = body.quantity if body else 1
    return _cart_line(crud.add_to_cart(db, user.id, product_id, quantity))


@router.patch("/cart/{product_id}")
def set_quantity(product_id: str, body: schemas.CartQuantity,
                 user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    crud.set_cart_quantity(db, user.id, product_id, body.quantity)
    return {"count": crud.cart_count(db, user.id)}


@router.delete("/cart/{product_id}", status_code=204)
def remove_from_cart(product_id: str, user: models.User = Depends(get_current_user),
                     db: Session = Depends(get_db)):
    crud.remove_from_cart(db, user.id, product_id)


@router.delete("/cart", status_code=204)
def clear_cart(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    crud.clear_cart(db, user.id)


@router.get("/wishlist")
def get_wishlist(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [
        {"id": w.id, "productId": w.product_id, "product": product_to_dict(w.product)}
        for w in crud.get_wishlist(db, user.id)
    ]


@router.post("/wishlist/{product_id}", status_code=201)
def add_to_wishlist(product_id: str, user: models.User = Depends(get_current_user),
                    db: Session = Depends(get_db)):
    item = crud.add_to_wishlist(db, user.id, product_id)
    return {"id": item.id, "productId": item.product_id}


@router.delete("/wishlist/{product_id}", status_code=204)
def remove_from_wishlist(product_id: str, user: models.User = Depends(get_current_user),
                         db: Session = Depends(get_db)):
    crud.remove_from_wishlist(db, user.id, product_id)


@router.get("/wishlist/{product_id}")
def check_wishlist(product_id: str, user: models.User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    return {"inWishlist": crud.in_wishlist(db, user.id, product_id)}
