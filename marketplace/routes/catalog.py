from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..database import get_db
from ..deps import require_admin, require_seller, require_seller_or_admin
from ..schemas import category_to_dict, product_to_dict

router = APIRouter(prefix="/api", tags=["catalog"])


@router.get("/categories")
def list_categories(db: Session = Depends(get_db)):
    return [category_to_dict(c) for c in crud.list_categories(db)]


@router.post("/categories", status_code=201)
def create_category(body: schemas.CategoryCreate, user: models.User = Depends(require_admin),
                    db: Session = Depends(get_db)):
    return category_to_dict(crud.create_category(db, body))


@router.patch("/categories/{category_id}")
def update_category(category_id: str, body: schemas.CategoryUpdate, user: models.User = Depends(require_admin),
                    db: Session = Depends(get_db)):
    return category_to_dict(crud.update_category(db, category_id, body))


@router.delete("/categories/{category_id}", status_code=204)
def delete_category(category_id: str, user: models.User = Depends(require_admin), db: Session = Depends(get_db)):
    crud.delete_category(db, category_id)


@router.get("/products")
def list_products(
    category_id: Optional[str] = None,
    vendor_id: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    products = crud.list_products(db, category_id=category_id, vendor_id=vendor_id, search=search)
    return [product_to_dict(p) for p in products]


@router.get("/products/{product_id}")
def get_product(product_id: str, db: Session = Depends(get_db)):
    return product_to_dict(crud.get_product(db, product_id))


@router.get("/seller/products")
def my_products(user: models.User = Depends(require_seller), db: Session = Depends(get_db)):
    return [product_to_dict(p) for p in crud.list_products(db, vendor_id=user.id, include_inactive=True)]


@router.post("/seller/products", status_code=201)
def create_product(body: schemas.ProductCreate, user: models.User = Depends(require_seller),
                   db: Session = Depends(get_db)):
    return product_to_dict(crud.create_product(db, user, body))


@router.patch("/seller/products/{product_id}")
def update_product(product_id: str, body: schemas.ProductUpdate,
                   user: models.User = Depends(require_seller_or_admin), db: Session = Depends(get_db)):
    return product_to_dict(crud.update_product(db, user, product_id, body))


@router.delete("/seller/products/{product_id}", status_code=204)
def delete_product(product_id: str, user: models.User = Depends(require_seller_or_admin),
                   db: Session = Depends(get_db)):
    crud.delete_product(db, user, product_id)


@router.post("/seller/promotions", status_code=201)
def create_promotion(body: schemas.PromotionCreate, user: models.User = Depends(require_seller),
                     db: Session = Depends(get_db)):
    promo = crud.create_promotion(db, user, body)
    return {
        "id": promo.id,
        "code": promo.code,
        "discountType": promo.discount_type,
        "value": schemas.money(promo.value),
        "startDate": promo.start_date.isoformat(),
        "endDate": promo.end_date.isoformat(),
        "isActive": promo.is_active,
    }
