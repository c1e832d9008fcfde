from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional

from core.db import get_db
from core.errors import Forbidden, NotFound
from core.permissions import CallerContext, Operation, require_permission
from models.product import Product
from schemas.product import ProductCreate, ProductUpdate, ProductOut

router = APIRouter(prefix="/products", tags=["products"])


@router.get("", response_model=List[ProductOut])
def list_products(seller_id: Optional[int] = None, db: Session = Depends(get_db)):
    qs = db.query(Product).filter(Product.is_active.is_(True))
    if seller_id is not None:
        qs = qs.filter(Product.seller_id == seller_id)
    return qs.order_by(Product.id).all()


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: int, db: Session = Depends(get_db)):
    product = db.get(Product, product_id)
    if not product:
        raise NotFound("Product not found")
    return product


@router.post("", response_model=ProductOut, status_code=201)
def create_product(
    data: ProductCreate,
    caller: CallerContext = Depends(require_permission(Operation.MANAGE_PRODUCTS)),
    db: Session = Depends(get_db),
):
    product = Product(
        seller_id=caller.user_id,
        name=data.name.strip(),
        description=data.description,
        price=data.price,
        stock=data.stock,
        is_active=True,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@router.patch("/{product_id}", response_model=ProductOut)
def update_product(
    product_id: int,
    data: ProductUpdate,
    caller: CallerContext = Depends(require_permission(Operation.MANAGE_PRODUCTS)),
    db: Session = Depends(get_db),
):
    product = db.get(Product, product_id)
    if not product:
        raise NotFound("Product not found")
    if product.seller_id != caller.user_id:
        raise Forbidden("You can only edit your own products")

    # Existing order items keep the price they were bought at
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(product, field, value)

    db.commit()
    db.refresh(product)
    return product
