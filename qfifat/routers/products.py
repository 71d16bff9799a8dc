from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from ..db import commit_or_500, get_db
from ..models import Product
from ..schemas import ProductCreate, ProductOut, ProductUpdate, UploadOut
from ..security import CurrentUser, require_user
from ..uploads import IMAGE_EXT, PROOF_EXT, save_upload

router = APIRouter(tags=["products"])


def _require_seller(user: CurrentUser) -> None:
    if not (user.is_admin or user.is_merchant):
        raise HTTPException(status_code=403, detail="Admin or merchant only")


def _owned_product(db: Session, product_id: int, user: CurrentUser) -> Product:
    p = db.query(Product).filter(Product.id == product_id).first()
    if not p:
        raise HTTPException(status_code=404, detail="Product not found")
    if not user.is_admin and p.merchant_id != user.id:
        raise HTTPException(status_code=403, detail="Not your product")
    return p


@router.get("/products", response_model=List[ProductOut])
def list_products(db: Session = Depends(get_db)):
    return db.query(Product).filter(Product.is_active == True).order_by(Product.id.desc()).all()  # noqa: E712


@router.get("/products/{product_id}", response_model=ProductOut)
def get_product(product_id: int, db: Session = Depends(get_db)):
    p = db.query(Product).filter(Product.id == product_id, Product.is_active == True).first()  # noqa: E712
    if not p:
        raise HTTPException(status_code=404, detail="Not found")
    return p


@router.post("/products", response_model=ProductOut)
def create_product(payload: ProductCreate, user: CurrentUser = Depends(require_user), db: Session = Depends(get_db)):
    _require_seller(user)
    p = Product(
        merchant_id=user.id if user.is_merchant else None,
        name=payload.name,
        description=payload.description,
        price=payload.price,
        image_url=payload.image_url,
        stock_quantity=payload.stock_quantity,
        is_active=payload.is_active,
    )
    db.add(p)
    commit_or_500(db, "create product")
    db.refresh(p)
    return p


@router.patch("/products/{product_id}", response_model=ProductOut)
def update_product(
    product_id: int,
    payload: ProductUpdate,
    user: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    _require_seller(user)
    p = _owned_product(db, product_id, user)
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(p, field, value)
    commit_or_500(db, "update product")
    db.refresh(p)
    return p


@router.post("/products/{product_id}/image", response_model=ProductOut)
def upload_product_image(
    product_id: int,
    file: UploadFile = File(...),
    user: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    _require_seller(user)
    p = _owned_product(db, product_id, user)
    p.image_url = save_upload(file, f"prod_{product_id}", IMAGE_EXT).file_url
    commit_or_500(db, "save product image")
    db.refresh(p)
    return p


@router.post("/uploads/payment-proofs", response_model=UploadOut)
def upload_payment_proof(file: UploadFile = File(...), user: CurrentUser = Depends(require_user)):
    # Stored before checkout; the returned url goes into the order's proof field
    return save_upload(file, "proof", PROOF_EXT)
