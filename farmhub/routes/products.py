import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status, Form, File, UploadFile
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from farmhub.database import get_db
from farmhub.dependencies import get_current_user, require_roles
from farmhub.errors import validation_error
from farmhub.models import Product, Category, User
from farmhub.serializers import serialize_user_summary
from farmhub.uploads.service import validate_image, save_upload, delete_upload, discard_on_failure, PRODUCT_IMAGES
from farmhub.utils.text import parse_bool

router = APIRouter(prefix="/products", tags=["products"])

logger = logging.getLogger(__name__)


# =====================================================
# HELPERS
# =====================================================

def serialize_product(p: Product) -> dict:
    return {
        "id":          p.id,
        "name":        p.name,
        "description": p.description,
        "price":       p.price,
        "image":       p.image,
        "is_featured": p.is_featured,
        "stock":       p.stock,
        "location":    p.location,
        "category_id": p.category_id,
        "user_id":     p.user_id,
        "category": {
            "id":   p.category.id,
            "name": p.category.name,
        } if p.category else None,
        "user":        serialize_user_summary(p.user),
        "created_at":  p.created_at,
        "updated_at":  p.updated_at,
    }


def _base_query(db: Session):
    return db.query(Product).options(
        joinedload(Product.category),
        joinedload(Product.user),
    )


def _get_product_or_404(db: Session, product_id: int) -> Product:
    product = _base_query(db).filter(Product.id == product_id).first()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def _ensure_can_manage(product: Product, user: User) -> None:
    if product.user_id != user.id and not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only manage your own products",
        )


def _check_category(db: Session, category_id: int) -> None:
    if not db.query(Category.id).filter(Category.id == category_id).first():
        raise validation_error("category_id", "The selected category does not exist.")


def _featured_flag(raw: Optional[str]) -> Optional[bool]:
    try:
        return parse_bool(raw)
    except ValueError as e:
        raise validation_error("is_featured", str(e))


# =====================================================
# PUBLIC: LIST / FEATURED / DETAIL
# =====================================================

@router.get("")
def list_products(
    db: Session = Depends(get_db),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    category_id: Optional[int] = None,
    created_after: Optional[datetime] = None,
    created_before: Optional[datetime] = None,
    search: Optional[str] = None,
):
    query = _base_query(db)

    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)
    if category_id:
        query = query.filter(Product.category_id == category_id)
    if created_after:
        query = query.filter(Product.created_at >= created_after)
    if created_before:
        query = query.filter(Product.created_at <= created_before)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Product.name.ilike(pattern),
            Product.description.ilike(pattern),
            Product.location.ilike(pattern),
        ))

    products = query.order_by(Product.created_at.desc(), Product.id.desc()).all()
    return {"products": [serialize_product(p) for p in products]}


@router.get("/featured")
def featured_products(db: Session = Depends(get_db)):
    products = (
        _base_query(db)
        .filter(Product.is_featured == True)  # noqa: E712
        .order_by(Product.created_at.desc(), Product.id.desc())
        .all()
    )
    return {"products": [serialize_product(p) for p in products]}


@router.get("/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db)):
    return {"product": serialize_product(_get_product_or_404(db, product_id))}


# =====================================================
# SELLER: CREATE / UPDATE / DELETE
# =====================================================

@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(
    name: str = Form(..., min_length=1, max_length=255),
    description: str = Form(..., min_length=1),
    price: float = Form(..., ge=0),
    category_id: int = Form(...),
    image: UploadFile = File(...),
    is_featured: Optional[str] = Form(None),
    stock: int = Form(0, ge=0),
    location: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("farmer", "admin")),
):
    _check_category(db, category_id)
    featured = _featured_flag(is_featured) or False
    validate_image(image, field="image")

    with discard_on_failure() as stored:
        stored.append(save_upload(image, PRODUCT_IMAGES))
        product = Product(
            name=name,
            description=description,
            price=round(price, 2),
            category_id=category_id,
            is_featured=featured,
            stock=stock,
            location=location,
            image=stored[0],
            user_id=user.id,
        )
        db.add(product)
        db.commit()

    logger.info("Product created | product_id=%s | user_id=%s", product.id, user.id)

    return {
        "message": "Product created successfully",
        "product": serialize_product(_get_product_or_404(db, product.id)),
    }


@router.api_route("/{product_id}", methods=["POST", "PUT"])
def update_product(
    product_id: int,
    name: Optional[str] = Form(None, min_length=1, max_length=255),
    description: Optional[str] = Form(None, min_length=1),
    price: Optional[float] = Form(None, ge=0),
    category_id: Optional[int] = Form(None),
    image: Optional[UploadFile] = File(None),
    is_featured: Optional[str] = Form(None),
    stock: Optional[int] = Form(None, ge=0),
    location: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Partial update; multipart so a replacement image can ride along."""
    product = _get_product_or_404(db, product_id)
    _ensure_can_manage(product, user)

    if category_id is not None:
        _check_category(db, category_id)
        product.category_id = category_id

    featured = _featured_flag(is_featured)
    if featured is not None:
        product.is_featured = featured

    for field, value in (
        ("name", name),
        ("description", description),
        ("price", round(price, 2) if price is not None else None),
        ("stock", stock),
        ("location", location),
    ):
        if value is not None:
            setattr(product, field, value)

    old_image = None
    with discard_on_failure() as stored:
        if image is not None and image.filename:
            validate_image(image, field="image")
            old_image = product.image
            product.image = save_upload(image, PRODUCT_IMAGES)
            stored.append(product.image)

        db.commit()

    if old_image:
        delete_upload(old_image)

    db.expire_all()
    return {
        "message": "Product updated successfully",
        "product": serialize_product(_get_product_or_404(db, product_id)),
    }


@router.delete("/{product_id}")
def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    product = _get_product_or_404(db, product_id)
    _ensure_can_manage(product, user)

    image = product.image
    db.delete(product)
    db.commit()

    delete_upload(image)

    return {"message": "Product deleted successfully"}
