import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field

from farmhub.database import get_db
from farmhub.dependencies import require_admin
from farmhub.models import Category, Product, User
from farmhub.uploads.service import delete_upload

router = APIRouter(prefix="/categories", tags=["categories"])

logger = logging.getLogger(__name__)


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None


def serialize_category(c: Category) -> dict:
    return {
        "id":          c.id,
        "name":        c.name,
        "description": c.description,
        "created_at":  c.created_at,
        "updated_at":  c.updated_at,
    }


def _get_category_or_404(db: Session, category_id: int) -> Category:
    category = db.query(Category).filter(Category.id == category_id).first()
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


@router.get("")
def list_categories(db: Session = Depends(get_db)):
    categories = db.query(Category).order_by(Category.id).all()
    return {"categories": [serialize_category(c) for c in categories]}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_category(
    payload: CategoryCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    category = Category(name=payload.name, description=payload.description)
    db.add(category)
    db.commit()
    db.refresh(category)

    return {
        "message": "Category created successfully",
        "category": serialize_category(category),
    }


@router.put("/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    category = _get_category_or_404(db, category_id)

    for field, value in payload.model_dump(exclude_unset=True).items():
        if field == "name" and value is None:
            continue
        setattr(category, field, value)

    db.commit()
    db.refresh(category)

    return {
        "message": "Category updated successfully",
        "category": serialize_category(category),
    }


@router.delete("/{category_id}")
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    category = _get_category_or_404(db, category_id)

    # product rows cascade in the database; their image files don't
    images = [
        row[0]
        for row in db.query(Product.image).filter(Product.category_id == category.id).all()
    ]

    db.delete(category)
    db.commit()

    for path in images:
        delete_upload(path)

    logger.info("Category deleted | category_id=%s | products_removed=%s", category_id, len(images))

    return {"message": "Category deleted successfully"}
