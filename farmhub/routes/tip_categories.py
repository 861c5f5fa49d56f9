import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field

from farmhub.database import get_db
from farmhub.dependencies import require_admin
from farmhub.errors import validation_error
from farmhub.models import TipCategory, Tip, User
from farmhub.utils.text import unique_slug

router = APIRouter(prefix="/tip-categories", tags=["tips"])

logger = logging.getLogger(__name__)


class TipCategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    icon: Optional[str] = None


class TipCategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    icon: Optional[str] = None


def serialize_tip_category(c: TipCategory, tips_count: Optional[int] = None) -> dict:
    data = {
        "id":          c.id,
        "name":        c.name,
        "slug":        c.slug,
        "description": c.description,
        "icon":        c.icon,
        "created_at":  c.created_at,
        "updated_at":  c.updated_at,
    }
    if tips_count is not None:
        data["tips_count"] = tips_count
    return data


def _get_or_404(db: Session, category_id: int) -> TipCategory:
    category = db.query(TipCategory).filter(TipCategory.id == category_id).first()
    if not category:
        raise HTTPException(status_code=404, detail="Tip category not found")
    return category


def _check_name_free(db: Session, name: str, exclude_id: Optional[int] = None) -> None:
    query = db.query(TipCategory.id).filter(TipCategory.name == name)
    if exclude_id is not None:
        query = query.filter(TipCategory.id != exclude_id)
    if query.first():
        raise validation_error("name", "The name has already been taken.")


@router.get("")
def list_tip_categories(db: Session = Depends(get_db)):
    counts = dict(
        db.query(Tip.category_id, func.count(Tip.id))
        .group_by(Tip.category_id)
        .all()
    )
    categories = db.query(TipCategory).order_by(TipCategory.name).all()

    return {
        "categories":       [serialize_tip_category(c, counts.get(c.id, 0)) for c in categories],
        "total_categories": len(categories),
        "total_tips":       sum(counts.values()),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_tip_category(
    payload: TipCategoryCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    _check_name_free(db, payload.name)

    category = TipCategory(
        name=payload.name,
        slug=unique_slug(db, TipCategory, payload.name),
        description=payload.description,
        icon=payload.icon,
    )
    db.add(category)
    db.commit()
    db.refresh(category)

    logger.info("Tip category created | category_id=%s | slug=%s", category.id, category.slug)

    return {
        "message": "Category created successfully",
        "category": serialize_tip_category(category, 0),
    }


@router.put("/{category_id}")
def update_tip_category(
    category_id: int,
    payload: TipCategoryUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    category = _get_or_404(db, category_id)
    data = payload.model_dump(exclude_unset=True)

    if data.get("name") and data["name"] != category.name:
        _check_name_free(db, data["name"], exclude_id=category.id)
        category.slug = unique_slug(db, TipCategory, data["name"], exclude_id=category.id)

    for field, value in data.items():
        if field == "name" and value is None:
            continue
        setattr(category, field, value)

    db.commit()
    db.refresh(category)

    return {
        "message": "Category updated successfully",
        "category": serialize_tip_category(category),
    }


@router.delete("/{category_id}")
def delete_tip_category(
    category_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    category = _get_or_404(db, category_id)
    db.delete(category)
    db.commit()

    logger.info("Tip category deleted | category_id=%s", category_id)

    return {"message": "Category deleted successfully"}
