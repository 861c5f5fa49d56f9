import logging
from typing import Optional, List, Literal
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import or_, func, cast, String
from sqlalchemy.orm import Session, joinedload
from pydantic import BaseModel, Field

from farmhub.database import get_db
from farmhub.dependencies import get_current_user, get_optional_user, require_expert
from farmhub.errors import validation_error
from farmhub.models import Tip, TipCategory, TipLike, SavedTip, User
from farmhub.serializers import serialize_user_summary
from farmhub.utils.likes import toggle_like, toggle_save, increment_views, ids_marked_by
from farmhub.utils.pagination import paginate
from farmhub.utils.text import unique_slug

router = APIRouter(prefix="/tips", tags=["tips"])

logger = logging.getLogger(__name__)

PER_PAGE = 10


# =====================================================
# SCHEMAS
# =====================================================

class TipCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1)
    category_id: int
    tags: Optional[List[str]] = None
    is_featured: bool = False


class TipUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    content: Optional[str] = Field(None, min_length=1)
    category_id: Optional[int] = None
    tags: Optional[List[str]] = None
    is_featured: Optional[bool] = None


# =====================================================
# HELPERS
# =====================================================

def serialize_tip(t: Tip, liked=None, saved=None, saves_count: int = 0) -> dict:
    data = {
        "id":             t.id,
        "title":          t.title,
        "slug":           t.slug,
        "content":        t.content,
        "tags":           t.tags or [],
        "is_featured":    t.is_featured,
        "views_count":    t.views_count,
        "likes_count":    t.likes_count,
        "liked_by_count": t.likes_count,
        "saved_by_count": saves_count,
        "category_id":    t.category_id,
        "user_id":        t.user_id,
        "category": {
            "id":   t.category.id,
            "name": t.category.name,
            "slug": t.category.slug,
        } if t.category else None,
        "user":           serialize_user_summary(t.user),
        "created_at":     t.created_at,
        "updated_at":     t.updated_at,
    }
    if liked is not None:
        data["is_liked"] = liked
    if saved is not None:
        data["is_saved"] = saved
    return data


def _base_query(db: Session):
    return db.query(Tip).options(joinedload(Tip.category), joinedload(Tip.user))


def _get_tip_or_404(db: Session, tip_id: int) -> Tip:
    tip = _base_query(db).filter(Tip.id == tip_id).first()
    if not tip:
        raise HTTPException(status_code=404, detail="Tip not found")
    return tip


def _ensure_can_manage(tip: Tip, user: User) -> None:
    if tip.user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")


def _check_category(db: Session, category_id: int) -> None:
    if not db.query(TipCategory.id).filter(TipCategory.id == category_id).first():
        raise validation_error("category_id", "The selected category does not exist.")


def _save_counts(db: Session, tip_ids) -> dict[int, int]:
    if not tip_ids:
        return {}
    rows = (
        db.query(SavedTip.tip_id, func.count(SavedTip.id))
        .filter(SavedTip.tip_id.in_(list(tip_ids)))
        .group_by(SavedTip.tip_id)
        .all()
    )
    return dict(rows)


def _page(db: Session, query, page: int, user: Optional[User]) -> dict:
    """Paginate tips and decorate them with save counts and the caller's flags."""
    result = paginate(query, page, PER_PAGE)
    tips = result["results"]
    ids = [t.id for t in tips]

    saves = _save_counts(db, ids)
    liked = ids_marked_by(db, TipLike, "tip_id", ids, user)
    saved = ids_marked_by(db, SavedTip, "tip_id", ids, user)

    result["results"] = [
        serialize_tip(
            t,
            liked=(t.id in liked) if user else None,
            saved=(t.id in saved) if user else None,
            saves_count=saves.get(t.id, 0),
        )
        for t in tips
    ]
    return result


def _latest(query):
    return query.order_by(Tip.created_at.desc(), Tip.id.desc())


# =====================================================
# PUBLIC: LIST / FEATURED
# =====================================================

@router.get("")
def list_tips(
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
    category: Optional[int] = None,
    search: Optional[str] = None,
    featured: bool = False,
    sort: Literal["latest", "popular", "views"] = "latest",
    page: int = Query(1, ge=1),
):
    query = _base_query(db)

    if category:
        query = query.filter(Tip.category_id == category)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Tip.title.ilike(pattern),
            Tip.content.ilike(pattern),
            cast(Tip.tags, String).ilike(pattern),
        ))
    if featured:
        query = query.filter(Tip.is_featured == True)  # noqa: E712

    if sort == "popular":
        query = query.order_by(Tip.likes_count.desc(), Tip.id.desc())
    elif sort == "views":
        query = query.order_by(Tip.views_count.desc(), Tip.id.desc())
    else:
        query = _latest(query)

    return {"tips": _page(db, query, page, user)}


@router.get("/featured")
def featured_tips(
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
    page: int = Query(1, ge=1),
):
    query = _latest(_base_query(db).filter(Tip.is_featured == True))  # noqa: E712
    return {"tips": _page(db, query, page, user)}


# =====================================================
# AUTH: SAVED / MY TIPS
# =====================================================

@router.get("/saved")
def saved_tips(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
):
    query = (
        _base_query(db)
        .join(SavedTip, SavedTip.tip_id == Tip.id)
        .filter(SavedTip.user_id == user.id)
        .order_by(SavedTip.created_at.desc(), SavedTip.id.desc())
    )
    return {"tips": _page(db, query, page, user)}


@router.get("/my-tips")
def my_tips(
    db: Session = Depends(get_db),
    user: User = Depends(require_expert),
    page: int = Query(1, ge=1),
):
    query = _latest(_base_query(db).filter(Tip.user_id == user.id))
    return {"tips": _page(db, query, page, user)}


# =====================================================
# DETAIL
# =====================================================

@router.get("/{tip_id}")
def get_tip(
    tip_id: int,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
):
    tip = _get_tip_or_404(db, tip_id)
    increment_views(db, tip)

    liked = saved = None
    if user:
        liked = tip.id in ids_marked_by(db, TipLike, "tip_id", [tip.id], user)
        saved = tip.id in ids_marked_by(db, SavedTip, "tip_id", [tip.id], user)

    return {
        "tip": serialize_tip(
            tip,
            liked=liked,
            saved=saved,
            saves_count=_save_counts(db, [tip.id]).get(tip.id, 0),
        )
    }


# =====================================================
# EXPERT: CREATE / UPDATE / DELETE
# =====================================================

@router.post("", status_code=status.HTTP_201_CREATED)
def create_tip(
    payload: TipCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_expert),
):
    _check_category(db, payload.category_id)

    tip = Tip(
        user_id=user.id,
        category_id=payload.category_id,
        title=payload.title,
        slug=unique_slug(db, Tip, payload.title),
        content=payload.content,
        tags=payload.tags or [],
        is_featured=payload.is_featured,
    )
    db.add(tip)
    db.commit()

    logger.info("Tip created | tip_id=%s | user_id=%s | slug=%s", tip.id, user.id, tip.slug)

    return {
        "message": "Tip created successfully",
        "tip": serialize_tip(_get_tip_or_404(db, tip.id)),
    }


@router.put("/{tip_id}")
def update_tip(
    tip_id: int,
    payload: TipUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    tip = _get_tip_or_404(db, tip_id)
    _ensure_can_manage(tip, user)

    data = payload.model_dump(exclude_unset=True)

    if data.get("category_id") is not None:
        _check_category(db, data["category_id"])

    if data.get("title") and data["title"] != tip.title:
        tip.slug = unique_slug(db, Tip, data["title"], exclude_id=tip.id)

    for field, value in data.items():
        if field == "tags":
            value = value or []
        elif value is None:
            continue
        setattr(tip, field, value)

    db.commit()

    db.expire_all()
    return {
        "message": "Tip updated successfully",
        "tip": serialize_tip(_get_tip_or_404(db, tip_id)),
    }


@router.delete("/{tip_id}")
def delete_tip(
    tip_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    tip = _get_tip_or_404(db, tip_id)
    _ensure_can_manage(tip, user)

    db.delete(tip)
    db.commit()

    logger.info("Tip deleted | tip_id=%s | by=%s", tip_id, user.id)

    return {"message": "Tip deleted successfully"}


# =====================================================
# LIKE / SAVE
# =====================================================

@router.post("/{tip_id}/like")
def like_tip(
    tip_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    tip = _get_tip_or_404(db, tip_id)
    liked = toggle_like(db, TipLike, "tip_id", tip, user.id)

    return {
        "message":     "Tip liked" if liked else "Tip unliked",
        "likes_count": tip.likes_count,
        "is_liked":    liked,
    }


@router.post("/{tip_id}/save")
def save_tip(
    tip_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    tip = _get_tip_or_404(db, tip_id)
    saved = toggle_save(db, SavedTip, "tip_id", tip, user.id)

    return {
        "message":  "Tip saved" if saved else "Tip unsaved",
        "is_saved": saved,
    }
