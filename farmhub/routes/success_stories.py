import logging
from typing import Optional, List, Literal
from fastapi import APIRouter, Depends, HTTPException, Query, status, Form, File, UploadFile
from sqlalchemy import or_, func
from sqlalchemy.orm import Session, joinedload
from pydantic import BaseModel, Field

from farmhub.database import get_db
from farmhub.dependencies import get_current_user, get_optional_user
from farmhub.errors import validation_error
from farmhub.models import SuccessStory, StoryImage, StoryComment, StoryLike, User
from farmhub.serializers import serialize_user_summary
from farmhub.uploads.service import validate_image, save_upload, delete_upload, discard_on_failure, STORY_IMAGES
from farmhub.utils.likes import toggle_like, increment_views, ids_marked_by
from farmhub.utils.pagination import paginate
from farmhub.utils.trees import build_tree

router = APIRouter(prefix="/success-stories", tags=["success-stories"])

logger = logging.getLogger(__name__)

PER_PAGE = 10


class CommentPayload(BaseModel):
    comment: str = Field(..., min_length=1)
    parent_id: Optional[int] = None


# =====================================================
# SERIALIZERS
# =====================================================

def _serialize_image(i: StoryImage) -> dict:
    return {
        "id":         i.id,
        "image_path": i.image_path,
        "caption":    i.caption,
        "order":      i.order,
    }


def serialize_comment(c: StoryComment) -> dict:
    return {
        "id":         c.id,
        "story_id":   c.story_id,
        "user_id":    c.user_id,
        "parent_id":  c.parent_id,
        "comment":    c.comment,
        "user":       serialize_user_summary(c.user),
        "created_at": c.created_at,
        "updated_at": c.updated_at,
    }


def serialize_story(s: SuccessStory, liked: Optional[bool] = None) -> dict:
    data = {
        "id":                s.id,
        "user_id":           s.user_id,
        "title":             s.title,
        "content":           s.content,
        "location":          s.location,
        "crop_type":         s.crop_type,
        "yield_improvement": s.yield_improvement,
        "yield_unit":        s.yield_unit,
        "is_featured":       s.is_featured,
        "views_count":       s.views_count,
        "likes_count":       s.likes_count,
        "comments_count":    s.comments_count,
        "user":              serialize_user_summary(s.user),
        "images":            [_serialize_image(i) for i in s.images],
        "created_at":        s.created_at,
        "updated_at":        s.updated_at,
    }
    if liked is not None:
        data["is_liked"] = liked
    return data


# =====================================================
# HELPERS
# =====================================================

def _base_query(db: Session):
    return db.query(SuccessStory).options(
        joinedload(SuccessStory.user),
        joinedload(SuccessStory.images),
    )


def _get_story_or_404(db: Session, story_id: int) -> SuccessStory:
    story = _base_query(db).filter(SuccessStory.id == story_id).first()
    if not story:
        raise HTTPException(status_code=404, detail="Success story not found")
    return story


def _ensure_can_manage(story: SuccessStory, user: User) -> None:
    if story.user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")


def _page(db: Session, query, page: int, user: Optional[User]) -> dict:
    result = paginate(query, page, PER_PAGE)
    stories = result["results"]
    liked = ids_marked_by(db, StoryLike, "story_id", [s.id for s in stories], user)
    result["results"] = [
        serialize_story(s, liked=(s.id in liked) if user else None)
        for s in stories
    ]
    return result


def _attach_images(db: Session, story: SuccessStory, images, captions, start: int, stored: list[str]) -> None:
    """
    Validates every image first, then stores them in upload order after
    `start`, appending each written path to `stored` as it lands.
    """
    images = [img for img in (images or []) if img is not None and img.filename]
    captions = captions or []

    for index, image in enumerate(images):
        validate_image(image, field=f"images.{index}")
    for index, caption in enumerate(captions):
        if caption and len(caption) > 255:
            raise validation_error(f"captions.{index}", "The caption may not be greater than 255 characters.")

    for index, image in enumerate(images):
        path = save_upload(image, STORY_IMAGES)
        stored.append(path)
        db.add(StoryImage(
            story_id=story.id,
            image_path=path,
            caption=captions[index] if index < len(captions) and captions[index] else None,
            order=start + index,
        ))


def _refresh_comments_count(db: Session, story_id: int) -> None:
    total = db.query(func.count(StoryComment.id)).filter(StoryComment.story_id == story_id).scalar()
    db.query(SuccessStory).filter(SuccessStory.id == story_id).update(
        {SuccessStory.comments_count: total},
        synchronize_session=False,
    )


def _comment_tree(db: Session, story_id: int, roots=None) -> list[dict]:
    nodes = (
        db.query(StoryComment)
        .options(joinedload(StoryComment.user))
        .filter(StoryComment.story_id == story_id)
        .all()
    )
    return build_tree(nodes, "parent_id", serialize_comment, roots=roots)


# =====================================================
# PUBLIC: LIST / DETAIL
# =====================================================

@router.get("")
def list_stories(
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
    search: Optional[str] = None,
    crop_type: Optional[str] = None,
    featured: bool = False,
    sort: Literal["latest", "popular", "views"] = "latest",
    page: int = Query(1, ge=1),
):
    query = _base_query(db)

    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            SuccessStory.title.ilike(pattern),
            SuccessStory.content.ilike(pattern),
            SuccessStory.crop_type.ilike(pattern),
        ))
    if crop_type:
        query = query.filter(SuccessStory.crop_type == crop_type)
    if featured:
        query = query.filter(SuccessStory.is_featured == True)  # noqa: E712

    if sort == "popular":
        query = query.order_by(SuccessStory.likes_count.desc(), SuccessStory.id.desc())
    elif sort == "views":
        query = query.order_by(SuccessStory.views_count.desc(), SuccessStory.id.desc())
    else:
        query = query.order_by(SuccessStory.created_at.desc(), SuccessStory.id.desc())

    return {"stories": _page(db, query, page, user)}


@router.get("/my-stories")
def my_stories(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
):
    query = (
        _base_query(db)
        .filter(SuccessStory.user_id == user.id)
        .order_by(SuccessStory.created_at.desc(), SuccessStory.id.desc())
    )
    return {"stories": _page(db, query, page, user)}


@router.get("/{story_id}")
def get_story(
    story_id: int,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
):
    story = _get_story_or_404(db, story_id)
    increment_views(db, story)

    liked = None
    if user:
        liked = story.id in ids_marked_by(db, StoryLike, "story_id", [story.id], user)

    data = serialize_story(story, liked=liked)
    data["comments"] = _comment_tree(db, story.id)
    return {"story": data}


# =====================================================
# AUTH: CREATE / UPDATE / DELETE
# =====================================================

@router.post("", status_code=status.HTTP_201_CREATED)
def create_story(
    title: str = Form(..., min_length=1, max_length=255),
    content: str = Form(..., min_length=1),
    location: Optional[str] = Form(None, max_length=255),
    crop_type: Optional[str] = Form(None, max_length=255),
    yield_improvement: Optional[float] = Form(None, ge=0),
    yield_unit: Optional[str] = Form(None, max_length=50),
    images: Optional[List[UploadFile]] = File(None),
    captions: Optional[List[str]] = Form(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    story = SuccessStory(
        user_id=user.id,
        title=title,
        content=content,
        location=location,
        crop_type=crop_type,
        yield_improvement=yield_improvement,
        yield_unit=yield_unit,
    )
    db.add(story)
    db.flush()

    with discard_on_failure() as stored:
        _attach_images(db, story, images, captions, start=0, stored=stored)
        db.commit()

    logger.info("Success story created | story_id=%s | user_id=%s | images=%s", story.id, user.id, len(stored))

    return {
        "message": "Success story created successfully",
        "story": serialize_story(_get_story_or_404(db, story.id)),
    }


@router.put("/{story_id}")
def update_story(
    story_id: int,
    title: Optional[str] = Form(None, min_length=1, max_length=255),
    content: Optional[str] = Form(None, min_length=1),
    location: Optional[str] = Form(None, max_length=255),
    crop_type: Optional[str] = Form(None, max_length=255),
    yield_improvement: Optional[float] = Form(None, ge=0),
    yield_unit: Optional[str] = Form(None, max_length=50),
    images: Optional[List[UploadFile]] = File(None),
    captions: Optional[List[str]] = Form(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    story = _get_story_or_404(db, story_id)
    _ensure_can_manage(story, user)

    for field, value in (
        ("title", title),
        ("content", content),
        ("location", location),
        ("crop_type", crop_type),
        ("yield_improvement", yield_improvement),
        ("yield_unit", yield_unit),
    ):
        if value is not None:
            setattr(story, field, value)

    # new images go after the existing ones
    with discard_on_failure() as stored:
        _attach_images(db, story, images, captions, start=len(story.images), stored=stored)
        db.commit()

    db.expire_all()
    return {
        "message": "Success story updated successfully",
        "story": serialize_story(_get_story_or_404(db, story_id)),
    }


@router.delete("/{story_id}")
def delete_story(
    story_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    story = _get_story_or_404(db, story_id)
    _ensure_can_manage(story, user)

    paths = [i.image_path for i in story.images]
    db.delete(story)
    db.commit()

    for path in paths:
        delete_upload(path)

    logger.info("Success story deleted | story_id=%s | by=%s", story_id, user.id)

    return {"message": "Success story deleted successfully"}


@router.post("/{story_id}/like")
def like_story(
    story_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    story = _get_story_or_404(db, story_id)
    liked = toggle_like(db, StoryLike, "story_id", story, user.id)

    return {
        "message":     "Story liked" if liked else "Story unliked",
        "likes_count": story.likes_count,
        "is_liked":    liked,
    }


# =====================================================
# COMMENTS
# =====================================================

@router.get("/{story_id}/comments")
def list_comments(
    story_id: int,
    db: Session = Depends(get_db),
    page: int = Query(1, ge=1),
):
    story = _get_story_or_404(db, story_id)

    top_level = (
        db.query(StoryComment)
        .filter(StoryComment.story_id == story.id, StoryComment.parent_id.is_(None))
        .order_by(StoryComment.created_at.desc(), StoryComment.id.desc())
    )
    result = paginate(top_level, page, PER_PAGE)
    result["results"] = _comment_tree(db, story.id, roots=result["results"])

    return {"comments": result}


@router.post("/{story_id}/comments", status_code=status.HTTP_201_CREATED)
def add_comment(
    story_id: int,
    payload: CommentPayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    story = _get_story_or_404(db, story_id)

    if payload.parent_id is not None:
        parent = (
            db.query(StoryComment.id)
            .filter(StoryComment.id == payload.parent_id, StoryComment.story_id == story.id)
            .first()
        )
        if not parent:
            raise validation_error("parent_id", "The parent comment must belong to this story.")

    comment = StoryComment(
        story_id=story.id,
        user_id=user.id,
        comment=payload.comment,
        parent_id=payload.parent_id,
    )
    db.add(comment)
    db.flush()
    _refresh_comments_count(db, story.id)
    db.commit()

    comment = (
        db.query(StoryComment)
        .options(joinedload(StoryComment.user))
        .filter(StoryComment.id == comment.id)
        .first()
    )

    return {
        "message": "Comment added successfully",
        "comment": serialize_comment(comment),
    }


@router.delete("/{story_id}/comments/{comment_id}")
def delete_comment(
    story_id: int,
    comment_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    story = _get_story_or_404(db, story_id)

    comment = (
        db.query(StoryComment)
        .filter(StoryComment.id == comment_id, StoryComment.story_id == story.id)
        .first()
    )
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")

    if user.id not in (comment.user_id, story.user_id) and not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    # replies go with it through the parent_id cascade
    db.delete(comment)
    db.flush()
    _refresh_comments_count(db, story.id)
    db.commit()

    return {"message": "Comment deleted successfully"}
