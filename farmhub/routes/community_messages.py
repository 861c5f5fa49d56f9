import logging
from datetime import datetime, timezone
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status, Form, File, UploadFile
from sqlalchemy import or_, cast, String
from sqlalchemy.orm import Session, joinedload

from farmhub.database import get_db
from farmhub.dependencies import get_current_user, get_optional_user
from farmhub.errors import validation_error
from farmhub.models import CommunityMessage, MessageAttachment, MessageLike, User, as_utc
from farmhub.routes.message_replies import reply_tree
from farmhub.serializers import serialize_user_summary
from farmhub.uploads.service import (
    validate_attachment,
    guess_mime_type,
    file_type_for,
    save_upload,
    delete_upload,
    discard_on_failure,
    COMMUNITY_FILES,
)
from farmhub.utils.likes import toggle_like, increment_views, ids_marked_by
from farmhub.utils.pagination import paginate
from farmhub.utils.text import parse_tags, parse_bool

router = APIRouter(prefix="/community/messages", tags=["community"])

logger = logging.getLogger(__name__)

PER_PAGE = 20
POLL_LIMIT = 50
LATEST_LIMIT = 10
POLLING_INTERVAL_MS = 3000

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


# =====================================================
# SERIALIZERS
# =====================================================

def _serialize_attachment(a: MessageAttachment) -> dict:
    return {
        "id":             a.id,
        "file_name":      a.file_name,
        "file_path":      a.file_path,
        "file_type":      a.file_type,
        "mime_type":      a.mime_type,
        "file_size":      a.file_size,
        "formatted_size": a.formatted_size,
        "caption":        a.caption,
        "order":          a.order,
    }


def serialize_message(m: CommunityMessage, liked: Optional[bool] = None) -> dict:
    data = {
        "id":              m.id,
        "user_id":         m.user_id,
        "title":           m.title,
        "content":         m.content,
        "category":        m.category,
        "tags":            m.tags or [],
        "is_pinned":       m.is_pinned,
        "is_announcement": m.is_announcement,
        "views_count":     m.views_count,
        "likes_count":     m.likes_count,
        "replies_count":   m.replies_count,
        "last_reply_at":   m.last_reply_at,
        "user":            serialize_user_summary(m.user),
        "attachments":     [_serialize_attachment(a) for a in m.attachments],
        "created_at":      m.created_at,
        "updated_at":      m.updated_at,
    }
    if liked is not None:
        data["is_liked"] = liked
    return data


# =====================================================
# HELPERS
# =====================================================

def _base_query(db: Session):
    return db.query(CommunityMessage).options(
        joinedload(CommunityMessage.user),
        joinedload(CommunityMessage.attachments),
    )


def _get_message_or_404(db: Session, message_id: int) -> CommunityMessage:
    message = _base_query(db).filter(CommunityMessage.id == message_id).first()
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    return message


def _ensure_can_manage(message: CommunityMessage, user: User) -> None:
    if message.user_id != user.id and not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not authorized to modify this message",
        )


def _pinned_then_newest(query):
    return query.order_by(
        CommunityMessage.is_pinned.desc(),
        CommunityMessage.created_at.desc(),
        CommunityMessage.id.desc(),
    )


def _server_time() -> str:
    return datetime.now(timezone.utc).isoformat()


def _no_cache(response: Response) -> None:
    for key, value in NO_CACHE_HEADERS.items():
        response.headers[key] = value


def _flag(raw: Optional[str], field: str) -> Optional[bool]:
    try:
        return parse_bool(raw)
    except ValueError as e:
        raise validation_error(field, str(e))


def _apply_flags(message: CommunityMessage, user: User, is_pinned: Optional[bool], is_announcement: Optional[bool]) -> None:
    """Pinning and announcements belong to admins; None keeps the current value."""
    for field, value in (("is_pinned", is_pinned), ("is_announcement", is_announcement)):
        if value is None:
            continue
        if value != bool(getattr(message, field)) and not user.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Only admins can change {field}",
            )
        setattr(message, field, value)


def _attach_files(db: Session, message: CommunityMessage, files, start: int, stored: list[str]) -> None:
    files = [f for f in (files or []) if f is not None and f.filename]

    sizes = [validate_attachment(f, field=f"attachments.{i}") for i, f in enumerate(files)]

    for index, (upload, size) in enumerate(zip(files, sizes)):
        mime_type = guess_mime_type(upload)
        path = save_upload(upload, COMMUNITY_FILES)
        stored.append(path)
        db.add(MessageAttachment(
            message_id=message.id,
            file_name=upload.filename,
            file_path=path,
            file_type=file_type_for(mime_type),
            mime_type=mime_type,
            file_size=size,
            order=start + index,
        ))


def _since(value: Optional[datetime]) -> Optional[datetime]:
    # stored timestamps are UTC
    return as_utc(value).astimezone(timezone.utc) if value else None


# =====================================================
# LISTINGS / POLLING
# =====================================================

@router.get("")
def list_messages(
    response: Response,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
    category: Optional[str] = None,
    search: Optional[str] = None,
    pinned: bool = False,
    announcement: bool = False,
    last_updated: Optional[datetime] = None,
    page: int = Query(1, ge=1),
):
    query = _base_query(db)

    if category:
        query = query.filter(CommunityMessage.category == category)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            CommunityMessage.title.ilike(pattern),
            CommunityMessage.content.ilike(pattern),
            cast(CommunityMessage.tags, String).ilike(pattern),
        ))
    if pinned:
        query = query.filter(CommunityMessage.is_pinned == True)  # noqa: E712
    if announcement:
        query = query.filter(CommunityMessage.is_announcement == True)  # noqa: E712
    if last_updated:
        query = query.filter(CommunityMessage.updated_at > _since(last_updated))

    result = paginate(_pinned_then_newest(query), page, PER_PAGE)
    messages = result["results"]
    liked = ids_marked_by(db, MessageLike, "message_id", [m.id for m in messages], user)
    result["results"] = [
        serialize_message(m, liked=(m.id in liked) if user else None)
        for m in messages
    ]

    _no_cache(response)
    return {
        "messages":         result,
        "server_time":      _server_time(),
        "polling_interval": POLLING_INTERVAL_MS,
    }


@router.get("/poll")
def poll_messages(
    response: Response,
    db: Session = Depends(get_db),
    last_id: int = Query(0, ge=0),
    last_updated: Optional[datetime] = None,
):
    query = _base_query(db)

    if last_id > 0:
        query = query.filter(CommunityMessage.id > last_id)
    if last_updated:
        query = query.filter(CommunityMessage.updated_at > _since(last_updated))

    messages = _pinned_then_newest(query).limit(POLL_LIMIT).all()

    _no_cache(response)
    return {
        "messages":         [serialize_message(m) for m in messages],
        "last_id":          max((m.id for m in messages), default=last_id),
        "server_time":      _server_time(),
        "has_new_messages": bool(messages),
        "polling_interval": POLLING_INTERVAL_MS,
    }


@router.get("/latest")
def latest_messages(
    db: Session = Depends(get_db),
    last_id: int = Query(0, ge=0),
):
    messages = (
        _base_query(db)
        .filter(CommunityMessage.id > last_id)
        .order_by(CommunityMessage.created_at.desc(), CommunityMessage.id.desc())
        .limit(LATEST_LIMIT)
        .all()
    )

    return {
        "messages": [serialize_message(m) for m in messages],
        "last_id":  max((m.id for m in messages), default=last_id),
    }


# =====================================================
# DETAIL
# =====================================================

@router.get("/{message_id}")
def get_message(
    message_id: int,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
):
    message = _get_message_or_404(db, message_id)
    increment_views(db, message)

    liked = False
    if user:
        liked = message.id in ids_marked_by(db, MessageLike, "message_id", [message.id], user)

    data = serialize_message(message, liked=liked)
    data["replies"] = reply_tree(db, message.id, user)
    return {"message": data}


# =====================================================
# CREATE / UPDATE / DELETE
# =====================================================

@router.post("", status_code=status.HTTP_201_CREATED)
def create_message(
    content: str = Form(..., min_length=1, max_length=10000),
    title: Optional[str] = Form(None, max_length=255),
    category: Optional[str] = Form(None, max_length=100),
    tags: Optional[List[str]] = Form(None),
    is_pinned: Optional[str] = Form(None),
    is_announcement: Optional[str] = Form(None),
    attachments: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    message = CommunityMessage(
        user_id=user.id,
        title=title,
        content=content,
        category=category,
        tags=parse_tags(tags),
        is_pinned=False,
        is_announcement=False,
    )
    _apply_flags(
        message,
        user,
        _flag(is_pinned, "is_pinned"),
        _flag(is_announcement, "is_announcement"),
    )

    db.add(message)
    db.flush()

    with discard_on_failure() as stored:
        _attach_files(db, message, attachments, start=0, stored=stored)
        db.commit()

    logger.info(
        "Community message created | message_id=%s | user_id=%s | attachments=%s",
        message.id,
        user.id,
        len(stored),
    )

    return {
        "message": "Message created successfully",
        "data": serialize_message(_get_message_or_404(db, message.id)),
    }


@router.put("/{message_id}")
def update_message(
    message_id: int,
    content: str = Form(..., min_length=1, max_length=10000),
    title: Optional[str] = Form(None, max_length=255),
    category: Optional[str] = Form(None, max_length=100),
    tags: Optional[List[str]] = Form(None),
    is_pinned: Optional[str] = Form(None),
    is_announcement: Optional[str] = Form(None),
    attachments: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    message = _get_message_or_404(db, message_id)
    _ensure_can_manage(message, user)

    message.content = content
    if title is not None:
        message.title = title
    if category is not None:
        message.category = category
    if tags is not None:
        message.tags = parse_tags(tags)

    _apply_flags(
        message,
        user,
        _flag(is_pinned, "is_pinned"),
        _flag(is_announcement, "is_announcement"),
    )

    with discard_on_failure() as stored:
        _attach_files(db, message, attachments, start=len(message.attachments), stored=stored)
        db.commit()

    db.expire_all()
    return {
        "message": "Message updated successfully",
        "data": serialize_message(_get_message_or_404(db, message_id)),
    }


@router.delete("/{message_id}")
def delete_message(
    message_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    message = _get_message_or_404(db, message_id)
    _ensure_can_manage(message, user)

    paths = [a.file_path for a in message.attachments]
    db.delete(message)
    db.commit()

    for path in paths:
        delete_upload(path)

    logger.info("Community message deleted | message_id=%s | by=%s", message_id, user.id)

    return {"message": "Message deleted successfully"}


@router.post("/{message_id}/like")
def like_message(
    message_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    message = _get_message_or_404(db, message_id)
    liked = toggle_like(db, MessageLike, "message_id", message, user.id)

    return {
        "message":     "Message liked" if liked else "Message unliked",
        "likes_count": message.likes_count,
        "is_liked":    liked,
    }
