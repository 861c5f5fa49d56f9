import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload
from pydantic import BaseModel, Field

from farmhub.database import get_db
from farmhub.dependencies import get_current_user, get_optional_user
from farmhub.errors import validation_error
from farmhub.models import CommunityMessage, MessageReply, ReplyLike, User
from farmhub.serializers import serialize_user_summary
from farmhub.utils.likes import toggle_like, ids_marked_by
from farmhub.utils.pagination import paginate
from farmhub.utils.trees import build_tree

router = APIRouter(prefix="/community/messages/{message_id}/replies", tags=["community"])

logger = logging.getLogger(__name__)

PER_PAGE = 20


class ReplyCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)
    parent_reply_id: Optional[int] = None


class ReplyUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


# =====================================================
# SHARED WITH community_messages
# =====================================================

def serialize_reply(r: MessageReply, liked: Optional[bool] = None) -> dict:
    data = {
        "id":              r.id,
        "message_id":      r.message_id,
        "user_id":         r.user_id,
        "parent_reply_id": r.parent_reply_id,
        "content":         r.content,
        "likes_count":     r.likes_count,
        "user":            serialize_user_summary(r.user),
        "created_at":      r.created_at,
        "updated_at":      r.updated_at,
    }
    if liked is not None:
        data["is_liked"] = liked
    return data


def reply_tree(db: Session, message_id: int, user: Optional[User], roots=None) -> list[dict]:
    """Every reply of the message nested under its parent, with the caller's like flags."""
    nodes = (
        db.query(MessageReply)
        .options(joinedload(MessageReply.user))
        .filter(MessageReply.message_id == message_id)
        .all()
    )
    liked = ids_marked_by(db, ReplyLike, "reply_id", [n.id for n in nodes], user)

    def serialize(r: MessageReply) -> dict:
        return serialize_reply(r, liked=r.id in liked)

    return build_tree(nodes, "parent_reply_id", serialize, roots=roots)


def refresh_reply_counters(db: Session, message_id: int) -> None:
    total, newest = (
        db.query(func.count(MessageReply.id), func.max(MessageReply.created_at))
        .filter(MessageReply.message_id == message_id)
        .one()
    )
    db.query(CommunityMessage).filter(CommunityMessage.id == message_id).update(
        {
            CommunityMessage.replies_count: total,
            CommunityMessage.last_reply_at: newest,
        },
        synchronize_session=False,
    )


# =====================================================
# HELPERS
# =====================================================

def _get_message_or_404(db: Session, message_id: int) -> CommunityMessage:
    message = db.query(CommunityMessage).filter(CommunityMessage.id == message_id).first()
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    return message


def _get_reply_or_404(db: Session, message_id: int, reply_id: int) -> MessageReply:
    reply = (
        db.query(MessageReply)
        .options(joinedload(MessageReply.user))
        .filter(MessageReply.message_id == message_id, MessageReply.id == reply_id)
        .first()
    )
    if not reply:
        raise HTTPException(status_code=404, detail="Reply not found")
    return reply


def _ensure_can_manage(reply: MessageReply, user: User) -> None:
    if reply.user_id != user.id and not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not authorized to modify this reply",
        )


# =====================================================
# ROUTES
# =====================================================

@router.get("")
def list_replies(
    message_id: int,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
    page: int = Query(1, ge=1),
):
    _get_message_or_404(db, message_id)

    top_level = (
        db.query(MessageReply)
        .filter(MessageReply.message_id == message_id, MessageReply.parent_reply_id.is_(None))
        .order_by(MessageReply.created_at.asc(), MessageReply.id.asc())
    )
    result = paginate(top_level, page, PER_PAGE)
    result["results"] = reply_tree(db, message_id, user, roots=result["results"])

    return {"replies": result}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_reply(
    message_id: int,
    payload: ReplyCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _get_message_or_404(db, message_id)

    if payload.parent_reply_id is not None:
        parent = db.query(MessageReply).filter(MessageReply.id == payload.parent_reply_id).first()
        if not parent:
            raise validation_error("parent_reply_id", "The selected parent reply does not exist.")
        if parent.message_id != message_id:
            raise validation_error("parent_reply_id", "Parent reply does not belong to this message")

    reply = MessageReply(
        message_id=message_id,
        user_id=user.id,
        content=payload.content,
        parent_reply_id=payload.parent_reply_id,
    )
    db.add(reply)
    db.flush()
    refresh_reply_counters(db, message_id)
    db.commit()

    logger.info("Reply added | message_id=%s | reply_id=%s | user_id=%s", message_id, reply.id, user.id)

    return {
        "message": "Reply added successfully",
        "reply": serialize_reply(_get_reply_or_404(db, message_id, reply.id)),
    }


@router.put("/{reply_id}")
def update_reply(
    message_id: int,
    reply_id: int,
    payload: ReplyUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    reply = _get_reply_or_404(db, message_id, reply_id)
    _ensure_can_manage(reply, user)

    reply.content = payload.content
    db.commit()
    db.refresh(reply)

    return {
        "message": "Reply updated successfully",
        "reply": serialize_reply(reply),
    }


@router.delete("/{reply_id}")
def delete_reply(
    message_id: int,
    reply_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    reply = _get_reply_or_404(db, message_id, reply_id)
    _ensure_can_manage(reply, user)

    # nested replies cascade on parent_reply_id
    db.delete(reply)
    db.flush()
    refresh_reply_counters(db, message_id)
    db.commit()

    logger.info("Reply deleted | message_id=%s | reply_id=%s | by=%s", message_id, reply_id, user.id)

    return {"message": "Reply deleted successfully"}


@router.post("/{reply_id}/like")
def like_reply(
    message_id: int,
    reply_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    reply = _get_reply_or_404(db, message_id, reply_id)
    liked = toggle_like(db, ReplyLike, "reply_id", reply, user.id)

    return {
        "message":     "Reply liked" if liked else "Reply unliked",
        "likes_count": reply.likes_count,
        "is_liked":    liked,
    }
