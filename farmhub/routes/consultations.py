import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session, joinedload
from pydantic import BaseModel, Field

from farmhub.database import get_db
from farmhub.dependencies import get_current_user, require_admin
from farmhub.errors import validation_error
from farmhub.models import Consultation, ConsultationStatus, User, UserRole, as_utc
from farmhub.serializers import serialize_user_summary

router = APIRouter(prefix="/consultations", tags=["consultations"])

# GET /experts sits outside the /consultations prefix
experts_router = APIRouter(tags=["consultations"])

logger = logging.getLogger(__name__)


# =====================================================
# SCHEMAS
# =====================================================

class BookingPayload(BaseModel):
    expert_id: int
    consultation_date: datetime
    description: Optional[str] = Field(None, max_length=5000)


class AcceptPayload(BaseModel):
    expert_notes: Optional[str] = None


class DeclinePayload(BaseModel):
    decline_reason: str = Field(..., min_length=1)


# =====================================================
# HELPERS
# =====================================================

def serialize_consultation(c: Consultation) -> dict:
    return {
        "id":                c.id,
        "farmer_id":         c.farmer_id,
        "expert_id":         c.expert_id,
        "consultation_date": c.consultation_date,
        "description":       c.description,
        "status":            c.status,
        "expert_notes":      c.expert_notes,
        "decline_reason":    c.decline_reason,
        "farmer":            serialize_user_summary(c.farmer),
        "expert":            serialize_user_summary(c.expert),
        "created_at":        c.created_at,
        "updated_at":        c.updated_at,
    }


def _query(db: Session):
    return db.query(Consultation).options(
        joinedload(Consultation.farmer),
        joinedload(Consultation.expert),
    )


def _get_or_404(db: Session, consultation_id: int) -> Consultation:
    consultation = _query(db).filter(Consultation.id == consultation_id).first()
    if not consultation:
        raise HTTPException(status_code=404, detail="Consultation not found")
    return consultation


def _require_expert_of(consultation: Consultation, user: User) -> None:
    if consultation.expert_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the assigned expert can do this",
        )


def _require_status(consultation: Consultation, *allowed: ConsultationStatus) -> None:
    if consultation.status not in allowed:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Consultation is {consultation.status.value}",
        )


def _transition(db: Session, consultation: Consultation, new_status: ConsultationStatus, user: User, message: str) -> dict:
    consultation.status = new_status
    db.commit()

    logger.info(
        "Consultation %s | consultation_id=%s | by=%s",
        new_status.value,
        consultation.id,
        user.id,
    )

    db.expire_all()
    return {
        "message": message,
        "consultation": serialize_consultation(_get_or_404(db, consultation.id)),
    }


# =====================================================
# EXPERTS DIRECTORY
# =====================================================

@experts_router.get("/experts")
def list_experts(db: Session = Depends(get_db)):
    experts = (
        db.query(User)
        .filter(User.role == UserRole.expert.value, User.is_active == True)  # noqa: E712
        .order_by(User.name)
        .all()
    )
    return {"experts": [serialize_user_summary(u) for u in experts]}


# =====================================================
# BOOKING
# =====================================================

@router.post("", status_code=status.HTTP_201_CREATED)
def book_consultation(
    payload: BookingPayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if payload.expert_id == user.id:
        raise validation_error("expert_id", "You cannot book a consultation with yourself.")

    expert = db.query(User).filter(User.id == payload.expert_id).first()
    if not expert or not expert.is_expert or not expert.is_active:
        raise validation_error("expert_id", "The selected expert does not exist.")

    when = as_utc(payload.consultation_date)
    if when <= datetime.now(timezone.utc):
        raise validation_error("consultation_date", "The consultation date must be in the future.")

    consultation = Consultation(
        farmer_id=user.id,
        expert_id=expert.id,
        consultation_date=when,
        description=payload.description,
        status=ConsultationStatus.pending,
    )
    db.add(consultation)
    db.commit()

    logger.info(
        "Consultation booked | consultation_id=%s | farmer_id=%s | expert_id=%s",
        consultation.id,
        user.id,
        expert.id,
    )

    return {
        "message": "Consultation booked successfully",
        "consultation": serialize_consultation(_get_or_404(db, consultation.id)),
    }


# =====================================================
# LISTINGS
# =====================================================

@router.get("")
def all_consultations(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    status_filter: Optional[ConsultationStatus] = Query(None, alias="status"),
):
    query = _query(db)
    if status_filter:
        query = query.filter(Consultation.status == status_filter)

    rows = query.order_by(Consultation.consultation_date.desc(), Consultation.id.desc()).all()
    return {"consultations": [serialize_consultation(c) for c in rows]}


@router.get("/my-bookings")
def my_bookings(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows = (
        _query(db)
        .filter(Consultation.farmer_id == user.id)
        .order_by(Consultation.consultation_date.desc(), Consultation.id.desc())
        .all()
    )
    return {"consultations": [serialize_consultation(c) for c in rows]}


@router.get("/my-expert-bookings")
def my_expert_bookings(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows = (
        _query(db)
        .filter(Consultation.expert_id == user.id)
        .order_by(Consultation.consultation_date.desc(), Consultation.id.desc())
        .all()
    )
    return {"consultations": [serialize_consultation(c) for c in rows]}


@router.get("/{consultation_id}")
def get_consultation(
    consultation_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    consultation = _get_or_404(db, consultation_id)

    if user.id not in (consultation.farmer_id, consultation.expert_id) and not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    return {"consultation": serialize_consultation(consultation)}


# =====================================================
# STATE CHANGES
# =====================================================

@router.patch("/{consultation_id}/accept")
def accept_consultation(
    consultation_id: int,
    payload: Optional[AcceptPayload] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    consultation = _get_or_404(db, consultation_id)
    _require_expert_of(consultation, user)
    _require_status(consultation, ConsultationStatus.pending)

    if payload and payload.expert_notes is not None:
        consultation.expert_notes = payload.expert_notes

    return _transition(db, consultation, ConsultationStatus.accepted, user, "Consultation accepted")


@router.patch("/{consultation_id}/decline")
def decline_consultation(
    consultation_id: int,
    payload: DeclinePayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    consultation = _get_or_404(db, consultation_id)
    _require_expert_of(consultation, user)
    _require_status(consultation, ConsultationStatus.pending)

    consultation.decline_reason = payload.decline_reason

    return _transition(db, consultation, ConsultationStatus.declined, user, "Consultation declined")


@router.patch("/{consultation_id}/complete")
def complete_consultation(
    consultation_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    consultation = _get_or_404(db, consultation_id)
    _require_expert_of(consultation, user)
    _require_status(consultation, ConsultationStatus.accepted)

    return _transition(db, consultation, ConsultationStatus.completed, user, "Consultation marked as completed")


@router.patch("/{consultation_id}/cancel")
def cancel_consultation(
    consultation_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    consultation = _get_or_404(db, consultation_id)

    if user.id not in (consultation.farmer_id, consultation.expert_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    _require_status(consultation, ConsultationStatus.pending, ConsultationStatus.accepted)

    return _transition(db, consultation, ConsultationStatus.cancelled, user, "Consultation cancelled")
