import os
import logging
import secrets
from datetime import datetime, timedelta, timezone
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, EmailStr, Field, ValidationInfo, field_validator

from farmhub.database import get_db
from farmhub.errors import validation_error
from farmhub.models import User, PasswordResetOTP
from farmhub.security import hash_password
from farmhub.utils.email import send_password_reset_otp

router = APIRouter(prefix="/password", tags=["password-reset"])

logger = logging.getLogger(__name__)

OTP_EXPIRE_MINUTES = int(os.getenv("OTP_EXPIRE_MINUTES", "10"))
OTP_LENGTH = 6

RESET_REQUESTED_MESSAGE = "If an account exists for this email, a reset code has been sent."


# =========================
# SCHEMAS
# =========================

class ResetRequest(BaseModel):
    email: EmailStr


class ResetConfirm(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=OTP_LENGTH, max_length=OTP_LENGTH)
    password: str = Field(..., min_length=6)
    password_confirmation: str

    @field_validator("password_confirmation")
    @classmethod
    def passwords_match(cls, value: str, info: ValidationInfo) -> str:
        if value != info.data.get("password"):
            raise ValueError("The password confirmation does not match.")
        return value


def generate_otp() -> str:
    return "".join(secrets.choice("0123456789") for _ in range(OTP_LENGTH))


def _invalidate_open_otps(db: Session, user_id: int) -> None:
    db.query(PasswordResetOTP).filter(
        PasswordResetOTP.user_id == user_id,
        PasswordResetOTP.is_used == False,  # noqa: E712
    ).update({PasswordResetOTP.is_used: True}, synchronize_session=False)


# =========================
# REQUEST RESET
# =========================

@router.post("/request-reset")
def request_reset(payload: ResetRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == payload.email.lower()).first()
    if not user:
        # Do NOT reveal account existence
        return {"message": RESET_REQUESTED_MESSAGE}

    _invalidate_open_otps(db, user.id)

    otp = generate_otp()
    db.add(PasswordResetOTP(
        user_id=user.id,
        otp=otp,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=OTP_EXPIRE_MINUTES),
    ))
    db.commit()

    if not send_password_reset_otp(user.email, user.name, otp, OTP_EXPIRE_MINUTES):
        logger.warning("Password reset OTP email not delivered | user_id=%s", user.id)

    return {"message": RESET_REQUESTED_MESSAGE}


# =========================
# CONFIRM RESET
# =========================

@router.post("/reset")
def confirm_reset(payload: ResetConfirm, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == payload.email.lower()).first()

    record = None
    if user:
        record = (
            db.query(PasswordResetOTP)
            .filter(
                PasswordResetOTP.user_id == user.id,
                PasswordResetOTP.otp == payload.otp,
            )
            .order_by(PasswordResetOTP.id.desc())
            .first()
        )

    if not record or not record.is_valid():
        raise validation_error("otp", "Invalid or expired OTP")

    user.hashed_password = hash_password(payload.password)
    _invalidate_open_otps(db, user.id)
    db.commit()

    logger.info("Password reset completed | user_id=%s", user.id)

    return {"message": "Password has been reset successfully"}
