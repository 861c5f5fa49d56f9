import os
import logging
from datetime import datetime, timezone
from typing import Literal, Optional, List
from fastapi import APIRouter, Depends, HTTPException, status, Request, Response, UploadFile, File
from sqlalchemy.orm import Session
from pydantic import BaseModel, EmailStr, Field

from farmhub.database import get_db
from farmhub.dependencies import get_current_user
from farmhub.errors import validation_error
from farmhub.models import User, RevokedToken
from farmhub.security import (
    verify_password,
    hash_password,
    create_token,
    ACCESS_TOKEN_EXPIRE_DAYS,
)
from farmhub.serializers import serialize_user
from farmhub.uploads.service import validate_image, save_upload, delete_upload, discard_on_failure, USER_IMAGES

router = APIRouter(tags=["auth"])

logger = logging.getLogger(__name__)

COOKIE_SECURE = os.getenv("COOKIE_SECURE", "true").lower() == "true"

# admin accounts only come from the startup bootstrap
SelfServiceRole = Literal["expert", "farmer", "customer"]


# =====================================================
# SCHEMAS
# =====================================================

class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    username: Optional[str] = Field(None, max_length=255)
    email: EmailStr
    phone_number: Optional[str] = Field(None, max_length=20)
    password: str = Field(..., min_length=6)
    image_url: Optional[str] = None
    location: Optional[str] = None
    role: SelfServiceRole


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


class UserUpdatePayload(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    username: Optional[str] = Field(None, max_length=255)
    phone_number: Optional[str] = Field(None, max_length=20)
    location: Optional[str] = None
    role: Optional[SelfServiceRole] = None
    favorites: Optional[List[str]] = None


# =====================================================
# HELPERS
# =====================================================

def _set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key="access_token",
        value=token,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="none" if COOKIE_SECURE else "lax",
        path="/",
        max_age=60 * 60 * 24 * ACCESS_TOKEN_EXPIRE_DAYS,
    )


# =====================================================
# REGISTER
# =====================================================

@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterPayload,
    response: Response,
    db: Session = Depends(get_db),
):
    email = payload.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise validation_error("email", "The email has already been taken.")

    user = User(
        name=payload.name,
        username=payload.username,
        email=email,
        phone_number=payload.phone_number,
        hashed_password=hash_password(payload.password),
        image_url=payload.image_url,
        location=payload.location,
        role=payload.role,
        is_active=True,
    )

    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info("User registered | user_id=%s | role=%s", user.id, user.role)

    token = create_token(user.id, user.role)
    _set_auth_cookie(response, token)

    return {
        "user": serialize_user(user),
        "token": token,
    }


# =====================================================
# LOGIN
# =====================================================

@router.post("/login")
def login(
    payload: LoginPayload,
    response: Response,
    db: Session = Depends(get_db),
):
    user = db.query(User).filter(User.email == payload.email.lower()).first()

    if not user or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User disabled",
        )

    token = create_token(user.id, user.role)
    _set_auth_cookie(response, token)

    return {
        "user": serialize_user(user),
        "token": token,
    }


# =====================================================
# CURRENT USER
# =====================================================

@router.get("/user/profile")
def user_profile(user: User = Depends(get_current_user)):
    return {"user": serialize_user(user)}


@router.patch("/user")
def update_user_details(
    payload: UserUpdatePayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Update only the provided fields."""
    updated_fields = payload.model_dump(exclude_unset=True)

    if updated_fields.get("role") is not None and user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admins cannot change their own role",
        )

    for field, value in updated_fields.items():
        # name and role are NOT NULL; null leaves them unchanged
        if value is None and field in ("name", "role"):
            continue
        setattr(user, field, value)

    db.commit()
    db.refresh(user)

    return {"user": serialize_user(user)}


@router.post("/user/image")
def update_user_image(
    image: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    validate_image(image, field="image")

    old_image = user.image_url
    with discard_on_failure() as stored:
        user.image_url = save_upload(image, USER_IMAGES)
        stored.append(user.image_url)
        db.commit()
    db.refresh(user)

    # only files we stored ourselves; registration may carry an external URL
    if old_image and old_image.startswith(f"{USER_IMAGES}/"):
        delete_upload(old_image)

    return {
        "message": "Image updated successfully",
        "user": serialize_user(user),
        "image_url": user.image_url,
    }


# =====================================================
# LOGOUT
# =====================================================

@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    payload = request.state.token_payload

    # expired tokens fail decoding anyway, so their revocations are no longer needed
    pruned = (
        db.query(RevokedToken)
        .filter(RevokedToken.expires_at < datetime.now(timezone.utc))
        .delete(synchronize_session=False)
    )
    if pruned:
        logger.info("Expired token revocations pruned | count=%s", pruned)

    db.add(RevokedToken(
        jti=payload["jti"],
        user_id=user.id,
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    ))
    db.commit()

    response.delete_cookie(key="access_token", path="/")
    return {"message": "Successfully logged out"}
