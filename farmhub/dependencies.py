from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.orm import Session

from farmhub.database import get_db
from farmhub.models import User, RevokedToken
from farmhub.security import decode_token


def get_token_from_request(request: Request) -> str | None:
    # Bearer header is what API clients send
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]

    # Browser sessions fall back to the HTTP-only cookie
    return request.cookies.get("access_token")


def _resolve_user(request: Request, db: Session) -> User:
    token = get_token_from_request(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    payload = decode_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user_id = payload.get("sub")
    jti = payload.get("jti")
    if not user_id or not jti:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    if db.query(RevokedToken.id).filter(RevokedToken.jti == jti).first():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account disabled",
        )

    # logout needs the claims of the token being revoked
    request.state.token_payload = payload
    return user


# =========================
# CURRENT USER
# =========================

def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    return _resolve_user(request, db)


def get_optional_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User | None:
    """Public endpoints personalise is_liked / is_saved when a token is sent."""
    if not get_token_from_request(request):
        return None
    try:
        return _resolve_user(request, db)
    except HTTPException:
        return None


# =========================
# ROLE GUARDS
# =========================

def require_roles(*roles: str):
    def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"This action requires one of the roles: {', '.join(roles)}",
            )
        return user

    return dependency


def require_admin(
    user: User = Depends(get_current_user),
) -> User:
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


def require_expert(
    user: User = Depends(get_current_user),
) -> User:
    if not user.is_expert:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only experts can perform this action",
        )
    return user
