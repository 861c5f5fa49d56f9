"""Response shapes shared by several routers."""

from farmhub.models import User


def serialize_user(u: User) -> dict:
    return {
        "id":           u.id,
        "name":         u.name,
        "username":     u.username,
        "email":        u.email,
        "phone_number": u.phone_number,
        "image_url":    u.image_url,
        "location":     u.location,
        "role":         u.role,
        "favorites":    u.favorites or [],
        "is_active":    u.is_active,
        "created_at":   u.created_at,
        "updated_at":   u.updated_at,
    }


def serialize_user_summary(u: User | None) -> dict | None:
    """Public author/seller card: no favorites, no account flags."""
    if u is None:
        return None
    return {
        "id":           u.id,
        "name":         u.name,
        "username":     u.username,
        "email":        u.email,
        "phone_number": u.phone_number,
        "location":     u.location,
        "image_url":    u.image_url,
        "role":         u.role,
    }
