from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from farmhub.database import get_db
from farmhub.dependencies import require_admin
from farmhub.models import (
    User, UserRole, Product, Category,
    Order, OrderStatus, Consultation, ConsultationStatus,
    Tip, SuccessStory, CommunityMessage,
)

router = APIRouter(prefix="/admin", tags=["admin"])


def _counts_by(db: Session, column, keys) -> dict:
    rows = dict(db.query(column, func.count()).group_by(column).all())
    out = {}
    for key in keys:
        value = getattr(key, "value", key)
        out[value] = rows.get(key, rows.get(value, 0))
    return out


# ─────────────────────────────────────────────
# DASHBOARD
# ─────────────────────────────────────────────

@router.get("/stats")
def admin_stats(db: Session = Depends(get_db), admin=Depends(require_admin)):
    users_by_role = _counts_by(db, User.role, [r.value for r in UserRole])
    orders_by_status = _counts_by(db, Order.status, list(OrderStatus))
    consultations_by_status = _counts_by(db, Consultation.status, list(ConsultationStatus))

    completed_revenue = (
        db.query(func.sum(Order.total_amount))
        .filter(Order.status == OrderStatus.completed)
        .scalar()
        or 0
    )

    return {
        "users": {
            "total":   sum(users_by_role.values()),
            "by_role": users_by_role,
        },
        "products":   db.query(Product).count(),
        "categories": db.query(Category).count(),
        "orders": {
            "total":             sum(orders_by_status.values()),
            "by_status":         orders_by_status,
            "completed_revenue": round(completed_revenue, 2),
        },
        "consultations": {
            "total":     sum(consultations_by_status.values()),
            "by_status": consultations_by_status,
        },
        "tips":               db.query(Tip).count(),
        "success_stories":    db.query(SuccessStory).count(),
        "community_messages": db.query(CommunityMessage).count(),
    }
