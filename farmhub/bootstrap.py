import os
import logging
from sqlalchemy.orm import Session

from farmhub.models import User, UserRole, Category
from farmhub.security import hash_password

logger = logging.getLogger(__name__)

SEED_CATEGORIES = os.getenv("SEED_CATEGORIES", "true").lower() == "true"

DEFAULT_CATEGORIES = [
    ("Vegetables", "Fresh vegetables grown by local farmers"),
    ("Fruits", "Seasonal fruits straight from the farm"),
    ("Grains", "Maize, wheat, rice, sorghum and other cereals"),
    ("Legumes", "Beans, peas, lentils and groundnuts"),
    ("Roots & Tubers", "Potatoes, cassava, yams and sweet potatoes"),
]


# =====================================================
# ADMIN BOOTSTRAP (RUNS ON STARTUP)
# =====================================================

def ensure_admin_exists(db: Session) -> None:
    """
    Ensures the admin account from ADMIN_EMAIL / ADMIN_PASSWORD exists.
    Idempotent; an existing user with that email is promoted.
    """
    admin_email = os.getenv("ADMIN_EMAIL")
    admin_password = os.getenv("ADMIN_PASSWORD")

    if not admin_email or not admin_password:
        logger.warning("ADMIN_EMAIL or ADMIN_PASSWORD not set, admin bootstrap skipped")
        return

    admin_email = admin_email.lower()
    admin = db.query(User).filter(User.email == admin_email).first()

    if admin:
        if not admin.is_admin:
            admin.role = UserRole.admin.value
            db.commit()
            logger.warning("Existing user upgraded to admin | user_id=%s", admin.id)
        return

    admin = User(
        name="Administrator",
        email=admin_email,
        hashed_password=hash_password(admin_password),
        role=UserRole.admin.value,
        is_active=True,
    )
    db.add(admin)
    db.commit()

    logger.info("Admin user created from environment variables | user_id=%s", admin.id)


def seed_categories(db: Session) -> None:
    if not SEED_CATEGORIES:
        return
    if db.query(Category.id).first():
        return

    for name, description in DEFAULT_CATEGORIES:
        db.add(Category(name=name, description=description))
    db.commit()

    logger.info("Default product categories seeded | count=%s", len(DEFAULT_CATEGORIES))
