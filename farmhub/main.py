import os
import logging
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from farmhub.database import init_database, SessionLocal
from farmhub.bootstrap import ensure_admin_exists, seed_categories
from farmhub.errors import handle_validation_error, handle_unexpected_error
from farmhub.uploads.service import PUBLIC_DIR

# Route modules
from farmhub.auth import router as auth_router
from farmhub.routes import (
    admin,
    categories,
    community_messages,
    consultations,
    health,
    message_replies,
    orders,
    password_reset,
    products,
    success_stories,
    tip_categories,
    tips,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]


app = FastAPI(title="FarmHub API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RequestValidationError, handle_validation_error)
app.add_exception_handler(Exception, handle_unexpected_error)

# ── Health & Auth ──────────────────────────────────────────────────
app.include_router(health.router,          prefix="/api")
app.include_router(auth_router,            prefix="/api")
app.include_router(password_reset.router,  prefix="/api")

# ── Marketplace ────────────────────────────────────────────────────
app.include_router(categories.router,      prefix="/api")
app.include_router(products.router,        prefix="/api")
app.include_router(orders.router,          prefix="/api")

# ── Experts & knowledge ────────────────────────────────────────────
app.include_router(consultations.experts_router, prefix="/api")
app.include_router(consultations.router,   prefix="/api")
app.include_router(tip_categories.router,  prefix="/api")
app.include_router(tips.router,            prefix="/api")
app.include_router(success_stories.router, prefix="/api")

# ── Community ──────────────────────────────────────────────────────
app.include_router(community_messages.router, prefix="/api")
app.include_router(message_replies.router,    prefix="/api")

# ── Admin ──────────────────────────────────────────────────────────
app.include_router(admin.router,           prefix="/api")

# Uploaded files: GET /files/productImages/<name>.jpg
PUBLIC_DIR.mkdir(parents=True, exist_ok=True)
app.mount("/files", StaticFiles(directory=str(PUBLIC_DIR)), name="files")


@app.on_event("startup")
def startup():
    init_database()
    db = SessionLocal()
    try:
        ensure_admin_exists(db)
        seed_categories(db)
    finally:
        db.close()

    logger.info("FarmHub API started | cors_origins=%s", ",".join(CORS_ORIGINS))
