import os
import logging
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

logger = logging.getLogger(__name__)

# ======================================================
# DATABASE CONNECTION
# ======================================================

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is not set")

# Hosted Postgres providers still hand out the legacy scheme.
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

IS_SQLITE = DATABASE_URL.startswith("sqlite")

if IS_SQLITE:
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        # ON DELETE CASCADE is a no-op in SQLite unless this is on
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

else:
    engine = create_engine(
        DATABASE_URL,
        pool_pre_ping=True,       # drops stale connections after idle periods
        pool_size=5,
        max_overflow=2,
        pool_timeout=30,
        pool_recycle=300,
        connect_args={
            "sslmode": os.getenv("DB_SSLMODE", "prefer"),
            "connect_timeout": 10,
        },
    )

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
)

Base = declarative_base()


# ======================================================
# DEPENDENCY
# ======================================================

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ======================================================
# DATABASE BOOTSTRAP
# ======================================================

def init_database():
    """
    Idempotent DB initialization, safe to run on every startup.

    - All tables created via ORM (existing tables are left untouched)
    - Upload directories exist under PUBLIC_DIR
    """

    import farmhub.models  # noqa: F401
    from farmhub.uploads.service import ensure_upload_dirs

    Base.metadata.create_all(bind=engine)
    ensure_upload_dirs()

    logger.info(
        "Database verified | dialect=%s | tables=%s",
        engine.dialect.name,
        len(Base.metadata.tables),
    )
