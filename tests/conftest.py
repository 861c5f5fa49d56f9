"""
Shared fixtures for the API tests.

The environment is configured before anything from farmhub is imported:
database.py and security.py read their settings at import time.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

_TMP = tempfile.mkdtemp(prefix="farmhub_test_")

os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["PUBLIC_DIR"] = os.path.join(_TMP, "public")
os.environ["SEED_CATEGORIES"] = "false"
os.environ["COOKIE_SECURE"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("ADMIN_EMAIL", None)
os.environ.pop("ADMIN_PASSWORD", None)

from fastapi.testclient import TestClient  # noqa: E402

from farmhub.database import Base, engine, SessionLocal  # noqa: E402
from farmhub.main import app  # noqa: E402
from farmhub.models import User  # noqa: E402
from farmhub.security import hash_password  # noqa: E402
from farmhub.uploads.service import PUBLIC_DIR  # noqa: E402

PASSWORD = "secret123"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def outbox(monkeypatch):
    """Captured password reset emails instead of Mailgun calls."""
    sent = []

    def fake_send(to_email, name, otp, expires_minutes):
        sent.append({"to": to_email, "name": name, "otp": otp, "expires": expires_minutes})
        return True

    monkeypatch.setattr("farmhub.routes.password_reset.send_password_reset_otp", fake_send)
    return sent


@pytest.fixture
def client(outbox):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as c:
        yield c


@pytest.fixture
def public_dir():
    return PUBLIC_DIR


@pytest.fixture
def make_user(client):
    """
    Registers a user of the given role and returns (user_json, headers).
    Admins cannot self-register, so they are inserted directly and logged in.
    """
    counter = {"n": 0}

    def _make(role="farmer", name=None, email=None):
        counter["n"] += 1
        email = email or f"{role}{counter['n']}@example.com"
        name = name or f"{role.title()} {counter['n']}"

        if role == "admin":
            db = SessionLocal()
            try:
                db.add(User(
                    name=name,
                    email=email,
                    hashed_password=hash_password(PASSWORD),
                    role="admin",
                    is_active=True,
                ))
                db.commit()
            finally:
                db.close()
            r = client.post("/api/login", json={"email": email, "password": PASSWORD})
        else:
            r = client.post("/api/register", json={
                "name": name,
                "email": email,
                "password": PASSWORD,
                "role": role,
            })

        assert r.status_code in (200, 201), r.text
        # keep requests anonymous unless a test passes headers
        client.cookies.clear()

        body = r.json()
        return body["user"], {"Authorization": f"Bearer {body['token']}"}

    return _make


@pytest.fixture
def make_category(client, make_user):
    _, admin_headers = make_user("admin")

    def _make(name="Vegetables"):
        r = client.post("/api/categories", json={"name": name}, headers=admin_headers)
        assert r.status_code == 201, r.text
        return r.json()["category"]

    return _make


@pytest.fixture
def make_product(client, make_category):
    category = {}

    def _make(headers, name="Tomatoes", price=10.5, **fields):
        if "category_id" not in fields:
            if not category:
                category.update(make_category())
            fields["category_id"] = category["id"]

        data = {"name": name, "description": f"Fresh {name.lower()}", "price": str(price)}
        data.update({k: str(v) for k, v in fields.items()})

        r = client.post(
            "/api/products",
            data=data,
            files={"image": ("photo.png", PNG_BYTES, "image/png")},
            headers=headers,
        )
        assert r.status_code == 201, r.text
        return r.json()["product"]

    return _make


def future(days=3) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def past(days=1) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
