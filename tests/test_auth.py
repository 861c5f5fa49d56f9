from datetime import datetime, timedelta, timezone

from conftest import PASSWORD, PNG_BYTES
from farmhub.database import SessionLocal
from farmhub.models import RevokedToken


def test_register_returns_user_and_token(client):
    r = client.post("/api/register", json={
        "name": "Amina",
        "email": "Amina@Example.com",
        "password": PASSWORD,
        "role": "farmer",
        "location": "Nakuru",
    })

    assert r.status_code == 201
    body = r.json()
    assert body["token"]
    assert body["user"]["email"] == "amina@example.com"
    assert body["user"]["role"] == "farmer"
    assert "hashed_password" not in body["user"]


def test_register_cannot_create_admin(client):
    r = client.post("/api/register", json={
        "name": "Sneaky",
        "email": "sneaky@example.com",
        "password": PASSWORD,
        "role": "admin",
    })

    assert r.status_code == 422
    assert "role" in r.json()["errors"]


def test_register_duplicate_email_is_a_field_error(client, make_user):
    make_user("customer", email="dup@example.com")

    r = client.post("/api/register", json={
        "name": "Again",
        "email": "dup@example.com",
        "password": PASSWORD,
        "role": "customer",
    })

    assert r.status_code == 422
    body = r.json()
    assert body["message"] == "Validation failed"
    assert body["errors"]["email"] == ["The email has already been taken."]


def test_register_short_password_rejected(client):
    r = client.post("/api/register", json={
        "name": "Short",
        "email": "short@example.com",
        "password": "123",
        "role": "farmer",
    })

    assert r.status_code == 422
    assert "password" in r.json()["errors"]


def test_login_success_and_bad_credentials(client, make_user):
    make_user("expert", email="expert@example.com")

    ok = client.post("/api/login", json={"email": "expert@example.com", "password": PASSWORD})
    assert ok.status_code == 200
    assert ok.json()["user"]["role"] == "expert"
    assert "access_token" in ok.cookies

    bad = client.post("/api/login", json={"email": "expert@example.com", "password": "wrong-password"})
    assert bad.status_code == 401


def test_profile_requires_auth(client, make_user):
    assert client.get("/api/user/profile").status_code == 401

    user, headers = make_user("customer")
    r = client.get("/api/user/profile", headers=headers)
    assert r.status_code == 200
    assert r.json()["user"]["id"] == user["id"]


def test_cookie_authenticates_browser_sessions(client, make_user):
    make_user("farmer", email="cookie@example.com")
    client.post("/api/login", json={"email": "cookie@example.com", "password": PASSWORD})

    r = client.get("/api/user/profile")
    assert r.status_code == 200
    assert r.json()["user"]["email"] == "cookie@example.com"
    client.cookies.clear()


def test_update_user_details(client, make_user):
    _, headers = make_user("customer")

    r = client.patch("/api/user", json={
        "location": "Eldoret",
        "favorites": ["maize", "beans"],
        "role": "farmer",
    }, headers=headers)

    assert r.status_code == 200
    user = r.json()["user"]
    assert user["location"] == "Eldoret"
    assert user["favorites"] == ["maize", "beans"]
    assert user["role"] == "farmer"


def test_null_name_and_role_leave_them_unchanged(client, make_user):
    _, headers = make_user("farmer", name="Wanjiru")

    r = client.patch("/api/user", json={"name": None, "role": None, "location": "Nakuru"}, headers=headers)

    assert r.status_code == 200
    user = r.json()["user"]
    assert user["name"] == "Wanjiru"
    assert user["role"] == "farmer"
    assert user["location"] == "Nakuru"


def test_user_cannot_promote_self_to_admin(client, make_user):
    _, headers = make_user("customer")

    r = client.patch("/api/user", json={"role": "admin"}, headers=headers)
    assert r.status_code == 422


def test_update_user_image_replaces_file(client, make_user, public_dir):
    _, headers = make_user("farmer")

    first = client.post(
        "/api/user/image",
        files={"image": ("me.png", PNG_BYTES, "image/png")},
        headers=headers,
    )
    assert first.status_code == 200
    first_path = first.json()["image_url"]
    assert first_path.startswith("userImage/")
    assert (public_dir / first_path).is_file()

    second = client.post(
        "/api/user/image",
        files={"image": ("me2.png", PNG_BYTES, "image/png")},
        headers=headers,
    )
    assert second.status_code == 200
    assert not (public_dir / first_path).exists()
    assert (public_dir / second.json()["image_url"]).is_file()


def test_update_user_image_rejects_non_images(client, make_user):
    _, headers = make_user("farmer")

    r = client.post(
        "/api/user/image",
        files={"image": ("notes.txt", b"hello", "text/plain")},
        headers=headers,
    )
    assert r.status_code == 422
    assert "image" in r.json()["errors"]


def test_logout_revokes_token(client, make_user):
    _, headers = make_user("customer")

    r = client.post("/api/logout", headers=headers)
    assert r.status_code == 200

    after = client.get("/api/user/profile", headers=headers)
    assert after.status_code == 401
    assert after.json()["detail"] == "Token has been revoked"


def test_logout_prunes_expired_revocations(client, make_user):
    user, headers = make_user("customer")

    db = SessionLocal()
    try:
        db.add(RevokedToken(
            jti="stale",
            user_id=user["id"],
            expires_at=datetime.now(timezone.utc) - timedelta(days=1),
        ))
        db.commit()
    finally:
        db.close()

    assert client.post("/api/logout", headers=headers).status_code == 200

    db = SessionLocal()
    try:
        jtis = [row.jti for row in db.query(RevokedToken).all()]
    finally:
        db.close()
    assert "stale" not in jtis
    assert len(jtis) == 1
