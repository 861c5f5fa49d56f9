from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import PNG_BYTES
from farmhub.main import app
from farmhub.uploads.service import PRODUCT_IMAGES


def test_farmer_creates_product(client, make_user, make_product):
    farmer, headers = make_user("farmer")

    product = make_product(headers, name="Kale", price=2.5, stock=40, location="Kiambu", is_featured="yes")

    assert product["name"] == "Kale"
    assert product["price"] == 2.5
    assert product["stock"] == 40
    assert product["is_featured"] is True
    assert product["image"].startswith("productImages/")
    assert product["user"]["id"] == farmer["id"]
    assert product["category"]["name"] == "Vegetables"


def test_price_is_kept_to_cents(client, make_user, make_product):
    _, headers = make_user("farmer")

    product = make_product(headers, name="Garlic", price="2.499")
    assert product["price"] == 2.5

    r = client.post(f"/api/products/{product['id']}", data={"price": "3.333"}, headers=headers)
    assert r.json()["product"]["price"] == 3.33


def test_failed_commit_removes_stored_image(client, make_user, make_category, public_dir, monkeypatch):
    category = make_category()
    _, headers = make_user("farmer")
    folder = public_dir / PRODUCT_IMAGES
    before = set(folder.glob("*"))

    def broken_commit(self):
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(Session, "commit", broken_commit)
    failing = TestClient(app, raise_server_exceptions=False)

    r = failing.post(
        "/api/products",
        data={"name": "X", "description": "Y", "price": "1", "category_id": str(category["id"])},
        files={"image": ("p.png", PNG_BYTES, "image/png")},
        headers=headers,
    )

    assert r.status_code == 500
    assert r.json() == {"detail": "Internal server error"}
    assert set(folder.glob("*")) == before


def test_customer_cannot_create_product(client, make_user, make_category):
    category = make_category()
    _, headers = make_user("customer")

    r = client.post(
        "/api/products",
        data={"name": "X", "description": "Y", "price": "1", "category_id": str(category["id"])},
        files={"image": ("p.png", PNG_BYTES, "image/png")},
        headers=headers,
    )
    assert r.status_code == 403


def test_unknown_category_is_rejected(client, make_user):
    _, headers = make_user("farmer")

    r = client.post(
        "/api/products",
        data={"name": "X", "description": "Y", "price": "1", "category_id": "999"},
        files={"image": ("p.png", PNG_BYTES, "image/png")},
        headers=headers,
    )
    assert r.status_code == 422
    assert "category_id" in r.json()["errors"]


def test_image_is_required(client, make_user, make_category):
    category = make_category()
    _, headers = make_user("farmer")

    r = client.post(
        "/api/products",
        data={"name": "X", "description": "Y", "price": "1", "category_id": str(category["id"])},
        headers=headers,
    )
    assert r.status_code == 422


def test_list_filters(client, make_user, make_product):
    _, headers = make_user("farmer")
    make_product(headers, name="Cheap Beans", price=1)
    make_product(headers, name="Mid Maize", price=15)
    make_product(headers, name="Pricey Honey", price=80)

    r = client.get("/api/products", params={"min_price": 10, "max_price": 50})
    assert [p["name"] for p in r.json()["products"]] == ["Mid Maize"]

    r = client.get("/api/products", params={"search": "honey"})
    assert [p["name"] for p in r.json()["products"]] == ["Pricey Honey"]

    r = client.get("/api/products")
    assert [p["name"] for p in r.json()["products"]] == ["Pricey Honey", "Mid Maize", "Cheap Beans"]


def test_featured_products(client, make_user, make_product):
    _, headers = make_user("farmer")
    make_product(headers, name="Plain")
    make_product(headers, name="Star", is_featured="true")

    r = client.get("/api/products/featured")
    assert [p["name"] for p in r.json()["products"]] == ["Star"]


def test_get_missing_product_404(client):
    assert client.get("/api/products/12345").status_code == 404


def test_owner_updates_product_and_image(client, make_user, make_product, public_dir):
    _, headers = make_user("farmer")
    product = make_product(headers)
    old_image = product["image"]

    r = client.post(
        f"/api/products/{product['id']}",
        data={"price": "12.75", "name": "Cherry Tomatoes"},
        files={"image": ("new.png", PNG_BYTES, "image/png")},
        headers=headers,
    )

    assert r.status_code == 200
    updated = r.json()["product"]
    assert updated["price"] == 12.75
    assert updated["name"] == "Cherry Tomatoes"
    assert updated["description"] == product["description"]
    assert updated["image"] != old_image
    assert not (public_dir / old_image).exists()
    assert (public_dir / updated["image"]).is_file()


def test_put_also_updates(client, make_user, make_product):
    _, headers = make_user("farmer")
    product = make_product(headers)

    r = client.put(f"/api/products/{product['id']}", data={"stock": "7"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["product"]["stock"] == 7


def test_only_owner_or_admin_can_modify(client, make_user, make_product):
    _, owner = make_user("farmer")
    _, other = make_user("farmer")
    _, admin = make_user("admin")
    product = make_product(owner)

    assert client.post(f"/api/products/{product['id']}", data={"price": "1"}, headers=other).status_code == 403
    assert client.delete(f"/api/products/{product['id']}", headers=other).status_code == 403

    r = client.post(f"/api/products/{product['id']}", data={"price": "3"}, headers=admin)
    assert r.status_code == 200


def test_delete_removes_row_and_image(client, make_user, make_product, public_dir):
    _, headers = make_user("farmer")
    product = make_product(headers)

    r = client.delete(f"/api/products/{product['id']}", headers=headers)

    assert r.status_code == 200
    assert client.get(f"/api/products/{product['id']}").status_code == 404
    assert not (public_dir / product["image"]).exists()


def test_deleting_category_cascades_to_products(client, make_user, make_product):
    _, farmer = make_user("farmer")
    _, admin = make_user("admin")
    product = make_product(farmer)

    r = client.delete(f"/api/categories/{product['category_id']}", headers=admin)

    assert r.status_code == 200
    assert client.get(f"/api/products/{product['id']}").status_code == 404


def test_category_crud_is_admin_only(client, make_user):
    _, farmer = make_user("farmer")
    _, admin = make_user("admin")

    assert client.post("/api/categories", json={"name": "Fruits"}, headers=farmer).status_code == 403

    created = client.post("/api/categories", json={"name": "Fruits"}, headers=admin)
    assert created.status_code == 201
    category_id = created.json()["category"]["id"]

    renamed = client.put(f"/api/categories/{category_id}", json={"description": "Sweet"}, headers=admin)
    assert renamed.json()["category"]["description"] == "Sweet"

    unnamed = client.put(f"/api/categories/{category_id}", json={"name": None}, headers=admin)
    assert unnamed.status_code == 200
    assert unnamed.json()["category"]["name"] == "Fruits"

    listed = client.get("/api/categories").json()["categories"]
    assert [c["name"] for c in listed] == ["Fruits"]
