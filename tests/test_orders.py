import pytest


def _order_payload(*items):
    return {
        "items": [{"product_id": pid, "quantity": qty} for pid, qty in items],
        "shipping_address": "Plot 12, Market Road",
        "phone_number": "+254700000000",
        "notes": "Deliver in the morning",
    }


@pytest.fixture
def shop(client, make_user, make_product):
    seller, seller_headers = make_user("farmer")
    buyer, buyer_headers = make_user("customer")
    tomatoes = make_product(seller_headers, name="Tomatoes", price=10.5)
    onions = make_product(seller_headers, name="Onions", price=3)
    return {
        "seller": seller,
        "seller_headers": seller_headers,
        "buyer": buyer,
        "buyer_headers": buyer_headers,
        "tomatoes": tomatoes,
        "onions": onions,
    }


def _place(client, shop, *items):
    r = client.post("/api/orders", json=_order_payload(*items), headers=shop["buyer_headers"])
    assert r.status_code == 201, r.text
    return r.json()["order"]


def test_total_uses_server_side_prices(client, shop):
    payload = _order_payload((shop["tomatoes"]["id"], 2), (shop["onions"]["id"], 1))
    payload["items"][0]["unit_price"] = 0.01  # ignored

    r = client.post("/api/orders", json=payload, headers=shop["buyer_headers"])

    assert r.status_code == 201
    body = r.json()
    assert body["message"] == "Order created successfully"
    order = body["order"]
    assert order["total_amount"] == 24.0
    assert order["status"] == "pending"
    assert [i["unit_price"] for i in order["items"]] == [10.5, 3.0]
    assert [i["total_price"] for i in order["items"]] == [21.0, 3.0]
    assert order["items"][0]["product"]["user"]["id"] == shop["seller"]["id"]


def test_totals_are_rounded_to_cents(client, shop, make_product):
    seeds = make_product(shop["seller_headers"], name="Seeds", price=0.1)

    order = _place(client, shop, (seeds["id"], 3))

    assert order["items"][0]["total_price"] == 0.3
    assert order["total_amount"] == 0.3


def test_unknown_product_rejected(client, shop):
    r = client.post(
        "/api/orders",
        json=_order_payload((shop["tomatoes"]["id"], 1), (9999, 1)),
        headers=shop["buyer_headers"],
    )

    assert r.status_code == 422
    assert "items.1.product_id" in r.json()["errors"]
    assert client.get("/api/orders/my-orders", headers=shop["buyer_headers"]).json()["orders"] == []


def test_order_needs_items_and_positive_quantities(client, shop):
    empty = _order_payload()
    assert client.post("/api/orders", json=empty, headers=shop["buyer_headers"]).status_code == 422

    zero = _order_payload((shop["tomatoes"]["id"], 0))
    assert client.post("/api/orders", json=zero, headers=shop["buyer_headers"]).status_code == 422


def test_my_orders_and_sales(client, shop, make_user):
    order = _place(client, shop, (shop["tomatoes"]["id"], 1))
    _, stranger = make_user("farmer")

    mine = client.get("/api/orders/my-orders", headers=shop["buyer_headers"]).json()["orders"]
    assert [o["id"] for o in mine] == [order["id"]]

    sales = client.get("/api/orders/sales", headers=shop["seller_headers"]).json()["orders"]
    assert [o["id"] for o in sales] == [order["id"]]

    assert client.get("/api/orders/sales", headers=stranger).json()["orders"] == []


def test_order_visibility(client, shop, make_user):
    order = _place(client, shop, (shop["onions"]["id"], 2))
    _, stranger = make_user("customer")
    _, admin = make_user("admin")

    assert client.get(f"/api/orders/{order['id']}", headers=shop["buyer_headers"]).status_code == 200
    assert client.get(f"/api/orders/{order['id']}", headers=admin).status_code == 200
    assert client.get(f"/api/orders/{order['id']}", headers=stranger).status_code == 403
    assert client.get("/api/orders/424242", headers=admin).status_code == 404


def test_admin_lists_all_orders(client, shop, make_user):
    _place(client, shop, (shop["onions"]["id"], 1))
    _place(client, shop, (shop["tomatoes"]["id"], 1))
    _, admin = make_user("admin")

    assert client.get("/api/orders", headers=shop["buyer_headers"]).status_code == 403

    orders = client.get("/api/orders", headers=admin).json()["orders"]
    assert len(orders) == 2
    assert orders[0]["id"] > orders[1]["id"]


def test_status_state_machine_and_cascade(client, shop):
    order = _place(client, shop, (shop["tomatoes"]["id"], 1), (shop["onions"]["id"], 1))
    url = f"/api/orders/{order['id']}/status"

    r = client.patch(url, json={"status": "processing"}, headers=shop["seller_headers"])
    assert r.status_code == 200
    updated = r.json()["order"]
    assert updated["status"] == "processing"
    assert {i["status"] for i in updated["items"]} == {"processing"}

    # processing cannot go back to pending
    assert client.patch(url, json={"status": "pending"}, headers=shop["seller_headers"]).status_code == 422

    r = client.patch(url, json={"status": "completed"}, headers=shop["seller_headers"])
    assert r.json()["order"]["status"] == "completed"

    # terminal
    assert client.patch(url, json={"status": "cancelled"}, headers=shop["seller_headers"]).status_code == 422


def test_buyer_may_only_cancel_pending(client, shop):
    order = _place(client, shop, (shop["tomatoes"]["id"], 1))
    url = f"/api/orders/{order['id']}/status"

    assert client.patch(url, json={"status": "processing"}, headers=shop["buyer_headers"]).status_code == 403

    r = client.patch(url, json={"status": "cancelled"}, headers=shop["buyer_headers"])
    assert r.status_code == 200
    assert r.json()["order"]["status"] == "cancelled"


def test_unknown_status_value_rejected(client, shop):
    order = _place(client, shop, (shop["tomatoes"]["id"], 1))

    r = client.patch(
        f"/api/orders/{order['id']}/status",
        json={"status": "shipped"},
        headers=shop["seller_headers"],
    )
    assert r.status_code == 422


def test_completing_every_item_completes_order(client, shop, make_user, make_product):
    other_seller, other_headers = make_user("farmer")
    honey = make_product(other_headers, name="Honey", price=8)
    order = _place(client, shop, (shop["tomatoes"]["id"], 1), (honey["id"], 1))
    tomato_item, honey_item = order["items"]

    # a seller can only move their own line
    forbidden = client.patch(
        f"/api/orders/{order['id']}/items/{honey_item['id']}/status",
        json={"status": "completed"},
        headers=shop["seller_headers"],
    )
    assert forbidden.status_code == 403

    r = client.patch(
        f"/api/orders/{order['id']}/items/{tomato_item['id']}/status",
        json={"status": "completed"},
        headers=shop["seller_headers"],
    )
    assert r.status_code == 200
    assert r.json()["order"]["status"] == "pending"

    r = client.patch(
        f"/api/orders/{order['id']}/items/{honey_item['id']}/status",
        json={"status": "completed"},
        headers=other_headers,
    )
    assert r.status_code == 200
    assert r.json()["order"]["status"] == "completed"
    assert {i["status"] for i in r.json()["order"]["items"]} == {"completed"}


def test_item_of_closed_order_cannot_change(client, shop):
    order = _place(client, shop, (shop["tomatoes"]["id"], 1))
    client.patch(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=shop["buyer_headers"])

    r = client.patch(
        f"/api/orders/{order['id']}/items/{order['items'][0]['id']}/status",
        json={"status": "processing"},
        headers=shop["seller_headers"],
    )
    assert r.status_code == 422
