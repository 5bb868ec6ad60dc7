import uuid

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app


@pytest.fixture
def client(tmp_path):
    settings = Settings(database_url=f"sqlite:///{tmp_path / 'api.db'}", log_level="WARNING")
    with TestClient(create_app(settings)) as c:
        yield c


def _register(client, email="buyer@example.com", password="password123"):
    r = client.post(
        "/users/register",
        json={
            "email": email,
            "password": password,
            "firstname": "John",
            "lastname": "Doe",
            "age": 25,
            "is_married": False,
        },
    )
    assert r.status_code == 201, r.text
    return r.json()


def _auth(client, email="buyer@example.com", password="password123"):
    r = client.post("/users/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


def _product(client, headers, quantity=10, price="9.99"):
    r = client.post(
        "/products",
        headers=headers,
        json={"description": "Wireless headphones", "tags": ["audio"], "quantity": quantity, "price": price},
    )
    assert r.status_code == 201, r.text
    return r.json()


@pytest.fixture
def headers(client):
    _register(client)
    return _auth(client)


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_register_login_me(client):
    user = _register(client)
    assert "password_hash" not in user

    r = client.get("/users/me", headers=_auth(client))

    assert r.status_code == 200
    assert r.json()["id"] == user["id"]


def test_register_duplicate_is_conflict(client):
    _register(client)
    r = client.post(
        "/users/register",
        json={"email": "buyer@example.com", "password": "password123", "firstname": "A", "lastname": "B", "age": 30},
    )
    assert r.status_code == 409


def test_register_validation(client):
    r = client.post(
        "/users/register",
        json={"email": "not-an-email", "password": "short", "firstname": "", "lastname": "B", "age": 12},
    )
    assert r.status_code == 422


def test_login_bad_password(client):
    _register(client)
    r = client.post("/users/login", json={"email": "buyer@example.com", "password": "nope-nope"})
    assert r.status_code == 401


def test_protected_routes_need_token(client):
    body = {"items": [{"product_id": str(uuid.uuid4()), "quantity": 1}]}
    assert client.post("/orders", json=body).status_code == 401
    assert client.get(f"/products/{uuid.uuid4()}").status_code == 401
    r = client.get("/orders", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401


def test_product_crud(client, headers):
    p = _product(client, headers, quantity=5, price="12.50")

    r = client.get(f"/products/{p['id']}", headers=headers)
    assert r.status_code == 200
    assert r.json()["quantity"] == 5

    r = client.patch(f"/products/{p['id']}", headers=headers, json={"price": "15.00"})
    assert r.status_code == 200
    assert float(r.json()["price"]) == 15.0
    assert r.json()["quantity"] == 5

    assert client.get(f"/products/{uuid.uuid4()}", headers=headers).status_code == 404
    assert client.patch(f"/products/{uuid.uuid4()}", headers=headers, json={"price": "1"}).status_code == 404


def test_bulk_product_lookup(client, headers):
    a = _product(client, headers)
    b = _product(client, headers)

    r = client.get("/products", headers=headers, params={"ids": [a["id"], b["id"], str(uuid.uuid4())]})

    assert r.status_code == 200
    assert {p["id"] for p in r.json()} == {a["id"], b["id"]}
    assert client.get("/products", headers=headers, params={"ids": [str(uuid.uuid4())]}).status_code == 404
    assert client.get("/products", headers=headers).status_code == 422


def test_place_order(client, headers):
    p = _product(client, headers, quantity=10, price="9.99")

    r = client.post("/orders", headers=headers, json={"items": [{"product_id": p["id"], "quantity": 3}]})

    assert r.status_code == 201, r.text
    order = r.json()
    assert float(order["total_amount"]) == pytest.approx(29.97)
    assert order["items"][0]["product_id"] == p["id"]
    assert float(order["items"][0]["price_at_purchase"]) == pytest.approx(9.99)

    assert client.get(f"/products/{p['id']}", headers=headers).json()["quantity"] == 7

    r = client.get(f"/orders/{order['id']}", headers=headers)
    assert r.status_code == 200
    assert r.json()["id"] == order["id"]

    r = client.get("/orders", headers=headers)
    assert [o["id"] for o in r.json()] == [order["id"]]


def test_place_order_insufficient_stock(client, headers):
    p = _product(client, headers, quantity=5)

    r = client.post("/orders", headers=headers, json={"items": [{"product_id": p["id"], "quantity": 10}]})

    assert r.status_code == 409
    assert r.json()["product_id"] == p["id"]
    assert client.get(f"/products/{p['id']}", headers=headers).json()["quantity"] == 5


def test_place_order_unknown_product(client, headers):
    p = _product(client, headers, quantity=5)
    items = [{"product_id": p["id"], "quantity": 1}, {"product_id": str(uuid.uuid4()), "quantity": 1}]

    r = client.post("/orders", headers=headers, json={"items": items})

    assert r.status_code == 404
    assert r.json()["detail"] == "one or more products not found"
    assert client.get(f"/products/{p['id']}", headers=headers).json()["quantity"] == 5


@pytest.mark.parametrize(
    "body",
    [
        {"items": []},
        {"items": [{"product_id": "00000000-0000-0000-0000-000000000001", "quantity": 0}]},
        {"items": [{"product_id": "not-a-uuid", "quantity": 1}]},
    ],
)
def test_place_order_validation(client, headers, body):
    assert client.post("/orders", headers=headers, json=body).status_code == 422


def test_orders_are_private(client, headers):
    p = _product(client, headers)
    order = client.post("/orders", headers=headers, json={"items": [{"product_id": p["id"], "quantity": 1}]}).json()

    _register(client, email="other@example.com")
    other = _auth(client, email="other@example.com")

    assert client.get(f"/orders/{order['id']}", headers=other).status_code == 404
    assert client.get("/orders", headers=other).json() == []
