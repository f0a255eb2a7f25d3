import os

import pytest
from bson import ObjectId
from fastapi import HTTPException
from pymongo.errors import PyMongoError

import orders
from conftest import MEDIA_ROOT, PNG_BYTES
from database import db
from schemas import TransactionStatus

CUSTOMER = {
    "customer_name": "Budi",
    "customer_email": "budi@example.com",
    "customer_phone": "08123456789",
    "customer_address": "Jl. Sudirman 1, Palembang",
}


def order(client, headers, product_id, quantity):
    return client.post(
        "/api/transactions",
        json={**CUSTOMER, "product_id": product_id, "quantity": quantity},
        headers=headers,
    )


def set_status(client, headers, transaction_id, status):
    return client.put(f"/api/transactions/{transaction_id}/status", json={"status": status}, headers=headers)


def product_stock(client, product_id):
    return client.get(f"/api/products/{product_id}").json()["data"]["stock"]


def test_create_transaction(client, make_product, user_headers):
    product = make_product(price=100000, stock=5)

    response = order(client, user_headers, product["id"], 2)
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "menunggu pembayaran"
    assert data["total_items"] == 1
    assert data["total_quantity"] == 2
    assert data["total_price"] == 200000
    assert data["payment_proof"] is None
    assert data["items"][0]["product_name"] == product["name"]
    # stock is only taken on acceptance
    assert product_stock(client, product["id"]) == 5


def test_create_transaction_insufficient_stock(client, make_product, user_headers):
    product = make_product(name="Songket", stock=1)

    response = order(client, user_headers, product["id"], 2)
    assert response.status_code == 400
    assert response.json()["message"] == "Insufficient stock for product: Songket"
    assert db["transaction"].count_documents({}) == 0


def test_create_transaction_unknown_product(client, user_headers):
    response = order(client, user_headers, "0123456789abcdef01234567", 1)
    assert response.status_code == 404


def test_create_transaction_missing_customer_info(client, make_product, user_headers):
    product = make_product()
    response = client.post(
        "/api/transactions",
        json={**CUSTOMER, "customer_address": "  ", "product_id": product["id"], "quantity": 1},
        headers=user_headers,
    )
    assert response.status_code == 400


def test_create_transaction_from_cart(client, make_product, user_headers):
    songket = make_product("Songket", price=100000, stock=5)
    batik = make_product("Batik", price=50000, stock=5)
    lurik = make_product("Lurik", price=10000, stock=5)
    for product in (songket, batik, lurik):
        client.post(f"/api/cart/{product['id']}", json={"quantity": 1}, headers=user_headers)

    response = client.post(
        "/api/transactions/cart",
        json={**CUSTOMER, "items": [
            {"product_id": songket["id"], "quantity": 2},
            {"product_id": batik["id"], "quantity": 1},
        ]},
        headers=user_headers,
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["total_items"] == 2
    assert data["total_quantity"] == 3
    assert data["total_price"] == 250000

    remaining = client.get("/api/cart", headers=user_headers).json()["data"]
    assert [line["product_id"] for line in remaining] == [lurik["id"]]


def test_create_transaction_from_empty_cart(client, user_headers):
    response = client.post("/api/transactions/cart", json={**CUSTOMER, "items": []}, headers=user_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Cart items are required"


def test_upload_payment_proof(client, make_product, user_headers, other_user_headers):
    product = make_product()
    transaction_id = order(client, user_headers, product["id"], 1).json()["data"]["id"]
    files = {"payment_proof": ("proof.jpg", PNG_BYTES, "image/jpeg")}

    response = client.post(f"/api/transactions/{transaction_id}/payment-proof", files=files, headers=other_user_headers)
    assert response.status_code == 403

    response = client.post(f"/api/transactions/{transaction_id}/payment-proof", files=files, headers=user_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "waiting"
    assert data["payment_proof"].startswith("http://testserver/uploads/payment-proofs/")

    # only allowed while awaiting payment
    response = client.post(f"/api/transactions/{transaction_id}/payment-proof", files=files, headers=user_headers)
    assert response.status_code == 400


def test_upload_payment_proof_requires_file(client, make_product, user_headers):
    product = make_product()
    transaction_id = order(client, user_headers, product["id"], 1).json()["data"]["id"]

    response = client.post(f"/api/transactions/{transaction_id}/payment-proof", headers=user_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Payment proof file is required"


def test_get_transaction_access(client, make_product, user_headers, other_user_headers, admin_headers):
    product = make_product()
    transaction_id = order(client, user_headers, product["id"], 1).json()["data"]["id"]

    assert client.get(f"/api/transactions/{transaction_id}", headers=user_headers).status_code == 200
    assert client.get(f"/api/transactions/{transaction_id}", headers=other_user_headers).status_code == 403
    assert client.get(f"/api/transactions/{transaction_id}", headers=admin_headers).status_code == 200
    assert client.get("/api/transactions/0123456789abcdef01234567", headers=user_headers).status_code == 404


def test_user_and_admin_listings(client, make_product, user_headers, other_user_headers, admin_headers):
    product = make_product(stock=10)
    first = order(client, user_headers, product["id"], 1).json()["data"]["id"]
    order(client, other_user_headers, product["id"], 1)
    set_status(client, admin_headers, first, "waiting")

    response = client.get("/api/transactions/user", headers=user_headers)
    assert [t["id"] for t in response.json()["data"]] == [first]

    response = client.get("/api/transactions", headers=admin_headers)
    assert response.json()["pagination"]["total"] == 2

    response = client.get("/api/transactions", params={"status": "waiting"}, headers=admin_headers)
    assert [t["id"] for t in response.json()["data"]] == [first]

    assert client.get("/api/transactions", headers=user_headers).status_code == 401


def test_accept_decrements_stock(client, make_product, user_headers, admin_headers):
    product = make_product(stock=5)
    transaction_id = order(client, user_headers, product["id"], 3).json()["data"]["id"]

    response = set_status(client, admin_headers, transaction_id, "accept")
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "accept"
    assert product_stock(client, product["id"]) == 2


def test_accept_with_short_stock_changes_nothing(client, make_product, user_headers, admin_headers):
    songket = make_product("Songket", stock=5)
    batik = make_product("Batik", stock=3)
    response = client.post(
        "/api/transactions/cart",
        json={**CUSTOMER, "items": [
            {"product_id": songket["id"], "quantity": 2},
            {"product_id": batik["id"], "quantity": 3},
        ]},
        headers=user_headers,
    )
    transaction_id = response.json()["data"]["id"]
    client.patch(f"/api/products/{batik['id']}/stock", json={"stock": 1}, headers=admin_headers)

    response = set_status(client, admin_headers, transaction_id, "accept")
    assert response.status_code == 400
    assert response.json()["message"] == "Insufficient stock for product: Batik"

    assert product_stock(client, songket["id"]) == 5
    assert product_stock(client, batik["id"]) == 1
    stored = client.get(f"/api/transactions/{transaction_id}", headers=admin_headers).json()["data"]
    assert stored["status"] == "menunggu pembayaran"


def test_competing_orders_never_oversell(client, make_product, user_headers, other_user_headers, admin_headers):
    product = make_product(stock=4)
    first = order(client, user_headers, product["id"], 3).json()["data"]["id"]
    second = order(client, other_user_headers, product["id"], 3).json()["data"]["id"]

    assert set_status(client, admin_headers, first, "accept").status_code == 200
    assert set_status(client, admin_headers, second, "accept").status_code == 400
    assert product_stock(client, product["id"]) == 1


def test_accepting_twice_from_the_same_read_takes_stock_once(client, make_product, user_headers):
    product = make_product(stock=5)
    transaction_id = order(client, user_headers, product["id"], 2).json()["data"]["id"]
    stale = db["transaction"].find_one({"_id": ObjectId(transaction_id)})

    assert orders.change_status(stale, TransactionStatus.ACCEPT)["status"] == "accept"
    with pytest.raises(HTTPException) as excinfo:
        orders.change_status(stale, TransactionStatus.ACCEPT)
    assert excinfo.value.status_code == 400
    assert excinfo.value.detail == "Transaction status was changed by another request"
    assert product_stock(client, product["id"]) == 3


def test_failed_accept_restores_status(client, make_product, user_headers, monkeypatch):
    product = make_product(stock=5)
    transaction_id = order(client, user_headers, product["id"], 2).json()["data"]["id"]
    stored = db["transaction"].find_one({"_id": ObjectId(transaction_id)})

    def broken_take_stock(items):
        raise PyMongoError("connection reset")

    monkeypatch.setattr(orders, "take_stock", broken_take_stock)
    with pytest.raises(PyMongoError):
        orders.change_status(stored, TransactionStatus.ACCEPT)

    assert db["transaction"].find_one({"_id": ObjectId(transaction_id)})["status"] == "menunggu pembayaran"
    assert product_stock(client, product["id"]) == 5


def test_terminal_status_cannot_change(client, make_product, user_headers, admin_headers):
    product = make_product(stock=5)
    accepted = order(client, user_headers, product["id"], 1).json()["data"]["id"]
    rejected = order(client, user_headers, product["id"], 1).json()["data"]["id"]
    set_status(client, admin_headers, accepted, "accept")
    set_status(client, admin_headers, rejected, "reject")

    assert set_status(client, admin_headers, accepted, "waiting").status_code == 400
    assert set_status(client, admin_headers, accepted, "reject").status_code == 400
    assert set_status(client, admin_headers, rejected, "accept").status_code == 400
    # accepting once took stock once
    assert product_stock(client, product["id"]) == 4


def test_same_status_is_rejected(client, make_product, user_headers, admin_headers):
    product = make_product()
    transaction_id = order(client, user_headers, product["id"], 1).json()["data"]["id"]

    response = set_status(client, admin_headers, transaction_id, "menunggu pembayaran")
    assert response.status_code == 400


def test_invalid_status_value(client, make_product, user_headers, admin_headers):
    product = make_product()
    transaction_id = order(client, user_headers, product["id"], 1).json()["data"]["id"]

    response = set_status(client, admin_headers, transaction_id, "shipped")
    assert response.status_code == 400
    assert response.json()["message"].startswith("Valid status is required")


def test_delete_transaction_returns_proof_path(client, make_product, user_headers, admin_headers):
    product = make_product()
    transaction_id = order(client, user_headers, product["id"], 1).json()["data"]["id"]
    client.post(
        f"/api/transactions/{transaction_id}/payment-proof",
        files={"payment_proof": ("proof.png", PNG_BYTES, "image/png")},
        headers=user_headers,
    )
    stored_path = db["transaction"].find_one({})["payment_proof"]
    assert os.path.exists(os.path.join(MEDIA_ROOT, stored_path))

    response = client.delete(f"/api/transactions/{transaction_id}", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["payment_proof"] == stored_path
    assert db["transaction"].count_documents({}) == 0
    assert not os.path.exists(os.path.join(MEDIA_ROOT, stored_path))


def test_delete_missing_transaction(client, admin_headers):
    response = client.delete("/api/transactions/0123456789abcdef01234567", headers=admin_headers)
    assert response.status_code == 404
