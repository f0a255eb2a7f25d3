import json
import os
import tempfile
from unittest import mock

import mongomock
import pytest

MEDIA_ROOT = tempfile.mkdtemp(prefix="jusfabel-media-")

os.environ["DATABASE_NAME"] = "jusfabel_test"
os.environ["MEDIA_ROOT"] = MEDIA_ROOT
os.environ["SECRET_KEY"] = "test-secret"
os.environ["LOG_LEVEL"] = "WARNING"

# every MongoClient created from here on talks to an in-memory server
mock.patch("pymongo.MongoClient", mongomock.MongoClient).start()

from fastapi.testclient import TestClient  # noqa: E402

from database import db  # noqa: E402
from main import app  # noqa: E402
from security import pwd_context  # noqa: E402

pwd_context.update(bcrypt__rounds=4)

PASSWORD = "secret123"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def clean_db():
    yield
    for name in db.list_collection_names():
        db.drop_collection(name)


def register_and_login(client, prefix, email, full_name="Test User"):
    client.post(f"{prefix}/register", json={
        "full_name": full_name,
        "email": email,
        "password": PASSWORD,
        "confirm_password": PASSWORD,
    })
    response = client.post(f"{prefix}/login", json={"email": email, "password": PASSWORD})
    assert response.status_code == 200, response.text
    return response.json()["token"]


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers(client):
    return bearer(register_and_login(client, "/api/auth", "budi@example.com", "Budi"))


@pytest.fixture
def other_user_headers(client):
    return bearer(register_and_login(client, "/api/auth", "sari@example.com", "Sari"))


@pytest.fixture
def admin_headers(client):
    return bearer(register_and_login(client, "/api/admin/auth", "admin@example.com", "Admin"))


@pytest.fixture
def make_category(client, admin_headers):
    def _make(name="Tenun", **fields):
        response = client.post("/api/categories", data={"name": name, **fields}, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make


@pytest.fixture
def make_size(client, admin_headers):
    def _make(name="M", unit="cm"):
        response = client.post("/api/sizes", json={"name": name, "unit": unit}, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make


@pytest.fixture
def make_product(client, admin_headers, make_category):
    def _make(name="Songket", price=100000, stock=10, category_id=None, sizes=None):
        if category_id is None:
            category_id = make_category(f"Category {name}")["id"]
        form = {"category_id": category_id, "name": name, "price": str(price), "stock": str(stock)}
        if sizes is not None:
            form["sizes"] = json.dumps(sizes)
        response = client.post("/api/products", data=form, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make
