import os
import sys
import tempfile

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="storefront-uploads-")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["ADMIN_EMAIL"] = "admin@shop.com"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "admin123"

import mongomock
import pytest

import database

# Must happen before any app module does `from database import db`.
database.db = mongomock.MongoClient().db

from fastapi.testclient import TestClient

import auth
import catalog
import main

ADMIN_CREDENTIALS = {"email": "admin@shop.com", "password": "admin123"}


@pytest.fixture(autouse=True)
def clean_db():
    for name in database.db.list_collection_names():
        database.db.drop_collection(name)
    database.ensure_indexes()
    yield


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def admin():
    auth.ensure_admin_account()
    c = TestClient(main.app)
    r = c.post("/login", json=ADMIN_CREDENTIALS)
    assert r.status_code == 200, r.text
    return c


@pytest.fixture
def make_shopper():
    def _make(username="alice"):
        c = TestClient(main.app)
        r = c.post("/register", json={
            "username": username,
            "email": f"{username}@example.com",
            "password": "secret123",
        })
        assert r.status_code == 201, r.text
        c.user = r.json()["user"]
        return c
    return _make


@pytest.fixture
def shopper(make_shopper):
    return make_shopper()


@pytest.fixture
def make_product():
    def _make(name, price, category="gadgets", image="/uploads/item.png"):
        doc = {
            "name": name,
            "slug": catalog.generate_unique_slug(name),
            "price": price,
            "category": category,
            "image": image,
        }
        pid = database.create_document("product", doc)
        return {**doc, "id": pid}
    return _make


def user_doc(username):
    return database.db["user"].find_one({"username": username})
