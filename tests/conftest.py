import os
import tempfile

os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="uploads-"))

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from main import app
from security import hash_password


@pytest.fixture
def db():
    database = mongomock.MongoClient()["food_delivery_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def register(client, name, email, role="customer", password="secret123"):
    resp = client.post("/api/auth/register", json={"name": name, "email": email, "password": password, "role": role})
    assert resp.status_code == 201, resp.text
    data = resp.json()["data"]
    return {"id": data["user"]["_id"], "headers": {"Authorization": f"Bearer {data['token']}"}}


@pytest.fixture
def admin(client):
    return register(client, "Ada Admin", "admin@example.com", role="admin")


@pytest.fixture
def customer(client):
    return register(client, "Carl Customer", "carl@example.com")


def make_user(db, name="Jane Doe", email="jane@example.com", mobile="5551234567", role="customer"):
    pw_hash, salt = hash_password("secret123")
    user_id = create_document(
        db, "user", {"name": name, "email": email, "mobile": mobile, "role": role, "password_hash": pw_hash, "salt": salt}
    )
    return db["user"].find_one({"_id": ObjectId(user_id)})


def make_category(db, name="Pizza", description="Stone baked"):
    category_id = create_document(db, "category", {"name": name, "description": description})
    return db["category"].find_one({"_id": ObjectId(category_id)})


def make_product(db, category, name="Margherita", price=12.99, stock=10, status="available", featured=False):
    product_id = create_document(
        db,
        "product",
        {
            "name": name,
            "description": f"{name} description",
            "price": price,
            "category": category["_id"],
            "imageUrl": None,
            "stock": stock,
            "status": status,
            "featured": featured,
        },
    )
    return db["product"].find_one({"_id": ObjectId(product_id)})
