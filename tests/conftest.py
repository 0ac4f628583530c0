import asyncio
import os
from collections import defaultdict
from types import SimpleNamespace

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

# Settings are read at import time, so the environment must be ready first
os.environ.setdefault("DATABASE_URL", "mongodb://localhost:27017")
os.environ.setdefault("DATABASE_NAME", "techlab_test")
os.environ.setdefault("JWT_SECRET", "test-secret-key")
os.environ["ENVIRONMENT"] = "development"

from database import utcnow  # noqa: E402
from dependencies import get_database  # noqa: E402
from main import app  # noqa: E402
from security import create_access_token, hash_password  # noqa: E402


def _matches(doc, filter_dict):
    return all(doc.get(key) == value for key, value in (filter_dict or {}).items())


class FakeCursor:
    def __init__(self, collection, filter_dict):
        self._collection = collection
        self._filter = filter_dict

    async def to_list(self, length=None):
        await self._collection.tick()
        docs = [dict(d) for d in self._collection.docs if _matches(d, self._filter)]
        return docs if length is None else docs[:length]


class FakeCollection:
    """Subset of pymongo's AsyncCollection used by database.py.

    Every call yields to the event loop once before touching the data, so
    concurrent callers interleave the way they would against a real server.
    """

    def __init__(self):
        self.docs = []
        self.fail = False

    async def tick(self):
        await asyncio.sleep(0)
        if self.fail:
            raise ServerSelectionTimeoutError("localhost:27017: connection refused")

    async def insert_one(self, document):
        await self.tick()
        doc = dict(document)
        doc.setdefault("_id", ObjectId())
        self.docs.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, filter_dict=None):
        await self.tick()
        for doc in self.docs:
            if _matches(doc, filter_dict):
                return dict(doc)
        return None

    def find(self, filter_dict=None):
        return FakeCursor(self, filter_dict)

    async def update_one(self, filter_dict, update):
        await self.tick()
        for doc in self.docs:
            if _matches(doc, filter_dict):
                doc.update(update["$set"])
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, filter_dict):
        await self.tick()
        for index, doc in enumerate(self.docs):
            if _matches(doc, filter_dict):
                del self.docs[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)


class FakeDatabase:
    def __init__(self):
        self._collections = defaultdict(FakeCollection)

    def __getitem__(self, name):
        return self._collections[name]

    def fail_all(self):
        for name in ("users", "products"):
            self[name].fail = True


@pytest.fixture()
def fake_db():
    return FakeDatabase()


@pytest.fixture()
def client(fake_db):
    """TestClient whose requests hit the in-memory database."""
    app.dependency_overrides[get_database] = lambda: fake_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def user_factory(fake_db):
    """Insert a user document directly, bypassing the HTTP API."""

    def _create_user(email, password="secret123", name="Test User", role="customer", **extra):
        now = utcnow()
        doc = {
            "_id": ObjectId(),
            "email": email,
            "name": name,
            "role": role,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
        if password is not None:
            doc["password_hash"] = hash_password(password)
        doc.update(extra)
        fake_db["users"].docs.append(doc)
        return {"id": str(doc["_id"]), "email": email, "name": name, "role": role}

    return _create_user


@pytest.fixture()
def product_factory(fake_db):
    def _create_product(name="Widget", price=9.99, **extra):
        now = utcnow()
        doc = {"_id": ObjectId(), "name": name, "price": price, "is_active": True,
               "created_at": now, "updated_at": now}
        doc.update(extra)
        fake_db["products"].docs.append(doc)
        return str(doc["_id"])

    return _create_product


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers(user_factory):
    admin = user_factory("admin@techlab.test", name="Admin", role="admin")
    return bearer(create_access_token(admin))


@pytest.fixture()
def customer_headers(user_factory):
    customer = user_factory("customer@techlab.test", name="Customer", role="customer")
    return bearer(create_access_token(customer))
