"""MongoDB access layer.

The client is built once at startup (see ``connect``) and the resulting
database handle is passed into every helper here. All reads go through
``serialize`` so stored password hashes never leave this module, except
through ``find_credentials`` which the login flow needs.

Existence checks before update/delete and the email check before
registration are separate round trips, not atomic writes.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from errors import UpstreamError

logger = logging.getLogger(__name__)

USERS = "users"
PRODUCTS = "products"

HIDDEN_FIELDS = ("password_hash", "password")
IMMUTABLE_FIELDS = ("_id", "id", "created_at")

# Older user documents may lack these
USER_DEFAULTS = {"role": "customer", "is_active": True}


def connect(database_url: str) -> AsyncMongoClient:
    return AsyncMongoClient(database_url)


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def storage_errors(action: str):
    try:
        yield
    except PyMongoError as exc:
        logger.error("Database error while %s: %s", action, exc)
        raise UpstreamError(f"Database error while {action}: {exc}") from exc


def object_id(value: str) -> Optional[ObjectId]:
    """Return the ObjectId for ``value`` or None when it cannot be one."""
    if not value or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def serialize(doc: Optional[Mapping[str, Any]], defaults: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    data: Dict[str, Any] = {"id": str(doc["_id"])}
    for key, value in doc.items():
        if key == "_id" or key in HIDDEN_FIELDS:
            continue
        data[key] = value
    for key, value in (defaults or {}).items():
        data.setdefault(key, value)
    return data


async def create_document(db, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_none=True)
    now = utcnow()
    document = {**data, "created_at": now, "updated_at": now}
    with storage_errors(f"creating a {collection_name} document"):
        result = await db[collection_name].insert_one(document)
    return str(result.inserted_id)


async def get_documents(db, collection_name: str, filter_dict: Optional[dict] = None,
                        defaults: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
    with storage_errors(f"listing {collection_name}"):
        docs = await db[collection_name].find(filter_dict or {}).to_list(length=None)
    return [serialize(d, defaults) for d in docs]


async def get_document(db, collection_name: str, document_id: str,
                       defaults: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
    oid = object_id(document_id)
    if oid is None:
        return None
    with storage_errors(f"reading {collection_name}/{document_id}"):
        doc = await db[collection_name].find_one({"_id": oid})
    return serialize(doc, defaults)


async def find_credentials(db, email: str) -> Optional[Dict[str, Any]]:
    """Look up a user by exact email, keeping the password hash."""
    with storage_errors("looking up a user by email"):
        doc = await db[USERS].find_one({"email": email})
    if doc is None:
        return None
    user = serialize(doc, USER_DEFAULTS)
    user["password_hash"] = doc.get("password_hash") or doc.get("password")
    return user


async def email_exists(db, email: str) -> bool:
    with storage_errors("checking email availability"):
        doc = await db[USERS].find_one({"email": email})
    return doc is not None


async def update_document(db, collection_name: str, document_id: str, changes: Dict[str, Any],
                          protected: Iterable[str] = (),
                          defaults: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
    oid = object_id(document_id)
    if oid is None:
        return None
    dropped = set(IMMUTABLE_FIELDS) | set(protected)
    update_data = {k: v for k, v in changes.items() if k not in dropped}
    update_data["updated_at"] = utcnow()
    with storage_errors(f"updating {collection_name}/{document_id}"):
        collection = db[collection_name]
        if await collection.find_one({"_id": oid}) is None:
            return None
        res = await collection.update_one({"_id": oid}, {"$set": update_data})
        if res.matched_count == 0:
            return None
        doc = await collection.find_one({"_id": oid})
    return serialize(doc, defaults)


async def delete_document(db, collection_name: str, document_id: str) -> bool:
    oid = object_id(document_id)
    if oid is None:
        return False
    with storage_errors(f"deleting {collection_name}/{document_id}"):
        collection = db[collection_name]
        if await collection.find_one({"_id": oid}) is None:
            return False
        res = await collection.delete_one({"_id": oid})
    return res.deleted_count > 0
