from __future__ import annotations
import logging
from typing import Any, Optional
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from datetime import datetime, timezone

from config import settings

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(settings.DATABASE_URL)
        _db = _client[settings.DATABASE_NAME]
        logger.info("MongoDB client created for database %s", settings.DATABASE_NAME)
    return _db


async def ensure_indexes() -> None:
    db = await get_db()
    await db["product"].create_index([("seo.slug", ASCENDING)], unique=True, sparse=True)
    await db["product"].create_index([("category", ASCENDING), ("active", ASCENDING)])
    await db["order"].create_index([("order_number", ASCENDING)], unique=True, sparse=True)
    await db["order"].create_index([("user", ASCENDING), ("created_at", DESCENDING)])
    await db["order"].create_index([("payment_info.razorpay_order_id", ASCENDING)])
    await db["user"].create_index([("email", ASCENDING)], unique=True)


def to_object_id(id_str: str, label: str = "ID") -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail=f"Invalid {label}")


def to_str_id(doc: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


async def create_document(collection_name: str, data: dict[str, Any]) -> dict[str, Any]:
    db = await get_db()
    now = utcnow()
    data_with_meta = {**data, "created_at": now, "updated_at": now}
    result = await db[collection_name].insert_one(data_with_meta)
    inserted = await db[collection_name].find_one({"_id": result.inserted_id})
    return to_str_id(inserted) or {}


async def get_documents(collection_name: str, filter_dict: dict[str, Any] | None = None,
                        limit: int = 100, sort: list[tuple[str, int]] | None = None) -> list[dict[str, Any]]:
    db = await get_db()
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    cursor = cursor.limit(limit)
    docs = []
    async for d in cursor:
        docs.append(to_str_id(d))
    return docs
