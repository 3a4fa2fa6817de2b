"""
MongoDB / Cosmos DB for MongoDB access.

The client is created once at start-up by connect() and kept on app.state;
request handlers get the database through the get_db dependency.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import Settings
from sanitize import sanitize_connection_string

logger = logging.getLogger(__name__)


def is_cosmos_db(uri: str) -> bool:
    return "cosmos.azure.com" in uri or uri.startswith("mongodb+srv://")


def connect(settings: Settings) -> MongoClient:
    uri = settings.database_uri
    logger.info("Connecting to database: %s", sanitize_connection_string(uri))

    options: Dict[str, Any] = {
        "serverSelectionTimeoutMS": 5000,
        "socketTimeoutMS": 45000,
        "maxPoolSize": 10,
        "minPoolSize": 2,
        "maxIdleTimeMS": 120000,
        "tz_aware": True,
    }
    if is_cosmos_db(uri):
        # Cosmos DB rejects retryable writes and requires TLS
        options["retryWrites"] = False
        options["tls"] = True
        logger.info("Using Cosmos DB connection settings (TLS enabled, retryWrites disabled)")
    else:
        logger.info("Using local MongoDB connection settings")

    client = MongoClient(uri, **options)
    logger.info("MongoDB client created for database %r", settings.resolved_database_name)
    return client


def disconnect(client: Optional[MongoClient]) -> None:
    if client is None:
        return
    client.close()
    logger.info("Disconnected from database")


def database_state(client: Optional[MongoClient]) -> str:
    if client is None:
        return "disconnected"
    try:
        client.admin.command("ping")
        return "connected"
    except PyMongoError as e:
        logger.warning("Database ping failed: %s", e)
        return "disconnected"


def ensure_indexes(db: Database) -> None:
    """Create the unique and listing indexes. Safe to call on every start."""
    db["user"].create_index("oid", unique=True)
    db["user"].create_index("email", unique=True)
    db["user"].create_index("username", unique=True)
    db["user"].create_index([("is_active", ASCENDING), ("created_at", DESCENDING)])

    db["post"].create_index("slug", unique=True)
    db["post"].create_index([("status", ASCENDING), ("published_at", DESCENDING)])
    db["post"].create_index([("author", ASCENDING), ("status", ASCENDING), ("created_at", DESCENDING)])
    db["post"].create_index([("tags", ASCENDING), ("status", ASCENDING), ("published_at", DESCENDING)])

    db["comment"].create_index([("post", ASCENDING), ("is_deleted", ASCENDING), ("created_at", ASCENDING)])
    db["comment"].create_index([("parent_comment", ASCENDING), ("created_at", ASCENDING)])


def get_db(request: Request) -> Database:
    return request.app.state.db


# ---------- Helpers ----------

def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(db: Database, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Insert a document stamped with created_at/updated_at and return it with its _id."""
    doc = data.model_dump() if isinstance(data, BaseModel) else {**data}
    stamp = now()
    doc["created_at"] = stamp
    doc["updated_at"] = stamp
    res = db[collection].insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def update_document(db: Database, collection: str, filter_dict: Dict[str, Any],
                    changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """$set the given fields plus updated_at; returns the updated document."""
    return db[collection].find_one_and_update(
        filter_dict,
        {"$set": {**changes, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
