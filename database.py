"""
Database Helper Functions

MongoDB helper functions used by the service modules.
The client is created at application startup (see main.lifespan) and every
module reads the live handle through get_db().
"""
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "vendor_marketplace")
TRANSACTIONS_ENABLED = os.getenv("MONGO_TRANSACTIONS", "true").lower() == "true"
REQUEST_TIMEOUT_MS = int(os.getenv("REQUEST_TIMEOUT_MS", "30000"))

client = None
db = None


def init_db(database_url: Optional[str] = None, database_name: Optional[str] = None):
    global client, db
    url = database_url or DATABASE_URL
    if not url:
        raise RuntimeError("DATABASE_URL is not set")
    client = MongoClient(url, timeoutMS=REQUEST_TIMEOUT_MS, tz_aware=True)
    db = client[database_name or DATABASE_NAME]
    ensure_indexes()
    logger.info("Connected to MongoDB database %s", db.name)
    return db


def close_db():
    global client, db
    if client is not None:
        client.close()
    client = None
    db = None


def get_db():
    if db is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return db


def ensure_indexes():
    database = get_db()
    database["users"].create_index("phone", unique=True)
    database["users"].create_index("email", unique=True, sparse=True)
    database["vendor_profiles"].create_index("user_id", unique=True)
    database["vendor_packages"].create_index("vendor_id")
    database["vendor_gallery"].create_index("vendor_id")
    database["saved_vendors"].create_index([("user_id", ASCENDING), ("vendor_id", ASCENDING)], unique=True)
    database["events"].create_index([("user_id", ASCENDING), ("date", DESCENDING)])
    database["events"].create_index([("vendor_id", ASCENDING), ("date", DESCENDING)])
    database["otps"].create_index([("identifier", ASCENDING), ("purpose", ASCENDING), ("created_at", DESCENDING)])
    database["otps"].create_index("expires_at", expireAfterSeconds=0)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _prepare(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(exclude_none=True)
    else:
        data_dict = data.copy()
    data_dict["created_at"] = now_utc()
    data_dict["updated_at"] = now_utc()
    return data_dict


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a single document with timestamps"""
    result = get_db()[collection_name].insert_one(_prepare(data))
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: dict = None, limit: int = None, sort=None):
    """Get documents from collection"""
    cursor = get_db()[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_obj_id(id_str) -> Optional[ObjectId]:
    """Parse a client supplied id, None when it is not a valid ObjectId."""
    if isinstance(id_str, ObjectId):
        return id_str
    if not id_str:
        return None
    try:
        return ObjectId(id_str)
    except Exception:
        return None


class UnitOfWork:
    """
    Writes that must succeed or fail together.

    With a session the server transaction does the rollback. Without one
    (standalone servers) the documents inserted so far are deleted again.
    """

    def __init__(self, database, session=None):
        self.db = database
        self.session = session
        self._inserted = []

    def _kwargs(self) -> dict:
        return {"session": self.session} if self.session is not None else {}

    def find_one(self, collection_name: str, filter_dict: dict):
        return self.db[collection_name].find_one(filter_dict, **self._kwargs())

    def insert(self, collection_name: str, data: Union[BaseModel, dict]) -> str:
        result = self.db[collection_name].insert_one(_prepare(data), **self._kwargs())
        if self.session is None:
            self._inserted.append((collection_name, result.inserted_id))
        return str(result.inserted_id)

    def rollback(self):
        for collection_name, inserted_id in reversed(self._inserted):
            self.db[collection_name].delete_one({"_id": inserted_id})
        self._inserted = []


@contextmanager
def transaction():
    database = get_db()
    if TRANSACTIONS_ENABLED:
        with client.start_session() as session:
            with session.start_transaction():
                yield UnitOfWork(database, session)
        return
    uow = UnitOfWork(database)
    try:
        yield uow
    except BaseException:
        logger.warning("Rolling back %d inserted document(s)", len(uow._inserted))
        uow.rollback()
        raise
