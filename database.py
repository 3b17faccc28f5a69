"""
MongoDB access for CineTalk

A Database is constructed explicitly (from settings, or around an existing
client in tests), connected on application startup and closed on shutdown.
Collection names are the lowercased schema class names (User -> "user").
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection

from errors import InternalError, NotFoundError

logger = logging.getLogger(__name__)

USER_COLLECTION = "user"
REVIEW_COLLECTION = "review"


class Database:
    def __init__(self, url: Optional[str] = None, name: str = "cinetalk", client: Optional[MongoClient] = None):
        self.url = url
        self.name = name
        self._client = client
        self._db = None

    @property
    def connected(self) -> bool:
        return self._db is not None

    def connect(self) -> "Database":
        if self._db is not None:
            return self
        if self._client is None:
            if not self.url:
                raise InternalError("Database not configured")
            self._client = MongoClient(self.url)
        self._db = self._client[self.name]
        self.ensure_indexes()
        logger.info("Connected to MongoDB database %s", self.name)
        return self

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None
        self._db = None

    def ensure_indexes(self) -> None:
        self[USER_COLLECTION].create_index("email", unique=True)
        reviews = self[REVIEW_COLLECTION]
        reviews.create_index([("user", ASCENDING), ("movieId", ASCENDING)])
        reviews.create_index("parentReview")
        reviews.create_index([("movieId", ASCENDING), ("createdAt", DESCENDING)])

    def ping(self) -> bool:
        if self._client is None:
            return False
        self._client.admin.command("ping")
        return True

    def __getitem__(self, collection_name: str) -> Collection:
        if self._db is None:
            raise InternalError("Database not configured")
        return self._db[collection_name]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_object_id(value: Union[str, ObjectId], what: str = "Resource") -> ObjectId:
    """Turn a path/token id into an ObjectId; malformed ids resolve to nothing."""
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        raise NotFoundError(f"{what} not found")
    return ObjectId(value)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> ObjectId:
    """Insert a document stamped with createdAt/updatedAt and return its id"""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["createdAt"] = now
    data_dict["updatedAt"] = now
    result = db[collection_name].insert_one(data_dict)
    return result.inserted_id


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[Sequence[Tuple[str, int]]] = None,
    projection: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(list(sort))
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_db(request: Request) -> Database:
    return request.app.state.database
