# Example usage:
# from config import load_settings
# from database import Database, create_document, get_documents
#
# database = Database(load_settings().database)
# database.connect()
#
# # Insert a lesson, returns the new document with its _id
# lesson = create_document(database.lessons(), {"subject": "Math", "spaces": 5})
#
# # Get all lessons
# lessons = get_documents(database.lessons())
#
# # Set the seat count of several lessons in one round trip
# bulk_update_spaces(database.lessons(), [{"id": lesson["_id"], "spaces": 4}])


import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient, UpdateOne
from pymongo.collection import Collection
from pymongo.errors import PyMongoError
from pymongo.server_api import ServerApi

from config import DatabaseConfig

logger = logging.getLogger("lessons_api.database")

LESSONS_COLLECTION = "lessons"
ORDERS_COLLECTION = "order_placed"


class DatabaseNotReady(RuntimeError):
    """Raised when a collection is requested before a successful connect()."""


class Database:
    """
    Shared MongoDB session.

    Built once at startup and handed to the web app. connect() opens the
    client, close() releases it. Nothing is retried: a failed connect leaves
    the session unset and `ready` False.
    """

    def __init__(self, config: DatabaseConfig, client_factory: Callable[..., Any] = MongoClient):
        self.config = config
        self._client_factory = client_factory
        self._client = None
        self._db = None

    @property
    def ready(self) -> bool:
        return self._db is not None

    def connect(self) -> bool:
        """Open the client and ping the server. Returns True on success."""
        if self.ready:
            return True

        client = None
        try:
            client = self._client_factory(
                self.config.uri,
                server_api=ServerApi("1"),
                serverSelectionTimeoutMS=self.config.server_selection_timeout_ms,
            )
            client.admin.command("ping")
            db = client[self.config.name]
        except (PyMongoError, ValueError, TypeError):
            logger.exception("MongoDB connection error (uri=%s)", self.config.uri)
            if client is not None:
                client.close()
            return False

        self._client = client
        self._db = db
        logger.info("Connected to MongoDB database %r", self.config.name)
        return True

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            logger.info("MongoDB connection closed")
        self._client = None
        self._db = None

    def collection(self, collection_name: str) -> Collection:
        if self._db is None:
            raise DatabaseNotReady("Database not available. Check dbconnection.properties.")
        return self._db[collection_name]

    def lessons(self) -> Collection:
        return self.collection(LESSONS_COLLECTION)

    def orders(self) -> Collection:
        return self.collection(ORDERS_COLLECTION)


def parse_object_id(value: Union[str, ObjectId]) -> ObjectId:
    """Convert a path identifier to an ObjectId, raising bson.errors.InvalidId if malformed."""
    return value if isinstance(value, ObjectId) else ObjectId(value)


def _encode(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_encode(v) for v in value]
    return value


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    """Copy of a document with ObjectId values turned into hex strings"""
    if doc is None:
        return None
    return _encode(doc)


# Helper functions for common database operations
def create_document(collection: Collection, data: Union[BaseModel, dict]) -> dict:
    """Insert a single document

    Args:
        collection: Target MongoDB collection
        data: Pydantic model instance or dict, stored as-is

    Returns:
        dict: The submitted fields plus the assigned _id
    """
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    data_dict.pop("_id", None)

    result = collection.insert_one(data_dict)
    return {**data_dict, "_id": result.inserted_id}


def get_documents(collection: Collection, filter_dict: dict = None) -> List[dict]:
    """Get documents from collection"""
    return list(collection.find(filter_dict or {}))


def get_document(collection: Collection, doc_id: Union[str, ObjectId]) -> Optional[dict]:
    return collection.find_one({"_id": parse_object_id(doc_id)})


def update_document(collection: Collection, doc_id: Union[str, ObjectId], update_data: Dict[str, Any]) -> bool:
    """$set the given fields on one document

    The _id field is never rewritten. Returns True if a document matched.
    """
    update_dict = {k: v for k, v in update_data.items() if k != "_id"}

    result = collection.update_one({"_id": parse_object_id(doc_id)}, {"$set": update_dict})
    return result.matched_count > 0


def delete_document(collection: Collection, doc_id: Union[str, ObjectId]) -> bool:
    """Delete a document"""
    result = collection.delete_one({"_id": parse_object_id(doc_id)})
    return result.deleted_count > 0


def bulk_update_spaces(collection: Collection, updates: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Set `spaces` on many lessons with a single bulk_write

    Every id is parsed before anything is sent, so a malformed id fails the
    whole request. The batch is not atomic: a driver error midway leaves
    earlier updates applied.
    """
    operations = [
        UpdateOne({"_id": parse_object_id(update["id"])}, {"$set": {"spaces": update["spaces"]}})
        for update in updates
    ]
    if not operations:
        return {"acknowledged": True, "matched_count": 0, "modified_count": 0, "upserted_count": 0}

    result = collection.bulk_write(operations)
    return {
        "acknowledged": result.acknowledged,
        "matched_count": result.matched_count,
        "modified_count": result.modified_count,
        "upserted_count": result.upserted_count,
    }
