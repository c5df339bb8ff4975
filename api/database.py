"""
MongoDB document store adapter.

Wraps motor collections behind a small mongoose-like surface (create, find,
find_by_id, find_by_id_and_update, find_by_id_and_delete, count_documents)
and translates raw driver faults into the variants defined in
``api.exceptions`` so nothing above this module sees pymongo errors.
"""

from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError
from pymongo.errors import PyMongoError

from api.exceptions import (
    DuplicateKeyError,
    FieldFailure,
    StoreCastError,
    StoreError,
    StoreValidationError,
)

logger = structlog.get_logger(__name__)


def to_object_id(value: Any, path: str = "_id") -> ObjectId:
    """Cast ``value`` to an ObjectId or raise ``StoreCastError``."""
    if isinstance(value, ObjectId):
        return value
    if value is None:
        raise StoreCastError(path, value)
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise StoreCastError(path, value)


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Convert a stored document into an API record.

    ``_id`` becomes a string ``id``, version metadata is dropped and any
    embedded (populated) documents are converted recursively.
    """
    if doc is None:
        return None
    record: Dict[str, Any] = {}
    for key, value in doc.items():
        if key == "__v":
            continue
        if key == "_id":
            record["id"] = str(value)
            continue
        if isinstance(value, ObjectId):
            value = str(value)
        elif isinstance(value, dict) and "_id" in value:
            value = serialize(value)
        record[key] = value
    return record


@contextmanager
def translate_store_errors(operation: str, collection: str):
    """Re-raise driver exceptions as store error variants."""
    try:
        yield
    except StoreError:
        raise
    except MongoDuplicateKeyError as e:
        details = e.details or {}
        nested = details.get("errorResponse") or {}
        raise DuplicateKeyError(
            key_pattern=details.get("keyPattern") or nested.get("keyPattern"),
            key_value=details.get("keyValue") or nested.get("keyValue"),
            errmsg=details.get("errmsg") or nested.get("errmsg") or str(e),
            cause=e,
        ) from e
    except PyMongoError as e:
        logger.error("Store operation failed", operation=operation, collection=collection, error=str(e))
        raise StoreError(f"{operation} on {collection} failed", cause=e) from e


class DocumentSchema:
    """
    Field rules enforced by the adapter before a write.

    Args:
        model: Model name used in validation messages
        required: Fields that must be present and non-empty
        dates: Fields stored as UTC datetimes
        references: Fields holding ObjectId references to another collection
    """

    def __init__(
        self,
        model: str,
        required: Iterable[str] = (),
        dates: Iterable[str] = (),
        references: Iterable[str] = (),
    ):
        self.model = model
        self.required = tuple(required)
        self.dates = tuple(dates)
        self.references = tuple(references)

    def prepare(self, fields: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
        """
        Validate and coerce ``fields`` for storage.

        On a partial update only the supplied fields are checked.
        """
        failures: Dict[str, FieldFailure] = {}
        for path in self.required:
            if partial and path not in fields:
                continue
            value = fields.get(path)
            if value is None or value == "":
                failures[path] = FieldFailure(
                    path=path,
                    kind="required",
                    message=f"Path `{path}` is required.",
                    value=value,
                )
        if failures:
            raise StoreValidationError(self.model, failures)

        doc = dict(fields)
        for path in self.dates:
            value = doc.get(path)
            if isinstance(value, date) and not isinstance(value, datetime):
                doc[path] = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
        for path in self.references:
            if doc.get(path) is not None:
                doc[path] = to_object_id(doc[path], path)
        return doc


AUTHOR_SCHEMA = DocumentSchema(
    "Author",
    required=("firstName", "lastName"),
    dates=("birthDate",),
)

BOOK_SCHEMA = DocumentSchema(
    "Book",
    required=("title", "isbn", "author"),
    dates=("publishedDate",),
    references=("author",),
)


class DocumentCollection:
    """CRUD operations over one collection with schema enforcement."""

    def __init__(self, collection: AsyncIOMotorCollection, schema: DocumentSchema):
        self.collection = collection
        self.schema = schema
        self.name = collection.name

    async def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        doc = self.schema.prepare(fields)
        now = datetime.now(timezone.utc)
        doc["createdAt"] = now
        doc["updatedAt"] = now
        with translate_store_errors("insert", self.name):
            result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        logger.debug("Document created", collection=self.name, id=str(result.inserted_id))
        return doc

    async def find(
        self,
        filter_query: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        with translate_store_errors("find", self.name):
            cursor = self.collection.find(filter_query or {})
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(length=None)

    async def find_by_id(self, doc_id: Any) -> Optional[Dict[str, Any]]:
        object_id = to_object_id(doc_id)
        with translate_store_errors("find_one", self.name):
            return await self.collection.find_one({"_id": object_id})

    async def find_by_id_and_update(
        self,
        doc_id: Any,
        fields: Dict[str, Any],
        new: bool = True,
    ) -> Optional[Dict[str, Any]]:
        """
        Apply ``fields`` with ``$set``.

        Returns the updated document, or the previous one when ``new`` is
        False, or None when no document matched.
        """
        object_id = to_object_id(doc_id)
        update = self.schema.prepare(fields, partial=True)
        update["updatedAt"] = datetime.now(timezone.utc)
        return_document = ReturnDocument.AFTER if new else ReturnDocument.BEFORE
        with translate_store_errors("update", self.name):
            return await self.collection.find_one_and_update(
                {"_id": object_id},
                {"$set": update},
                return_document=return_document,
            )

    async def find_by_id_and_delete(self, doc_id: Any) -> Optional[Dict[str, Any]]:
        object_id = to_object_id(doc_id)
        with translate_store_errors("delete", self.name):
            return await self.collection.find_one_and_delete({"_id": object_id})

    async def count_documents(self, filter_query: Optional[Dict[str, Any]] = None) -> int:
        with translate_store_errors("count", self.name):
            return await self.collection.count_documents(filter_query or {})

    async def revert(self, doc_id: Any, previous: Dict[str, Any], keys: Iterable[str]) -> None:
        """
        Put ``keys`` back to their values in ``previous``, a stored snapshot.

        Keys the snapshot lacks are unset and ``updatedAt`` is restored, so
        the document matches the snapshot again.
        """
        object_id = to_object_id(doc_id)
        keys = list(keys)
        restored = {key: previous[key] for key in keys if key in previous}
        restored["updatedAt"] = previous.get("updatedAt")
        update: Dict[str, Any] = {"$set": restored}
        removed = {key: "" for key in keys if key not in previous}
        if removed:
            update["$unset"] = removed
        with translate_store_errors("revert", self.name):
            await self.collection.update_one({"_id": object_id}, update)
        logger.warning("Document reverted", collection=self.name, id=str(object_id))

    async def restore(self, doc: Dict[str, Any]) -> None:
        """Re-insert a previously deleted document under its original id."""
        with translate_store_errors("restore", self.name):
            await self.collection.insert_one(doc)
        logger.warning("Document restored", collection=self.name, id=str(doc.get("_id")))

    async def populate(
        self,
        docs: List[Dict[str, Any]],
        field: str,
        other: "DocumentCollection",
    ) -> List[Dict[str, Any]]:
        """Replace the ObjectId stored under ``field`` with the referenced document."""
        ids = list({doc[field] for doc in docs if isinstance(doc.get(field), ObjectId)})
        joined: Dict[ObjectId, Dict[str, Any]] = {}
        if ids:
            for ref in await other.find({"_id": {"$in": ids}}):
                joined[ref["_id"]] = ref
        for doc in docs:
            doc[field] = joined.get(doc.get(field))
        return docs


class MongoStore:
    """
    Owns the motor client and exposes the two collections.

    Built once at process start and closed on shutdown.
    """

    def __init__(self, database: AsyncIOMotorDatabase, client: Optional[AsyncIOMotorClient] = None):
        self.client = client
        self.database = database
        self.authors = DocumentCollection(database.authors, AUTHOR_SCHEMA)
        self.books = DocumentCollection(database.books, BOOK_SCHEMA)

    @classmethod
    async def connect(cls, database_uri: str, default_database: str) -> "MongoStore":
        """Establish connection to MongoDB."""
        client = AsyncIOMotorClient(database_uri, tz_aware=True)
        database = client.get_default_database(default_database)
        try:
            await client.admin.command("ping")
        except PyMongoError as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            client.close()
            raise
        logger.info("Successfully connected to MongoDB", database=database.name)
        return cls(database, client)

    async def ensure_indexes(self) -> None:
        """Create the unique ISBN index and the author lookup index."""
        await self.books.collection.create_index("isbn", unique=True)
        await self.books.collection.create_index("author")
        logger.info("Successfully created MongoDB indexes")

    def close(self) -> None:
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")
