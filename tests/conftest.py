"""
Pytest configuration and shared fixtures.
"""

import copy
import re

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

from api.config import APIConfig
from api.database import MongoStore
from api.main import create_app
from api.services import build_services


def _matches(doc, query):
    for key, condition in query.items():
        if key == "$or":
            if not any(_matches(doc, sub) for sub in condition):
                return False
            continue
        value = doc.get(key)
        if isinstance(condition, dict) and "$in" in condition:
            if value not in condition["$in"]:
                return False
        elif isinstance(condition, dict) and "$regex" in condition:
            flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
            if value is None or not re.search(condition["$regex"], str(value), flags):
                return False
        elif value != condition:
            return False
    return True


class FakeCursor:
    """Cursor over a snapshot of matching documents."""

    def __init__(self, docs):
        self.docs = docs
        self._skip = 0
        self._limit = 0

    def skip(self, n):
        self._skip = n
        return self

    def limit(self, n):
        self._limit = n
        return self

    async def to_list(self, length=None):
        docs = self.docs[self._skip:]
        if self._limit:
            docs = docs[:self._limit]
        return [copy.deepcopy(doc) for doc in docs]


class FakeInsertResult:
    def __init__(self, inserted_id):
        self.inserted_id = inserted_id


class FakeCollection:
    """In-memory stand-in for an AsyncIOMotorCollection."""

    def __init__(self, name):
        self.name = name
        self.docs = []
        self.unique_fields = set()

    def _check_unique(self, candidate, ignore_id=None):
        for field in self.unique_fields:
            for doc in self.docs:
                if doc["_id"] != ignore_id and field in candidate and doc.get(field) == candidate[field]:
                    errmsg = (
                        f"E11000 duplicate key error collection: test.{self.name} "
                        f'index: {field}_1 dup key: {{ {field}: "{candidate[field]}" }}'
                    )
                    raise DuplicateKeyError(
                        errmsg,
                        code=11000,
                        details={
                            "code": 11000,
                            "keyPattern": {field: 1},
                            "keyValue": {field: candidate[field]},
                            "errmsg": errmsg,
                        },
                    )

    async def create_index(self, keys, unique=False):
        if unique:
            self.unique_fields.add(keys)
        return f"{keys}_1"

    async def insert_one(self, doc):
        doc.setdefault("_id", ObjectId())
        self._check_unique(doc)
        self.docs.append(copy.deepcopy(doc))
        return FakeInsertResult(doc["_id"])

    def find(self, query=None):
        return FakeCursor([doc for doc in self.docs if _matches(doc, query or {})])

    async def find_one(self, query):
        for doc in self.docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def find_one_and_update(self, query, update, return_document=False):
        for doc in self.docs:
            if _matches(doc, query):
                before = copy.deepcopy(doc)
                self._check_unique(update["$set"], ignore_id=doc["_id"])
                doc.update(copy.deepcopy(update["$set"]))
                return copy.deepcopy(doc) if return_document else before
        return None

    async def update_one(self, query, update):
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                for key in update.get("$unset", {}):
                    doc.pop(key, None)
                return
        return None

    async def find_one_and_delete(self, query):
        for doc in self.docs:
            if _matches(doc, query):
                self.docs.remove(doc)
                return doc
        return None

    async def count_documents(self, query):
        return len([doc for doc in self.docs if _matches(doc, query)])


class FakeDatabase:
    """In-memory stand-in for an AsyncIOMotorDatabase."""

    def __init__(self, name="test"):
        self.name = name
        self.authors = FakeCollection("authors")
        self.books = FakeCollection("books")

    async def command(self, name):
        return {"ok": 1}


@pytest.fixture
def fake_database():
    return FakeDatabase()


@pytest.fixture
async def store(fake_database):
    store = MongoStore(fake_database)
    await store.ensure_indexes()
    return store


@pytest.fixture
def services(store):
    return build_services(store)


@pytest.fixture
def author_service(services):
    return services[0]


@pytest.fixture
def book_service(services):
    return services[1]


@pytest.fixture
def test_settings():
    return APIConfig(database_uri="mongodb://localhost:27017/test", api_prefix="api", log_format="console")


@pytest.fixture
def client(fake_database, test_settings):
    """Test client whose app runs against the in-memory database."""

    async def fake_store_factory(settings):
        return MongoStore(fake_database)

    app = create_app(test_settings, store_factory=fake_store_factory)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def sample_author_data():
    return {
        "firstName": "Jane",
        "lastName": "Austen",
        "bio": "English novelist known primarily for her six major novels",
        "birthDate": "1775-12-16",
    }


@pytest.fixture
def sample_book_data():
    return {
        "title": "Pride and Prejudice",
        "isbn": "978-0-14-143951-8",
        "publishedDate": "1813-01-28",
        "genre": "Romance",
    }
