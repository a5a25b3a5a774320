"""
Shared fixtures.

The API runs against an in-memory stand-in for a MongoClient so the suites
need no MongoDB server. It covers only the collection calls the app makes.
"""

import copy
import threading
from types import SimpleNamespace

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from config import DatabaseConfig, Settings
from database import Database
from main import create_application


def _matches(doc, filter_dict):
    return all(doc.get(key) == value for key, value in (filter_dict or {}).items())


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = []
        self._lock = threading.Lock()

    def insert_one(self, doc):
        with self._lock:
            doc.setdefault("_id", ObjectId())
            self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"], acknowledged=True)

    def find(self, filter_dict=None):
        with self._lock:
            return [copy.deepcopy(d) for d in self.docs if _matches(d, filter_dict)]

    def find_one(self, filter_dict=None):
        found = self.find(filter_dict)
        return found[0] if found else None

    def update_one(self, filter_dict, update):
        with self._lock:
            for doc in self.docs:
                if _matches(doc, filter_dict):
                    before = dict(doc)
                    doc.update(update["$set"])
                    return SimpleNamespace(matched_count=1, modified_count=int(before != doc))
        return SimpleNamespace(matched_count=0, modified_count=0)

    def delete_one(self, filter_dict):
        with self._lock:
            for i, doc in enumerate(self.docs):
                if _matches(doc, filter_dict):
                    del self.docs[i]
                    return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def bulk_write(self, operations):
        if not operations:
            raise ValueError("operations must be a non-empty list")
        matched = modified = 0
        for op in operations:
            result = self.update_one(op._filter, op._doc)
            matched += result.matched_count
            modified += result.modified_count
        return SimpleNamespace(acknowledged=True, matched_count=matched,
                               modified_count=modified, upserted_count=0)


class FakeDatabase:
    def __init__(self, name):
        self.name = name
        self.collections = {}

    def __getitem__(self, collection_name):
        if collection_name not in self.collections:
            self.collections[collection_name] = FakeCollection(collection_name)
        return self.collections[collection_name]


class FakeMongoClient:
    def __init__(self):
        self.databases = {}
        self.admin = SimpleNamespace(command=lambda name: {"ok": 1.0})
        self.closed = False

    def __getitem__(self, name):
        if name not in self.databases:
            self.databases[name] = FakeDatabase(name)
        return self.databases[name]

    def close(self):
        self.closed = True


@pytest.fixture
def mongo_client():
    return FakeMongoClient()


@pytest.fixture
def db_config():
    return DatabaseConfig(
        prefix="mongodb://",
        user="storefront",
        password="s3cret",
        host="@localhost:27017",
        name="lessons_shop",
        params="/?retryWrites=true",
    )


@pytest.fixture
def assets_dir(tmp_path):
    (tmp_path / "index.html").write_text("<h1>Lessons</h1>")
    images = tmp_path / "images"
    images.mkdir()
    (images / "math.png").write_bytes(b"\x89PNG\r\n\x1a\nfake-image")
    (tmp_path / "style.css").write_text("body { margin: 0; }")
    (tmp_path / "dbconnection.properties").write_text("db.password=s3cret\n")
    (tmp_path / ".env").write_text("DB_PASSWORD=s3cret\n")
    return tmp_path


@pytest.fixture
def settings(assets_dir, db_config):
    return Settings(assets_dir=assets_dir, database=db_config)


@pytest.fixture
def database(db_config, mongo_client):
    return Database(db_config, client_factory=lambda uri, **kwargs: mongo_client)


@pytest.fixture
def app(settings, database):
    return create_application(settings, database)


@pytest.fixture
def client(app):
    # Connected up front so requests never race the background connect
    app.state.database.connect()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def lessons(mongo_client, db_config):
    """The fake lessons collection behind the running app"""
    return mongo_client[db_config.name]["lessons"]


@pytest.fixture
def orders(mongo_client, db_config):
    return mongo_client[db_config.name]["order_placed"]
