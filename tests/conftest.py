"""
Pytest fixtures for docstore tests.

Provides an in-memory mock of the RPC transport and connected client
fixtures for testing without actual network connections.
"""

from __future__ import annotations

import itertools
import sys
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest


class MockRpcMongo:
    """Mock for the RPC store namespace, backed by in-memory lists."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, list[dict[str, Any]]]] = {}
        self._cursors: dict[int, list[dict[str, Any]]] = {}
        self._cursor_ids = itertools.count(1)
        self._upsert_ids = itertools.count(1)
        self.killed_cursors: list[int] = []

    @property
    def open_cursors(self) -> set[int]:
        return set(self._cursors)

    def _get_collection_data(self, database: str, collection: str) -> list[dict[str, Any]]:
        """Get or create collection data."""
        if database not in self._data:
            self._data[database] = {}
        if collection not in self._data[database]:
            self._data[database][collection] = []
        return self._data[database][collection]

    async def insertOne(
        self,
        database: str,
        collection: str,
        document: dict[str, Any],
    ) -> dict[str, Any]:
        """Mock insertOne."""
        data = self._get_collection_data(database, collection)
        for doc in data:
            if doc.get("_id") == document.get("_id"):
                return {"error": True, "code": 11000, "message": "E11000 duplicate key error"}
        data.append(dict(document))
        return {"insertedId": document.get("_id"), "acknowledged": True}

    async def insertMany(
        self,
        database: str,
        collection: str,
        documents: list[dict[str, Any]],
        options: dict[str, Any],
    ) -> dict[str, Any]:
        """Mock insertMany, reporting duplicates per document."""
        data = self._get_collection_data(database, collection)
        existing = [doc.get("_id") for doc in data]
        inserted_ids = []
        write_errors = []

        for index, doc in enumerate(documents):
            if doc.get("_id") in existing:
                write_errors.append(
                    {"index": index, "code": 11000, "message": "E11000 duplicate key error"}
                )
                if options.get("ordered", True):
                    break
                continue
            data.append(dict(doc))
            existing.append(doc.get("_id"))
            inserted_ids.append(doc.get("_id"))

        result: dict[str, Any] = {"insertedIds": inserted_ids, "acknowledged": True}
        if write_errors:
            result["writeErrors"] = write_errors
        return result

    async def findOne(
        self,
        database: str,
        collection: str,
        filter: dict[str, Any],
        options: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Mock findOne."""
        data = self._get_collection_data(database, collection)
        for doc in data:
            if self._matches(doc, filter):
                return self._project(dict(doc), options.get("projection"))
        return None

    async def find(
        self,
        database: str,
        collection: str,
        filter: dict[str, Any],
        options: dict[str, Any],
    ) -> dict[str, Any]:
        """Mock find, opening a server cursor when results exceed one batch."""
        data = self._get_collection_data(database, collection)
        results = [dict(doc) for doc in data if self._matches(doc, filter)]

        projection = options.get("projection")
        if projection:
            results = [self._project(doc, projection) for doc in results]

        sort = options.get("sort")
        if sort:
            for field, direction in reversed(sort):
                results.sort(key=lambda x: x.get(field, ""), reverse=(direction == -1))

        skip = options.get("skip", 0)
        if skip:
            results = results[skip:]

        limit = options.get("limit", 0)
        if limit:
            results = results[:limit]

        batch_size = options.get("batchSize", 100)
        first, rest = results[:batch_size], results[batch_size:]
        if not rest:
            return {"cursorId": 0, "batch": first}

        cursor_id = next(self._cursor_ids)
        self._cursors[cursor_id] = rest
        return {"cursorId": cursor_id, "batch": first}

    async def getMore(self, cursor_id: int, batch_size: int) -> dict[str, Any]:
        """Mock getMore."""
        if cursor_id not in self._cursors:
            return {"error": True, "code": 43, "message": f"cursor id {cursor_id} not found"}
        remaining = self._cursors[cursor_id]
        batch, rest = remaining[:batch_size], remaining[batch_size:]
        if rest:
            self._cursors[cursor_id] = rest
            return {"cursorId": cursor_id, "batch": batch}
        del self._cursors[cursor_id]
        return {"cursorId": 0, "batch": batch}

    async def killCursors(self, cursor_ids: list[int]) -> dict[str, Any]:
        """Mock killCursors."""
        for cursor_id in cursor_ids:
            self._cursors.pop(cursor_id, None)
            self.killed_cursors.append(cursor_id)
        return {"ok": 1}

    async def updateOne(
        self,
        database: str,
        collection: str,
        filter: dict[str, Any],
        update: dict[str, Any],
        options: dict[str, Any],
    ) -> dict[str, Any]:
        """Mock updateOne."""
        return self._update(database, collection, filter, update, options, multi=False)

    async def updateMany(
        self,
        database: str,
        collection: str,
        filter: dict[str, Any],
        update: dict[str, Any],
        options: dict[str, Any],
    ) -> dict[str, Any]:
        """Mock updateMany."""
        return self._update(database, collection, filter, update, options, multi=True)

    def _update(
        self,
        database: str,
        collection: str,
        filter: dict[str, Any],
        update: dict[str, Any],
        options: dict[str, Any],
        multi: bool,
    ) -> dict[str, Any]:
        data = self._get_collection_data(database, collection)
        matched = 0
        modified = 0
        upserted_id = None

        for doc in data:
            if self._matches(doc, filter):
                matched += 1
                if self._apply_update(doc, update):
                    modified += 1
                if not multi:
                    break

        if matched == 0 and options.get("upsert"):
            new_doc = {
                key: value
                for key, value in filter.items()
                if not key.startswith("$") and not isinstance(value, dict)
            }
            self._apply_update(new_doc, update)
            if "_id" not in new_doc:
                new_doc["_id"] = f"upserted-{next(self._upsert_ids)}"
            data.append(new_doc)
            upserted_id = new_doc["_id"]

        return {
            "matchedCount": matched,
            "modifiedCount": modified,
            "upsertedId": upserted_id,
            "acknowledged": True,
        }

    async def deleteOne(
        self,
        database: str,
        collection: str,
        filter: dict[str, Any],
    ) -> dict[str, Any]:
        """Mock deleteOne."""
        data = self._get_collection_data(database, collection)
        deleted = 0

        for i, doc in enumerate(data):
            if self._matches(doc, filter):
                del data[i]
                deleted += 1
                break

        return {"deletedCount": deleted, "acknowledged": True}

    async def deleteMany(
        self,
        database: str,
        collection: str,
        filter: dict[str, Any],
    ) -> dict[str, Any]:
        """Mock deleteMany."""
        data = self._get_collection_data(database, collection)
        original_len = len(data)

        self._data[database][collection] = [
            doc for doc in data if not self._matches(doc, filter)
        ]
        deleted = original_len - len(self._data[database][collection])

        return {"deletedCount": deleted, "acknowledged": True}

    async def countDocuments(
        self,
        database: str,
        collection: str,
        filter: dict[str, Any],
    ) -> int:
        """Mock countDocuments."""
        data = self._get_collection_data(database, collection)
        return sum(1 for doc in data if self._matches(doc, filter))

    async def dropCollection(
        self,
        database: str,
        collection: str,
    ) -> None:
        """Mock dropCollection."""
        if database in self._data:
            self._data[database].pop(collection, None)

    async def listCollectionNames(
        self,
        database: str,
        filter: dict[str, Any],
    ) -> list[str]:
        """Mock listCollectionNames."""
        if database in self._data:
            return list(self._data[database].keys())
        return []

    async def dropDatabase(self, database: str) -> None:
        """Mock dropDatabase."""
        self._data.pop(database, None)

    async def command(
        self,
        database: str,
        command: dict[str, Any],
    ) -> dict[str, Any]:
        """Mock command."""
        return {"ok": 1}

    def _matches(self, doc: dict[str, Any], filter: dict[str, Any]) -> bool:
        """Check if document matches filter."""
        if not filter:
            return True

        for key, value in filter.items():
            if key.startswith("$"):
                if key == "$and":
                    if not all(self._matches(doc, f) for f in value):
                        return False
                elif key == "$or":
                    if not any(self._matches(doc, f) for f in value):
                        return False
                continue

            doc_value = doc.get(key)

            if isinstance(value, dict) and value and all(op.startswith("$") for op in value):
                if not self._match_operators(doc_value, key in doc, value):
                    return False
            elif isinstance(doc_value, list) and not isinstance(value, list):
                if value not in doc_value:
                    return False
            elif doc_value != value:
                return False

        return True

    def _match_operators(self, doc_value: Any, present: bool, ops: dict[str, Any]) -> bool:
        """Apply comparison operators to one value."""
        for op, op_value in ops.items():
            if op == "$eq":
                if doc_value != op_value:
                    return False
            elif op == "$ne":
                if doc_value == op_value:
                    return False
            elif op == "$gt":
                if doc_value is None or doc_value <= op_value:
                    return False
            elif op == "$gte":
                if doc_value is None or doc_value < op_value:
                    return False
            elif op == "$lt":
                if doc_value is None or doc_value >= op_value:
                    return False
            elif op == "$lte":
                if doc_value is None or doc_value > op_value:
                    return False
            elif op == "$in":
                if isinstance(doc_value, list):
                    if not any(v in op_value for v in doc_value):
                        return False
                elif doc_value not in op_value:
                    return False
            elif op == "$nin":
                if doc_value in op_value:
                    return False
            elif op == "$exists":
                if bool(op_value) != present:
                    return False
            elif op == "$elemMatch":
                if not isinstance(doc_value, list):
                    return False
                if not any(self._match_operators(el, True, op_value) for el in doc_value):
                    return False
        return True

    def _apply_update(self, doc: dict[str, Any], update: dict[str, Any]) -> bool:
        """Apply update operators to document."""
        modified = False

        for op, fields in update.items():
            if op == "$set":
                for key, value in fields.items():
                    if doc.get(key) != value or key not in doc:
                        doc[key] = value
                        modified = True
            elif op == "$unset":
                for key in fields:
                    if key in doc:
                        del doc[key]
                        modified = True
            elif op == "$inc":
                for key, value in fields.items():
                    doc[key] = doc.get(key, 0) + value
                    modified = True
            elif op == "$push":
                for key, value in fields.items():
                    if key not in doc:
                        doc[key] = []
                    doc[key].append(value)
                    modified = True
            elif op == "$addToSet":
                for key, value in fields.items():
                    if key not in doc:
                        doc[key] = []
                    if value not in doc[key]:
                        doc[key].append(value)
                        modified = True

        return modified

    def _project(
        self,
        doc: dict[str, Any],
        projection: dict[str, int] | None,
    ) -> dict[str, Any]:
        """Apply projection to document."""
        if not projection:
            return doc

        include_mode = any(v == 1 for v in projection.values() if v != 0)

        if include_mode:
            result = {}
            for key, include in projection.items():
                if include and key in doc:
                    result[key] = doc[key]
            if "_id" in doc and projection.get("_id", 1) != 0:
                result["_id"] = doc["_id"]
            return result
        else:
            return {k: v for k, v in doc.items() if projection.get(k, 1) != 0}


class MockRpcClient:
    """Mock RPC client for testing."""

    def __init__(self) -> None:
        self.mongo = MockRpcMongo()
        self._closed = False

    async def close(self) -> None:
        """Close the mock client."""
        self._closed = True


@pytest.fixture
def mock_rpc() -> MockRpcClient:
    """Create a mock RPC client."""
    return MockRpcClient()


@pytest.fixture
def mock_connect(mock_rpc: MockRpcClient, monkeypatch: pytest.MonkeyPatch):
    """Mock the rpc_do.connect function."""
    mock_rpc_do = MagicMock()
    mock_rpc_do.connect = AsyncMock(return_value=mock_rpc)

    monkeypatch.setitem(sys.modules, "rpc_do", mock_rpc_do)

    return mock_rpc_do


@pytest.fixture
def store_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear docstore environment overrides."""
    monkeypatch.delenv("DOCSTORE_URL", raising=False)
    monkeypatch.delenv("DOCSTORE_TIMEOUT", raising=False)


@pytest.fixture
async def client(mock_connect, mock_rpc: MockRpcClient, store_env):
    """Create a connected DocumentStoreClient."""
    from docstore import DocumentStoreClient

    client = DocumentStoreClient("mongodb://localhost:6548/", timeout=5)
    await client.connect()
    yield client
    await client.close()


@pytest.fixture
async def database(client):
    """Create a database."""
    return client["blog"]


@pytest.fixture
async def collection(database):
    """Create a collection."""
    return database["posts"]
