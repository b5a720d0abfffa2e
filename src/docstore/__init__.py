"""
docstore - async client for collection-oriented document stores.

This package provides an explicit, connection-managed client with:
- Single-document and multi-document CRUD (insert, find, update, delete)
- Lazy, single-consumer cursors fetched in batches
- Ordered and unordered bulk writes with partial-failure reporting
- Per-operation timeouts and a fail-fast broken-connection state
- Declared two-way mapping between documents and typed records

Example usage:
    from docstore import DocumentStoreClient, InsertOne, UpdateMany

    async def main():
        async with DocumentStoreClient("mongodb://localhost:27017/", timeout=10) as client:
            posts = client["blog"]["posts"]

            # Insert documents
            result = await posts.insert_one({"title": "Go mongodb driver cookbook"})
            print(result.inserted_id)

            # Find documents
            post = await posts.find_one({"_id": result.inserted_id})
            async for post in posts.find({"tags": "golang"}, timeout=5):
                print(post["title"])

            # Update documents
            await posts.update_many({"tags": "golang"}, {"$set": {"comments": 0}})

            # Batch writes
            await posts.bulk_write([
                InsertOne({"title": "post five"}),
                UpdateMany({"tags": "golang"}, {"$inc": {"comments": 1}}),
            ])

    import asyncio
    asyncio.run(main())
"""

from __future__ import annotations

__version__ = "0.1.0"

from .client import DocumentStoreClient
from .codec import Field, RecordCodec
from .collection import Collection
from .cursor import Cursor
from .database import Database
from .operations import DeleteMany, DeleteOne, InsertOne, UpdateMany, UpdateOne, WriteModel
from .types import (
    BulkWriteError,
    BulkWriteResult,
    ConfigError,
    ConnectionError,
    ConnectTimeout,
    CursorError,
    CursorTimeout,
    DecodeError,
    DeleteResult,
    DuplicateKeyError,
    InsertManyResult,
    InsertOneResult,
    NotFoundError,
    OperationTimeout,
    QueryError,
    StoreError,
    UpdateResult,
    WriteError,
    WriteErrorDetail,
)
from .uri import ParsedUri, parse_uri

__all__ = [
    # Main classes
    "DocumentStoreClient",
    "Database",
    "Collection",
    "Cursor",
    # Write models
    "InsertOne",
    "UpdateOne",
    "UpdateMany",
    "DeleteOne",
    "DeleteMany",
    "WriteModel",
    # Records
    "Field",
    "RecordCodec",
    # Connection strings
    "ParsedUri",
    "parse_uri",
    # Result types
    "InsertOneResult",
    "InsertManyResult",
    "UpdateResult",
    "DeleteResult",
    "BulkWriteResult",
    "WriteErrorDetail",
    # Exceptions
    "StoreError",
    "ConfigError",
    "ConnectionError",
    "ConnectTimeout",
    "OperationTimeout",
    "QueryError",
    "NotFoundError",
    "DecodeError",
    "CursorError",
    "CursorTimeout",
    "WriteError",
    "DuplicateKeyError",
    "BulkWriteError",
    # Version
    "__version__",
]
