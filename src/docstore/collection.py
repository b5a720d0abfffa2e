"""
Collection - CRUD and bulk operations on one collection.

Every operation goes through the owning client, which applies the timeout
and tracks connection health. Results are returned as dataclasses; failures
are raised as exceptions from the docstore taxonomy and never retried.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any, Generic, Iterable, Mapping, TypeVar

from .cursor import Cursor, build_find_options
from .operations import (
    DeleteMany,
    DeleteOne,
    InsertOne,
    UpdateMany,
    UpdateOne,
    validate_update,
)
from .types import (
    BulkWriteError,
    BulkWriteResult,
    ConnectionError,
    Deadline,
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

if TYPE_CHECKING:
    from .client import DocumentStoreClient
    from .codec import RecordCodec
    from .database import Database
    from .operations import WriteModel
    from .types import Filter, Projection, Update

T = TypeVar("T")

__all__ = ["Collection"]

logger = logging.getLogger(__name__)

DUPLICATE_KEY_CODE = 11000

_UNSET: Any = object()

# unordered bulk writes run inserts, then updates, then deletes
_KIND_ORDER = {
    InsertOne: 0,
    UpdateOne: 1,
    UpdateMany: 1,
    DeleteOne: 2,
    DeleteMany: 2,
}


def _write_error(result: Mapping[str, Any], default: str) -> WriteError:
    """Build the exception matching an error reply from the store."""
    message = result.get("message") or result.get("errmsg") or default
    code = result.get("code")
    if code == DUPLICATE_KEY_CODE or "E11000" in message or "duplicate" in message.lower():
        return DuplicateKeyError(message, code)
    return WriteError(message, code)


def _is_error_reply(result: Any) -> bool:
    return isinstance(result, dict) and bool(result.get("error"))


class Collection(Generic[T]):
    """
    Document store collection with async CRUD operations.

    Every method takes a keyword-only ``timeout`` in seconds; None means the
    client default.

    Example:
        posts = db["posts"]

        # Insert
        result = await posts.insert_one({"title": "Post one"})
        print(result.inserted_id)

        # Find
        post = await posts.find_one({"title": "Post one"})
        async for post in posts.find({"tags": "golang"}):
            print(post)

        # Update
        await posts.update_one({"_id": post["_id"]}, {"$set": {"title": "Post 1"}})

        # Delete
        await posts.delete_one({"_id": post["_id"]})
    """

    __slots__ = ("_database", "_client", "_name", "_full_name", "_codec")

    def __init__(
        self,
        database: Database,
        name: str,
        codec: RecordCodec[T] | None = None,
    ) -> None:
        """
        Initialize a collection.

        Args:
            database: Parent database instance.
            name: Collection name.
            codec: Optional record codec for typed reads and writes.
        """
        self._database = database
        self._client: DocumentStoreClient = database.client
        self._name = name
        self._full_name = f"{database.name}.{name}"
        self._codec = codec

    @property
    def name(self) -> str:
        """Get the collection name."""
        return self._name

    @property
    def full_name(self) -> str:
        """Get the full collection name (database.collection)."""
        return self._full_name

    @property
    def database(self) -> Database:
        """Get the parent database."""
        return self._database

    @property
    def codec(self) -> RecordCodec[T] | None:
        """Get the record codec, if the collection is typed."""
        return self._codec

    def _generate_id(self) -> str:
        """Generate a unique document ID."""
        return str(uuid.uuid4())

    def _prepare(self, document: T | Mapping[str, Any]) -> dict[str, Any]:
        """Encode a document for writing and make sure it carries an _id."""
        if self._codec is not None:
            doc = self._codec.encode(document)
        elif isinstance(document, Mapping):
            doc = dict(document)
        else:
            raise TypeError(
                f"document must be a mapping, got {type(document).__name__}"
            )
        if doc.get("_id") is None:
            doc["_id"] = self._generate_id()
        return doc

    def _decode(self, document: Mapping[str, Any]) -> T:
        if self._codec is not None:
            return self._codec.decode(document)
        return document  # type: ignore[return-value]

    async def insert_one(
        self,
        document: T | Mapping[str, Any],
        *,
        timeout: float | None = None,
    ) -> InsertOneResult:
        """
        Insert a single document.

        Args:
            document: The document (or record) to insert. An _id is
                generated if absent.
            timeout: Seconds allowed for the call.

        Returns:
            InsertOneResult with the stored ID.

        Raises:
            DuplicateKeyError: If a document with the same _id exists.
            WriteError: If the insert fails.
        """
        doc = self._prepare(document)

        logger.info(f"insertOne on '{self._full_name}'")
        try:
            result = await self._client._call(
                "insertOne",
                self._database.name,
                self._name,
                doc,
                timeout=timeout,
            )

            if isinstance(result, dict):
                if result.get("error"):
                    raise _write_error(result, "Insert failed")
                inserted = InsertOneResult(
                    inserted_id=result.get("insertedId", doc["_id"]),
                    acknowledged=result.get("acknowledged", True),
                )
            else:
                inserted = InsertOneResult(inserted_id=doc["_id"])
        except StoreError:
            raise
        except Exception as e:
            raise WriteError(str(e)) from e

        logger.info(f"finished insertOne on '{self._full_name}'")
        return inserted

    async def insert_many(
        self,
        documents: Iterable[T | Mapping[str, Any]],
        *,
        ordered: bool = True,
        timeout: float | None = None,
    ) -> InsertManyResult:
        """
        Insert multiple documents.

        IDs are assigned before anything is sent, so the returned IDs line up
        with the input.

        Args:
            documents: Documents (or records) to insert.
            ordered: If True, stop on first error. If False, attempt every
                document.
            timeout: Seconds allowed for the call.

        Returns:
            InsertManyResult with the inserted IDs in input order.

        Raises:
            BulkWriteError: If some documents failed. ``details`` names each
                failed input index and ``partial_result`` lists the IDs that
                were stored.
            WriteError: If the insert fails as a whole.
        """
        docs = [self._prepare(document) for document in documents]
        if not docs:
            raise ValueError("documents must be a non-empty list")

        return await self._insert_many(docs, ordered, self._client.deadline(timeout))

    async def _insert_many(
        self,
        docs: list[dict[str, Any]],
        ordered: bool,
        deadline: Deadline,
    ) -> InsertManyResult:
        logger.info(f"inserting {len(docs)} documents in '{self._full_name}'")
        try:
            result = await self._client._call(
                "insertMany",
                self._database.name,
                self._name,
                docs,
                {"ordered": ordered},
                deadline=deadline,
            )
        except StoreError:
            raise
        except Exception as e:
            raise WriteError(str(e)) from e

        if not isinstance(result, dict):
            logger.info(f"finished inserting {len(docs)} documents in '{self._full_name}'")
            return InsertManyResult(inserted_ids=[doc["_id"] for doc in docs])

        write_errors = result.get("writeErrors") or []
        if result.get("error") and not write_errors:
            raise _write_error(result, "Insert failed")

        details = [
            WriteErrorDetail(
                index=err.get("index", 0),
                message=err.get("message") or err.get("errmsg") or "Insert failed",
                code=err.get("code"),
            )
            for err in write_errors
        ]

        if "insertedIds" in result:
            inserted_ids = list(result["insertedIds"])
        else:
            failed = {detail.index for detail in details}
            stop = min(failed) if (ordered and failed) else len(docs)
            inserted_ids = [
                doc["_id"] for i, doc in enumerate(docs) if i < stop and i not in failed
            ]

        inserted = InsertManyResult(
            inserted_ids=inserted_ids,
            acknowledged=result.get("acknowledged", True),
        )

        if details:
            raise BulkWriteError(
                f"insertMany on '{self._full_name}' failed for "
                f"{len(details)} of {len(docs)} documents",
                details=details,
                partial_result=inserted,
            )

        logger.info(f"finished inserting {len(docs)} documents in '{self._full_name}'")
        return inserted

    async def find_one(
        self,
        filter: Filter | None = None,
        projection: Projection = None,
        *,
        timeout: float | None = None,
    ) -> T:
        """
        Find a single document.

        Args:
            filter: Query filter. None matches every document.
            projection: Fields to include/exclude.
            timeout: Seconds allowed for the call.

        Returns:
            The matching document, decoded by the codec if there is one.

        Raises:
            NotFoundError: If no document matches.
            DecodeError: If the document does not fit the codec.
            QueryError: If the query fails.
        """
        logger.info(f"findOne on '{self._full_name}'")
        try:
            result = await self._client._call(
                "findOne",
                self._database.name,
                self._name,
                dict(filter or {}),
                build_find_options(projection),
                timeout=timeout,
            )
        except StoreError:
            raise
        except Exception as e:
            raise QueryError(str(e)) from e

        if result is None:
            raise NotFoundError(
                f"No document in '{self._full_name}' matches {dict(filter or {})!r}"
            )
        if _is_error_reply(result) and "_id" not in result:
            raise QueryError(result.get("message", "Query failed"), result.get("code"))

        logger.info(f"finished findOne on '{self._full_name}'")
        return self._decode(result)

    def find(
        self,
        filter: Filter | None = None,
        projection: Projection = None,
        *,
        batch_size: int = 100,
        timeout: float | None = None,
    ) -> Cursor[T]:
        """
        Find documents matching the filter.

        Nothing is sent until the cursor is iterated; errors surface during
        iteration as CursorError.

        Args:
            filter: Query filter. None matches every document.
            projection: Fields to include/exclude.
            batch_size: Documents fetched per round trip.
            timeout: Seconds the cursor may live, counted from this call.

        Returns:
            Cursor for iterating over results.

        Example:
            async with posts.find({"tags": "golang"}) as cursor:
                async for post in cursor:
                    print(post)

            # With chaining
            cursor = posts.find({}).sort("created_at", -1).limit(10)
            docs = await cursor.to_list()
        """
        return Cursor[T](
            self,
            filter,
            projection,
            batch_size=batch_size,
            deadline=self._client.deadline(timeout),
        )

    async def update_one(
        self,
        filter: Filter,
        update: Update,
        *,
        upsert: bool = False,
        timeout: float | None = None,
    ) -> UpdateResult:
        """
        Update a single document.

        Args:
            filter: Query filter to match the document.
            update: Update operations ($set, $unset, $inc, etc.).
            upsert: If True, insert if no document matches.
            timeout: Seconds allowed for the call.

        Returns:
            UpdateResult with match/modify counts.

        Raises:
            ValueError: If the update is not a non-empty operator mapping.
            WriteError: If the update fails.
        """
        return await self._update(
            "updateOne", filter, update, upsert, self._client.deadline(timeout)
        )

    async def update_many(
        self,
        filter: Filter,
        update: Update,
        *,
        upsert: bool = False,
        timeout: float | None = None,
    ) -> UpdateResult:
        """
        Update every document matching the filter.

        ``modified_count`` can be lower than ``matched_count`` when an update
        leaves a document unchanged.

        Args:
            filter: Query filter to match documents.
            update: Update operations ($set, $unset, $inc, etc.).
            upsert: If True, insert if no document matches.
            timeout: Seconds allowed for the call.

        Returns:
            UpdateResult with match/modify counts.

        Raises:
            ValueError: If the update is not a non-empty operator mapping.
            WriteError: If the update fails.
        """
        return await self._update(
            "updateMany", filter, update, upsert, self._client.deadline(timeout)
        )

    async def _update(
        self,
        method: str,
        filter: Filter,
        update: Update,
        upsert: bool,
        deadline: Deadline,
    ) -> UpdateResult:
        operators = validate_update(update)

        logger.info(f"{method} on '{self._full_name}'")
        try:
            result = await self._client._call(
                method,
                self._database.name,
                self._name,
                dict(filter),
                operators,
                {"upsert": upsert},
                deadline=deadline,
            )

            if isinstance(result, dict):
                if result.get("error"):
                    raise _write_error(result, "Update failed")
                updated = UpdateResult(
                    matched_count=result.get("matchedCount", 0),
                    modified_count=result.get("modifiedCount", 0),
                    upserted_id=result.get("upsertedId"),
                    acknowledged=result.get("acknowledged", True),
                )
            else:
                updated = UpdateResult()
        except StoreError:
            raise
        except Exception as e:
            raise WriteError(str(e)) from e

        logger.info(f"finished {method} on '{self._full_name}'")
        return updated

    async def delete_one(
        self,
        filter: Filter,
        *,
        timeout: float | None = None,
    ) -> DeleteResult:
        """
        Delete a single document.

        Args:
            filter: Query filter to match the document.
            timeout: Seconds allowed for the call.

        Returns:
            DeleteResult with the deleted count (0 if nothing matched).

        Raises:
            WriteError: If the delete fails.
        """
        return await self._delete("deleteOne", filter, self._client.deadline(timeout))

    async def delete_many(
        self,
        filter: Filter,
        *,
        timeout: float | None = None,
    ) -> DeleteResult:
        """
        Delete every document matching the filter.

        Args:
            filter: Query filter to match documents. An empty filter deletes
                everything.
            timeout: Seconds allowed for the call.

        Returns:
            DeleteResult with the deleted count.

        Raises:
            WriteError: If the delete fails.
        """
        return await self._delete("deleteMany", filter, self._client.deadline(timeout))

    async def _delete(self, method: str, filter: Filter, deadline: Deadline) -> DeleteResult:
        logger.info(f"{method} on '{self._full_name}'")
        try:
            result = await self._client._call(
                method,
                self._database.name,
                self._name,
                dict(filter),
                deadline=deadline,
            )

            if isinstance(result, dict):
                if result.get("error"):
                    raise _write_error(result, "Delete failed")
                deleted = DeleteResult(
                    deleted_count=result.get("deletedCount", 0),
                    acknowledged=result.get("acknowledged", True),
                )
            else:
                deleted = DeleteResult()
        except StoreError:
            raise
        except Exception as e:
            raise WriteError(str(e)) from e

        logger.info(f"finished {method} on '{self._full_name}'")
        return deleted

    async def bulk_write(
        self,
        requests: Iterable[WriteModel],
        *,
        ordered: bool = True,
        timeout: float | None = None,
    ) -> BulkWriteResult:
        """
        Apply a batch of write models.

        In ordered mode the models run strictly in sequence and the first
        failure stops the batch. In unordered mode they are grouped by kind
        (inserts, then updates, then deletes), every model is attempted, and
        failures are reported together at the end. One timeout covers the
        whole batch.

        Args:
            requests: InsertOne, UpdateOne, UpdateMany, DeleteOne and
                DeleteMany models.
            ordered: Run in the given order and stop at the first failure.
            timeout: Seconds allowed for the whole batch.

        Returns:
            BulkWriteResult with counts summed over all models.

        Raises:
            BulkWriteError: If any model failed. ``partial_result`` counts
                only completed models and ``details`` carries model indexes.
            OperationTimeout: If the timeout expires before anything was
                written.
            ConnectionError: If the connection fails before anything was
                written.
        """
        models = list(requests)
        if not models:
            raise ValueError("requests must be a non-empty list")
        for index, model in enumerate(models):
            if type(model) not in _KIND_ORDER:
                raise TypeError(
                    f"requests[{index}] is {type(model).__name__}, not a write model"
                )

        # encode every insert up front so a bad document fails before any I/O
        prepared = {
            index: self._prepare(model.document)
            for index, model in enumerate(models)
            if isinstance(model, InsertOne)
        }

        deadline = self._client.deadline(timeout)
        result = BulkWriteResult()
        details: list[WriteErrorDetail] = []
        completed = 0

        logger.info(
            f"bulkWrite of {len(models)} operations on '{self._full_name}' "
            f"({'ordered' if ordered else 'unordered'})"
        )
        for run in self._plan(models, ordered):
            try:
                if isinstance(models[run[0]], InsertOne):
                    completed += await self._bulk_insert(run, prepared, ordered, deadline, result, details)
                else:
                    await self._bulk_apply(run[0], models[run[0]], deadline, result)
                    completed += 1
            except (OperationTimeout, ConnectionError) as e:
                if completed == 0 and not details:
                    raise
                details.append(WriteErrorDetail(index=run[0], message=str(e), code=e.code))
                raise BulkWriteError(
                    f"bulkWrite on '{self._full_name}' interrupted after "
                    f"{completed} of {len(models)} operations: {e}",
                    details=details,
                    partial_result=result,
                ) from e
            except WriteError as e:
                logger.debug(f"bulkWrite operation {run[0]} on '{self._full_name}' failed: {e}")
                details.append(WriteErrorDetail(index=run[0], message=e.message, code=e.code))

            if ordered and details:
                break

        if details:
            raise BulkWriteError(
                f"bulkWrite on '{self._full_name}' failed for "
                f"{len(details)} of {len(models)} operations",
                details=sorted(details, key=lambda d: d.index),
                partial_result=result,
            )

        logger.info(f"finished bulkWrite of {len(models)} operations on '{self._full_name}'")
        return result

    @staticmethod
    def _plan(models: list[WriteModel], ordered: bool) -> list[list[int]]:
        """
        Split model indexes into runs executed by one call each.

        Adjacent inserts share a run in ordered mode; in unordered mode all
        inserts share one run. Every other model runs alone.
        """
        if ordered:
            indexes = list(range(len(models)))
        else:
            indexes = sorted(range(len(models)), key=lambda i: _KIND_ORDER[type(models[i])])

        runs: list[list[int]] = []
        for index in indexes:
            is_insert = isinstance(models[index], InsertOne)
            if is_insert and runs and isinstance(models[runs[-1][0]], InsertOne):
                runs[-1].append(index)
            else:
                runs.append([index])
        return runs

    async def _bulk_insert(
        self,
        run: list[int],
        prepared: dict[int, dict[str, Any]],
        ordered: bool,
        deadline: Deadline,
        result: BulkWriteResult,
        details: list[WriteErrorDetail],
    ) -> int:
        """Insert one run of InsertOne models; returns how many were stored."""
        docs = [prepared[index] for index in run]
        try:
            inserted = await self._insert_many(docs, ordered, deadline)
            failed: list[WriteErrorDetail] = []
        except BulkWriteError as e:
            inserted = e.partial_result  # type: ignore[assignment]
            failed = e.details
        except WriteError as e:
            # whole run rejected
            details.extend(
                WriteErrorDetail(index=index, message=e.message, code=e.code) for index in run
            )
            return 0

        # stored ids are a subsequence of the run, in run order
        stored = iter(inserted.inserted_ids)
        pending = next(stored, _UNSET)
        for index, doc in zip(run, docs):
            if pending is not _UNSET and doc["_id"] == pending:
                result.inserted_ids[index] = doc["_id"]
                pending = next(stored, _UNSET)
        result.inserted_count += len(inserted.inserted_ids)

        # run-relative positions back to model indexes
        details.extend(
            WriteErrorDetail(index=run[d.index], message=d.message, code=d.code)
            for d in failed
            if 0 <= d.index < len(run)
        )
        return len(inserted.inserted_ids)

    async def _bulk_apply(
        self,
        index: int,
        model: WriteModel,
        deadline: Deadline,
        result: BulkWriteResult,
    ) -> None:
        if isinstance(model, (UpdateOne, UpdateMany)):
            method = "updateOne" if isinstance(model, UpdateOne) else "updateMany"
            updated = await self._update(method, model.filter, model.update, model.upsert, deadline)
            result.matched_count += updated.matched_count
            result.modified_count += updated.modified_count
            if updated.upserted_id is not None:
                result.upserted_count += 1
                result.upserted_ids[index] = updated.upserted_id
        else:
            method = "deleteOne" if isinstance(model, DeleteOne) else "deleteMany"
            deleted = await self._delete(method, model.filter, deadline)
            result.deleted_count += deleted.deleted_count

    async def count_documents(
        self,
        filter: Filter | None = None,
        *,
        timeout: float | None = None,
    ) -> int:
        """
        Count documents matching the filter.

        Args:
            filter: Query filter. None counts every document.
            timeout: Seconds allowed for the call.

        Returns:
            Number of matching documents.
        """
        try:
            result = await self._client._call(
                "countDocuments",
                self._database.name,
                self._name,
                dict(filter or {}),
                timeout=timeout,
            )
        except StoreError:
            raise
        except Exception as e:
            raise QueryError(str(e)) from e
        return result if isinstance(result, int) else 0

    async def drop(self, *, timeout: float | None = None) -> None:
        """Drop the collection."""
        await self._database.drop_collection(self._name, timeout=timeout)

    def __repr__(self) -> str:
        return f"Collection({self._full_name!r})"
