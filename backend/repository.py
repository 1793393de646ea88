# backend/repository.py
"""
Persistence seam for the services.

MongoRepository talks to MongoDB through Motor, FallbackRepository to the
local JSON store, and ResilientRepository routes each call to Mongo while
it is reachable and to the local store otherwise. Successful Mongo reads
and writes are mirrored into the local store so a later outage still sees
the latest state of this session. Mirrored changes are kept in memory and
written to disk off the event loop at most every FALLBACK_FLUSH_SECONDS.
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Set

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError

from core.config import settings
from core.errors import PersistenceUnavailableError
from fallback_store import FallbackStore, SortSpec, matches, sort_documents

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (ConnectionFailure, ServerSelectionTimeoutError)


def new_id() -> str:
    return str(ObjectId())


class BaseRepository(ABC):
    name = "base"

    @property
    def active_backend(self) -> str:
        return self.name

    @abstractmethod
    async def ping(self) -> bool: ...

    @abstractmethod
    async def find(self, collection: str, filters: Optional[Dict[str, Any]] = None,
                   sort: Optional[SortSpec] = None, skip: int = 0, limit: int = 0) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def count(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> int: ...

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    async def insert(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]: ...

    @abstractmethod
    async def insert_many(self, collection: str, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any],
                     expected: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Apply changes when the document also matches `expected`; None when nothing matched"""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool: ...

    async def find_by_ids(self, collection: str, ids: List[str]) -> List[Dict[str, Any]]:
        if not ids:
            return []
        return await self.find(collection, {"_id": {"$in": list(ids)}})

    async def flush(self) -> None:
        """Persist buffered writes; backends that write through need nothing"""


# ============================================
# MONGODB
# ============================================

class MongoRepository(BaseRepository):
    name = "mongo"

    def __init__(self, database_getter=None):
        if database_getter is None:
            from database import get_async_database
            database_getter = get_async_database
        self._database_getter = database_getter

    def _collection(self, collection: str):
        return self._database_getter()[collection]

    @staticmethod
    def _normalize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if doc is not None and isinstance(doc.get("_id"), ObjectId):
            doc["_id"] = str(doc["_id"])
        return doc

    @staticmethod
    def _id_filter(doc_id: str) -> Dict[str, Any]:
        # documents imported outside the service may still carry ObjectId keys
        if ObjectId.is_valid(doc_id):
            return {"_id": {"$in": [doc_id, ObjectId(doc_id)]}}
        return {"_id": doc_id}

    async def ping(self) -> bool:
        await self._database_getter().command("ping")
        return True

    async def find(self, collection, filters=None, sort=None, skip=0, limit=0):
        cursor = self._collection(collection).find(filters or {})
        if sort:
            cursor = cursor.sort(list(sort))
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [self._normalize(doc) async for doc in cursor]

    async def count(self, collection, filters=None):
        return await self._collection(collection).count_documents(filters or {})

    async def get(self, collection, doc_id):
        doc = await self._collection(collection).find_one(self._id_filter(doc_id))
        return self._normalize(doc)

    async def insert(self, collection, doc):
        doc.setdefault("_id", new_id())
        await self._collection(collection).insert_one(doc)
        return doc

    async def insert_many(self, collection, docs):
        if not docs:
            return []
        for doc in docs:
            doc.setdefault("_id", new_id())
        await self._collection(collection).insert_many(docs, ordered=True)
        return docs

    async def update(self, collection, doc_id, changes, expected=None):
        query = self._id_filter(doc_id)
        query.update(expected or {})
        doc = await self._collection(collection).find_one_and_update(
            query,
            {"$set": changes},
            return_document=ReturnDocument.AFTER
        )
        return self._normalize(doc)

    async def delete(self, collection, doc_id):
        result = await self._collection(collection).delete_one(self._id_filter(doc_id))
        return result.deleted_count > 0


# ============================================
# LOCAL FILE STORE
# ============================================

class FallbackRepository(BaseRepository):
    name = "fallback"

    def __init__(self, store: FallbackStore):
        self.store = store

    def has_collection(self, collection: str) -> bool:
        return self.store.has(collection)

    async def ping(self) -> bool:
        return True

    async def find(self, collection, filters=None, sort=None, skip=0, limit=0):
        docs = [d for d in self.store.read(collection) if matches(d, filters)]
        docs = sort_documents(docs, sort)
        if skip:
            docs = docs[skip:]
        if limit:
            docs = docs[:limit]
        return docs

    async def count(self, collection, filters=None):
        return sum(1 for d in self.store.read(collection) if matches(d, filters))

    async def get(self, collection, doc_id):
        for doc in self.store.read(collection):
            if doc.get("_id") == doc_id:
                return doc
        return None

    # file writes run in a worker thread so the event loop keeps serving
    async def insert(self, collection, doc):
        doc.setdefault("_id", new_id())
        await asyncio.to_thread(self.store.upsert_many, collection, [doc])
        return doc

    async def insert_many(self, collection, docs):
        for doc in docs:
            doc.setdefault("_id", new_id())
        await asyncio.to_thread(self.store.upsert_many, collection, docs)
        return docs

    async def update(self, collection, doc_id, changes, expected=None):
        def apply(existing):
            for doc in existing:
                if doc.get("_id") == doc_id:
                    if not matches(doc, expected):
                        return None
                    doc.update(changes)
                    return doc
            return None

        return await asyncio.to_thread(self.store.mutate, collection, apply)

    async def delete(self, collection, doc_id):
        return await asyncio.to_thread(self.store.remove, collection, doc_id)

    def stage(self, collection: str, docs: List[Dict[str, Any]]) -> None:
        """Copy documents into memory only; flush() writes them"""
        self.store.upsert_many(collection, docs, persist=False)

    def unstage(self, collection: str, doc_id: str) -> None:
        self.store.remove(collection, doc_id, persist=False)

    async def flush(self) -> None:
        if self.store.dirty:
            await asyncio.to_thread(self.store.flush)


# ============================================
# MONGO WITH LOCAL FALLBACK
# ============================================

class ResilientRepository(BaseRepository):
    name = "auto"

    def __init__(self, primary: BaseRepository, fallback: FallbackRepository,
                 check_interval: Optional[float] = None,
                 flush_delay: Optional[float] = None):
        self.primary = primary
        self.fallback = fallback
        self.check_interval = (
            settings.DB_AVAILABILITY_CHECK_SECONDS if check_interval is None else check_interval
        )
        self.flush_delay = settings.FALLBACK_FLUSH_SECONDS if flush_delay is None else flush_delay
        self._available: Optional[bool] = None
        self._checked_at = 0.0
        self._flush_task: Optional[asyncio.Task] = None
        # collections whose full contents were copied once this session
        self._snapshotted: Set[str] = set()

    @property
    def active_backend(self) -> str:
        return self.primary.name if self._available else self.fallback.name

    async def _primary_available(self) -> bool:
        now = time.monotonic()
        if self._available is not None and now - self._checked_at < self.check_interval:
            return self._available

        try:
            available = bool(await self.primary.ping())
        except Exception as e:
            logger.warning(f"⚠️ Primary database ping failed: {e}")
            available = False

        if available != self._available:
            if available:
                logger.info(f"✅ Using {self.primary.name} persistence")
            else:
                logger.warning(f"⚠️ {self.primary.name} unreachable, using local fallback store")
        self._available = available
        self._checked_at = now
        return available

    def _mark_unavailable(self, error: Exception) -> None:
        logger.warning(f"⚠️ Primary database error, switching to local fallback store: {error}")
        self._available = False
        self._checked_at = time.monotonic()

    def _mirror(self, collection: str, docs: List[Optional[Dict[str, Any]]]) -> None:
        present = [d for d in docs if d is not None]
        if not present and self.fallback.has_collection(collection):
            return
        try:
            self.fallback.stage(collection, present)
        except Exception as e:
            logger.error(f"❌ Failed to mirror {collection} into fallback store: {e}")
            return
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.get_running_loop().create_task(self._flush_later())

    async def _flush_later(self) -> None:
        try:
            await asyncio.sleep(self.flush_delay)
            await self.fallback.flush()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Failed to write fallback store: {e}")

    async def flush(self) -> None:
        task, self._flush_task = self._flush_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.fallback.flush()

    async def _read(self, collection: str, method: str, *args, **kwargs):
        if await self._primary_available():
            try:
                return await getattr(self.primary, method)(collection, *args, **kwargs)
            except TRANSPORT_ERRORS as e:
                self._mark_unavailable(e)

        if not self.fallback.has_collection(collection):
            raise PersistenceUnavailableError(collection, "database unreachable and no local copy")
        return await getattr(self.fallback, method)(collection, *args, **kwargs)

    async def _write(self, collection: str, method: str, *args, **kwargs):
        if await self._primary_available():
            try:
                return await getattr(self.primary, method)(collection, *args, **kwargs)
            except TRANSPORT_ERRORS as e:
                self._mark_unavailable(e)
        return await getattr(self.fallback, method)(collection, *args, **kwargs)

    async def ping(self) -> bool:
        return await self._primary_available()

    async def find(self, collection, filters=None, sort=None, skip=0, limit=0):
        if await self._primary_available():
            try:
                docs = await self.primary.find(collection, filters, sort, skip, limit)
                full_read = not filters and not skip and not limit
                if full_read and collection not in self._snapshotted:
                    self._mirror(collection, docs)
                    self._snapshotted.add(collection)
                elif not self.fallback.has_collection(collection):
                    self._mirror(collection, docs)
                return docs
            except TRANSPORT_ERRORS as e:
                self._mark_unavailable(e)
        return await self._read(collection, "find", filters, sort, skip, limit)

    async def count(self, collection, filters=None):
        return await self._read(collection, "count", filters)

    async def get(self, collection, doc_id):
        if await self._primary_available():
            try:
                doc = await self.primary.get(collection, doc_id)
                self._mirror(collection, [doc])
                return doc
            except TRANSPORT_ERRORS as e:
                self._mark_unavailable(e)
        return await self._read(collection, "get", doc_id)

    async def insert(self, collection, doc):
        was_primary = await self._primary_available()
        result = await self._write(collection, "insert", doc)
        if was_primary and self._available:
            self._mirror(collection, [result])
        return result

    async def insert_many(self, collection, docs):
        was_primary = await self._primary_available()
        result = await self._write(collection, "insert_many", docs)
        if was_primary and self._available:
            self._mirror(collection, result)
        return result

    async def update(self, collection, doc_id, changes, expected=None):
        was_primary = await self._primary_available()
        result = await self._write(collection, "update", doc_id, changes, expected)
        if was_primary and self._available:
            self._mirror(collection, [result])
        return result

    async def delete(self, collection, doc_id):
        was_primary = await self._primary_available()
        result = await self._write(collection, "delete", doc_id)
        if was_primary and self._available:
            try:
                self.fallback.unstage(collection, doc_id)
                self._schedule_flush()
            except Exception as e:
                logger.error(f"❌ Failed to mirror delete of {collection}/{doc_id}: {e}")
        return result


# ============================================
# REPOSITORY SELECTION
# ============================================

_repository: Optional[BaseRepository] = None


def build_repository(backend: Optional[str] = None) -> BaseRepository:
    backend = (backend or settings.PERSISTENCE_BACKEND).lower()
    fallback = FallbackRepository(FallbackStore(settings.FALLBACK_STORE_PATH))

    if backend == "fallback":
        return fallback
    if backend == "mongo":
        return MongoRepository()
    return ResilientRepository(MongoRepository(), fallback)


def get_repository() -> BaseRepository:
    global _repository
    if _repository is None:
        _repository = build_repository()
        logger.info(f"💾 Persistence backend: {settings.PERSISTENCE_BACKEND}")
    return _repository


def set_repository(repository: Optional[BaseRepository]) -> None:
    """Swap the process-wide repository (None resets to settings-driven selection)"""
    global _repository
    _repository = repository
