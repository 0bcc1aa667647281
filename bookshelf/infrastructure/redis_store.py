"""
Redis document store connection and per-user collection operations.

Each document is a Redis hash whose field values are JSON-encoded, stored at
``{prefix}:users:{user_id}:{collection}:{doc_id}``. A set per collection
indexes the document ids. Batched writes are applied in a single MULTI/EXEC
pipeline so they land together.
"""

import os
import json
import uuid
import logging
import functools
from typing import Optional, Dict, Any, List, Tuple, Iterable

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import AuthenticationError, NoPermissionError, WatchError

from ..domain.errors import StoreUnavailableError, DocumentNotFoundError
from ..domain.models import now_utc

logger = logging.getLogger(__name__)

_UNAVAILABLE_ERRORS = (RedisConnectionError, RedisTimeoutError, AuthenticationError, NoPermissionError)


def server_timestamp() -> str:
    """Timestamp stamped by the store layer on create/update."""
    return now_utc().isoformat()


def translate_store_errors(func):
    """Surface network and permission failures as StoreUnavailableError."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except _UNAVAILABLE_ERRORS as e:
            logger.error(f"Store operation {func.__name__} failed: {e}")
            raise StoreUnavailableError(f"Store unavailable: {e}", operation=func.__name__) from e
    return wrapper


class RedisStoreConnection:
    """Redis connection manager for the document store."""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url or os.getenv('REDIS_URL', 'redis://localhost:6379/0')
        self._client = client

    def connect(self) -> redis.Redis:
        """Create the Redis client (connections are opened lazily by redis-py)."""
        if self._client is None:
            self._client = redis.from_url(self.redis_url, decode_responses=True)
            logger.info(f"Redis client configured for {self.redis_url}")
        return self._client

    async def disconnect(self):
        """Close the Redis client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Redis connection closed")

    @property
    def client(self) -> redis.Redis:
        """Get Redis client, connecting if needed."""
        if self._client is None:
            return self.connect()
        return self._client


def _encode(data: Dict[str, Any]) -> Dict[str, str]:
    return {key: json.dumps(value) for key, value in data.items() if key != 'id'}


def _decode(doc_id: str, raw: Dict[str, str]) -> Dict[str, Any]:
    record: Dict[str, Any] = {}
    for key, value in raw.items():
        try:
            record[key] = json.loads(value)
        except (TypeError, ValueError):
            record[key] = value
    record['id'] = doc_id
    return record


def _coerce_count(raw: Optional[str]) -> int:
    if raw is None:
        return 0
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


class DocumentStore:
    """Per-user document collections on top of Redis."""

    def __init__(self, connection: RedisStoreConnection, key_prefix: str = 'bookshelf',
                 max_counter_retries: int = 10):
        self.connection = connection
        self.key_prefix = key_prefix
        self.max_counter_retries = max_counter_retries

    @property
    def redis(self) -> redis.Redis:
        return self.connection.client

    def doc_key(self, user_id: str, collection: str, doc_id: str) -> str:
        return f"{self.key_prefix}:users:{user_id}:{collection}:{doc_id}"

    def index_key(self, user_id: str, collection: str) -> str:
        return f"{self.key_prefix}:users:{user_id}:{collection}:_ids"

    # ---------------------- Reads ----------------------

    @translate_store_errors
    async def get(self, user_id: str, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Get a document by id, or None."""
        raw = await self.redis.hgetall(self.doc_key(user_id, collection, doc_id))
        if not raw:
            return None
        return _decode(doc_id, raw)

    @translate_store_errors
    async def get_all(self, user_id: str, collection: str) -> List[Dict[str, Any]]:
        """Get every document in a collection (unordered)."""
        doc_ids = sorted(await self.redis.smembers(self.index_key(user_id, collection)))
        if not doc_ids:
            return []
        async with self.redis.pipeline(transaction=False) as pipe:
            for doc_id in doc_ids:
                pipe.hgetall(self.doc_key(user_id, collection, doc_id))
            rows = await pipe.execute()
        records = []
        for doc_id, raw in zip(doc_ids, rows):
            if raw:
                records.append(_decode(doc_id, raw))
            else:
                logger.warning(f"Index for {collection} lists missing document {doc_id}")
        return records

    @translate_store_errors
    async def exists(self, user_id: str, collection: str, doc_id: str) -> bool:
        return bool(await self.redis.exists(self.doc_key(user_id, collection, doc_id)))

    # ---------------------- Writes ----------------------

    @translate_store_errors
    async def create(self, user_id: str, collection: str, data: Dict[str, Any],
                     doc_id: Optional[str] = None) -> Dict[str, Any]:
        """Create a document, stamping ``created_at``/``updated_at``."""
        doc_id = doc_id or data.get('id') or uuid.uuid4().hex
        stamp = server_timestamp()
        record = {**data, 'created_at': stamp, 'updated_at': stamp}
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(self.doc_key(user_id, collection, doc_id))
            pipe.hset(self.doc_key(user_id, collection, doc_id), mapping=_encode(record))
            pipe.sadd(self.index_key(user_id, collection), doc_id)
            await pipe.execute()
        record['id'] = doc_id
        return record

    @translate_store_errors
    async def update(self, user_id: str, collection: str, doc_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge fields into an existing document, stamping ``updated_at``.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """
        key = self.doc_key(user_id, collection, doc_id)
        if not await self.redis.exists(key):
            raise DocumentNotFoundError(f"{collection}/{doc_id} not found", collection, doc_id)
        changes = {**data, 'updated_at': server_timestamp()}
        await self.redis.hset(key, mapping=_encode(changes))
        return changes

    @translate_store_errors
    async def delete(self, user_id: str, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is a no-op."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(self.doc_key(user_id, collection, doc_id))
            pipe.srem(self.index_key(user_id, collection), doc_id)
            await pipe.execute()

    def batch(self, user_id: str) -> 'WriteBatch':
        """Start an atomic batch of writes for one user."""
        return WriteBatch(self, user_id)

    @translate_store_errors
    async def adjust_counters(self, user_id: str, collection: str, deltas: Dict[str, int],
                              field: str = 'book_count') -> Dict[str, int]:
        """Apply signed deltas to a numeric field on many documents at once.

        Reads the current values under WATCH and writes ``max(0, current + delta)``
        in one MULTI/EXEC, retrying when another client touched a watched key in
        between. Documents that do not exist are skipped.

        Returns:
            Mapping of document id to the value written.
        """
        deltas = {doc_id: delta for doc_id, delta in deltas.items() if delta}
        if not deltas:
            return {}
        keys = {doc_id: self.doc_key(user_id, collection, doc_id) for doc_id in deltas}

        async with self.redis.pipeline(transaction=True) as pipe:
            for attempt in range(1, self.max_counter_retries + 1):
                try:
                    await pipe.watch(*keys.values())
                    written: Dict[str, int] = {}
                    for doc_id, key in keys.items():
                        if not await pipe.exists(key):
                            logger.warning(f"Skipping {field} change for missing {collection}/{doc_id}")
                            continue
                        current = _coerce_count(await pipe.hget(key, field))
                        written[doc_id] = max(0, current + deltas[doc_id])
                    if not written:
                        await pipe.unwatch()
                        return {}
                    pipe.multi()
                    stamp = json.dumps(server_timestamp())
                    for doc_id, value in written.items():
                        pipe.hset(keys[doc_id], mapping={field: json.dumps(value), 'updated_at': stamp})
                    await pipe.execute()
                    return written
                except WatchError:
                    logger.info(f"{collection} counters changed concurrently, retrying (attempt {attempt})")
                    continue
        raise StoreUnavailableError(
            f"Gave up adjusting {collection} counters after {self.max_counter_retries} conflicting attempts",
            operation='adjust_counters',
        )


class WriteBatch:
    """Collects set/update/delete operations and commits them together."""

    def __init__(self, store: DocumentStore, user_id: str):
        self.store = store
        self.user_id = user_id
        self._operations: List[Tuple[str, str, str, Optional[Dict[str, Any]]]] = []

    def __len__(self) -> int:
        return len(self._operations)

    def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> 'WriteBatch':
        """Replace a document entirely (creating it if needed)."""
        self._operations.append(('set', collection, doc_id, dict(data)))
        return self

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> 'WriteBatch':
        """Merge fields into an existing document."""
        self._operations.append(('update', collection, doc_id, dict(data)))
        return self

    def delete(self, collection: str, doc_id: str) -> 'WriteBatch':
        self._operations.append(('delete', collection, doc_id, None))
        return self

    def _update_targets(self) -> Iterable[Tuple[str, str]]:
        created = {(c, d) for op, c, d, _ in self._operations if op == 'set'}
        seen = set()
        for op, collection, doc_id, _ in self._operations:
            target = (collection, doc_id)
            if op == 'update' and target not in created and target not in seen:
                seen.add(target)
                yield target

    @translate_store_errors
    async def commit(self) -> int:
        """Apply every queued operation in one MULTI/EXEC.

        Update targets are checked first so a missing document fails the whole
        batch before anything is written.

        Returns:
            Number of operations applied.
        """
        if not self._operations:
            return 0
        store = self.store
        targets = list(self._update_targets())
        if targets:
            async with store.redis.pipeline(transaction=False) as pipe:
                for collection, doc_id in targets:
                    pipe.exists(store.doc_key(self.user_id, collection, doc_id))
                found = await pipe.execute()
            for (collection, doc_id), present in zip(targets, found):
                if not present:
                    raise DocumentNotFoundError(f"{collection}/{doc_id} not found", collection, doc_id)

        stamp = server_timestamp()
        async with store.redis.pipeline(transaction=True) as pipe:
            for op, collection, doc_id, data in self._operations:
                key = store.doc_key(self.user_id, collection, doc_id)
                index = store.index_key(self.user_id, collection)
                if op == 'set':
                    record = {'created_at': stamp, **(data or {}), 'updated_at': stamp}
                    pipe.delete(key)
                    pipe.hset(key, mapping=_encode(record))
                    pipe.sadd(index, doc_id)
                elif op == 'update':
                    pipe.hset(key, mapping=_encode({**(data or {}), 'updated_at': stamp}))
                else:
                    pipe.delete(key)
                    pipe.srem(index, doc_id)
            await pipe.execute()
        applied = len(self._operations)
        self._operations = []
        logger.debug(f"Committed batch of {applied} operations for user {self.user_id}")
        return applied
