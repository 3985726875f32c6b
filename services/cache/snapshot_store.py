# services/cache/snapshot_store.py
"""
Snapshot persistence.

One snapshot per canonical URL hash plus an append-only list of versions.
``InMemorySnapshotStore`` is the default (and what the tests use);
``RedisSnapshotStore`` is selected when ``REDIS_URL`` is configured.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from loguru import logger
from redis.asyncio import Redis
from redis.exceptions import RedisError

from core.exceptions import PersistenceError
from models.snapshot import Snapshot, SnapshotVersion


class SnapshotStore(ABC):
    @abstractmethod
    async def get_snapshot(self, url_hash: str) -> Optional[Snapshot]:
        ...

    @abstractmethod
    async def upsert_snapshot(self, snapshot: Snapshot) -> None:
        ...

    @abstractmethod
    async def append_version(self, version: SnapshotVersion) -> None:
        ...

    @abstractmethod
    async def list_versions(self, url_hash: str, limit: int) -> List[SnapshotVersion]:
        """Newest first."""

    async def save_revision(self, snapshot: Snapshot, version: SnapshotVersion) -> None:
        """Write the snapshot and its history record together."""
        await self.upsert_snapshot(snapshot)
        await self.append_version(version)

    async def close(self) -> None:
        return None


class InMemorySnapshotStore(SnapshotStore):
    def __init__(self):
        self._snapshots: Dict[str, Snapshot] = {}
        self._versions: Dict[str, List[SnapshotVersion]] = {}
        self._lock = asyncio.Lock()

    async def get_snapshot(self, url_hash: str) -> Optional[Snapshot]:
        async with self._lock:
            return self._snapshots.get(url_hash)

    async def upsert_snapshot(self, snapshot: Snapshot) -> None:
        async with self._lock:
            self._snapshots[snapshot.url_hash] = snapshot

    async def append_version(self, version: SnapshotVersion) -> None:
        async with self._lock:
            self._versions.setdefault(version.url_hash, []).append(version)

    async def save_revision(self, snapshot: Snapshot, version: SnapshotVersion) -> None:
        async with self._lock:
            self._snapshots[snapshot.url_hash] = snapshot
            self._versions.setdefault(version.url_hash, []).append(version)

    async def list_versions(self, url_hash: str, limit: int) -> List[SnapshotVersion]:
        async with self._lock:
            versions = list(self._versions.get(url_hash, []))
        versions.sort(key=lambda item: item.version, reverse=True)
        return versions[:limit]


class RedisSnapshotStore(SnapshotStore):
    """
    Redis layout::

        <prefix>:snapshot:<url_hash>   JSON snapshot
        <prefix>:versions:<url_hash>   list of JSON versions, newest at the head
    """

    def __init__(self, redis_url: str, prefix: str = "web2md", client: Optional[Redis] = None):
        self._redis = client or Redis.from_url(redis_url, decode_responses=True)
        self._prefix = prefix

    def _snapshot_key(self, url_hash: str) -> str:
        return f"{self._prefix}:snapshot:{url_hash}"

    def _versions_key(self, url_hash: str) -> str:
        return f"{self._prefix}:versions:{url_hash}"

    @staticmethod
    def _dump(model) -> str:
        return model.model_dump_json(by_alias=True)

    async def get_snapshot(self, url_hash: str) -> Optional[Snapshot]:
        try:
            raw = await self._redis.get(self._snapshot_key(url_hash))
        except RedisError as exc:
            raise PersistenceError(f"Failed to read snapshot: {exc}") from exc
        return Snapshot.model_validate_json(raw) if raw else None

    async def upsert_snapshot(self, snapshot: Snapshot) -> None:
        try:
            await self._redis.set(self._snapshot_key(snapshot.url_hash), self._dump(snapshot))
        except RedisError as exc:
            raise PersistenceError(f"Failed to write snapshot: {exc}") from exc

    async def append_version(self, version: SnapshotVersion) -> None:
        try:
            await self._redis.lpush(self._versions_key(version.url_hash), self._dump(version))
        except RedisError as exc:
            raise PersistenceError(f"Failed to append snapshot version: {exc}") from exc

    async def save_revision(self, snapshot: Snapshot, version: SnapshotVersion) -> None:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(self._snapshot_key(snapshot.url_hash), self._dump(snapshot))
                pipe.lpush(self._versions_key(version.url_hash), self._dump(version))
                await pipe.execute()
        except RedisError as exc:
            raise PersistenceError(f"Failed to save snapshot revision: {exc}") from exc

    async def list_versions(self, url_hash: str, limit: int) -> List[SnapshotVersion]:
        try:
            raw_items = await self._redis.lrange(self._versions_key(url_hash), 0, limit - 1)
        except RedisError as exc:
            raise PersistenceError(f"Failed to list snapshot versions: {exc}") from exc
        return [SnapshotVersion.model_validate_json(raw) for raw in raw_items]

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except RedisError as exc:
            logger.warning(f"Error closing Redis connection: {exc}")


def create_snapshot_store(redis_url: Optional[str]) -> SnapshotStore:
    if redis_url:
        logger.info("Using Redis snapshot store")
        return RedisSnapshotStore(redis_url)
    logger.info("REDIS_URL not set; snapshots are kept in memory")
    return InMemorySnapshotStore()
