# services/cache/snapshot_service.py
"""
Cache-aware resolution of a URL to its markdown snapshot.

``normal`` requests are served from the store when a snapshot exists.
Otherwise (or on ``revalidate``) the pipeline runs, but at most once per
URL at a time: concurrent callers share one task.  A failed revalidation
falls back to the snapshot already stored.
"""

import asyncio
import re
from datetime import timedelta
from typing import Dict, Optional, Tuple

from loguru import logger
from prometheus_client import Counter

from core.config import Settings
from core.exceptions import InvalidUrl, PersistenceError, Web2MdException
from models.content import CanonicalUrl, PipelineResult
from models.snapshot import (
    ResolveMode,
    ResolveResult,
    Snapshot,
    SnapshotVersion,
    VersionHistory,
    VersionTrigger,
    utcnow,
)
from services.web2md.canonicalize import canonicalize_url
from services.web2md.markdown_utils import hash_markdown
from services.web2md.pipeline import Web2MdPipeline
from .snapshot_store import SnapshotStore

URL_HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")
DEFAULT_VERSION_LIMIT = 20
MAX_VERSION_LIMIT = 50

RESOLVE_OUTCOMES = Counter(
    "web2md_resolve_total", "Snapshot resolutions by outcome", ["outcome"]
)


class SnapshotService:
    def __init__(self, pipeline: Web2MdPipeline, store: SnapshotStore, settings: Settings):
        self.pipeline = pipeline
        self.store = store
        self.settings = settings
        self._in_flight: Dict[str, asyncio.Task] = {}

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def resolve(
        self,
        raw_url: str,
        mode: ResolveMode = ResolveMode.NORMAL,
        trigger: Optional[VersionTrigger] = None,
        model_override: Optional[str] = None,
    ) -> ResolveResult:
        canonical = canonicalize_url(raw_url)
        cached = await self.store.get_snapshot(canonical.url_hash)

        if cached is not None and mode is ResolveMode.NORMAL:
            RESOLVE_OUTCOMES.labels(outcome="cache_hit").inc()
            return ResolveResult(snapshot=cached, from_cache=True)

        task = self._in_flight.get(canonical.url_hash)
        if task is None:
            task = asyncio.create_task(
                self._generate(canonical, self._version_trigger(mode, trigger), model_override)
            )
            self._in_flight[canonical.url_hash] = task
            task.add_done_callback(lambda done, key=canonical.url_hash: self._release(key, done))
        else:
            logger.debug(f"Joining in-flight generation for {canonical.normalized_url}")

        try:
            # shielded so one caller going away does not cancel the shared work
            snapshot, generated = await asyncio.shield(task)
        except PersistenceError:
            RESOLVE_OUTCOMES.labels(outcome="error").inc()
            raise
        except Web2MdException as exc:
            if cached is None:
                RESOLVE_OUTCOMES.labels(outcome="error").inc()
                raise
            logger.warning(
                f"Regeneration of {canonical.normalized_url} failed, serving cached "
                f"version {cached.version}: {exc.message}"
            )
            RESOLVE_OUTCOMES.labels(outcome="fallback_to_cache").inc()
            return ResolveResult(
                snapshot=cached,
                from_cache=True,
                fallback_to_cache=True,
                warning=f"Revalidation failed; returning cached version {cached.version}. {exc.message}",
            )

        if not generated:
            RESOLVE_OUTCOMES.labels(outcome="cache_hit").inc()
            return ResolveResult(snapshot=snapshot, from_cache=True)
        RESOLVE_OUTCOMES.labels(outcome="generated").inc()
        return ResolveResult(snapshot=snapshot, from_cache=False)

    async def get_cached(self, raw_url: str) -> Optional[Snapshot]:
        canonical = canonicalize_url(raw_url)
        return await self.store.get_snapshot(canonical.url_hash)

    async def list_versions(self, url_hash: str, limit: int = DEFAULT_VERSION_LIMIT) -> VersionHistory:
        url_hash = (url_hash or "").strip().lower()
        if not URL_HASH_PATTERN.match(url_hash):
            raise InvalidUrl("urlHash must be a 64 character hex sha256 digest.")
        limit = max(1, min(limit, MAX_VERSION_LIMIT))
        versions = await self.store.list_versions(url_hash, limit)
        return VersionHistory(url_hash=url_hash, versions=[item.summary() for item in versions])

    async def aclose(self) -> None:
        pending = list(self._in_flight.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @staticmethod
    def _version_trigger(mode: ResolveMode, trigger: Optional[VersionTrigger]) -> VersionTrigger:
        if mode is ResolveMode.NORMAL:
            return VersionTrigger.INITIAL
        return VersionTrigger.REDO if trigger is VersionTrigger.REDO else VersionTrigger.REVALIDATE

    def _release(self, url_hash: str, task: asyncio.Task) -> None:
        if self._in_flight.get(url_hash) is task:
            del self._in_flight[url_hash]
        # mark the error as retrieved when every waiter has gone away
        if not task.cancelled():
            task.exception()

    async def _generate(
        self,
        canonical: CanonicalUrl,
        trigger: VersionTrigger,
        model_override: Optional[str],
    ) -> Tuple[Snapshot, bool]:
        """Return the stored snapshot and whether this call generated it."""
        if trigger is VersionTrigger.INITIAL:
            # another generation may have finished while the caller's cache read was pending
            existing = await self.store.get_snapshot(canonical.url_hash)
            if existing is not None:
                logger.debug(f"Snapshot for {canonical.normalized_url} appeared meanwhile; reusing it")
                return existing, False

        logger.info(f"Generating snapshot for {canonical.normalized_url} (trigger={trigger.value})")
        result = await self.pipeline.run(canonical.normalized_url, model_override=model_override)

        current = await self.store.get_snapshot(canonical.url_hash)
        version = (current.version if current else 0) + 1
        snapshot, record = self._build_revision(canonical, result, version, trigger)
        await self.store.save_revision(snapshot, record)

        logger.info(
            f"Stored version {version} of {canonical.normalized_url} from {result.engine} "
            f"(score {result.quality.score})"
        )
        return snapshot, True

    def _build_revision(
        self,
        canonical: CanonicalUrl,
        result: PipelineResult,
        version: int,
        trigger: VersionTrigger,
    ):
        now = utcnow()
        markdown_hash = hash_markdown(result.markdown)
        last_error = None
        if not result.quality.passed:
            last_error = ",".join(result.quality.reasons) or "low_quality"

        snapshot = Snapshot(
            url_hash=canonical.url_hash,
            normalized_url=canonical.normalized_url,
            display_url=canonical.display_url,
            title=result.title,
            markdown=result.markdown,
            markdown_hash=markdown_hash,
            source_engine=result.engine,
            source_detail=result.source_detail,
            http_status=result.http_status,
            content_type=result.content_type,
            fetched_at=now,
            stale_at=now + timedelta(days=self.settings.CACHE_TTL_DAYS),
            version=version,
            token_estimate=result.token_estimate,
            last_error=last_error,
        )
        record = SnapshotVersion(
            snapshot_ref=canonical.url_hash,
            url_hash=canonical.url_hash,
            version=version,
            normalized_url=canonical.normalized_url,
            markdown=result.markdown,
            markdown_hash=markdown_hash,
            source_engine=result.engine,
            trigger=trigger,
            created_at=now,
            metadata={
                "attempts": [attempt.to_wire() for attempt in result.attempts],
                "quality": result.quality.to_wire(),
            },
        )
        return snapshot, record
