# core/container.py
"""
Long-lived service objects, built once in the FastAPI lifespan and stored on
``app.state.services``.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
from loguru import logger

from core.config import Settings
from services.cache.snapshot_service import SnapshotService
from services.cache.snapshot_store import SnapshotStore, create_snapshot_store
from services.ratelimit.rate_limiter import RateLimiter
from services.web2md.browser import BrowserRenderer
from services.web2md.pipeline import Web2MdPipeline
from services.web2md.safe_fetch import SafeFetcher


@dataclass
class ServiceContainer:
    settings: Settings
    fetcher: SafeFetcher
    pipeline: Web2MdPipeline
    store: SnapshotStore
    snapshots: SnapshotService
    limiter: RateLimiter
    renderer: Optional[BrowserRenderer] = None
    client: Optional[httpx.AsyncClient] = None

    @classmethod
    async def create(cls, settings: Settings) -> "ServiceContainer":
        client = httpx.AsyncClient(
            follow_redirects=False,
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
        )
        fetcher = SafeFetcher(
            client=client,
            timeout=settings.NATIVE_TIMEOUT,
            max_bytes=settings.FETCH_MAX_BYTES,
            max_redirects=settings.FETCH_MAX_REDIRECTS,
        )

        renderer = None
        if settings.ENABLE_BROWSER:
            renderer = BrowserRenderer(fetcher, max_pages=settings.BROWSER_MAX_PAGES)
            await renderer.start()

        pipeline = Web2MdPipeline.build(settings, fetcher, renderer)
        store = create_snapshot_store(settings.REDIS_URL)
        logger.info(
            "Pipeline stages: " + ", ".join(
                f"{engine.kind.value}{'' if engine.enabled else ' (disabled)'}"
                for engine in pipeline.engines
            )
        )
        return cls(
            settings=settings,
            fetcher=fetcher,
            pipeline=pipeline,
            store=store,
            snapshots=SnapshotService(pipeline, store, settings),
            limiter=RateLimiter(settings),
            renderer=renderer,
            client=client,
        )

    async def aclose(self) -> None:
        await self.snapshots.aclose()
        if self.renderer is not None:
            await self.renderer.close()
        await self.store.close()
        if self.client is not None:
            await self.client.aclose()
        await self.fetcher.aclose()
