# tests/conftest.py
"""
Shared fixtures.

Nothing here touches the real network: hostnames resolve through a fake
resolver and HTTP goes through ``httpx.MockTransport``.
"""

from pathlib import Path
from typing import Callable, Dict, List

import httpx
import pytest
from tenacity import wait_none

from core.config import Settings
from services.web2md.host_headers import clear_host_rules_cache
from services.web2md.safe_fetch import SafeFetcher

PUBLIC_IP = "93.184.216.34"


def make_settings(**overrides) -> Settings:
    """Settings isolated from the developer's environment and ``.env``."""
    values = dict(
        HOST_HEADERS_PATH=Path("/nonexistent/host_headers.yaml"),
        ENABLE_BROWSER=False,
        STAGE_RETRIES=0,
        JINA_API_KEY=None,
        FIRECRAWL_API_KEY=None,
        OPENROUTER_API_KEY=None,
        REDIS_URL=None,
        FORCE_ENGINE=None,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeResolver:
    """Maps hostnames to addresses and remembers every lookup."""

    def __init__(self, table: Dict[str, List[str]] = None, default: str = PUBLIC_IP):
        self.table = table or {}
        self.default = default
        self.calls: List[str] = []

    async def __call__(self, host: str) -> List[str]:
        self.calls.append(host)
        return self.table.get(host, [self.default])


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps the requests it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture(autouse=True)
def _fresh_host_rules():
    clear_host_rules_cache()
    yield
    clear_host_rules_cache()


@pytest.fixture
def make_fetcher(resolver):
    """Build a ``SafeFetcher`` over a recording mock transport."""
    def _make(handler, **kwargs):
        transport = RecordingTransport(handler)
        client = httpx.AsyncClient(transport=transport)
        fetcher = SafeFetcher(client=client, resolver=resolver, retry_wait=wait_none(), **kwargs)
        return fetcher, transport

    return _make
