# tests/test_pipeline.py
"""Orchestrator behaviour with fake engines."""

import asyncio
from typing import Optional

import httpx
import pytest

from conftest import make_settings
from core.exceptions import AllStagesFailed, EngineUnavailable, ExtractionFailed, PrivateAddressBlocked
from models.content import Candidate
from services.web2md.engines import Engine, EngineKind
from services.web2md.pipeline import Web2MdPipeline

TARGET = "https://example.com/article"
GOOD = "# Async Patterns\n\n" + "Structured concurrency keeps every spawned task owned by a parent scope. " * 8
WEAK = "# Async Patterns\n\nOnly a teaser paragraph survived."


class FakeEngine(Engine):
    def __init__(self, settings, kind: EngineKind, markdown: Optional[str] = None, error=None,
                 delay: float = 0.0, enabled: bool = True, timeout: float = 1.0):
        super().__init__(settings, fetcher=None)
        self.kind = kind
        self._markdown = markdown
        self._error = error
        self._delay = delay
        self._enabled = enabled
        self._timeout = timeout
        self.calls = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def timeout(self) -> float:
        return self._timeout

    async def try_extract(self, ctx) -> Candidate:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return Candidate(engine=self.kind.value, markdown=self._markdown, title="Async Patterns")


@pytest.fixture
def settings():
    return make_settings(STAGE_RETRIES=0)


# ----------------------------------------------------------------------
# Happy path
# ----------------------------------------------------------------------
async def test_first_passing_stage_wins(settings):
    native = FakeEngine(settings, EngineKind.NATIVE, error=ExtractionFailed("not markdown"))
    local = FakeEngine(settings, EngineKind.LOCAL, markdown=GOOD)
    jina = FakeEngine(settings, EngineKind.JINA, markdown=GOOD)

    result = await Web2MdPipeline([native, local, jina], settings).run(TARGET)

    assert result.engine == "local_heuristic"
    assert result.quality.passed
    assert result.token_estimate > 0
    assert jina.calls == 0
    assert [a.engine for a in result.attempts] == ["native_markdown", "local_heuristic"]
    assert result.attempts[0].error == "not markdown"
    assert result.attempts[1].passed


async def test_disabled_stages_are_recorded(settings):
    native = FakeEngine(settings, EngineKind.NATIVE, markdown=GOOD, enabled=False)
    local = FakeEngine(settings, EngineKind.LOCAL, markdown=GOOD)

    result = await Web2MdPipeline([native, local], settings).run(TARGET)

    assert native.calls == 0
    assert result.attempts[0].reason == "disabled_by_config"


async def test_third_stage_passes_after_two_weak_stages(settings):
    native = FakeEngine(settings, EngineKind.NATIVE, markdown=WEAK)
    local = FakeEngine(settings, EngineKind.LOCAL, markdown=WEAK)
    browser = FakeEngine(settings, EngineKind.BROWSER, markdown=GOOD)
    jina = FakeEngine(settings, EngineKind.JINA, markdown=GOOD)
    llm = FakeEngine(settings, EngineKind.LLM, markdown=GOOD)

    result = await Web2MdPipeline([native, local, browser, jina, llm], settings).run(TARGET)

    assert result.engine == "browser"
    assert result.quality.passed
    assert jina.calls == 0
    assert llm.calls == 0
    assert [a.passed for a in result.attempts] == [False, False, True]


# ----------------------------------------------------------------------
# Isolation
# ----------------------------------------------------------------------
async def test_unexpected_exceptions_do_not_stop_the_chain(settings):
    native = FakeEngine(settings, EngineKind.NATIVE, error=RuntimeError("boom"))
    local = FakeEngine(settings, EngineKind.LOCAL, markdown=GOOD)

    result = await Web2MdPipeline([native, local], settings).run(TARGET)

    assert result.engine == "local_heuristic"
    assert result.attempts[0].error == "boom"


async def test_stage_budget_is_enforced(settings):
    slow = FakeEngine(settings, EngineKind.BROWSER, markdown=GOOD, delay=1.0, timeout=0.05)
    jina = FakeEngine(settings, EngineKind.JINA, markdown=GOOD)

    result = await Web2MdPipeline([slow, jina], settings).run(TARGET)

    assert result.engine == "jina_reader"
    assert result.attempts[0].error.startswith("stage_timeout")


async def test_empty_markdown_is_not_a_candidate(settings):
    native = FakeEngine(settings, EngineKind.NATIVE, markdown="   \n")
    local = FakeEngine(settings, EngineKind.LOCAL, markdown=GOOD)

    result = await Web2MdPipeline([native, local], settings).run(TARGET)

    assert result.attempts[0].reason == "empty_markdown"
    assert result.engine == "local_heuristic"


# ----------------------------------------------------------------------
# Fallback
# ----------------------------------------------------------------------
async def test_low_quality_fallback_prefers_later_stage_class(settings):
    local = FakeEngine(settings, EngineKind.LOCAL, markdown=WEAK + " Some extra words here.")
    jina = FakeEngine(settings, EngineKind.JINA, markdown=WEAK)
    llm = FakeEngine(settings, EngineKind.LLM, markdown=WEAK)

    result = await Web2MdPipeline([local, jina, llm], settings).run(TARGET)

    assert result.engine == "jina_reader_low_quality"
    assert not result.quality.passed
    assert "markdown_too_short" in result.quality.reasons
    assert len(result.attempts) == 3


async def test_llm_output_is_never_a_fallback(settings):
    native = FakeEngine(settings, EngineKind.NATIVE, error=ExtractionFailed("no"))
    llm = FakeEngine(settings, EngineKind.LLM, markdown=WEAK)

    with pytest.raises(AllStagesFailed):
        await Web2MdPipeline([native, llm], settings).run(TARGET)


async def test_all_stages_failed_carries_attempts(settings):
    engines = [
        FakeEngine(settings, EngineKind.NATIVE, error=ExtractionFailed("not markdown")),
        FakeEngine(settings, EngineKind.LOCAL, error=ExtractionFailed("Origin returned HTTP 500")),
        FakeEngine(settings, EngineKind.BROWSER, markdown=GOOD, enabled=False),
        FakeEngine(settings, EngineKind.FIRECRAWL, error=EngineUnavailable("missing_firecrawl_api_key")),
    ]

    with pytest.raises(AllStagesFailed) as excinfo:
        await Web2MdPipeline(engines, settings).run(TARGET)

    error = excinfo.value
    assert len(error.attempts) == 4
    assert "browser:disabled_by_config" in error.message
    assert "firecrawl_scrape:missing_firecrawl_api_key" in error.message
    assert error.to_dict()["error"]["details"]["attempts"][0]["engine"] == "native_markdown"


# ----------------------------------------------------------------------
# Forced engine and target validation
# ----------------------------------------------------------------------
async def test_forced_engine_skips_the_gate():
    settings = make_settings(STAGE_RETRIES=0, FORCE_ENGINE="local")
    native = FakeEngine(settings, EngineKind.NATIVE, markdown=GOOD)
    local = FakeEngine(settings, EngineKind.LOCAL, markdown=WEAK)

    result = await Web2MdPipeline([native, local], settings).run(TARGET)

    assert native.calls == 0
    assert result.engine == "local_heuristic"
    assert not result.quality.passed


async def test_forced_llm_runs_local_first():
    settings = make_settings(STAGE_RETRIES=0, FORCE_ENGINE="llm")
    local = FakeEngine(settings, EngineKind.LOCAL, markdown=WEAK)
    llm = FakeEngine(settings, EngineKind.LLM, markdown=GOOD)

    result = await Web2MdPipeline([local, llm], settings).run(TARGET)

    assert local.calls == 1
    assert result.engine == "llm_distill"


async def test_private_targets_fail_before_any_stage(settings, make_fetcher, resolver):
    resolver.table["internal.example.com"] = ["10.0.0.1"]
    fetcher, _ = make_fetcher(lambda request: httpx.Response(200))
    native = FakeEngine(settings, EngineKind.NATIVE, markdown=GOOD)

    with pytest.raises(PrivateAddressBlocked):
        await Web2MdPipeline([native], settings, fetcher).run("https://internal.example.com/")
    assert native.calls == 0


def test_build_follows_reader_order(make_fetcher):
    settings = make_settings(READER_ORDER=["firecrawl", "jina_reader"])
    fetcher, _ = make_fetcher(lambda request: httpx.Response(200))

    pipeline = Web2MdPipeline.build(settings, fetcher, renderer=None)

    assert [engine.kind for engine in pipeline.engines] == [
        EngineKind.NATIVE,
        EngineKind.LOCAL,
        EngineKind.BROWSER,
        EngineKind.FIRECRAWL,
        EngineKind.JINA,
        EngineKind.LLM,
    ]
