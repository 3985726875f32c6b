# services/web2md/engines.py
"""
Extraction engines.

Every engine implements ``try_extract(ctx) -> Candidate`` and raises a
``Web2MdException`` when it cannot produce one.  The orchestrator owns the
order, the timeouts and the quality gate; engines only turn a URL into
markdown.  The third-party reader and LLM engines live in ``readers.py``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, List, Optional

from core.config import Settings
from core.exceptions import EngineUnavailable, ExtractionFailed
from models.content import Candidate, ExtractedContent, QualityReport
from .browser import BrowserRenderer
from .converter import html_to_markdown
from .extractor import extract_main_content
from .markdown_utils import (
    derive_title_from_markdown,
    ensure_leading_title_heading,
    estimate_tokens,
    looks_like_markdown,
    normalize_markdown,
    strip_markdown_syntax,
)
from .quality_gate import evaluate_markdown_quality
from .request_headers import MARKDOWN_ACCEPT, build_page_headers
from .safe_fetch import FetchResult, SafeFetcher, is_markdown_content_type, looks_like_html


class StageClass(IntEnum):
    """Fallback priority; higher wins when no candidate passes the gate."""
    NATIVE = 0
    LOCAL = 1
    BROWSER = 2
    EXTERNAL = 3
    LLM = 4


class EngineKind(str, Enum):
    NATIVE = "native_markdown"
    LOCAL = "local_heuristic"
    BROWSER = "browser"
    JINA = "jina_reader"
    FIRECRAWL = "firecrawl_scrape"
    LLM = "llm_distill"

    @property
    def stage_class(self) -> StageClass:
        return _STAGE_CLASSES[self]


_STAGE_CLASSES = {
    EngineKind.NATIVE: StageClass.NATIVE,
    EngineKind.LOCAL: StageClass.LOCAL,
    EngineKind.BROWSER: StageClass.BROWSER,
    EngineKind.JINA: StageClass.EXTERNAL,
    EngineKind.FIRECRAWL: StageClass.EXTERNAL,
    EngineKind.LLM: StageClass.LLM,
}

ENGINE_ALIASES = {
    "native": EngineKind.NATIVE,
    "local": EngineKind.LOCAL,
    "browser": EngineKind.BROWSER,
    "playwright": EngineKind.BROWSER,
    "jina": EngineKind.JINA,
    "firecrawl": EngineKind.FIRECRAWL,
    "llm": EngineKind.LLM,
    "openrouter": EngineKind.LLM,
}


def parse_engine_kind(raw: Optional[str]) -> Optional[EngineKind]:
    value = (raw or "").strip().lower()
    if not value:
        return None
    if value in ENGINE_ALIASES:
        return ENGINE_ALIASES[value]
    try:
        return EngineKind(value)
    except ValueError:
        return None


@dataclass
class PipelineContext:
    """State shared by the stages of one pipeline run."""

    target_url: str
    source_headers: Dict[str, str]
    model_override: Optional[str] = None
    # HTML that the native stage already downloaded; the local stage reuses it
    prefetched: Optional[FetchResult] = None
    # source signals for the quality gate
    extraction: Optional[ExtractedContent] = None
    candidates: List[Candidate] = field(default_factory=list)

    def evaluate(self, markdown: str) -> QualityReport:
        extraction = self.extraction
        return evaluate_markdown_quality(
            markdown,
            source_text=extraction.text if extraction else None,
            source_title=extraction.title if extraction else None,
            structure=extraction.structure if extraction else None,
        )

    def best_draft(self) -> Optional[Candidate]:
        drafts = [candidate for candidate in self.candidates if not candidate.is_empty]
        if not drafts:
            return None
        return max(drafts, key=lambda candidate: candidate.quality.score if candidate.quality else 0.0)

    def rough_title(self, markdown: str) -> str:
        if self.extraction and self.extraction.title and self.extraction.title != "Untitled":
            return self.extraction.title
        draft = self.best_draft()
        if draft and draft.title and draft.title != "Untitled":
            return draft.title
        return derive_title_from_markdown(markdown) or "Untitled"


class Engine(ABC):
    kind: EngineKind

    def __init__(self, settings: Settings, fetcher: SafeFetcher):
        self.settings = settings
        self.fetcher = fetcher

    @property
    @abstractmethod
    def enabled(self) -> bool:
        ...

    @property
    @abstractmethod
    def timeout(self) -> float:
        ...

    @property
    def budget(self) -> float:
        """Wall-clock ceiling for the whole stage, retries included."""
        return self.timeout * (self.settings.STAGE_RETRIES + 1)

    @abstractmethod
    async def try_extract(self, ctx: PipelineContext) -> Candidate:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.kind.value}>"


# ----------------------------------------------------------------------
# Stage 1 – ask the origin for markdown directly
# ----------------------------------------------------------------------
class NativeMarkdownEngine(Engine):
    kind = EngineKind.NATIVE

    @property
    def enabled(self) -> bool:
        return self.settings.ENABLE_NATIVE

    @property
    def timeout(self) -> float:
        return self.settings.NATIVE_TIMEOUT

    async def try_extract(self, ctx: PipelineContext) -> Candidate:
        result = await self.fetcher.fetch_text(
            ctx.target_url,
            headers={**ctx.source_headers, "Accept": MARKDOWN_ACCEPT},
            timeout=self.timeout,
            retries=self.settings.STAGE_RETRIES,
        )
        if result.status >= 400:
            raise ExtractionFailed(f"Origin returned HTTP {result.status}")

        if looks_like_html(result.content_type, result.body):
            ctx.prefetched = result
            raise ExtractionFailed("Origin does not serve markdown for this URL.")
        if not is_markdown_content_type(result.content_type) or not looks_like_markdown(result.body):
            raise ExtractionFailed(
                f"Response is not markdown (content type {result.content_type or 'unknown'})."
            )

        base = normalize_markdown(result.body)
        title = derive_title_from_markdown(base) or "Untitled"
        markdown = ensure_leading_title_heading(base, title)
        return Candidate(
            engine=self.kind.value,
            markdown=markdown,
            title=title,
            source_detail="native_markdown_response",
            http_status=result.status,
            content_type=result.content_type,
            token_estimate=estimate_tokens(markdown),
        )


# ----------------------------------------------------------------------
# Stage 2 – in-process fetch, extract, convert
# ----------------------------------------------------------------------
class LocalHeuristicEngine(Engine):
    kind = EngineKind.LOCAL

    @property
    def enabled(self) -> bool:
        return self.settings.ENABLE_LOCAL

    @property
    def timeout(self) -> float:
        return self.settings.LOCAL_TIMEOUT

    async def try_extract(self, ctx: PipelineContext) -> Candidate:
        result = ctx.prefetched
        if result is None:
            result = await self.fetcher.fetch_text(
                ctx.target_url,
                headers=build_page_headers(ctx.target_url, self.settings),
                timeout=self.timeout,
                retries=self.settings.STAGE_RETRIES,
            )

        if result.status >= 400:
            raise ExtractionFailed(f"Origin returned HTTP {result.status}")

        if is_markdown_content_type(result.content_type) and not looks_like_html(
            result.content_type, result.body
        ):
            return self._from_markdown_body(result)

        if not looks_like_html(result.content_type, result.body):
            raise ExtractionFailed(
                f"Unsupported content type from origin: {result.content_type or 'unknown'}"
            )

        extraction = extract_main_content(result.body, result.final_url)
        ctx.extraction = extraction
        markdown = ensure_leading_title_heading(
            normalize_markdown(html_to_markdown(extraction.html, extraction.title)),
            extraction.title,
        )
        return Candidate(
            engine=self.kind.value,
            markdown=markdown,
            title=extraction.title,
            source_detail="readability+bs4",
            http_status=result.status,
            content_type=result.content_type,
            token_estimate=estimate_tokens(markdown),
        )

    def _from_markdown_body(self, result: FetchResult) -> Candidate:
        base = normalize_markdown(result.body)
        title = derive_title_from_markdown(base) or "Untitled"
        markdown = ensure_leading_title_heading(base, title)
        quality = evaluate_markdown_quality(markdown, source_text=strip_markdown_syntax(markdown))
        return Candidate(
            engine=self.kind.value,
            markdown=markdown,
            title=title,
            source_detail="native_markdown_response",
            http_status=result.status,
            content_type=result.content_type,
            token_estimate=estimate_tokens(markdown),
            quality=quality,
        )


# ----------------------------------------------------------------------
# Stage 3 – headless browser render
# ----------------------------------------------------------------------
class BrowserEngine(Engine):
    kind = EngineKind.BROWSER

    def __init__(self, settings: Settings, fetcher: SafeFetcher, renderer: Optional[BrowserRenderer]):
        super().__init__(settings, fetcher)
        self.renderer = renderer

    @property
    def enabled(self) -> bool:
        return self.settings.ENABLE_BROWSER

    @property
    def timeout(self) -> float:
        return self.settings.BROWSER_TIMEOUT

    @property
    def budget(self) -> float:
        return self.timeout + 5

    async def try_extract(self, ctx: PipelineContext) -> Candidate:
        if self.renderer is None or not self.renderer.capability.available:
            reason = self.renderer.capability.reason if self.renderer else "not_configured"
            raise EngineUnavailable(f"browser_unavailable: {reason}")

        page = await self.renderer.render(ctx.target_url, ctx.source_headers, self.timeout)
        if page.status is not None and page.status >= 400:
            raise ExtractionFailed(f"Origin returned HTTP {page.status}")

        extraction = extract_main_content(page.html, page.final_url)
        # the rendered DOM is the richer source when the static HTML was a shell
        if ctx.extraction is None or len(extraction.text) > len(ctx.extraction.text):
            ctx.extraction = extraction

        markdown = ensure_leading_title_heading(
            normalize_markdown(html_to_markdown(extraction.html, extraction.title)),
            extraction.title,
        )
        return Candidate(
            engine=self.kind.value,
            markdown=markdown,
            title=extraction.title,
            source_detail="playwright:chromium",
            http_status=page.status,
            content_type="text/html",
            token_estimate=estimate_tokens(markdown),
        )
