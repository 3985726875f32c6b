# services/web2md/readers.py
"""
Third-party engines: hosted URL-to-markdown readers (Jina Reader, Firecrawl)
and LLM distillation through OpenRouter.
"""

import re
from typing import Any, Dict, List, Optional, Tuple

import httpx
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_none

from core.exceptions import EngineUnavailable, ExtractionFailed, FetchTimeout, NetworkError
from models.content import Candidate
from .engines import Engine, EngineKind, PipelineContext
from .markdown_utils import ensure_leading_title_heading, normalize_markdown, strip_markdown_syntax

JINA_ACCEPT = "text/markdown, text/plain;q=0.9, */*;q=0.8"
JINA_MAX_BYTES = 2 * 1024 * 1024
JINA_BLOCKING_WARNINGS = [
    re.compile(pattern, re.I)
    for pattern in (
        r"captcha",
        r"authorized to access this page",
        r"too many requests",
        r"rate limit",
        r"not yet fully loaded",
    )
]

LLM_SYSTEM_PROMPT = (
    "You convert web article content into clean markdown. Preserve facts, structure, "
    "links, and code. Do not add information. Output markdown only, no prose outside markdown."
)
LLM_SOURCE_LIMIT = 18000
LLM_DRAFT_LIMIT = 20000

_FENCED_REPLY = re.compile(r"^```(?:markdown|md)?\n([\s\S]*?)\n```$", re.I)


def _is_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", False))


def _retryable_failure(message: str) -> ExtractionFailed:
    error = ExtractionFailed(message)
    error.retryable = True
    return error


# ----------------------------------------------------------------------
# Jina Reader
# ----------------------------------------------------------------------
def build_jina_url(base_url: str, target_url: str) -> str:
    return f"{base_url.rstrip('/')}/{target_url}"


def sanitize_jina_markdown(raw: str) -> Tuple[str, List[str]]:
    """Drop the reader's preamble lines; return ``(markdown, warnings)``."""
    normalized = normalize_markdown(raw).strip()
    if not normalized:
        return "", []

    warnings = [
        match.group(1).strip()
        for match in re.finditer(r"^\s*warning:\s*(.+)$", normalized, re.I | re.M)
        if match.group(1).strip()
    ]

    body = normalized
    marker = re.compile(r"(?:^|\n)\s*markdown content:\s*", re.I)
    if marker.search(body):
        body = marker.split(body)[-1]

    kept = [
        line for line in body.split("\n")
        if not re.match(r"^\s*(url source|warning)\s*:", line, re.I)
    ]
    return normalize_markdown("\n".join(kept)), warnings


def has_blocking_warning(warnings: List[str]) -> bool:
    return any(pattern.search(warning) for warning in warnings for pattern in JINA_BLOCKING_WARNINGS)


class JinaReaderEngine(Engine):
    kind = EngineKind.JINA

    @property
    def enabled(self) -> bool:
        return self.settings.ENABLE_JINA

    @property
    def timeout(self) -> float:
        return self.settings.JINA_TIMEOUT

    def timeout_plan(self) -> List[float]:
        return [self.timeout, min(self.timeout * 2, 60.0)]

    @property
    def budget(self) -> float:
        return sum(self.timeout_plan()) + 5

    async def try_extract(self, ctx: PipelineContext) -> Candidate:
        reader_url = build_jina_url(self.settings.JINA_BASE_URL, ctx.target_url)
        headers = {"Accept": JINA_ACCEPT}
        if self.settings.JINA_API_KEY:
            headers["Authorization"] = f"Bearer {self.settings.JINA_API_KEY}"

        plan = self.timeout_plan()
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(len(plan)),
            wait=wait_none(),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        ):
            with attempt:
                timeout = plan[attempt.retry_state.attempt_number - 1]
                return await self._read(ctx, reader_url, headers, timeout)

    async def _read(
        self, ctx: PipelineContext, reader_url: str, headers: Dict[str, str], timeout: float
    ) -> Candidate:
        result = await self.fetcher.fetch_text(
            reader_url,
            headers=headers,
            timeout=timeout,
            max_bytes=JINA_MAX_BYTES,
            max_redirects=2,
        )
        if result.status >= 400:
            message = f"Jina request failed with {result.status}"
            if result.status in (408, 429) or 500 <= result.status <= 599:
                raise _retryable_failure(message)
            raise ExtractionFailed(message)

        markdown, warnings = sanitize_jina_markdown(result.body)
        if not markdown.strip():
            raise _retryable_failure("Jina returned empty markdown.")
        if has_blocking_warning(warnings):
            raise ExtractionFailed("jina_reported_blocked_or_unloaded_page")

        title = ctx.rough_title(markdown)
        markdown = ensure_leading_title_heading(markdown, title)
        base = self.settings.JINA_BASE_URL.rstrip("/")
        return Candidate(
            engine=self.kind.value,
            markdown=markdown,
            title=title,
            source_detail=f"{base};warnings={len(warnings)}" if warnings else base,
            http_status=result.status,
            content_type=result.content_type,
        )


# ----------------------------------------------------------------------
# Firecrawl
# ----------------------------------------------------------------------
class FirecrawlEngine(Engine):
    kind = EngineKind.FIRECRAWL

    @property
    def enabled(self) -> bool:
        return self.settings.ENABLE_FIRECRAWL

    @property
    def timeout(self) -> float:
        return self.settings.FIRECRAWL_TIMEOUT

    @property
    def request_timeout(self) -> float:
        return min(self.timeout + 15, 300.0)

    @property
    def budget(self) -> float:
        return self.request_timeout + 5

    def build_payload(self, ctx: PipelineContext) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "url": ctx.target_url,
            "formats": ["markdown"],
            "onlyMainContent": True,
            "removeBase64Images": True,
            "blockAds": True,
            "timeout": int(self.timeout * 1000),
            "waitFor": 0,
            "maxAge": 0,
            "proxy": self.settings.FIRECRAWL_PROXY,
        }
        if ctx.source_headers:
            payload["headers"] = dict(ctx.source_headers)
        return payload

    async def try_extract(self, ctx: PipelineContext) -> Candidate:
        api_key = self.settings.FIRECRAWL_API_KEY
        if not api_key:
            raise EngineUnavailable("missing_firecrawl_api_key")

        url = f"{self.settings.FIRECRAWL_API_BASE.rstrip('/')}/scrape"
        try:
            response = await self.fetcher.client.post(
                url,
                json=self.build_payload(ctx),
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=self.request_timeout,
            )
        except httpx.TimeoutException as exc:
            raise FetchTimeout(f"Firecrawl request timed out after {self.request_timeout:g}s.") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"Firecrawl request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = None
        data = data if isinstance(data, dict) else {}
        payload = data.get("data") or {}
        metadata = payload.get("metadata") or {}

        if data.get("success") is False or response.status_code >= 400:
            message = data.get("error") or data.get("message") or metadata.get("error") or "Unknown error"
            raise ExtractionFailed(
                f"Firecrawl scrape failed with HTTP {response.status_code}: {message}"
            )

        raw = (payload.get("markdown") or "").strip()
        if not raw:
            raise ExtractionFailed("Firecrawl response did not include markdown.")

        title = ctx.rough_title(raw)
        markdown = ensure_leading_title_heading(normalize_markdown(raw), title)
        detail = ["firecrawl:v2/scrape", f"proxy={self.settings.FIRECRAWL_PROXY}", "onlyMainContent=1"]
        if payload.get("warning"):
            detail.append("warning=present")
        return Candidate(
            engine=self.kind.value,
            markdown=markdown,
            title=title,
            source_detail=";".join(detail),
            http_status=metadata.get("statusCode") or response.status_code,
            content_type=response.headers.get("content-type", "").lower() or None,
        )


# ----------------------------------------------------------------------
# LLM distillation
# ----------------------------------------------------------------------
def clamp_text(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return f"{value[:limit]}\n\n[truncated]"


def unwrap_reply(raw: str) -> str:
    trimmed = (raw or "").strip()
    if not trimmed:
        return ""
    fenced = _FENCED_REPLY.match(trimmed)
    return normalize_markdown(fenced.group(1) if fenced else trimmed)


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part.get("text") or ""
            for part in content
            if isinstance(part, dict) and (part.get("type") or "text") == "text"
        )
    return ""


class LlmDistillEngine(Engine):
    """Refines the best draft so far; it never reads the page itself."""

    kind = EngineKind.LLM

    @property
    def enabled(self) -> bool:
        return self.settings.ENABLE_LLM

    @property
    def timeout(self) -> float:
        return self.settings.LLM_TIMEOUT

    @property
    def budget(self) -> float:
        return self.timeout + 5

    def build_messages(self, target_url: str, title: Optional[str], source_text: str, draft: str) -> List[Dict[str, str]]:
        lines = [f"URL: {target_url}"]
        if title:
            lines.append(f"Title: {title}")
        lines.extend([
            "",
            "SOURCE_TEXT:",
            clamp_text(source_text, LLM_SOURCE_LIMIT),
            "",
            "DRAFT_MARKDOWN:",
            clamp_text(draft, LLM_DRAFT_LIMIT),
            "",
            "Return cleaned markdown only.",
        ])
        return [
            {"role": "system", "content": LLM_SYSTEM_PROMPT},
            {"role": "user", "content": "\n".join(lines)},
        ]

    async def try_extract(self, ctx: PipelineContext) -> Candidate:
        api_key = self.settings.OPENROUTER_API_KEY
        if not api_key:
            raise EngineUnavailable("missing_openrouter_api_key")

        draft = ctx.best_draft()
        if ctx.extraction is None and draft is None:
            raise EngineUnavailable("missing_source_material")

        draft_markdown = draft.markdown if draft else ""
        source_text = ctx.extraction.text if ctx.extraction else strip_markdown_syntax(draft_markdown)
        title = (ctx.extraction.title if ctx.extraction else None) or (draft.title if draft else None) or "Untitled"
        model = ctx.model_override or self.settings.LLM_MODEL

        url = f"{self.settings.OPENROUTER_BASE_URL.rstrip('/')}/chat/completions"
        body = {
            "model": model,
            "temperature": 0,
            "messages": self.build_messages(ctx.target_url, title, source_text, draft_markdown),
        }
        try:
            response = await self.fetcher.client.post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {api_key}", "X-Title": self.settings.PROJECT_NAME},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise FetchTimeout(f"LLM request timed out after {self.timeout:g}s.") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"LLM request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = None
        data = data if isinstance(data, dict) else {}

        if response.status_code >= 400:
            error = data.get("error") if isinstance(data.get("error"), dict) else {}
            raise ExtractionFailed(
                error.get("message") or f"LLM request failed with {response.status_code}"
            )

        choices = data.get("choices") or [{}]
        content = _message_text(((choices[0] or {}).get("message") or {}).get("content"))
        markdown = unwrap_reply(content)
        if not markdown:
            raise ExtractionFailed("LLM returned empty markdown.")

        usage = data.get("usage") or {}
        logger.debug(f"LLM distillation of {ctx.target_url} used {usage.get('total_tokens')} tokens")
        markdown = ensure_leading_title_heading(markdown, title)
        return Candidate(
            engine=self.kind.value,
            markdown=markdown,
            title=title,
            source_detail=f"openrouter:model={model}",
            token_estimate=usage.get("total_tokens"),
        )
