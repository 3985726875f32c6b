# models/content.py
"""
Transient models produced while turning a page into markdown: the canonical
URL key, the extracted main content, the quality report and the per-stage
candidates/attempts that the orchestrator collects.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from .base import CamelModel


class CanonicalUrl(CamelModel):
    normalized_url: str
    display_url: str
    url_hash: str = Field(pattern=r"^[0-9a-f]{64}$")


class StructureStats(CamelModel):
    link_count: int = 0
    list_item_count: int = 0
    code_block_count: int = 0
    table_count: int = 0


class ExtractedContent(CamelModel):
    title: str
    html: str
    text: str
    excerpt: Optional[str] = None
    structure: StructureStats = Field(default_factory=StructureStats)


class QualityReport(CamelModel):
    """Outcome of the quality gate.  Never persisted on its own."""

    passed: bool
    score: float
    coverage: float
    reasons: List[str] = Field(default_factory=list)


class Candidate(CamelModel):
    engine: str
    markdown: str
    title: str
    source_detail: Optional[str] = None
    http_status: Optional[int] = None
    content_type: Optional[str] = None
    token_estimate: Optional[int] = None
    quality: Optional[QualityReport] = None

    @property
    def is_empty(self) -> bool:
        return not self.markdown.strip()


class StageAttempt(CamelModel):
    engine: str
    passed: bool = False
    score: Optional[float] = None
    coverage: Optional[float] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = None

    @classmethod
    def from_candidate(cls, candidate: Candidate, duration_ms: int) -> "StageAttempt":
        quality = candidate.quality
        return cls(
            engine=candidate.engine,
            passed=bool(quality and quality.passed),
            score=quality.score if quality else None,
            coverage=quality.coverage if quality else None,
            reason=",".join(quality.reasons) if quality and quality.reasons else None,
            duration_ms=duration_ms,
        )

    def summary(self) -> str:
        return f"{self.engine}:{self.error or self.reason or 'failed'}"


class PipelineResult(CamelModel):
    title: str
    markdown: str
    engine: str
    source_detail: Optional[str] = None
    http_status: Optional[int] = None
    content_type: Optional[str] = None
    token_estimate: Optional[int] = None
    quality: QualityReport
    attempts: List[StageAttempt] = Field(default_factory=list)
