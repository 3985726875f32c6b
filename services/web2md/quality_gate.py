# services/web2md/quality_gate.py
"""
Heuristic quality scoring for markdown candidates.

``evaluate_markdown_quality`` is a pure function: the same inputs always give
the same report.  It compares the candidate against whatever is known about
the source page (plain text, title, structure counts) and flags pages that
are really CAPTCHA/block screens or mis-extracted chart scripts.
"""

import re
from typing import Optional, Set

from models.content import QualityReport, StructureStats
from .markdown_utils import strip_markdown_syntax

NOISE_PHRASES = (
    "enable javascript",
    "cookies",
    "accept all",
    "sign in",
    "subscribe",
    "advertisement",
)

HARD_BLOCK_PATTERNS = [
    re.compile(pattern, re.I)
    for pattern in (
        r"captcha",
        r"verify(?:ing)?\s+(?:that\s+)?you(?:\s+are)?\s+human",
        r"access denied",
        r"too many requests",
        r"rate limit(?:ed)?(?:\s+your\s+ip)?",
        r"we had to rate limit your ip",
        r"temporarily blocked",
        r"attention required",
        r"authorized to access this page",
        r"this page maybe not yet fully loaded",
    )
]

PASS_THRESHOLD = 0.62
MIN_WORDS = 45
MIN_PLAIN_CHARS = 260
MIN_COVERAGE = 0.28
MIN_TITLE_OVERLAP = 0.3
BLOCKED_SCORE_CAP = 0.2

WEIGHTS = {
    "non_empty": 0.28,
    "coverage": 0.24,
    "title": 0.16,
    "lists": 0.11,
    "code": 0.10,
    "tables": 0.08,
    "low_noise": 0.03,
}

_FIRST_HEADING = re.compile(r"^#\s+(.+)$", re.M)
_BULLET_ITEM = re.compile(r"^\s*[-*+]\s+", re.M)
_ORDERED_ITEM = re.compile(r"^\s*\d+\.\s+", re.M)
_TABLE_ROW = re.compile(r"\|[^\n]+\|")
_TABLE_SEPARATOR = re.compile(r"\n\|?\s*[-:]{3,}")
_D3_SELECT = re.compile(r"d3\.select\(", re.I)
_ATTR_CALL = re.compile(r"\.attr\(", re.I)


def word_count(value: str) -> int:
    return len(value.split())


def _token_set(value: str) -> Set[str]:
    cleaned = re.sub(r"[^a-z0-9\s]", " ", value.lower())
    return {token for token in cleaned.split() if len(token) > 2}


def title_overlap(source_title: str, markdown: str) -> float:
    match = _FIRST_HEADING.search(markdown)
    if not match:
        return 0.0
    source_tokens = _token_set(source_title)
    heading_tokens = _token_set(match.group(1))
    if not source_tokens or not heading_tokens:
        return 0.0
    overlap = len(source_tokens & heading_tokens)
    return overlap / max(1, min(len(source_tokens), len(heading_tokens)))


def count_list_items(markdown: str) -> int:
    return len(_BULLET_ITEM.findall(markdown)) + len(_ORDERED_ITEM.findall(markdown))


def has_table(markdown: str) -> bool:
    return bool(_TABLE_ROW.search(markdown)) and bool(_TABLE_SEPARATOR.search(markdown))


def has_code(markdown: str) -> bool:
    return "`" in markdown


def noise_hits(markdown: str) -> int:
    lower = markdown.lower()
    return sum(1 for phrase in NOISE_PHRASES if phrase in lower)


def is_hard_blocked(text: str) -> bool:
    return any(pattern.search(text) for pattern in HARD_BLOCK_PATTERNS)


def evaluate_markdown_quality(
    markdown: str,
    source_text: Optional[str] = None,
    source_title: Optional[str] = None,
    structure: Optional[StructureStats] = None,
) -> QualityReport:
    markdown = (markdown or "").strip()
    plain = strip_markdown_syntax(markdown)
    source = (source_text or "").strip()
    structure = structure or StructureStats()

    words = word_count(plain)
    if source:
        coverage = min(2.0, len(plain) / max(1, len(source)))
    else:
        coverage = 1.0 if words > 40 else 0.0

    title_score = title_overlap(source_title, markdown) if source_title else 1.0

    source_items = structure.list_item_count
    lists_ok = source_items < 6 or count_list_items(markdown) >= max(2, int(source_items * 0.25))
    code_ok = structure.code_block_count == 0 or has_code(markdown)
    tables_ok = structure.table_count == 0 or has_table(markdown)

    non_empty = words >= MIN_WORDS or len(plain) >= MIN_PLAIN_CHARS
    coverage_ok = words >= MIN_WORDS if not source else coverage >= MIN_COVERAGE
    title_ok = title_score >= MIN_TITLE_OVERLAP

    low_signal_noise = noise_hits(markdown) >= 2 and words < 200
    blocked = is_hard_blocked(markdown)
    embed_noise = (
        words > 8000
        and len(_D3_SELECT.findall(markdown)) >= 5
        and len(_ATTR_CALL.findall(markdown)) >= 15
    )

    checks = {
        "non_empty": non_empty,
        "coverage": coverage_ok,
        "title": title_ok,
        "lists": lists_ok,
        "code": code_ok,
        "tables": tables_ok,
        "low_noise": not low_signal_noise,
    }
    score = sum(WEIGHTS[name] for name, ok in checks.items() if ok)
    if blocked or embed_noise:
        score = min(score, BLOCKED_SCORE_CAP)

    reasons = []
    if not non_empty:
        reasons.append("markdown_too_short")
    if not coverage_ok:
        reasons.append("coverage_too_low")
    if not title_ok:
        reasons.append("title_mismatch")
    if not lists_ok:
        reasons.append("list_loss")
    if not code_ok:
        reasons.append("code_loss")
    if not tables_ok:
        reasons.append("table_loss")
    if low_signal_noise:
        reasons.append("boilerplate_noise")
    if blocked:
        reasons.append("blocked_or_captcha_page")
    if embed_noise:
        reasons.append("embed_script_noise")

    passed = (
        non_empty
        and coverage_ok
        and not blocked
        and not embed_noise
        and score >= PASS_THRESHOLD
    )
    return QualityReport(
        passed=passed,
        score=round(score, 3),
        coverage=round(coverage, 3),
        reasons=reasons,
    )
