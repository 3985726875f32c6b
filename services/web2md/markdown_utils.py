# services/web2md/markdown_utils.py
"""Small helpers shared by the converter, the quality gate and the engines."""

import hashlib
import math
import re
from typing import Optional

_HEADING_LINE = re.compile(r"^#{1,6}\s+(.+)$")
_ANY_HEADING = re.compile(r"^#{1,6}\s+", re.M)

_MARKDOWN_SIGNALS = (
    re.compile(r"^#{1,6}\s+\S", re.M),
    re.compile(r"\*\*[^*\n]+\*\*"),
    re.compile(r"^```", re.M),
    re.compile(r"^\s*(?:[-*+]|\d+\.)\s+\S", re.M),
    re.compile(r"\[[^\]\n]+\]\(https?://"),
)


def normalize_markdown(markdown: str) -> str:
    """CRLF to LF, trailing spaces trimmed, blank-line runs collapsed, one final newline."""
    value = (markdown or "").replace("\r\n", "\n").replace("\r", "\n")
    value = re.sub(r"[ \t]+$", "", value, flags=re.M)
    value = re.sub(r"\n{3,}", "\n\n", value).strip()
    return f"{value}\n" if value else ""


def strip_markdown_syntax(markdown: str) -> str:
    value = markdown or ""
    value = re.sub(r"```[\s\S]*?```", " ", value)
    value = re.sub(r"`[^`]*`", " ", value)
    value = re.sub(r"!\[[^\]]*\]\([^)]*\)", " ", value)
    value = re.sub(r"\[[^\]]*\]\([^)]*\)", " ", value)
    value = re.sub(r"^\s{0,3}#{1,6}\s+", "", value, flags=re.M)
    value = re.sub(r"^\s{0,3}[-*+]\s+", "", value, flags=re.M)
    value = re.sub(r"^\s{0,3}\d+\.\s+", "", value, flags=re.M)
    value = re.sub(r"[>*_~|]", " ", value)
    return re.sub(r"\s+", " ", value).strip()


def looks_like_markdown(body: str) -> bool:
    """At least two kinds of markdown syntax within the first 2000 characters."""
    head = (body or "")[:2000]
    return sum(1 for pattern in _MARKDOWN_SIGNALS if pattern.search(head)) >= 2


def has_heading(markdown: str) -> bool:
    return bool(_ANY_HEADING.search(markdown or ""))


def _title_key(value: str) -> str:
    value = re.sub(r"[^a-z0-9\s]", " ", value.lower())
    return re.sub(r"\s+", " ", value).strip()


def derive_title_from_markdown(markdown: str) -> Optional[str]:
    """First heading, or else the first substantial line, of ``markdown``."""
    for raw_line in (markdown or "").replace("\r\n", "\n").split("\n"):
        line = raw_line.strip()
        if not line:
            continue
        heading = _HEADING_LINE.match(line)
        if heading:
            return heading.group(1).strip() or None
        plain = re.sub(r"^\d+\.\s+", "", re.sub(r"^[-*+]\s+", "", line)).strip()
        if len(plain) >= 8:
            return plain[:180]
    return None


def ensure_leading_title_heading(markdown: str, title: Optional[str]) -> str:
    """
    Make sure the document opens with ``# title``.  A first line that already
    matches the title is promoted to a heading instead of being duplicated.
    """
    clean_title = (title or "").strip()
    if not clean_title or clean_title.lower() == "untitled":
        return markdown

    normalized = normalize_markdown(markdown)
    if not normalized:
        return f"# {clean_title}\n"

    lines = normalized.split("\n")
    first_index = next(i for i, line in enumerate(lines) if line.strip())
    first_line = lines[first_index].strip()
    title_key = _title_key(clean_title)

    def _same(other: str) -> bool:
        other_key = _title_key(other)
        return other_key == title_key or title_key in other_key or other_key in title_key

    heading = _HEADING_LINE.match(first_line)
    if heading:
        if _same(heading.group(1)):
            return normalized
    elif _same(first_line):
        lines[first_index] = f"# {clean_title}"
        return normalize_markdown("\n".join(lines))

    return normalize_markdown(f"# {clean_title}\n\n{normalized}")


def estimate_tokens(markdown: str) -> int:
    return math.ceil(len(markdown or "") / 4)


def hash_markdown(markdown: str) -> str:
    return hashlib.sha256((markdown or "").encode("utf-8")).hexdigest()
