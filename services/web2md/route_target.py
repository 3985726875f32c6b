# services/web2md/route_target.py
"""
Parse a target URL embedded in a request path, e.g.::

    /web/https://example.com/post            -> normal
    /web/https:/example.com/post/revalidate  -> revalidate
    /web/https%3A%2F%2Fexample.com%2Fpost/redo

Proxies and browsers collapse ``//`` so the scheme and host usually arrive as
separate segments.
"""

from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import unquote

from models.snapshot import ResolveMode

REVALIDATE_SUFFIXES = {"revalidate", "redo"}


@dataclass(frozen=True)
class WebTarget:
    target_url: str
    mode: ResolveMode
    suffix: Optional[str] = None


def _decode(segment: str) -> str:
    return unquote(segment)


def _from_single_segment(segment: str) -> Optional[str]:
    decoded = _decode(segment).strip()
    if decoded.startswith(("http://", "https://")):
        return decoded
    return None


def _from_protocol_segments(segments: List[str]) -> Optional[str]:
    if len(segments) < 2:
        return None

    protocol = _decode(segments[0]).strip().lower()
    if protocol not in ("http:", "https:"):
        return None

    host = _decode(segments[1]).strip()
    if not host:
        return None

    path = "/".join(_decode(segment) for segment in segments[2:])
    if not path:
        return f"{protocol}//{host}"
    return f"{protocol}//{host}/{path}"


def split_target_path(path: str) -> List[str]:
    """Split a raw catch-all path into non-empty segments."""
    return [segment for segment in path.split("/") if segment]


def parse_web_target_segments(segments: Optional[List[str]]) -> Optional[WebTarget]:
    if not segments:
        return None

    segments = list(segments)
    suffix = None
    tail = _decode(segments[-1]).strip().lower()
    if tail in REVALIDATE_SUFFIXES:
        suffix = tail
        segments.pop()

    if not segments:
        return None

    target_url = (_from_single_segment(segments[0]) if len(segments) == 1 else None) or (
        _from_protocol_segments(segments)
    )
    if not target_url:
        return None

    return WebTarget(
        target_url=target_url,
        mode=ResolveMode.REVALIDATE if suffix else ResolveMode.NORMAL,
        suffix=suffix,
    )
