# services/web2md/canonicalize.py
"""
URL canonicalization.

``canonicalize_url`` turns any accepted spelling of a URL into one normalized
form and derives ``url_hash`` from it.  The hash is the primary key for
snapshots and version history, so the normalization must be idempotent.
"""

import hashlib
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from core.exceptions import InvalidUrl, UnsupportedScheme
from models.content import CanonicalUrl

DEFAULT_PORTS = {"http": 80, "https": 443}

# RFC 3986 sub-delims plus ":" "@" "/" and "%" so existing escapes survive
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"


def _normalize_host(hostname: str) -> str:
    host = hostname.lower().rstrip(".")
    if not host:
        raise InvalidUrl("Invalid URL: missing host.")
    if ":" in host:
        return f"[{host}]"
    if not host.isascii():
        try:
            host = host.encode("idna").decode("ascii")
        except UnicodeError as exc:
            raise InvalidUrl(f"Invalid URL host: {hostname}") from exc
    return host


def _sorted_query(query: str) -> str:
    pairs = parse_qsl(query, keep_blank_values=True)
    pairs.sort(key=lambda pair: (pair[0], pair[1]))
    return urlencode(pairs)


def hash_url(normalized_url: str) -> str:
    return hashlib.sha256(normalized_url.encode("utf-8")).hexdigest()


def canonicalize_url(raw_url: str) -> CanonicalUrl:
    """
    Normalize ``raw_url`` and compute its hash.

    Raises
    ------
    InvalidUrl
        Empty input, unparsable URL or missing host.
    UnsupportedScheme
        Anything other than http/https.
    """
    trimmed = (raw_url or "").strip()
    if not trimmed:
        raise InvalidUrl("Missing target URL.")

    try:
        parts = urlsplit(trimmed)
        port = parts.port
    except ValueError as exc:
        raise InvalidUrl(f"Invalid URL: {exc}") from exc

    scheme = parts.scheme.lower()
    if not scheme:
        raise InvalidUrl("Invalid URL.")
    if scheme not in DEFAULT_PORTS:
        raise UnsupportedScheme("Only http:// and https:// URLs are supported.")
    if not trimmed[len(scheme):].startswith("://") or not parts.hostname:
        raise InvalidUrl("Invalid URL: missing host.")

    netloc = _normalize_host(parts.hostname)
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"

    path = quote(parts.path or "/", safe=_PATH_SAFE)
    normalized = urlunsplit((scheme, netloc, path, _sorted_query(parts.query), ""))

    return CanonicalUrl(
        normalized_url=normalized,
        display_url=trimmed,
        url_hash=hash_url(normalized),
    )
