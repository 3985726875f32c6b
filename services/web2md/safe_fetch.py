# services/web2md/safe_fetch.py
"""
SSRF-safe HTTP fetching.

Every hop (the initial URL and each redirect target) is checked before a
request is sent: the hostname must not be a local/internal name and every
address it resolves to must be public.  Redirects are followed manually so
each ``Location`` goes through the same check, and response bodies are read
through a hard byte ceiling.
"""

import asyncio
import ipaddress
import socket
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import urljoin, urlsplit

import httpx
from loguru import logger
from prometheus_client import Counter, Histogram
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.exceptions import (
    DnsResolutionFailed,
    FetchTimeout,
    InvalidUrl,
    NetworkError,
    PrivateAddressBlocked,
    ResponseTooLarge,
    TooManyRedirects,
    UnsupportedScheme,
)

DEFAULT_TIMEOUT = 15.0
DEFAULT_MAX_BYTES = 3 * 1024 * 1024
DEFAULT_MAX_REDIRECTS = 4
REDIRECT_STATUSES = {301, 302, 303, 307, 308}

BLOCKED_HOSTNAMES = {"localhost"}
BLOCKED_HOST_SUFFIXES = (".localhost", ".local", ".internal", ".home", ".lan", ".home.arpa")

BLOCKED_NETWORKS = [
    ipaddress.ip_network(cidr)
    for cidr in (
        # IPv4
        "0.0.0.0/8",
        "10.0.0.0/8",
        "100.64.0.0/10",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.0.0.0/24",
        "192.0.2.0/24",
        "192.168.0.0/16",
        "198.18.0.0/15",
        "198.51.100.0/24",
        "203.0.113.0/24",
        "224.0.0.0/4",
        "240.0.0.0/4",
        # IPv6
        "::/128",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
        "2001:db8::/32",
        "ff00::/8",
    )
]

MARKDOWN_CONTENT_TYPES = ("text/markdown", "text/plain", "application/markdown", "text/x-markdown")

SSRF_BLOCKED = Counter("web2md_ssrf_blocked_total", "Targets rejected by the address check", ["reason"])
FETCH_DURATION = Histogram("web2md_fetch_duration_seconds", "Time spent in safe fetches")
FETCH_ERRORS = Counter("web2md_fetch_errors_total", "Safe fetch failures", ["code"])

Resolver = Callable[[str], Awaitable[List[str]]]


async def system_resolver(host: str) -> List[str]:
    """Resolve ``host`` to every address the OS resolver returns."""
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError) as exc:
        raise DnsResolutionFailed(f"Could not resolve target host {host}: {exc}") from exc
    return [info[4][0] for info in infos]


def is_blocked_ip(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return True

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return is_blocked_ip(str(ip.ipv4_mapped))

    if any(ip in network for network in BLOCKED_NETWORKS):
        return True
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def is_blocked_hostname(hostname: str) -> bool:
    host = hostname.strip().lower().rstrip(".")
    return host in BLOCKED_HOSTNAMES or host.endswith(BLOCKED_HOST_SUFFIXES)


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        return False
    return True


def looks_like_html(content_type: str, body: str) -> bool:
    content_type = (content_type or "").lower()
    if "text/html" in content_type or "application/xhtml+xml" in content_type:
        return True
    head = body[:500].lower()
    return "<html" in head or "<body" in head or "<!doctype html" in head


def is_markdown_content_type(content_type: str) -> bool:
    content_type = (content_type or "").lower()
    return any(kind in content_type for kind in MARKDOWN_CONTENT_TYPES)


@dataclass
class FetchResult:
    status: int
    final_url: str
    content_type: str
    body: str
    headers: Dict[str, str] = field(default_factory=dict)


class SafeFetcher:
    """
    Bounded GET client that refuses private and internal targets.

    Parameters
    ----------
    client: httpx.AsyncClient | None
        Shared client.  One is created (and later closed) when omitted.
    resolver: Resolver | None
        Async callable mapping a hostname to its addresses.  Defaults to the
        system resolver; tests inject a fake.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        resolver: Optional[Resolver] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_bytes: int = DEFAULT_MAX_BYTES,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        retry_wait=None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=False)
        self._resolver = resolver or system_resolver
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.max_redirects = max_redirects
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.5, min=0.5, max=4)

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Address validation
    # ------------------------------------------------------------------
    async def assert_public_target(self, url: str) -> str:
        """Return the hostname of ``url`` or raise if it must not be fetched."""
        try:
            parts = urlsplit(url)
        except ValueError as exc:
            raise InvalidUrl(f"Invalid URL: {url}") from exc

        if parts.scheme.lower() not in ("http", "https"):
            raise UnsupportedScheme("Only http:// and https:// URLs are supported.")

        host = (parts.hostname or "").strip().lower()
        if not host:
            raise InvalidUrl("Missing host in URL.")

        if is_blocked_hostname(host):
            self._blocked(host, "hostname")
            raise PrivateAddressBlocked("Localhost and internal hostnames are blocked.")

        if _is_ip_literal(host):
            if is_blocked_ip(host):
                self._blocked(host, "ip_literal")
                raise PrivateAddressBlocked("Private or reserved IP targets are blocked.")
            return host

        addresses = await self._resolver(host)
        if not addresses:
            raise DnsResolutionFailed(f"Could not resolve target host {host}.")

        for address in addresses:
            if is_blocked_ip(address):
                self._blocked(host, "resolved", address)
                raise PrivateAddressBlocked(
                    "Target resolved to a private or reserved IP range."
                )
        return host

    @staticmethod
    def _blocked(host: str, reason: str, address: Optional[str] = None) -> None:
        SSRF_BLOCKED.labels(reason=reason).inc()
        suffix = f" ({address})" if address else ""
        logger.warning(f"Blocked non-public fetch target {host}{suffix}: {reason}")

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------
    async def fetch_text(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
        max_redirects: Optional[int] = None,
        retries: int = 0,
    ) -> FetchResult:
        """
        GET ``url`` and return its decoded body.

        ``FetchTimeout`` and ``NetworkError`` are retried up to ``retries``
        extra times; every other failure is raised immediately.
        """
        timeout = timeout or self.timeout
        max_bytes = max_bytes or self.max_bytes
        max_redirects = self.max_redirects if max_redirects is None else max_redirects

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=self._retry_wait,
            retry=retry_if_exception_type((FetchTimeout, NetworkError)),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        f"Retrying fetch of {url} (attempt {attempt.retry_state.attempt_number})"
                    )
                return await self._fetch_once(url, headers or {}, timeout, max_bytes, max_redirects)

    async def _fetch_once(
        self,
        url: str,
        headers: Dict[str, str],
        timeout: float,
        max_bytes: int,
        max_redirects: int,
    ) -> FetchResult:
        start = time.perf_counter()
        try:
            return await asyncio.wait_for(
                self._follow(url, headers, timeout, max_bytes, max_redirects),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            FETCH_ERRORS.labels(code=FetchTimeout.code).inc()
            raise FetchTimeout(f"Fetching {url} timed out after {timeout:g}s.") from exc
        finally:
            FETCH_DURATION.observe(time.perf_counter() - start)

    async def _follow(
        self,
        url: str,
        headers: Dict[str, str],
        timeout: float,
        max_bytes: int,
        max_redirects: int,
    ) -> FetchResult:
        current = url
        redirects = 0

        while True:
            await self.assert_public_target(current)
            try:
                async with self._client.stream(
                    "GET",
                    current,
                    headers=headers,
                    timeout=timeout,
                    follow_redirects=False,
                ) as response:
                    if response.status_code in REDIRECT_STATUSES:
                        if redirects >= max_redirects:
                            raise TooManyRedirects(f"Too many redirects (>{max_redirects}).")
                        location = response.headers.get("location")
                        if not location:
                            raise NetworkError("Redirect response is missing a Location header.")
                        current = urljoin(current, location)
                        redirects += 1
                        logger.debug(f"Following redirect {redirects} to {current}")
                        continue

                    body = await self._read_limited(response, max_bytes)
                    return FetchResult(
                        status=response.status_code,
                        final_url=current,
                        content_type=response.headers.get("content-type", "").lower(),
                        body=body,
                        headers={key.lower(): value for key, value in response.headers.items()},
                    )
            except httpx.TimeoutException as exc:
                FETCH_ERRORS.labels(code=FetchTimeout.code).inc()
                raise FetchTimeout(f"Request to {current} timed out.") from exc
            except httpx.HTTPError as exc:
                FETCH_ERRORS.labels(code=NetworkError.code).inc()
                raise NetworkError(f"Request to {current} failed: {exc}") from exc

    @staticmethod
    async def _read_limited(response: httpx.Response, max_bytes: int) -> str:
        declared = response.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > max_bytes:
            raise ResponseTooLarge(f"Response exceeded {max_bytes} bytes.")

        chunks = []
        total = 0
        async for chunk in response.aiter_bytes():
            total += len(chunk)
            if total > max_bytes:
                raise ResponseTooLarge(f"Response exceeded {max_bytes} bytes.")
            chunks.append(chunk)

        raw = b"".join(chunks)
        encoding = response.charset_encoding or "utf-8"
        try:
            return raw.decode(encoding, errors="replace")
        except LookupError:
            return raw.decode("utf-8", errors="replace")
