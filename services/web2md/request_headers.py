# services/web2md/request_headers.py
from typing import Dict, Optional
from urllib.parse import urlsplit

from core.config import Settings, get_settings
from .host_headers import headers_for_host

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
MARKDOWN_ACCEPT = "text/markdown, text/plain;q=0.9, text/html;q=0.5"


def build_source_headers(url: str, settings: Optional[Settings] = None) -> Dict[str, str]:
    """User agent, language and any per-host overrides for requests to ``url``."""
    settings = settings or get_settings()
    headers: Dict[str, str] = {}

    if settings.DEFAULT_USER_AGENT.strip():
        headers["User-Agent"] = settings.DEFAULT_USER_AGENT.strip()
    if settings.DEFAULT_ACCEPT_LANGUAGE.strip():
        headers["Accept-Language"] = settings.DEFAULT_ACCEPT_LANGUAGE.strip()

    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        host = ""
    if host:
        headers.update(headers_for_host(host, settings.HOST_HEADERS_PATH))
    return headers


def build_page_headers(url: str, settings: Optional[Settings] = None) -> Dict[str, str]:
    """Browser-like headers for fetching the HTML of ``url`` directly."""
    return {
        "Accept": HTML_ACCEPT,
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Upgrade-Insecure-Requests": "1",
        **build_source_headers(url, settings),
    }
