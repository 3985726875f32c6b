# core/config.py
"""
Environment-driven settings for the web2md service.

Every field can be overridden with an environment variable of the same name
prefixed with ``WEB2MD_`` (e.g. ``WEB2MD_CACHE_TTL_DAYS=7``) or through a
``.env`` file in the working directory.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WEB2MD_",
        env_file=".env",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------
    PROJECT_NAME: str = "web2md"
    DEBUG: bool = False
    PORT: int = 8000
    WORKERS: int = 1
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    ALLOWED_HOSTS: List[str] = Field(default_factory=lambda: ["*"])

    # ------------------------------------------------------------------
    # Snapshot storage
    # ------------------------------------------------------------------
    REDIS_URL: Optional[str] = None
    CACHE_TTL_DAYS: int = Field(default=30, ge=1)

    # ------------------------------------------------------------------
    # Outbound requests
    # ------------------------------------------------------------------
    DEFAULT_USER_AGENT: str = DEFAULT_USER_AGENT
    DEFAULT_ACCEPT_LANGUAGE: str = "en-US,en;q=0.9"
    HOST_HEADERS_PATH: Path = PROJECT_ROOT / "configs" / "host_headers.yaml"
    FETCH_MAX_BYTES: int = 3 * 1024 * 1024
    FETCH_MAX_REDIRECTS: int = 4
    STAGE_RETRIES: int = Field(default=1, ge=0)

    # Per-engine timeouts (seconds)
    NATIVE_TIMEOUT: float = 15.0
    LOCAL_TIMEOUT: float = 18.0
    BROWSER_TIMEOUT: float = 30.0
    JINA_TIMEOUT: float = 35.0
    FIRECRAWL_TIMEOUT: float = 45.0
    LLM_TIMEOUT: float = 60.0

    # ------------------------------------------------------------------
    # Engines
    # ------------------------------------------------------------------
    ENABLE_NATIVE: bool = True
    ENABLE_LOCAL: bool = True
    ENABLE_BROWSER: bool = True
    ENABLE_JINA: bool = True
    ENABLE_FIRECRAWL: bool = True
    ENABLE_LLM: bool = True
    READER_ORDER: List[str] = Field(default_factory=lambda: ["jina_reader", "firecrawl_scrape"])
    FORCE_ENGINE: Optional[str] = None
    BROWSER_MAX_PAGES: int = Field(default=2, ge=1)

    JINA_API_KEY: Optional[str] = None
    JINA_BASE_URL: str = "https://r.jina.ai"
    FIRECRAWL_API_KEY: Optional[str] = None
    FIRECRAWL_API_BASE: str = "https://api.firecrawl.dev/v2"
    FIRECRAWL_PROXY: str = "auto"
    OPENROUTER_API_KEY: Optional[str] = None
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    LLM_MODEL: str = "openai/gpt-oss-20b"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------
    RATE_LIMIT_READ_HOURLY: int = 50
    RATE_LIMIT_READ_DAILY: int = 200
    RATE_LIMIT_REVALIDATE_HOURLY: int = 10
    RATE_LIMIT_REVALIDATE_DAILY: int = 50
    RATE_LIMIT_SALT: str = "web2md"

    @field_validator("FIRECRAWL_PROXY")
    @classmethod
    def _check_proxy(cls, value: str) -> str:
        value = value.strip().lower()
        return value if value in {"basic", "enhanced", "auto"} else "auto"

    @field_validator("FORCE_ENGINE")
    @classmethod
    def _blank_force_engine(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip().lower()


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()


settings = get_settings()
