# models/snapshot.py
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field, computed_field

from .base import CamelModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResolveMode(str, Enum):
    NORMAL = "normal"
    REVALIDATE = "revalidate"


class VersionTrigger(str, Enum):
    INITIAL = "initial"
    REVALIDATE = "revalidate"
    REDO = "redo"


class Snapshot(CamelModel):
    """
    Latest cached markdown for one canonical URL.

    There is exactly one snapshot per ``url_hash``; it is overwritten on every
    successful regeneration and ``version`` grows by one each time.
    ``stale_at`` is informational and never forces a refresh.
    """

    url_hash: str
    normalized_url: str
    display_url: str
    title: str
    markdown: str
    markdown_hash: str
    source_engine: str
    source_detail: Optional[str] = None
    http_status: Optional[int] = None
    content_type: Optional[str] = None
    fetched_at: datetime
    stale_at: datetime
    version: int = Field(ge=1)
    token_estimate: Optional[int] = None
    last_error: Optional[str] = None

    @computed_field(alias="isStale")  # type: ignore[misc]
    @property
    def is_stale(self) -> bool:
        return utcnow() >= self.stale_at


class SnapshotVersion(CamelModel):
    """Immutable history record appended alongside each snapshot write."""

    snapshot_ref: str
    url_hash: str
    version: int = Field(ge=1)
    normalized_url: str
    markdown: str
    markdown_hash: str
    source_engine: str
    trigger: VersionTrigger
    created_at: datetime = Field(default_factory=utcnow)
    metadata: Optional[Dict[str, Any]] = None

    def summary(self) -> "VersionSummary":
        return VersionSummary(
            version=self.version,
            source_engine=self.source_engine,
            trigger=self.trigger,
            created_at=self.created_at,
            markdown_hash=self.markdown_hash,
        )


class VersionSummary(CamelModel):
    version: int
    source_engine: str
    trigger: VersionTrigger
    created_at: datetime
    markdown_hash: str


class ResolveResult(CamelModel):
    snapshot: Snapshot
    from_cache: bool = False
    fallback_to_cache: Optional[bool] = None
    warning: Optional[str] = None


class VersionHistory(CamelModel):
    url_hash: str
    versions: List[VersionSummary] = Field(default_factory=list)
