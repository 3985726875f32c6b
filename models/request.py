# models/request.py
"""Request/response bodies for the web-to-md API."""

from typing import Optional

from pydantic import Field, field_validator

from .base import CamelModel
from .snapshot import ResolveMode, ResolveResult, VersionTrigger


class ResolveRequest(CamelModel):
    target_url: str = Field(..., min_length=1, max_length=4096, description="Page to convert")
    mode: ResolveMode = Field(default=ResolveMode.NORMAL)
    trigger: Optional[VersionTrigger] = Field(
        default=None,
        description="History label for revalidations; only 'redo' changes the default",
    )
    model_override: Optional[str] = Field(default=None, max_length=200)

    @field_validator("target_url")
    @classmethod
    def _strip_url(cls, value: str) -> str:
        return value.strip()

    @field_validator("model_override")
    @classmethod
    def _blank_model(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()


class ResolveResponse(ResolveResult):
    mode: ResolveMode
