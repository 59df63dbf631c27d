from __future__ import annotations

from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .settings import MAX_BATCH_URLS, MAX_TIMEOUT_MS, MIN_TIMEOUT_MS, get_settings

Strategy = Literal["auto", "direct", "browser"]

_STRATEGY_ALIASES = {"http": "direct"}


def _default_timeout_ms() -> int:
    return get_settings().default_timeout_ms


def _check_url(url: str) -> str:
    url = (url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Unsupported URL (expected http/https): {url!r}")
    return url


def _normalize_strategy(value: object) -> object:
    if isinstance(value, str):
        value = value.strip().lower()
        return _STRATEGY_ALIASES.get(value, value)
    return value


class AcquisitionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str = Field(description="Document URL (http or https).")
    strategy: Strategy = Field(
        default="auto",
        description="`auto` escalates to the browser when blocked; `direct` never does; `browser` skips HTTP.",
    )
    timeout_ms: int = Field(
        default_factory=_default_timeout_ms,
        ge=MIN_TIMEOUT_MS,
        le=MAX_TIMEOUT_MS,
        description="Per-stage time budget in milliseconds.",
    )

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        return _check_url(value)

    @field_validator("strategy", mode="before")
    @classmethod
    def _validate_strategy(cls, value: object) -> object:
        return _normalize_strategy(value)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


class BatchRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    urls: list[str] = Field(min_length=1, max_length=MAX_BATCH_URLS)
    strategy: Strategy = "auto"
    timeout_ms: int = Field(default_factory=_default_timeout_ms, ge=MIN_TIMEOUT_MS, le=MAX_TIMEOUT_MS)

    @field_validator("urls")
    @classmethod
    def _validate_urls(cls, value: list[str]) -> list[str]:
        return [_check_url(u) for u in value]

    @field_validator("strategy", mode="before")
    @classmethod
    def _validate_strategy(cls, value: object) -> object:
        return _normalize_strategy(value)


class DownloadResponse(BaseModel):
    url: str = Field(description="The requested URL.")
    path: str | None = Field(default=None, description="Where the document was written.")
    content_type: str | None = Field(default=None, description="Content-Type of the document.")
    content_disposition: str | None = None
    size_bytes: int | None = None
    streamed: bool | None = Field(
        default=None, description="True when the payload was streamed straight from the origin."
    )
    status_code: int | None = Field(default=None, description="Origin HTTP status (direct fetches only).")
    error: str | None = Field(default=None, description="Failure description; other fields are empty.")


class BatchEntry(BaseModel):
    url: str
    name: str = Field(description="Entry name inside the archive.")
    ok: bool
    size_bytes: int = 0
    content_type: str | None = None
    error: str | None = None


class BatchDownloadResponse(BaseModel):
    archive_path: str | None = None
    entries: list[BatchEntry] = Field(default_factory=list)
    error: str | None = None
