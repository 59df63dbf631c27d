"""Document acquisition: direct fetch first, headless browser when blocked."""
from __future__ import annotations

import logging

import httpx

from ..models import AcquisitionRequest, Strategy
from ..settings import get_settings
from .browser_client import fetch_via_browser
from .browser_session import BrowserSession
from .content_types import is_pdf_content_type
from .errors import (
    AcquisitionError,
    AcquisitionTimeout,
    BlockedError,
    BrowserFetchFailed,
    FetchFailed,
    PayloadTooLarge,
)
from .http_client import fetch_direct
from .pdf_cleaner import clean_pdf
from .result import AcquisitionResult

LOGGER = logging.getLogger(__name__)

__all__ = [
    "AcquisitionError",
    "AcquisitionResult",
    "AcquisitionTimeout",
    "BlockedError",
    "BrowserFetchFailed",
    "FetchFailed",
    "PayloadTooLarge",
    "acquire",
    "download",
]


async def _maybe_clean_pdf(result: AcquisitionResult, *, max_bytes: int) -> AcquisitionResult:
    """Buffer and decrypt PDFs; anything else passes through with its shape intact."""
    if not is_pdf_content_type(result.content_type):
        return result

    data = await result.read(max_bytes)
    cleaned = await clean_pdf(data)
    return AcquisitionResult.buffered(
        cleaned,
        content_type=result.content_type,
        content_disposition=result.content_disposition,
        status_code=result.status_code,
    )


async def acquire(
    request: AcquisitionRequest,
    *,
    http_client: httpx.AsyncClient | None = None,
    session: BrowserSession | None = None,
) -> AcquisitionResult:
    """
    Fetch `request.url` according to its strategy.

    - `browser`: headless browser only.
    - `direct`: one HTTP GET; a block signal raises `BlockedError`.
    - `auto`: one HTTP GET, transparently escalating to the browser when blocked.

    PDFs are always decrypted before being returned. Failures propagate untouched;
    nothing is retried here.
    """
    max_bytes = get_settings().max_file_size
    timeout = request.timeout_seconds

    if request.strategy == "browser":
        result = await fetch_via_browser(request.url, timeout, session=session)
        return await _maybe_clean_pdf(result, max_bytes=max_bytes)

    outcome = await fetch_direct(request.url, timeout, http_client=http_client)
    if isinstance(outcome, AcquisitionResult):
        return await _maybe_clean_pdf(outcome, max_bytes=max_bytes)

    if request.strategy == "direct":
        raise BlockedError(
            f"HTTP download blocked ({outcome.reason}); use strategy \"auto\" or \"browser\""
        )

    LOGGER.info("Escalating to browser (%s): %s", outcome.reason, request.url)
    result = await fetch_via_browser(request.url, timeout, session=session)
    return await _maybe_clean_pdf(result, max_bytes=max_bytes)


async def download(
    url: str,
    *,
    strategy: Strategy | str = "auto",
    timeout_ms: int | None = None,
    http_client: httpx.AsyncClient | None = None,
    session: BrowserSession | None = None,
) -> AcquisitionResult:
    payload: dict[str, object] = {"url": url, "strategy": strategy}
    if timeout_ms is not None:
        payload["timeout_ms"] = timeout_ms
    request = AcquisitionRequest.model_validate(payload)
    return await acquire(request, http_client=http_client, session=session)
