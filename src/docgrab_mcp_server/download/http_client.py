from __future__ import annotations

import contextlib
import logging
from typing import AsyncIterator

import httpx

from .content_types import (
    BLOCKED_STATUS_CODES,
    CHALLENGE_SNIFF_BYTES,
    DEFAULT_CONTENT_TYPE,
    find_challenge_marker,
    has_antibot_header,
    is_binary_content_type,
    is_html_content_type,
)
from .errors import DirectFetchTimeout, FetchFailed
from .result import AcquisitionResult, ByteStream, EscalationSignal

LOGGER = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,image/apng,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    # No `br`: httpx only decodes brotli when the optional extra is installed.
    "Accept-Encoding": "gzip, deflate",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Ch-Ua": '"Not A(Brand";v="99", "Google Chrome";v="131", "Chromium";v="131"',
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"Windows"',
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}


async def _next_chunk(chunks: AsyncIterator[bytes]) -> bytes:
    try:
        while True:
            chunk = await chunks.__anext__()
            if chunk:
                return chunk
    except StopAsyncIteration:
        return b""


async def _read_prefix(chunks: AsyncIterator[bytes], head: bytes, limit: int) -> bytes:
    buf = bytearray(head)
    while len(buf) < limit:
        chunk = await _next_chunk(chunks)
        if not chunk:
            break
        buf.extend(chunk)
    return bytes(buf[:limit])


async def fetch_direct(
    url: str,
    timeout_seconds: float,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> AcquisitionResult | EscalationSignal:
    """
    Single-pass direct download.

    Sends one GET, inspects status and headers, and either hands back the body as a
    lazy stream or returns an `EscalationSignal` telling the caller to retry in the
    browser. There is no separate HEAD probe.

    Raises:
    - `DirectFetchTimeout` when no response (or body prefix) arrives in time.
    - `FetchFailed` on any other transport-level error.
    """
    owned_client: httpx.AsyncClient | None = None
    client = http_client
    if client is None:
        owned_client = httpx.AsyncClient(follow_redirects=True)
        client = owned_client

    response: httpx.Response | None = None
    handed_off = False
    try:
        request = client.build_request(
            "GET", url, headers=BROWSER_HEADERS, timeout=httpx.Timeout(timeout_seconds)
        )
        LOGGER.debug("Direct fetch: %s", url)
        response = await client.send(request, stream=True, follow_redirects=True)

        status = response.status_code
        content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE
        content_disposition = response.headers.get("content-disposition") or ""

        if status in BLOCKED_STATUS_CODES:
            LOGGER.info("Direct fetch blocked (HTTP %s); escalating: %s", status, url)
            return EscalationSignal("blocked_status")
        if has_antibot_header(response.headers):
            LOGGER.info("Anti-bot headers present; escalating: %s", url)
            return EscalationSignal("antibot_header")

        chunks = response.aiter_bytes()

        if is_html_content_type(content_type):
            head = await _read_prefix(chunks, b"", CHALLENGE_SNIFF_BYTES)
            marker = find_challenge_marker(head)
            if marker:
                LOGGER.info("Challenge page detected (%r); escalating: %s", marker, url)
                return EscalationSignal("challenge_page")
            # HTML is never the document we are after.
            LOGGER.info("HTML response; escalating: %s", url)
            return EscalationSignal("html")

        head = await _next_chunk(chunks)
        if not head:
            LOGGER.info("Empty body (HTTP %s); escalating: %s", status, url)
            return EscalationSignal("empty_body")

        if not is_binary_content_type(content_type):
            LOGGER.debug("Unclassified content-type %r; streaming as-is: %s", content_type, url)

        stream = ByteStream(response, chunks, head=head, owned_client=owned_client)
        handed_off = True
        return AcquisitionResult.streamed(
            stream,
            content_type=content_type,
            content_disposition=content_disposition,
            status_code=status,
        )
    except httpx.TimeoutException as exc:
        raise DirectFetchTimeout(
            f"Timed out after {timeout_seconds:.1f}s fetching {url}"
        ) from exc
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise FetchFailed(f"{type(exc).__name__}: {exc}") from exc
    finally:
        if not handed_off:
            if response is not None:
                with contextlib.suppress(Exception):
                    await response.aclose()
            if owned_client is not None:
                with contextlib.suppress(Exception):
                    await owned_client.aclose()
