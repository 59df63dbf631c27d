from __future__ import annotations

import asyncio
import base64
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from .browser_session import BrowserHandle, BrowserSession, get_browser_session
from .content_types import BROWSER_BINARY_PREFIXES, DEFAULT_CONTENT_TYPE, is_binary_content_type
from .errors import AcquisitionError, BrowserFetchFailed, BrowserFetchTimeout
from .result import AcquisitionResult

LOGGER = logging.getLogger(__name__)

# Time for a trailing, download-triggering response to land after the page settles.
DOWNLOAD_GRACE_SECONDS = 2.0
# No intercepted response for this long (with the document complete) counts as network idle.
NETWORK_QUIET_SECONDS = 0.5
SETTLE_POLL_SECONDS = 0.25
MIN_PRINT_TIMEOUT_SECONDS = 5.0

# A4 in inches (CDP printToPDF units).
A4_WIDTH_IN = 8.27
A4_HEIGHT_IN = 11.69


class NodriverPage:
    """Thin CDP facade over a nodriver tab; the only place that speaks nodriver."""

    def __init__(self, tab: Any) -> None:
        from nodriver import cdp  # type: ignore

        self._tab = tab
        self._cdp = cdp

    def on_response_paused(self, callback: Callable[[Any], None]) -> None:
        self._tab.add_handler(self._cdp.fetch.RequestPaused, callback)

    async def enable_interception(self) -> None:
        cdp = self._cdp
        await self._tab.send(
            cdp.fetch.enable(
                patterns=[
                    cdp.fetch.RequestPattern(
                        url_pattern="*", request_stage=cdp.fetch.RequestStage.RESPONSE
                    )
                ]
            )
        )

    async def get_response_body(self, request_id: Any) -> bytes:
        body, base64_encoded = await self._tab.send(
            self._cdp.fetch.get_response_body(request_id=request_id)
        )
        if base64_encoded:
            return base64.b64decode(body)
        return (body or "").encode("utf-8")

    async def continue_response(self, request_id: Any) -> None:
        await self._tab.send(self._cdp.fetch.continue_response(request_id=request_id))

    async def navigate(self, url: str) -> str | None:
        """Start navigation; returns CDP's errorText (e.g. `net::ERR_ABORTED`) if any."""
        result = await self._tab.send(self._cdp.page.navigate(url))
        if isinstance(result, tuple) and len(result) > 2:
            return result[2]
        return None

    async def _evaluate(self, expression: str) -> Any:
        remote_object, _exception = await self._tab.send(
            self._cdp.runtime.evaluate(expression=expression, return_by_value=True)
        )
        return getattr(remote_object, "value", None)

    async def ready_state(self) -> str:
        return str(await self._evaluate("document.readyState") or "")

    async def current_url(self) -> str:
        return str(await self._evaluate("location.href") or "")

    async def print_to_pdf(self, *, print_background: bool) -> bytes:
        data, _stream = await self._tab.send(
            self._cdp.page.print_to_pdf(
                paper_width=A4_WIDTH_IN,
                paper_height=A4_HEIGHT_IN,
                print_background=print_background,
            )
        )
        return base64.b64decode(data)

    async def close(self) -> None:
        await self._tab.close()


async def _open_page(handle: BrowserHandle) -> NodriverPage:
    return NodriverPage(await handle.new_tab())


@dataclass(frozen=True)
class InterceptedResponse:
    body: bytes
    content_type: str
    content_disposition: str = ""


def _header_value(headers: Any, name: str) -> str:
    for entry in headers or ():
        if str(getattr(entry, "name", "")).lower() == name:
            return str(getattr(entry, "value", "") or "")
    return ""


class ResponseInterceptor:
    """
    Consumes paused responses for one page load, one at a time, in arrival order.

    The first binary 200 response is captured; later matches are ignored. Every
    paused response is continued, captured or not, otherwise navigation stalls.
    """

    def __init__(self, page: Any) -> None:
        self._page = page
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self.captured: InterceptedResponse | None = None
        self.captured_event = asyncio.Event()
        self.last_activity = time.monotonic()

    @property
    def has_capture(self) -> bool:
        return self.captured is not None

    def on_paused(self, event: Any) -> None:
        self.last_activity = time.monotonic()
        self._queue.put_nowait(event)

    async def start(self) -> None:
        self._page.on_response_paused(self.on_paused)
        self._worker = asyncio.ensure_future(self._consume())
        await self._page.enable_interception()

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._handle(event)
            finally:
                self._queue.task_done()

    async def _handle(self, event: Any) -> None:
        request_id = event.request_id
        try:
            content_type = _header_value(event.response_headers, "content-type")
            status = getattr(event, "response_status_code", None)
            if (
                self.captured is None
                and status == 200
                and is_binary_content_type(content_type, prefixes=BROWSER_BINARY_PREFIXES)
            ):
                try:
                    body = await self._page.get_response_body(request_id)
                except Exception as exc:
                    LOGGER.debug("Fetch.getResponseBody failed: %s", exc)
                else:
                    self.captured = InterceptedResponse(
                        body=body,
                        content_type=content_type,
                        content_disposition=_header_value(
                            event.response_headers, "content-disposition"
                        ),
                    )
                    self.captured_event.set()
                    LOGGER.debug("Captured %s bytes (%s)", len(body), content_type)
        finally:
            try:
                await self._page.continue_response(request_id)
            except Exception as exc:
                # The page may already be closing.
                LOGGER.debug("Fetch.continueResponse failed: %s", exc)

    async def drain(self) -> None:
        await self._queue.join()

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None


async def _navigate_and_settle(page: Any, interceptor: ResponseInterceptor, url: str) -> None:
    error_text = await page.navigate(url)
    if interceptor.has_capture:
        return
    if error_text:
        # Downloads abort the navigation; by then the paused response has been handled.
        await interceptor.drain()
        if interceptor.has_capture:
            return
        raise BrowserFetchFailed(f"Navigation failed: {error_text}")

    while not interceptor.has_capture:
        quiet_for = time.monotonic() - interceptor.last_activity
        if quiet_for >= NETWORK_QUIET_SECONDS and await page.ready_state() == "complete":
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(interceptor.captured_event.wait(), timeout=SETTLE_POLL_SECONDS)


async def _render_as_pdf(page: Any, timeout_seconds: float) -> bytes:
    current_url = await page.current_url()
    # A PDF opened in the viewer prints as itself; anything else is rendered as a last resort.
    print_background = ".pdf" not in current_url.lower()
    LOGGER.info("No binary response captured; printing page to PDF: %s", current_url)
    return await asyncio.wait_for(
        page.print_to_pdf(print_background=print_background), timeout=timeout_seconds
    )


async def _fetch_in_tab(handle: BrowserHandle, url: str, timeout_seconds: float, started: float) -> AcquisitionResult:
    page = None
    interceptor: ResponseInterceptor | None = None
    try:
        page = await _open_page(handle)
        interceptor = ResponseInterceptor(page)
        await interceptor.start()

        remaining = timeout_seconds - (time.monotonic() - started)
        if remaining <= 0:
            raise BrowserFetchTimeout(f"Browser fetch timed out before navigation: {url}")
        try:
            await asyncio.wait_for(_navigate_and_settle(page, interceptor, url), timeout=remaining)
        except asyncio.TimeoutError as exc:
            raise BrowserFetchTimeout(
                f"Navigation timed out after {timeout_seconds:.1f}s: {url}"
            ) from exc

        if not interceptor.has_capture:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(
                    interceptor.captured_event.wait(), timeout=DOWNLOAD_GRACE_SECONDS
                )

        captured = interceptor.captured
        if captured is not None:
            return AcquisitionResult.buffered(
                captured.body,
                content_type=captured.content_type or DEFAULT_CONTENT_TYPE,
                content_disposition=captured.content_disposition,
            )
        remaining = timeout_seconds - (time.monotonic() - started)
        pdf = await _render_as_pdf(page, max(remaining, MIN_PRINT_TIMEOUT_SECONDS))
        return AcquisitionResult.buffered(pdf, content_type="application/pdf")
    finally:
        if interceptor is not None:
            await interceptor.stop()
        if page is not None:
            try:
                await page.close()
            except Exception as exc:
                LOGGER.debug("Failed to close browser page: %s", exc)


async def fetch_via_browser(
    url: str,
    timeout_seconds: float,
    *,
    session: BrowserSession | None = None,
) -> AcquisitionResult:
    """
    Fetch a document through the shared headless browser.

    Always returns bytes: an intercepted binary response when one is seen, otherwise
    the page printed to PDF. The result is buffered and carries no status code. The
    shared browser cannot idle out while the fetch is running.
    """
    session = session or get_browser_session()
    started = time.monotonic()
    async with session.use() as handle:
        try:
            result = await _fetch_in_tab(handle, url, timeout_seconds, started)
        except AcquisitionError:
            raise
        except asyncio.TimeoutError as exc:
            raise BrowserFetchTimeout(f"Browser fetch timed out: {url}") from exc
        except Exception as exc:
            raise BrowserFetchFailed(f"{type(exc).__name__}: {exc}") from exc
    session.touch()
    return result
