from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from .errors import DirectFetchTimeout, FetchFailed, PayloadTooLarge

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscalationSignal:
    """Direct fetch was blocked or inconclusive; the browser path should be tried."""

    reason: str


class ByteStream:
    """
    Lazy, single-use byte producer backed by an open httpx response.

    The stream owns the response (and, when given, the client that produced it) and
    releases both once it is exhausted, drained or explicitly closed.
    """

    def __init__(
        self,
        response: httpx.Response,
        chunks: AsyncIterator[bytes],
        *,
        head: bytes = b"",
        owned_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._response = response
        self._chunks = chunks
        self._head = head
        self._owned_client = owned_client
        self._consumed = False
        self._closed = False

    @property
    def content_length(self) -> int | None:
        # A compressed transfer length says nothing about the decoded payload.
        if self._response.headers.get("content-encoding"):
            return None
        raw = self._response.headers.get("content-length")
        try:
            return int(raw) if raw is not None else None
        except ValueError:
            return None

    @property
    def closed(self) -> bool:
        return self._closed

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise RuntimeError("ByteStream can only be consumed once.")
        self._consumed = True
        try:
            if self._head:
                yield self._head
            try:
                async for chunk in self._chunks:
                    if chunk:
                        yield chunk
            except httpx.TimeoutException as exc:
                raise DirectFetchTimeout(f"Timed out reading body of {self._response.url}") from exc
            except httpx.HTTPError as exc:
                raise FetchFailed(f"{type(exc).__name__}: {exc}") from exc
        finally:
            await self.aclose()

    async def drain(self, max_bytes: int | None = None) -> bytes:
        buf = bytearray()
        chunks = self.iter_chunks()
        try:
            async for chunk in chunks:
                buf.extend(chunk)
                if max_bytes is not None and len(buf) > max_bytes:
                    raise PayloadTooLarge(max_bytes)
        finally:
            await chunks.aclose()
        return bytes(buf)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(Exception):
            await self._response.aclose()
        if self._owned_client is not None:
            with contextlib.suppress(Exception):
                await self._owned_client.aclose()


@dataclass
class AcquisitionResult:
    """
    Uniform result of an acquisition.

    Exactly one of `body` (buffered) or `stream` (lazy) is set. `status_code` is only
    known for direct fetches.
    """

    content_type: str
    content_disposition: str = ""
    body: bytes | None = None
    stream: ByteStream | None = None
    status_code: int | None = None

    def __post_init__(self) -> None:
        if (self.body is None) == (self.stream is None):
            raise ValueError("AcquisitionResult needs exactly one of body or stream.")

    @classmethod
    def buffered(
        cls,
        body: bytes,
        *,
        content_type: str,
        content_disposition: str = "",
        status_code: int | None = None,
    ) -> AcquisitionResult:
        return cls(
            content_type=content_type,
            content_disposition=content_disposition,
            body=bytes(body),
            status_code=status_code,
        )

    @classmethod
    def streamed(
        cls,
        stream: ByteStream,
        *,
        content_type: str,
        content_disposition: str = "",
        status_code: int | None = None,
    ) -> AcquisitionResult:
        return cls(
            content_type=content_type,
            content_disposition=content_disposition,
            stream=stream,
            status_code=status_code,
        )

    @property
    def is_streamed(self) -> bool:
        return self.stream is not None

    @property
    def content_length(self) -> int | None:
        if self.body is not None:
            return len(self.body)
        return self.stream.content_length if self.stream is not None else None

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        if self.stream is not None:
            async for chunk in self.stream.iter_chunks():
                yield chunk
        elif self.body:
            yield self.body

    async def read(self, max_bytes: int | None = None) -> bytes:
        """Drain the payload into memory, whichever shape it has."""
        if self.stream is not None:
            return await self.stream.drain(max_bytes)
        body = self.body or b""
        if max_bytes is not None and len(body) > max_bytes:
            raise PayloadTooLarge(max_bytes)
        return body

    async def aclose(self) -> None:
        if self.stream is not None:
            await self.stream.aclose()
