from __future__ import annotations

import asyncio
import logging
import zipfile
from pathlib import Path

import httpx

from ..models import AcquisitionRequest, BatchEntry, BatchRequest
from ..settings import get_settings
from . import acquire
from .browser_session import BrowserSession
from .naming import filename_for, filename_from_url

LOGGER = logging.getLogger(__name__)

ERRORS_DIR = "errors"


def _error_detail(exc: BaseException) -> str:
    detail = str(exc).strip()
    if len(detail) > 500:
        detail = detail[:500].rstrip() + "…"
    return f"{type(exc).__name__}: {detail}" if detail else type(exc).__name__


class _ArchiveWriter:
    """Serializes writes from concurrent downloads into one ZIP file."""

    def __init__(self, zf: zipfile.ZipFile) -> None:
        self._zf = zf
        self._lock = asyncio.Lock()
        self._names: set[str] = set()

    def _unique(self, name: str, index: int) -> str:
        if name not in self._names:
            return name
        # Keep the folder (e.g. `errors/`); prefix the basename.
        folder, _, basename = name.rpartition("/")
        unique = f"{index}_{basename}"
        return f"{folder}/{unique}" if folder else unique

    async def write(self, name: str, data: bytes, index: int) -> str:
        async with self._lock:
            name = self._unique(name, index)
            self._names.add(name)
            # Documents are usually already compressed.
            await asyncio.to_thread(self._zf.writestr, name, data, zipfile.ZIP_STORED)
            return name


async def build_batch_archive(
    batch: BatchRequest,
    destination: str | Path,
    *,
    http_client: httpx.AsyncClient | None = None,
    session: BrowserSession | None = None,
) -> list[BatchEntry]:
    """
    Download every URL of `batch` into a ZIP at `destination`.

    Each URL is independent: a failure becomes `errors/<name>.error.txt` inside the
    archive and never aborts its siblings.
    """
    settings = get_settings()
    semaphore = asyncio.Semaphore(settings.batch_max_concurrency)
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    with zipfile.ZipFile(destination, "w") as zf:
        writer = _ArchiveWriter(zf)

        async def one(index: int, url: str) -> BatchEntry:
            async with semaphore:
                try:
                    request = AcquisitionRequest(
                        url=url, strategy=batch.strategy, timeout_ms=batch.timeout_ms
                    )
                    result = await acquire(request, http_client=http_client, session=session)
                    try:
                        data = await result.read(settings.max_file_size)
                    finally:
                        await result.aclose()
                except Exception as exc:
                    LOGGER.warning("Batch download failed for %s: %s", url, exc)
                    name = await writer.write(
                        f"{ERRORS_DIR}/{filename_from_url(url, index)}.error.txt",
                        f"Download failed: {_error_detail(exc)}\n".encode("utf-8"),
                        index,
                    )
                    return BatchEntry(url=url, name=name, ok=False, error=_error_detail(exc))

                name = await writer.write(
                    filename_for(url, result.content_disposition, index), data, index
                )
                return BatchEntry(
                    url=url,
                    name=name,
                    ok=True,
                    size_bytes=len(data),
                    content_type=result.content_type,
                )

        entries = await asyncio.gather(*(one(i, u) for i, u in enumerate(batch.urls)))

    return list(entries)
