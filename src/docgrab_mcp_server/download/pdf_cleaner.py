from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import tempfile

import anyio

from ..settings import get_settings
from .chromium import terminate_process
from .content_types import looks_like_pdf

LOGGER = logging.getLogger(__name__)

# qpdf exits with 3 when it succeeded but printed warnings (common for slightly broken PDFs).
_QPDF_OK_CODES = (0, 3)


class QpdfError(RuntimeError):
    pass


async def _run_qpdf_decrypt(qpdf: str, path: str, timeout_seconds: float) -> None:
    proc = await asyncio.create_subprocess_exec(
        qpdf,
        "--decrypt",
        "--replace-input",
        path,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        await terminate_process(proc, grace_seconds=0.5)
        raise QpdfError(f"qpdf timed out after {timeout_seconds:.1f}s") from exc
    if proc.returncode not in _QPDF_OK_CODES:
        detail = (stderr or b"").decode("utf-8", errors="replace").strip()[:200]
        raise QpdfError(f"qpdf exited with {proc.returncode}: {detail}")


async def clean_pdf(data: bytes, *, timeout_seconds: float | None = None) -> bytes:
    """
    Strip password protection / encryption from a PDF using `qpdf`.

    Best-effort: non-PDF input is returned untouched, and any failure (qpdf missing,
    malformed input, timeout) returns the original bytes unchanged.
    """
    if not looks_like_pdf(data):
        return data

    settings = get_settings()
    qpdf = shutil.which(settings.qpdf_path)
    if qpdf is None:
        LOGGER.debug("qpdf not found (%s); returning PDF unchanged", settings.qpdf_path)
        return data
    timeout = timeout_seconds if timeout_seconds is not None else settings.qpdf_timeout_seconds

    fd, tmp_path = tempfile.mkstemp(prefix="docgrab-clean-", suffix=".pdf")
    os.close(fd)
    path = anyio.Path(tmp_path)
    try:
        await path.write_bytes(data)
        await _run_qpdf_decrypt(qpdf, tmp_path, timeout)
        cleaned = await path.read_bytes()
        if not looks_like_pdf(cleaned):
            LOGGER.debug("qpdf output is not a PDF; returning original")
            return data
        return cleaned
    except (QpdfError, OSError) as exc:
        LOGGER.debug("PDF clean skipped: %s", exc)
        return data
    finally:
        with contextlib.suppress(OSError):
            await path.unlink()
