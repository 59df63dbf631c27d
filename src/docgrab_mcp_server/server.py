from __future__ import annotations

import argparse
import contextlib
import logging
import os
import sys
import time
from pathlib import Path
from typing import AsyncIterator, Literal

import anyio
from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

from .download import acquire
from .download.archive import build_batch_archive
from .download.browser_session import shutdown_browser_session
from .download.errors import PayloadTooLarge
from .download.naming import filename_for
from .download.result import AcquisitionResult
from .models import (
    AcquisitionRequest,
    BatchDownloadResponse,
    BatchRequest,
    DownloadResponse,
)
from .settings import get_settings
from .utils.logging import configure_logging

configure_logging()
LOGGER = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def _lifespan(_server: FastMCP) -> AsyncIterator[None]:
    try:
        yield
    finally:
        # Never leak the shared Chromium process past the server.
        await shutdown_browser_session()


mcp = FastMCP(
    "docgrab",
    instructions=(
        "Download documents (PDF, Office, archives) from URLs. Tries a direct HTTP fetch first and "
        "falls back to a headless browser when bot protection blocks it. PDFs are decrypted."
    ),
    lifespan=_lifespan,
)

Transport = Literal["stdio", "sse", "streamable-http"]


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-docgrab",
        description="MCP server: document download with browser fallback.",
    )

    transport_group = parser.add_mutually_exclusive_group()
    transport_group.add_argument(
        "--transport",
        choices=("stdio", "sse", "streamable-http"),
        help="Transport to use (default: stdio).",
    )
    transport_group.add_argument(
        "--stdio",
        dest="transport",
        action="store_const",
        const="stdio",
        help="Run using stdio transport (default).",
    )
    transport_group.add_argument(
        "--sse",
        dest="transport",
        action="store_const",
        const="sse",
        help="Run using SSE transport.",
    )
    transport_group.add_argument(
        "--http",
        "--streamable-http",
        dest="transport",
        action="store_const",
        const="streamable-http",
        help="Run using Streamable HTTP transport.",
    )

    parser.add_argument(
        "--host",
        default=None,
        help="Bind host for HTTP/SSE transports (overrides FASTMCP_HOST).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Bind port for HTTP/SSE transports (overrides FASTMCP_PORT).",
    )
    parser.add_argument(
        "--mount-path",
        default=None,
        help="Mount path for SSE transport (if supported by the runtime).",
    )
    return parser


def _resolve_transport(raw: str | None) -> Transport:
    if raw in ("stdio", "sse", "streamable-http"):
        return raw
    return "stdio"


def _resolve_host_port(host: str | None, port: int | None) -> tuple[str, int]:
    resolved_host = host or os.environ.get("FASTMCP_HOST", "127.0.0.1")
    resolved_port_raw = str(port) if port is not None else os.environ.get("FASTMCP_PORT", "8000")
    try:
        resolved_port = int(resolved_port_raw)
    except ValueError:
        resolved_port = 8000
    return resolved_host, resolved_port


def main(argv: list[str] | None = None) -> None:
    """
    Entrypoint for running the MCP server.

    Notes:
    - Many MCP clients run servers via stdio by default.
    - HTTP/SSE transports are useful for containerized and gateway deployments.
    - FastMCP does not parse CLI args by itself; we do it here.
    """
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    transport = _resolve_transport(args.transport)

    if (
        transport == "stdio"
        and sys.stdin.isatty()
        and os.environ.get("MCP_ALLOW_TTY_STDIO", "").strip().lower() not in ("1", "true", "yes")
    ):
        print(
            "Error: `--stdio` transport is intended to be launched by an MCP client (stdin/stdout JSON-RPC).",
            file=sys.stderr,
        )
        print(
            "Tip: for manual testing, run with `--http` (Streamable HTTP) instead.",
            file=sys.stderr,
        )
        print(
            "Override: set MCP_ALLOW_TTY_STDIO=1 to force stdio even when stdin is a TTY.",
            file=sys.stderr,
        )
        raise SystemExit(2)

    if transport in ("sse", "streamable-http"):
        host, port = _resolve_host_port(args.host, args.port)
        # FastMCP settings are the source of truth for host/port in HTTP transports.
        for key, value in (("host", host), ("port", port)):
            if hasattr(mcp, "settings") and hasattr(mcp.settings, key):
                setattr(mcp.settings, key, value)

    try:
        mcp.run(transport=transport, mount_path=args.mount_path)
    except TypeError:
        # Backward-compat: older MCP SDKs may not accept `mount_path`.
        mcp.run(transport=transport)


def _error_text(exc: BaseException) -> str:
    detail = str(exc).strip()
    if len(detail) > 200:
        detail = detail[:200].rstrip() + "…"
    return f"{type(exc).__name__}: {detail}" if detail else type(exc).__name__


def _unique_path(directory: Path, name: str) -> Path:
    candidate = directory / name
    if not candidate.exists():
        return candidate
    stem, suffix = candidate.stem, candidate.suffix
    for n in range(1, 1000):
        candidate = directory / f"{stem}-{n}{suffix}"
        if not candidate.exists():
            return candidate
    return directory / f"{stem}-{int(time.time() * 1000)}{suffix}"


async def write_result(result: AcquisitionResult, path: Path, *, max_bytes: int) -> int:
    """Write a result to disk, streaming when possible. Removes partial files on failure."""
    written = 0
    try:
        async with await anyio.open_file(path, "wb") as handle:
            async for chunk in result.iter_bytes():
                written += len(chunk)
                if written > max_bytes:
                    raise PayloadTooLarge(max_bytes)
                await handle.write(chunk)
    except BaseException:
        with contextlib.suppress(OSError):
            await anyio.Path(path).unlink()
        raise
    finally:
        await result.aclose()
    return written


@mcp.tool()
async def download_document(
    url: str,
    strategy: str = "auto",
    timeout_ms: int | None = None,
    output_dir: str | None = None,
) -> dict:
    """Download one document from a URL and save it to disk.

    Args:
    - url: Direct link or landing URL of the document (http/https).
    - strategy: `auto` (default) tries plain HTTP first and falls back to a headless browser
      when blocked (403/503, Cloudflare headers, HTML challenge pages). `direct` (alias `http`)
      never uses the browser. `browser` always does.
    - timeout_ms: Per-stage time budget, 1000–120000 ms (default 30000).
    - output_dir: Directory to write into (default `DOCGRAB_OUTPUT_DIR` or `./downloads`).

    Returns:
    - `{"url", "path", "content_type", "content_disposition", "size_bytes", "streamed", "status_code"}`
    - On failure, `{"url", "error"}` with the other fields empty.

    Notes:
    - PDFs are decrypted (password protection stripped) before being saved.
    - When the page is not a document the browser prints it to PDF.
    """
    settings = get_settings()
    try:
        payload: dict[str, object] = {"url": url, "strategy": strategy}
        if timeout_ms is not None:
            payload["timeout_ms"] = timeout_ms
        request = AcquisitionRequest.model_validate(payload)

        result = await acquire(request)
        try:
            directory = Path(output_dir or settings.output_dir)
            await anyio.Path(directory).mkdir(parents=True, exist_ok=True)
            path = _unique_path(directory, filename_for(request.url, result.content_disposition))
        except BaseException:
            await result.aclose()
            raise
        streamed = result.is_streamed
        size = await write_result(result, path, max_bytes=settings.max_file_size)
    except ValidationError as exc:
        return DownloadResponse(url=url, error=f"Invalid request: {exc.errors()[0].get('msg', exc)}").model_dump()
    except Exception as exc:
        LOGGER.error("Download failed for %s: %s", url, exc)
        return DownloadResponse(url=url, error=_error_text(exc)).model_dump()

    return DownloadResponse(
        url=request.url,
        path=str(path),
        content_type=result.content_type,
        content_disposition=result.content_disposition or None,
        size_bytes=size,
        streamed=streamed,
        status_code=result.status_code,
    ).model_dump()


@mcp.tool()
async def download_batch(
    urls: list[str],
    strategy: str = "auto",
    timeout_ms: int | None = None,
    output_dir: str | None = None,
) -> dict:
    """Download up to 20 documents into a single ZIP archive.

    Args:
    - urls: 1–20 document URLs.
    - strategy / timeout_ms: as for `download_document`, applied to every URL.
    - output_dir: Directory for the archive (default `DOCGRAB_OUTPUT_DIR` or `./downloads`).

    Returns:
    - `{"archive_path": str, "entries": [{"url", "name", "ok", "size_bytes", "content_type", "error"}]}`
    - A failed URL never fails the batch: it is recorded as `errors/<name>.error.txt` inside the
      archive and as an entry with `ok=false`.
    """
    settings = get_settings()
    try:
        payload: dict[str, object] = {"urls": urls, "strategy": strategy}
        if timeout_ms is not None:
            payload["timeout_ms"] = timeout_ms
        batch = BatchRequest.model_validate(payload)

        directory = Path(output_dir or settings.output_dir)
        archive_path = _unique_path(directory, "documents.zip")
        entries = await build_batch_archive(batch, archive_path)
    except ValidationError as exc:
        return BatchDownloadResponse(error=f"Invalid request: {exc.errors()[0].get('msg', exc)}").model_dump()
    except Exception as exc:
        LOGGER.error("Batch download failed: %s", exc)
        return BatchDownloadResponse(error=_error_text(exc)).model_dump()

    return BatchDownloadResponse(archive_path=str(archive_path), entries=entries).model_dump()
