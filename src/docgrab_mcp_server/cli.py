from __future__ import annotations

import argparse
import sys
from pathlib import Path


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docgrab-mcp-server",
        description="Wrapper CLI for the docgrab MCP server.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "start-mcp-server",
        help="Start the MCP server (stdio by default).",
        description=(
            "Start the docgrab MCP server. "
            "This is primarily intended for MCP hosts that launch servers via stdio. "
            "Any further arguments are forwarded to the server."
        ),
    )

    fetch = subparsers.add_parser(
        "fetch",
        help="Download a single document without an MCP host.",
    )
    fetch.add_argument("url", help="Document URL.")
    fetch.add_argument("-o", "--output", default=None, help="Output file (default: derived from the URL).")
    fetch.add_argument(
        "--strategy",
        choices=("auto", "direct", "http", "browser"),
        default="auto",
        help="Acquisition strategy (default: auto).",
    )
    fetch.add_argument("--timeout-ms", type=int, default=None, help="Per-stage timeout in ms.")

    return parser


def _has_transport_flag(argv: list[str]) -> bool:
    transport_flags = {
        "--stdio",
        "--sse",
        "--http",
        "--streamable-http",
        "--transport",
    }
    return any(arg.split("=", 1)[0] in transport_flags for arg in argv)


async def _fetch_one(args: argparse.Namespace) -> int:
    from .download import download
    from .download.browser_session import shutdown_browser_session
    from .download.naming import filename_for
    from .server import write_result
    from .settings import get_settings

    settings = get_settings()
    try:
        result = await download(args.url, strategy=args.strategy, timeout_ms=args.timeout_ms)
        path = Path(args.output) if args.output else Path(filename_for(args.url, result.content_disposition))
        size = await write_result(result, path, max_bytes=settings.max_file_size)
    except Exception as exc:
        print(f"Download failed: {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1
    finally:
        await shutdown_browser_session()

    print(f"{path} ({size} bytes, {result.content_type})")
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = _build_arg_parser()
    args, forwarded_args = parser.parse_known_args(argv)

    if args.command == "fetch":
        import anyio

        from .utils.logging import configure_logging

        if forwarded_args:
            parser.error(f"unrecognized arguments: {' '.join(forwarded_args)}")
        configure_logging()
        raise SystemExit(anyio.run(_fetch_one, args))

    from .server import main as server_main

    if forwarded_args[:1] == ["--"]:
        forwarded_args = forwarded_args[1:]

    if not _has_transport_flag(forwarded_args):
        forwarded_args = ["--stdio", *forwarded_args]

    server_main(forwarded_args)
