from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import anyio


def ensure_src_on_sys_path(repo_root: Path) -> None:
    """Allow running this script directly (e.g., from an IDE) without installing the package."""
    src_str = str(repo_root / "src")
    if src_str not in sys.path:
        sys.path.insert(0, src_str)


def normalize_call_tool_result(result: object) -> object:
    """
    `FastMCP.call_tool()` may return a dict, a list of ContentBlocks (TextContent holding
    JSON), or a `(content, structured)` tuple depending on the SDK version.
    """
    if isinstance(result, dict):
        return result

    if isinstance(result, tuple) and len(result) == 2 and isinstance(result[1], dict):
        return result[1].get("result", result[1])

    if isinstance(result, list):
        texts = [getattr(item, "text", None) or str(item) for item in result]
        if len(texts) == 1:
            try:
                return json.loads(texts[0])
            except ValueError:
                return {"content": texts[0]}
        return {"content": texts}

    return {"result": str(result)}


async def main() -> None:
    ensure_src_on_sys_path(Path(__file__).resolve().parents[1])

    from docgrab_mcp_server.download.browser_session import shutdown_browser_session
    from docgrab_mcp_server.server import mcp

    urls = sys.argv[1:] or ["https://arxiv.org/pdf/1706.03762"]
    strategy = os.environ.get("STRATEGY", "auto")

    try:
        # Calls the tool handlers directly (no MCP host required).
        if len(urls) == 1:
            result = await mcp.call_tool("download_document", arguments={"url": urls[0], "strategy": strategy})
        else:
            result = await mcp.call_tool("download_batch", arguments={"urls": urls, "strategy": strategy})
    finally:
        await shutdown_browser_session()

    print(json.dumps(normalize_call_tool_result(result), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    # Run example:
    #   PYTHONPATH=src python examples/script_download_document.py https://example.com/report.pdf
    anyio.run(main)
