from __future__ import annotations

import os
import unittest
import zipfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from docgrab_mcp_server.download.errors import BlockedError, FetchFailed
from docgrab_mcp_server.download.result import AcquisitionResult

PDF_BYTES = b"%PDF-1.7\n%%EOF\n"


def _pdf_result(disposition: str = "", status_code: int | None = 200) -> AcquisitionResult:
    return AcquisitionResult.buffered(
        PDF_BYTES,
        content_type="application/pdf",
        content_disposition=disposition,
        status_code=status_code,
    )


class TestDownloadDocumentTool(unittest.IsolatedAsyncioTestCase):
    async def test_writes_document_to_output_dir(self) -> None:
        from docgrab_mcp_server.server import download_document

        out_dir = Path(os.environ["DOCGRAB_OUTPUT_DIR"])
        with patch("docgrab_mcp_server.server.acquire", new_callable=AsyncMock) as mock_acquire:
            mock_acquire.return_value = _pdf_result('attachment; filename="annual report.pdf"')
            out = await download_document("https://example.com/download?id=7")

        self.assertIsNone(out["error"])
        self.assertEqual(Path(out["path"]), out_dir / "annual report.pdf")
        self.assertEqual(Path(out["path"]).read_bytes(), PDF_BYTES)
        self.assertEqual(out["size_bytes"], len(PDF_BYTES))
        self.assertEqual(out["status_code"], 200)
        self.assertFalse(out["streamed"])

        request = mock_acquire.call_args.args[0]
        self.assertEqual(request.strategy, "auto")
        self.assertEqual(request.timeout_ms, 30000)

    async def test_existing_file_is_not_overwritten(self) -> None:
        from docgrab_mcp_server.server import download_document

        with patch("docgrab_mcp_server.server.acquire", new_callable=AsyncMock) as mock_acquire:
            mock_acquire.side_effect = lambda *_a, **_k: _pdf_result()
            first = await download_document("https://example.com/paper.pdf")
            second = await download_document("https://example.com/paper.pdf")

        self.assertNotEqual(first["path"], second["path"])
        self.assertTrue(second["path"].endswith("paper-1.pdf"))

    async def test_explicit_output_dir_and_strategy(self) -> None:
        from docgrab_mcp_server.server import download_document

        target = Path(os.environ["DOCGRAB_OUTPUT_DIR"]).parent / "custom"
        with patch("docgrab_mcp_server.server.acquire", new_callable=AsyncMock) as mock_acquire:
            mock_acquire.return_value = _pdf_result(status_code=None)
            out = await download_document(
                "https://example.com/paper.pdf",
                strategy="browser",
                timeout_ms=5000,
                output_dir=str(target),
            )

        self.assertEqual(Path(out["path"]).parent, target)
        self.assertIsNone(out["status_code"])
        request = mock_acquire.call_args.args[0]
        self.assertEqual(request.strategy, "browser")
        self.assertEqual(request.timeout_seconds, 5.0)

    async def test_invalid_strategy_is_reported(self) -> None:
        from docgrab_mcp_server.server import download_document

        with patch("docgrab_mcp_server.server.acquire", new_callable=AsyncMock) as mock_acquire:
            out = await download_document("https://example.com/a.pdf", strategy="teleport")

        self.assertTrue(out["error"].startswith("Invalid request:"))
        self.assertIsNone(out["path"])
        mock_acquire.assert_not_called()

    async def test_timeout_out_of_range_is_reported(self) -> None:
        from docgrab_mcp_server.server import download_document

        out = await download_document("https://example.com/a.pdf", timeout_ms=10)

        self.assertTrue(out["error"].startswith("Invalid request:"))

    async def test_acquisition_errors_become_error_responses(self) -> None:
        from docgrab_mcp_server.server import download_document

        for exc in (BlockedError("HTTP download blocked (blocked_status)"), FetchFailed("ConnectError: boom")):
            with patch("docgrab_mcp_server.server.acquire", new_callable=AsyncMock) as mock_acquire:
                mock_acquire.side_effect = exc
                out = await download_document("https://example.com/a.pdf", strategy="direct")

            self.assertTrue(out["error"].startswith(type(exc).__name__))
            self.assertIsNone(out["path"])

    async def test_oversized_document_leaves_no_partial_file(self) -> None:
        from docgrab_mcp_server.server import download_document

        out_dir = Path(os.environ["DOCGRAB_OUTPUT_DIR"])
        with patch.dict(os.environ, {"DOCGRAB_MAX_FILE_SIZE": "4"}), patch(
            "docgrab_mcp_server.server.acquire", new_callable=AsyncMock
        ) as mock_acquire:
            mock_acquire.return_value = _pdf_result()
            out = await download_document("https://example.com/a.pdf")

        self.assertIn("PayloadTooLarge", out["error"])
        self.assertEqual(list(out_dir.iterdir()), [])


class TestDownloadBatchTool(unittest.IsolatedAsyncioTestCase):
    async def test_batch_writes_archive(self) -> None:
        from docgrab_mcp_server.server import download_batch

        async def fake_acquire(request, **_kwargs):
            if "bad" in request.url:
                raise FetchFailed("ConnectError: Name or service not known")
            return _pdf_result()

        with patch("docgrab_mcp_server.download.archive.acquire", side_effect=fake_acquire):
            out = await download_batch(["https://example.com/a.pdf", "https://bad.invalid/b.pdf"])

        self.assertIsNone(out["error"])
        self.assertTrue(out["archive_path"].endswith("documents.zip"))
        self.assertEqual([e["ok"] for e in out["entries"]], [True, False])
        with zipfile.ZipFile(out["archive_path"]) as zf:
            self.assertIn("errors/b.pdf.error.txt", zf.namelist())

    async def test_batch_rejects_more_than_twenty_urls(self) -> None:
        from docgrab_mcp_server.server import download_batch

        urls = [f"https://example.com/{i}.pdf" for i in range(21)]
        out = await download_batch(urls)

        self.assertTrue(out["error"].startswith("Invalid request:"))
        self.assertIsNone(out["archive_path"])

    async def test_batch_rejects_empty_list(self) -> None:
        from docgrab_mcp_server.server import download_batch

        out = await download_batch([])

        self.assertTrue(out["error"].startswith("Invalid request:"))


class TestServerWiring(unittest.IsolatedAsyncioTestCase):
    async def test_tools_are_registered(self) -> None:
        from docgrab_mcp_server.server import mcp

        tools = await mcp.list_tools()
        names = {tool.name for tool in tools}

        self.assertEqual(names, {"download_document", "download_batch"})

    def test_resolve_host_port_defaults(self) -> None:
        from docgrab_mcp_server.server import _resolve_host_port

        with patch.dict(os.environ, {"FASTMCP_PORT": "not-a-port"}, clear=False):
            self.assertEqual(_resolve_host_port(None, None)[1], 8000)
        self.assertEqual(_resolve_host_port("0.0.0.0", 9001), ("0.0.0.0", 9001))

    def test_stdio_on_tty_is_refused(self) -> None:
        from docgrab_mcp_server import server

        fake_sys = MagicMock()
        fake_sys.stdin.isatty.return_value = True
        with patch.object(server, "sys", fake_sys), patch.dict(
            os.environ, {"MCP_ALLOW_TTY_STDIO": ""}, clear=False
        ):
            with self.assertRaises(SystemExit) as ctx:
                server.main(["--stdio"])

        self.assertEqual(ctx.exception.code, 2)


if __name__ == "__main__":
    unittest.main()
