from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, patch

from docgrab_mcp_server.download.chromium import build_chromium_launch_args
from docgrab_mcp_server.download.errors import BrowserFetchFailed, BrowserLaunchFailed


class _FakeProc:
    returncode = None
    pid = None

    def terminate(self) -> None:
        self.returncode = -15

    async def wait(self) -> int:
        return self.returncode or 0


class _TempDir:
    captured: dict[str, object] = {}

    def __init__(self, *args, **kwargs) -> None:
        _TempDir.captured = dict(kwargs)
        self.name = "/tmp/docgrab-chromium-test"
        self.cleaned = False

    def cleanup(self) -> None:
        self.cleaned = True


class TestLaunchBrowser(unittest.IsolatedAsyncioTestCase):
    async def _launch(self, *, start: AsyncMock, devtools: AsyncMock | None = None, env: dict[str, str] | None = None):
        from docgrab_mcp_server.download import browser_session

        launch = AsyncMock(return_value=_FakeProc())
        with (
            patch.dict("sys.modules", {"nodriver": type("X", (), {"start": start})}),
            patch.dict("os.environ", env or {}, clear=False),
            patch.object(browser_session, "resolve_browser_executable_path", return_value="/usr/bin/chromium"),
            patch.object(browser_session, "launch_chromium", launch),
            patch.object(browser_session, "wait_for_devtools_ready", devtools or AsyncMock()),
            patch.object(browser_session.tempfile, "TemporaryDirectory", _TempDir),
        ):
            handle = await browser_session.launch_browser()
        return handle, launch

    async def test_connects_nodriver_to_owned_process(self) -> None:
        browser = object()
        start = AsyncMock(return_value=browser)

        handle, launch = await self._launch(start=start)

        self.assertIs(handle.browser, browser)
        self.assertTrue(handle.is_connected())
        kwargs = start.call_args.kwargs
        self.assertEqual(kwargs["host"], "127.0.0.1")
        self.assertEqual(kwargs["port"], handle.port)
        args = launch.call_args.args[1]
        self.assertIn(f"--remote-debugging-port={handle.port}", args)
        self.assertIn("--user-data-dir=/tmp/docgrab-chromium-test", args)
        self.assertTrue(_TempDir.captured.get("ignore_cleanup_errors"))

    async def test_devtools_failure_raises_launch_failed_and_cleans_up(self) -> None:
        devtools = AsyncMock(side_effect=RuntimeError("Chromium exited early (code=1)"))

        with self.assertRaises(BrowserLaunchFailed) as ctx:
            await self._launch(start=AsyncMock(), devtools=devtools)

        self.assertIsInstance(ctx.exception, BrowserFetchFailed)
        self.assertIn("exited early", str(ctx.exception))

    async def test_missing_executable_raises_launch_failed(self) -> None:
        from docgrab_mcp_server.download import browser_session

        with (
            patch.dict("sys.modules", {"nodriver": type("X", (), {"start": AsyncMock()})}),
            patch.object(browser_session, "resolve_browser_executable_path", return_value=None),
        ):
            with self.assertRaises(BrowserLaunchFailed) as ctx:
                await browser_session.launch_browser()

        self.assertIn("DOCGRAB_BROWSER_EXECUTABLE_PATH", str(ctx.exception))


class TestChromiumArgs(unittest.TestCase):
    def test_disables_sandbox_unless_enabled(self) -> None:
        args = build_chromium_launch_args(user_data_dir="/tmp/p", host="127.0.0.1", port=9222, sandbox_enabled=False)
        self.assertIn("--no-sandbox", args)
        self.assertIn("--headless=new", args)
        self.assertIn("--remote-debugging-host=127.0.0.1", args)

        args = build_chromium_launch_args(user_data_dir="/tmp/p", host="127.0.0.1", port=9222, sandbox_enabled=True)
        self.assertNotIn("--no-sandbox", args)


if __name__ == "__main__":
    unittest.main()
