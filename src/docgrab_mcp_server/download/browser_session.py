from __future__ import annotations

import asyncio
import atexit
import contextlib
import enum
import logging
import tempfile
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

from ..settings import Settings, get_settings
from .chromium import (
    build_chromium_launch_args,
    launch_chromium,
    pick_free_port,
    resolve_browser_executable_path,
    terminate_process,
    terminate_process_sync,
    wait_for_devtools_ready,
)
from .errors import BrowserLaunchFailed

LOGGER = logging.getLogger(__name__)


@dataclass
class BrowserHandle:
    """A running Chromium process plus the nodriver connection driving it."""

    browser: Any
    proc: asyncio.subprocess.Process | None = None
    user_data_dir: tempfile.TemporaryDirectory[str] | None = None
    host: str = "127.0.0.1"
    port: int | None = None

    def is_connected(self) -> bool:
        if self.proc is not None and self.proc.returncode is not None:
            return False
        return self.browser is not None

    async def new_tab(self) -> Any:
        return await self.browser.get("about:blank", new_tab=True)

    async def close(self) -> None:
        stopper = getattr(self.browser, "stop", None)
        if callable(stopper):
            with contextlib.suppress(Exception):
                maybe = stopper()
                if asyncio.iscoroutine(maybe):
                    await maybe
        if self.proc is not None:
            await terminate_process(self.proc)
            self.proc = None
        if self.user_data_dir is not None:
            self.user_data_dir.cleanup()
            self.user_data_dir = None

    def close_sync(self) -> None:
        if self.proc is not None:
            terminate_process_sync(self.proc)
            self.proc = None
        if self.user_data_dir is not None:
            with contextlib.suppress(Exception):
                self.user_data_dir.cleanup()
            self.user_data_dir = None


Launcher = Callable[[], Awaitable[BrowserHandle]]


async def launch_browser(settings: Settings | None = None) -> BrowserHandle:
    """Start a headless Chromium and connect nodriver to it (do not let nodriver spawn another)."""
    settings = settings or get_settings()
    try:
        import nodriver as uc  # type: ignore
    except ImportError as exc:
        raise BrowserLaunchFailed(
            "nodriver is required for browser downloads. Install with: pip install nodriver"
        ) from exc

    executable = resolve_browser_executable_path(settings.browser_executable_path)
    if not executable:
        raise BrowserLaunchFailed(
            "No Chromium-based browser executable found. "
            "Install Chromium/Chrome or set DOCGRAB_BROWSER_EXECUTABLE_PATH."
        )

    # Chromium may still be flushing profile writes briefly after exit; never fail on cleanup.
    user_data_dir = tempfile.TemporaryDirectory(prefix="docgrab-chromium-", ignore_cleanup_errors=True)
    host = "127.0.0.1"
    port = pick_free_port(host)
    args = build_chromium_launch_args(
        user_data_dir=user_data_dir.name,
        host=host,
        port=port,
        sandbox_enabled=settings.sandbox_enabled,
    )
    LOGGER.info("Launching Chromium (%s) on %s:%s", executable, host, port)

    proc: asyncio.subprocess.Process | None = None
    try:
        proc = await launch_chromium(executable, args)
        await wait_for_devtools_ready(
            host=host,
            port=port,
            proc=proc,
            timeout_seconds=settings.devtools_ready_timeout_seconds,
        )
        browser = await uc.start(host=host, port=port)
    except Exception as exc:
        if proc is not None:
            await terminate_process(proc)
        user_data_dir.cleanup()
        raise BrowserLaunchFailed(
            f"Failed to start Chromium ({type(exc).__name__}: {exc}). "
            "If running as root (e.g., in Docker), keep the sandbox disabled."
        ) from exc

    return BrowserHandle(browser=browser, proc=proc, user_data_dir=user_data_dir, host=host, port=port)


class SessionState(enum.Enum):
    ABSENT = "absent"
    LAUNCHING = "launching"
    READY = "ready"


class BrowserSession:
    """
    Owner of the single shared browser.

    States: ABSENT -> LAUNCHING -> READY -> ABSENT (idle expiry or shutdown).
    Concurrent `acquire()` calls during LAUNCHING all await the same launch future,
    so at most one browser process is ever started at a time.
    """

    def __init__(
        self,
        *,
        idle_seconds: float | None = None,
        launcher: Launcher | None = None,
    ) -> None:
        self.idle_seconds = idle_seconds if idle_seconds is not None else get_settings().browser_idle_seconds
        self._launcher: Launcher = launcher or launch_browser
        self._state = SessionState.ABSENT
        self._handle: BrowserHandle | None = None
        self._launching: asyncio.Future[BrowserHandle] | None = None
        self._idle_timer: asyncio.TimerHandle | None = None
        self._closing: set[asyncio.Task[None]] = set()
        self._in_use = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def handle(self) -> BrowserHandle | None:
        return self._handle

    async def acquire(self) -> BrowserHandle:
        if self._state is SessionState.READY and self._handle is not None:
            if self._handle.is_connected():
                self._arm_idle_timer()
                return self._handle
            LOGGER.info("Shared browser is no longer connected; relaunching")
            self._release(self._handle)

        if self._launching is None:
            self._state = SessionState.LAUNCHING
            self._launching = asyncio.ensure_future(self._launch())
            self._launching.add_done_callback(_consume_exception)

        # Shield: one caller timing out must not cancel the launch the others share.
        return await asyncio.shield(self._launching)

    async def _launch(self) -> BrowserHandle:
        try:
            handle = await self._launcher()
        except BaseException:
            self._state = SessionState.ABSENT
            self._launching = None
            raise
        self._handle = handle
        self._state = SessionState.READY
        self._launching = None
        self._arm_idle_timer()
        LOGGER.debug("Shared browser ready")
        return handle

    @contextlib.asynccontextmanager
    async def use(self) -> AsyncIterator[BrowserHandle]:
        """Acquire the browser and keep it from idling out until the block exits."""
        handle = await self.acquire()
        self._in_use += 1
        try:
            yield handle
        finally:
            self._in_use -= 1

    def touch(self) -> None:
        """Record a successful use; rearms the idle timer while READY."""
        if self._state is SessionState.READY:
            self._arm_idle_timer()

    def _arm_idle_timer(self) -> None:
        self._cancel_idle_timer()
        loop = asyncio.get_running_loop()
        self._idle_timer = loop.call_later(self.idle_seconds, self._on_idle)

    def _cancel_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    def _on_idle(self) -> None:
        self._idle_timer = None
        handle = self._handle
        if self._state is not SessionState.READY or handle is None:
            return
        if self._in_use:
            self._arm_idle_timer()
            return
        LOGGER.info("Shared browser idle for %.1fs; closing", self.idle_seconds)
        self._release(handle)

    def _release(self, handle: BrowserHandle) -> None:
        # Detach synchronously so a concurrent acquire() launches fresh instead of
        # reusing a browser that is being torn down.
        self._cancel_idle_timer()
        self._handle = None
        self._state = SessionState.ABSENT
        task = asyncio.ensure_future(self._close_quietly(handle))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    @staticmethod
    async def _close_quietly(handle: BrowserHandle) -> None:
        try:
            await handle.close()
        except Exception as exc:
            LOGGER.debug("Failed to close browser: %s", exc)

    async def wait_closed(self) -> None:
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    async def shutdown(self) -> None:
        self._cancel_idle_timer()
        launching = self._launching
        if launching is not None:
            with contextlib.suppress(Exception):
                await asyncio.shield(launching)
        handle = self._handle
        self._handle = None
        self._state = SessionState.ABSENT
        if handle is not None:
            await self._close_quietly(handle)
        await self.wait_closed()

    def shutdown_sync(self) -> None:
        handle = self._handle
        self._handle = None
        self._state = SessionState.ABSENT
        if handle is not None:
            handle.close_sync()


def _consume_exception(future: asyncio.Future[Any]) -> None:
    # Avoid "exception was never retrieved" when every waiter was cancelled.
    if not future.cancelled():
        future.exception()


_SESSION: BrowserSession | None = None
_SHUTDOWN_REGISTERED = False


def get_browser_session() -> BrowserSession:
    global _SESSION
    if _SESSION is None:
        _SESSION = BrowserSession()
        _register_shutdown(_SESSION)
    return _SESSION


async def shutdown_browser_session() -> None:
    global _SESSION
    session = _SESSION
    if session is None:
        return
    _SESSION = None
    await session.shutdown()


def _register_shutdown(session: BrowserSession) -> None:
    global _SHUTDOWN_REGISTERED
    if _SHUTDOWN_REGISTERED:
        return
    _SHUTDOWN_REGISTERED = True

    def _shutdown() -> None:
        current = _SESSION or session
        current.shutdown_sync()

    atexit.register(_shutdown)
