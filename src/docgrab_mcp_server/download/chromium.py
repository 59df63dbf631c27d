from __future__ import annotations

import asyncio
import contextlib
import os
import shutil
import signal
import socket
import subprocess
import time

import httpx

# Fixed hardened flag set for a shared headless Chromium in a container.
HARDENED_BROWSER_ARGS = (
    "--headless=new",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-default-apps",
    "--disable-sync",
    "--no-first-run",
    "--no-zygote",
    "--mute-audio",
    "--disable-blink-features=AutomationControlled",
    "--disable-logging",
    "--log-level=3",
    "--window-size=1920,1080",
)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)


def resolve_browser_executable_path(explicit_path: str | None) -> str | None:
    if explicit_path and explicit_path.strip():
        return explicit_path.strip()

    for name in ("google-chrome-stable", "google-chrome", "chromium", "chromium-browser", "chrome"):
        resolved = shutil.which(name)
        if resolved:
            return resolved

    return None


def pick_free_port(host: str = "127.0.0.1") -> int:
    # Best-effort selection: inherently racy, so startup must tolerate collisions.
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return int(s.getsockname()[1])


def build_chromium_launch_args(
    *,
    user_data_dir: str,
    host: str,
    port: int,
    sandbox_enabled: bool,
    user_agent: str = DEFAULT_USER_AGENT,
) -> list[str]:
    return [
        # Ensure we only bind DevTools to loopback.
        f"--remote-debugging-host={host}",
        f"--remote-debugging-port={port}",
        f"--user-data-dir={user_data_dir}",
        *([] if sandbox_enabled else ["--no-sandbox"]),
        *HARDENED_BROWSER_ARGS,
        f"--user-agent={user_agent}",
        "about:blank",
    ]


async def launch_chromium(executable_path: str, args: list[str]) -> asyncio.subprocess.Process:
    # Discard Chromium stdout/stderr to avoid deadlocks on filled pipes.
    return await asyncio.create_subprocess_exec(
        executable_path,
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
        start_new_session=(os.name == "posix"),
    )


async def wait_for_devtools_ready(
    *,
    host: str,
    port: int,
    proc: asyncio.subprocess.Process,
    timeout_seconds: float,
) -> None:
    """
    Wait until the DevTools HTTP endpoint responds.

    Chrome exposes `webSocketDebuggerUrl` via GET `/json/version`. This is a stronger readiness signal
    than a raw TCP connect because it requires the browser to be responsive, not just listening.
    """
    deadline = time.monotonic() + max(0.1, timeout_seconds)
    url = f"http://{host}:{port}/json/version"

    # Never allow proxy env vars to hijack localhost traffic.
    async with httpx.AsyncClient(trust_env=False) as client:
        while time.monotonic() < deadline:
            if proc.returncode is not None:
                raise RuntimeError(f"Chromium exited early (code={proc.returncode})")
            try:
                resp = await client.get(url, timeout=0.75)
                if resp.status_code == 200:
                    return
            except httpx.HTTPError:
                pass
            await asyncio.sleep(0.1)

    raise RuntimeError("DevTools endpoint did not become ready in time")


async def terminate_process(proc: asyncio.subprocess.Process, *, grace_seconds: float = 1.5) -> None:
    if proc.returncode is not None:
        return

    terminated = False
    if os.name == "posix" and proc.pid is not None:
        try:
            os.killpg(proc.pid, signal.SIGTERM)
            terminated = True
        except OSError:
            terminated = False
    if not terminated:
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()

    try:
        await asyncio.wait_for(proc.wait(), timeout=grace_seconds)
        return
    except asyncio.TimeoutError:
        pass

    if os.name == "posix" and proc.pid is not None:
        with contextlib.suppress(OSError):
            os.killpg(proc.pid, signal.SIGKILL)
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    with contextlib.suppress(Exception):
        await proc.wait()


def terminate_process_sync(proc: asyncio.subprocess.Process) -> None:
    """Last-resort termination usable from `atexit`, where no event loop is running."""
    if proc.returncode is not None or proc.pid is None:
        return
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGTERM)
            time.sleep(0.2)
            with contextlib.suppress(OSError):
                os.killpg(proc.pid, signal.SIGKILL)
        else:
            subprocess.run(
                ["taskkill", "/F", "/T", "/PID", str(proc.pid)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
    except OSError:
        pass
