from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_TIMEOUT_MS = 30_000
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 120_000
DEFAULT_BROWSER_IDLE_SECONDS = 60.0
DEFAULT_MAX_FILE_SIZE = 100 * 1024 * 1024
DEFAULT_QPDF_TIMEOUT_SECONDS = 30.0
DEFAULT_DEVTOOLS_READY_TIMEOUT_SECONDS = 12.0
DEFAULT_BATCH_MAX_CONCURRENCY = 4
MAX_BATCH_URLS = 20


def _get_int_env(key: str, default: int) -> int:
    raw = (os.environ.get(key) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _get_float_env(key: str, default: float) -> float:
    raw = (os.environ.get(key) or "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _get_str_env(*keys: str) -> str | None:
    for key in keys:
        value = (os.environ.get(key) or "").strip()
        if value:
            return value
    return None


def _get_bool_env(key: str) -> bool | None:
    raw = (os.environ.get(key) or "").strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return None


@dataclass(frozen=True)
class Settings:
    """Runtime configuration (env-first).

    Note: keep this module lightweight; it is imported by tests. Values are read
    when `get_settings()` is called so tests can patch `os.environ`.
    """

    default_timeout_ms: int = DEFAULT_TIMEOUT_MS
    browser_idle_seconds: float = DEFAULT_BROWSER_IDLE_SECONDS
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    browser_executable_path: str | None = None
    sandbox_enabled: bool = False
    devtools_ready_timeout_seconds: float = DEFAULT_DEVTOOLS_READY_TIMEOUT_SECONDS
    qpdf_path: str = "qpdf"
    qpdf_timeout_seconds: float = DEFAULT_QPDF_TIMEOUT_SECONDS
    output_dir: str = "downloads"
    batch_max_concurrency: int = DEFAULT_BATCH_MAX_CONCURRENCY


def _resolve_sandbox_enabled() -> bool:
    """
    Chromium generally cannot start with its sandbox as root (e.g. in Docker), so the
    sandbox is off unless explicitly requested by a non-root user.
    """
    try:
        if hasattr(os, "geteuid") and os.geteuid() == 0:
            return False
    except Exception:
        pass
    return bool(_get_bool_env("DOCGRAB_NODRIVER_SANDBOX"))


def get_settings() -> Settings:
    timeout_ms = _get_int_env("DOCGRAB_DEFAULT_TIMEOUT_MS", DEFAULT_TIMEOUT_MS)
    idle_seconds = _get_float_env("DOCGRAB_BROWSER_IDLE_SECONDS", DEFAULT_BROWSER_IDLE_SECONDS)
    max_file_size = _get_int_env("DOCGRAB_MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE)
    devtools_timeout = _get_float_env(
        "DOCGRAB_DEVTOOLS_READY_TIMEOUT_SECONDS", DEFAULT_DEVTOOLS_READY_TIMEOUT_SECONDS
    )
    qpdf_timeout = _get_float_env("DOCGRAB_QPDF_TIMEOUT_SECONDS", DEFAULT_QPDF_TIMEOUT_SECONDS)
    concurrency = _get_int_env("DOCGRAB_BATCH_MAX_CONCURRENCY", DEFAULT_BATCH_MAX_CONCURRENCY)

    return Settings(
        default_timeout_ms=max(MIN_TIMEOUT_MS, min(timeout_ms, MAX_TIMEOUT_MS)),
        browser_idle_seconds=max(1.0, min(idle_seconds, 3600.0)),
        max_file_size=max_file_size if max_file_size > 0 else DEFAULT_MAX_FILE_SIZE,
        browser_executable_path=_get_str_env(
            "DOCGRAB_BROWSER_EXECUTABLE_PATH",
            "BROWSER_EXECUTABLE_PATH",
            "CHROME_PATH",
            "CHROME_BIN",
        ),
        sandbox_enabled=_resolve_sandbox_enabled(),
        devtools_ready_timeout_seconds=max(0.5, min(devtools_timeout, 120.0)),
        qpdf_path=_get_str_env("DOCGRAB_QPDF_PATH") or "qpdf",
        qpdf_timeout_seconds=max(1.0, min(qpdf_timeout, 300.0)),
        output_dir=_get_str_env("DOCGRAB_OUTPUT_DIR") or "downloads",
        batch_max_concurrency=max(1, min(concurrency, MAX_BATCH_URLS)),
    )
