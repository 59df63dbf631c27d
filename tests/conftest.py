from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch, tmp_path):
    """Keep unit tests deterministic: no host qpdf, and downloads land under a per-test directory."""
    monkeypatch.setenv("DOCGRAB_OUTPUT_DIR", str(tmp_path / "downloads"))
    monkeypatch.setenv("DOCGRAB_QPDF_PATH", "docgrab-test-missing-qpdf")
    for key in (
        "DOCGRAB_DEFAULT_TIMEOUT_MS",
        "DOCGRAB_MAX_FILE_SIZE",
        "DOCGRAB_BATCH_MAX_CONCURRENCY",
        "DOCGRAB_BROWSER_IDLE_SECONDS",
    ):
        monkeypatch.delenv(key, raising=False)
