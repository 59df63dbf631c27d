from __future__ import annotations

import zipfile
from pathlib import Path
from unittest.mock import patch

import anyio

from docgrab_mcp_server.download.archive import build_batch_archive
from docgrab_mcp_server.download.errors import FetchFailed
from docgrab_mcp_server.download.result import AcquisitionResult
from docgrab_mcp_server.models import BatchRequest


def _fake_acquire(results: dict[str, AcquisitionResult | Exception]):
    async def fake(request, **_kwargs):
        outcome = results[request.url]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return fake


def test_batch_archive_records_failures_without_aborting(tmp_path: Path) -> None:
    results = {
        "https://a.example.com/one.pdf": AcquisitionResult.buffered(
            b"%PDF-1.7 one", content_type="application/pdf", status_code=200
        ),
        "https://no-such-host.invalid/two.pdf": FetchFailed("ConnectError: Name or service not known"),
        "https://c.example.com/download?id=3": AcquisitionResult.buffered(
            b"PK\x03\x04", content_type="application/zip", content_disposition='attachment; filename="three.zip"'
        ),
    }
    batch = BatchRequest(urls=list(results))
    destination = tmp_path / "out" / "documents.zip"

    async def run():
        with patch("docgrab_mcp_server.download.archive.acquire", side_effect=_fake_acquire(results)):
            return await build_batch_archive(batch, destination)

    entries = anyio.run(run)

    assert [e.ok for e in entries] == [True, False, True]
    assert [e.name for e in entries] == ["one.pdf", "errors/two.pdf.error.txt", "three.zip"]
    assert entries[0].size_bytes == len(b"%PDF-1.7 one")
    assert entries[2].content_type == "application/zip"
    assert "ConnectError" in (entries[1].error or "")

    with zipfile.ZipFile(destination) as zf:
        assert sorted(zf.namelist()) == ["errors/two.pdf.error.txt", "one.pdf", "three.zip"]
        assert zf.read("one.pdf") == b"%PDF-1.7 one"
        assert zf.read("errors/two.pdf.error.txt").decode("utf-8").startswith("Download failed: FetchFailed")


def test_batch_archive_names_fall_back_and_deduplicate(tmp_path: Path) -> None:
    results = {
        "https://example.com/": AcquisitionResult.buffered(b"%PDF-a", content_type="application/pdf"),
        "https://a.example.com/paper.pdf": AcquisitionResult.buffered(b"%PDF-b", content_type="application/pdf"),
        "https://b.example.com/paper.pdf": AcquisitionResult.buffered(b"%PDF-c", content_type="application/pdf"),
    }
    batch = BatchRequest(urls=list(results))
    destination = tmp_path / "documents.zip"

    async def run():
        with patch("docgrab_mcp_server.download.archive.acquire", side_effect=_fake_acquire(results)):
            return await build_batch_archive(batch, destination)

    entries = anyio.run(run)
    names = [e.name for e in entries]

    assert names[0] == "document_0"
    assert len(set(names)) == 3
    assert "paper.pdf" in names
    assert any(n.endswith("_paper.pdf") for n in names)


def test_batch_archive_rejects_oversized_entries(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("DOCGRAB_MAX_FILE_SIZE", "4")
    results = {
        "https://example.com/big.pdf": AcquisitionResult.buffered(b"%PDF-too-big", content_type="application/pdf"),
    }
    batch = BatchRequest(urls=list(results))

    async def run():
        with patch("docgrab_mcp_server.download.archive.acquire", side_effect=_fake_acquire(results)):
            return await build_batch_archive(batch, tmp_path / "documents.zip")

    entries = anyio.run(run)

    assert entries[0].ok is False
    assert entries[0].name == "errors/big.pdf.error.txt"
    assert "PayloadTooLarge" in (entries[0].error or "")


def test_batch_archive_keeps_duplicate_error_entries_in_errors_folder(tmp_path: Path) -> None:
    results = {
        "https://a.invalid/x.pdf": FetchFailed("ConnectError: Name or service not known"),
        "https://b.invalid/x.pdf": FetchFailed("ConnectError: Name or service not known"),
    }
    batch = BatchRequest(urls=list(results))
    destination = tmp_path / "documents.zip"

    async def run():
        with patch("docgrab_mcp_server.download.archive.acquire", side_effect=_fake_acquire(results)):
            return await build_batch_archive(batch, destination)

    entries = anyio.run(run)

    with zipfile.ZipFile(destination) as zf:
        names = zf.namelist()

    assert len(set(names)) == 2
    assert all(name.startswith("errors/") for name in names)
    assert sorted(e.name for e in entries) == sorted(names)
    assert any(name.endswith("_x.pdf.error.txt") for name in names)
