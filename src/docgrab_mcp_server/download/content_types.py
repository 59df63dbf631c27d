from __future__ import annotations

from typing import Iterable, Mapping

DEFAULT_CONTENT_TYPE = "application/octet-stream"

BINARY_CONTENT_TYPES = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument",
    "application/vnd.ms-excel",
    "application/vnd.ms-powerpoint",
    "application/octet-stream",
    "application/zip",
)

# Inside the browser any vendor type is worth capturing (odt, visio, ...); the page
# itself is never one of them.
BROWSER_BINARY_PREFIXES = BINARY_CONTENT_TYPES + ("application/vnd.",)

ANTIBOT_HEADERS = ("cf-ray", "cf-cache-status", "cf-mitigated")

BLOCKED_STATUS_CODES = frozenset({403, 503})

CHALLENGE_MARKERS = (
    "checking your browser",
    "cf-browser-verification",
    "just a moment",
    "_cf_chl_opt",
    "ddos-guard",
)

CHALLENGE_SNIFF_BYTES = 4096

PDF_MAGIC = b"%PDF-"


def is_binary_content_type(content_type: str, *, prefixes: Iterable[str] = BINARY_CONTENT_TYPES) -> bool:
    low = (content_type or "").lower()
    return any(t in low for t in prefixes)


def is_html_content_type(content_type: str) -> bool:
    return "text/html" in (content_type or "").lower()


def is_pdf_content_type(content_type: str) -> bool:
    return "pdf" in (content_type or "").lower()


def looks_like_pdf(data: bytes) -> bool:
    return len(data) >= len(PDF_MAGIC) and data[: len(PDF_MAGIC)] == PDF_MAGIC


def has_antibot_header(headers: Mapping[str, str]) -> bool:
    keys = {k.lower() for k in headers.keys()}
    return any(name in keys for name in ANTIBOT_HEADERS)


def find_challenge_marker(prefix: bytes) -> str | None:
    text = prefix.decode("utf-8", errors="ignore").lower()
    for marker in CHALLENGE_MARKERS:
        if marker in text:
            return marker
    return None
