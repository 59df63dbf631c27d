from __future__ import annotations

import re
from urllib.parse import unquote, urlparse

# RFC 6266 / 5987: `filename*=UTF-8''r%C3%A9sum%C3%A9.pdf` wins over `filename="..."`.
_DISPOSITION_EXT_RE = re.compile(r"filename\*\s*=\s*[\w!#$%&+^`{}~-]*'[^']*'([^;\n]+)", re.IGNORECASE)
_DISPOSITION_FILENAME_RE = re.compile(r"filename\s*=\s*(\"[^\"]*\"|[^;\n]+)", re.IGNORECASE)
_UNSAFE_CHARS_RE = re.compile(r"[\x00-\x1f<>:\"|?*\\/]+")


def safe_filename(name: str) -> str:
    """Reduce an untrusted name to a single path component."""
    name = unquote(name or "").strip()
    name = name.replace("\\", "/").rsplit("/", 1)[-1]
    name = _UNSAFE_CHARS_RE.sub("_", name).strip(" .")
    return name[:200]


def filename_from_url(url: str, index: int) -> str:
    try:
        path = urlparse(url).path
    except ValueError:
        path = ""
    parts = [p for p in path.split("/") if p]
    if parts:
        basename = safe_filename(parts[-1])
        if basename and "." in basename:
            return basename
    return f"document_{index}"


def filename_from_disposition(content_disposition: str) -> str | None:
    content_disposition = content_disposition or ""
    match = _DISPOSITION_EXT_RE.search(content_disposition)
    if match:
        name = safe_filename(match.group(1))
        if name:
            return name
    match = _DISPOSITION_FILENAME_RE.search(content_disposition)
    if not match:
        return None
    return safe_filename(match.group(1).strip().strip('"')) or None


def filename_for(url: str, content_disposition: str, index: int = 0) -> str:
    """Archive/output name: Content-Disposition first, then the URL basename, then `document_<index>`."""
    return filename_from_disposition(content_disposition) or filename_from_url(url, index)
