"""Filename sanitizing and Content-Disposition construction."""
from __future__ import annotations

import re
from typing import Optional
from urllib.parse import quote

from ..constants import FALLBACK_FILENAME, MAX_FILENAME_LENGTH

_LINE_BREAKS_RE = re.compile(r"[\r\n]+")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_ILLEGAL_RE = re.compile(r'[\\/:*?"<>|]')
_WHITESPACE_RE = re.compile(r"\s+")
_NON_ASCII_RE = re.compile(r"[^\x20-\x7e]")


def sanitize_filename(value: str, max_length: int = MAX_FILENAME_LENGTH) -> str:
    """Strip characters that are illegal in filenames and bound the length."""
    text = _LINE_BREAKS_RE.sub(" ", value or "")
    text = _CONTROL_RE.sub("", text)
    text = _ILLEGAL_RE.sub("-", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return text[:max_length].strip()


def ascii_filename(value: str, fallback: str = FALLBACK_FILENAME) -> str:
    text = _NON_ASCII_RE.sub("-", value or "").replace('"', "")
    return text or fallback


def with_extension(filename: str, extension: str) -> str:
    suffix = f".{extension.lower()}"
    if filename.lower().endswith(suffix):
        return filename
    return f"{filename}{suffix}"


def content_disposition(filename: str, fallback: Optional[str] = None) -> str:
    """Build an attachment header with ASCII and RFC 5987 UTF-8 filenames."""
    base = sanitize_filename(filename)
    ascii_name = ascii_filename(base, fallback or FALLBACK_FILENAME)
    encoded = quote(base, safe="!-._~")
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{encoded}"
