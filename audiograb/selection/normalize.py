"""Map heterogeneous provider descriptors onto ``CanonicalCandidate``.

Providers disagree on field names (``extension`` vs ``ext``, ``type`` vs
``is_audio``) and on where the media list lives inside a result item. Each
field is resolved through an ordered alias list; malformed descriptors are
discarded, never raised.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import urlparse

from ..constants import (
    AUDIO_LINK_MIME_TYPES,
    BITRATE_ALIASES,
    DEFAULT_AUDIO_LINK_MIME,
    LABEL_ALIASES,
    MAX_TITLE_LENGTH,
    MIME_ALIASES,
    URL_ALIASES,
)
from ..pipeline.filenames import sanitize_filename
from .candidate import CanonicalCandidate, DeclaredKind

log = logging.getLogger(__name__)

_BITRATE_RE = re.compile(r"([\d.]+)\s*kbps", re.IGNORECASE)
_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,5}$")


def normalize(raw: Any, ordinal_index: int) -> Optional[CanonicalCandidate]:
    """Return a canonical candidate, or ``None`` when ``raw`` has no usable URL."""
    if not isinstance(raw, Mapping):
        return None

    url = resolve_url(raw)
    if url is None:
        return None

    mime_type = _first_string(raw, MIME_ALIASES)
    return CanonicalCandidate(
        source_url=url,
        ordinal_index=ordinal_index,
        extension=resolve_extension(raw, url, mime_type),
        mime_type=mime_type,
        declared_kind=_declared_kind(raw),
        label=_first_string(raw, LABEL_ALIASES),
        bitrate_kbps=_bitrate(raw),
    )


def normalize_all(raws: Iterable[Any]) -> List[CanonicalCandidate]:
    candidates: List[CanonicalCandidate] = []
    discarded = 0
    for index, raw in enumerate(raws):
        candidate = normalize(raw, index)
        if candidate is None:
            discarded += 1
            continue
        candidates.append(candidate)
    if discarded:
        log.debug("Discarded %d descriptor(s) without a usable URL", discarded)
    return candidates


def resolve_url(raw: Mapping[str, Any]) -> Optional[str]:
    for path in URL_ALIASES:
        value = _dig(raw, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def resolve_extension(
    raw: Mapping[str, Any],
    url: str,
    mime_type: Optional[str] = None,
) -> Optional[str]:
    """Resolve the container extension: explicit fields, then MIME, then URL."""
    for key in ("extension", "ext"):
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip().lower()

    if mime_type and "/" in mime_type:
        subtype = mime_type.split("/", 1)[1].split(";", 1)[0].strip().lower()
        if subtype and subtype != "*":
            return subtype

    segment = urlparse(url).path.rsplit("/", 1)[-1]
    if "." in segment:
        suffix = segment.rsplit(".", 1)[1].lower()
        if _EXTENSION_RE.match(suffix):
            return suffix
    return None


def _declared_kind(raw: Mapping[str, Any]) -> DeclaredKind:
    kind = raw.get("type")
    kind = kind.strip().lower() if isinstance(kind, str) else None
    if raw.get("is_audio") is True or kind == "audio":
        return DeclaredKind.audio
    if kind == "video":
        return DeclaredKind.video
    return DeclaredKind.unknown


def _bitrate(raw: Mapping[str, Any]) -> Optional[float]:
    for key in BITRATE_ALIASES:
        value = raw.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return float(value)
        parsed = parse_bitrate(value)
        if parsed is not None:
            return parsed
    return None


def parse_bitrate(value: Any) -> Optional[float]:
    """Parse labels such as ``"128 kbps"``; anything else yields ``None``."""
    if not isinstance(value, str):
        return None
    match = _BITRATE_RE.search(value)
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def _first_string(raw: Mapping[str, Any], keys: Sequence[str]) -> Optional[str]:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _dig(raw: Any, path: Sequence[Any]) -> Any:
    current = raw
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or len(current) <= step:
                return None
            current = current[step]
        else:
            if not isinstance(current, Mapping):
                return None
            current = current.get(step)
    return current


# Result item helpers -------------------------------------------------------


def extract_media_descriptors(item: Any) -> List[Any]:
    """Return the raw media descriptors carried by one provider result item."""
    if not isinstance(item, Mapping):
        return []

    result = item.get("result")
    if isinstance(result, Mapping) and isinstance(result.get("medias"), list):
        return list(result["medias"])

    links = item.get("downloadable_audio_links")
    if isinstance(links, list):
        return [_audio_link_descriptor(link) for link in links if isinstance(link, Mapping)]

    if isinstance(item.get("medias"), list):
        return list(item["medias"])

    # Single-file actors put the download URL on the item itself.
    return [item]


def _audio_link_descriptor(link: Mapping[str, Any]) -> dict:
    ext = link.get("ext") or link.get("extension")
    ext_key = str(ext or "").lower()
    return {
        "url": link.get("url"),
        "extension": ext,
        "type": "audio",
        "label": link.get("format") or link.get("language") or ext,
        "language": link.get("language"),
        "bitrateKbps": parse_bitrate(link.get("bitrate")),
        "mimeType": AUDIO_LINK_MIME_TYPES.get(ext_key, DEFAULT_AUDIO_LINK_MIME),
    }


def resolve_title(item: Any) -> Optional[str]:
    """Pick the first usable title from a result item, sanitized for filenames."""
    if not isinstance(item, Mapping):
        return None
    result = item.get("result") if isinstance(item.get("result"), Mapping) else {}
    metadata = item.get("metadata") if isinstance(item.get("metadata"), Mapping) else {}

    combined = None
    author, title = result.get("author"), result.get("title")
    if isinstance(author, str) and isinstance(title, str) and author and title:
        combined = f"{author} - {title}"

    candidates = [
        item.get("title"),
        result.get("title"),
        item.get("videoTitle"),
        item.get("video_title"),
        item.get("name"),
        metadata.get("title"),
        combined,
    ]
    for value in candidates:
        if isinstance(value, str) and value.strip():
            return sanitize_filename(value, max_length=MAX_TITLE_LENGTH) or None
    return None
