"""Centralized constants for the extraction service.

Recognized media extensions, provider defaults, and field alias tables
belong here rather than scattered across the selection and delivery code.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Media extensions
# Containers that commonly carry audio only. webm and ogg are shared with
# video, so the classifier treats extension as a weak signal.
# ---------------------------------------------------------------------------
AUDIO_EXTENSIONS: frozenset[str] = frozenset(
    {"mp3", "m4a", "webm", "opus", "ogg", "aac", "wav", "flac"}
)

# Extensions a browser can save as "mp3-like" audio without a transcode step.
NATIVE_AUDIO_EXTENSIONS: frozenset[str] = frozenset({"mp3", "m4a", "opus", "webm", "aac"})

# MIME types assigned to provider audio links that only report an extension.
AUDIO_LINK_MIME_TYPES: dict[str, str] = {
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
    "webm": "audio/webm",
    "opus": "audio/webm",
    "aac": "audio/aac",
}
DEFAULT_AUDIO_LINK_MIME = "audio/*"

# ---------------------------------------------------------------------------
# Descriptor field aliases
# Lookup order matters: the first non-empty value wins.
# ---------------------------------------------------------------------------
URL_ALIASES: tuple[tuple[str | int, ...], ...] = (
    ("url",),
    ("downloadUrl",),
    ("fileUrl",),
    ("file", "url"),
    ("files", 0, "url"),
)

# Fields that mark a run-result item as downloadable.
ITEM_URL_KEYS: tuple[str, ...] = ("audioUrl", "downloadUrl", "fileUrl", "url")

MIME_ALIASES: tuple[str, ...] = ("mimeType", "mime_type")
LABEL_ALIASES: tuple[str, ...] = ("label", "quality")
BITRATE_ALIASES: tuple[str, ...] = ("bitrateKbps", "bitrate")

# ---------------------------------------------------------------------------
# Ranking weights
# ---------------------------------------------------------------------------
PURE_AUDIO_BONUS = 10.0
FORMAT_MATCH_BONUS = 5.0
VIDEO_PENALTY = -2.0
ORDINAL_TIE_BREAK = 0.001

# ---------------------------------------------------------------------------
# Provider (Apify) defaults
# ---------------------------------------------------------------------------
APIFY_API_BASE = "https://api.apify.com"

# Ordered fallback list; the first entry is the primary actor.
DEFAULT_ACTORS: list[str] = [
    "scrapearchitect~youtube-audio-mp3-downloader",
    "thenetaji~youtube-video-and-music-downloader",
    "web.harvester~youtube-downloader",
]

# Lower audio quality reduces the odds of upstream 403 responses.
DEFAULT_AUDIO_QUALITY = "192"

# ---------------------------------------------------------------------------
# Polling and delivery defaults
# ---------------------------------------------------------------------------
DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_MAX_WAIT_SECONDS = 90.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_FETCH_TIMEOUT_SECONDS = 120.0
DEFAULT_CHUNK_SIZE = 64 * 1024

# ---------------------------------------------------------------------------
# Filenames
# ---------------------------------------------------------------------------
MAX_FILENAME_LENGTH = 120
MAX_TITLE_LENGTH = 80
FALLBACK_FILENAME = "download"
