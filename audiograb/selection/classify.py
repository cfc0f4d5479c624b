"""Audio/video classification of canonical candidates."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from ..constants import AUDIO_EXTENSIONS
from .candidate import CanonicalCandidate, DeclaredKind

_AUDIO_MIME_RE = re.compile(r"(^|[\s;])\s*audio/", re.IGNORECASE)
_VIDEO_MIME_RE = re.compile(r"(^|[\s;])\s*video/", re.IGNORECASE)
_RESOLUTION_LABEL_RE = re.compile(r"\b\d{3,4}p\b", re.IGNORECASE)


@dataclass(frozen=True)
class Classification:
    is_pure_audio: bool
    is_video: bool


def has_audio_mime(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and _AUDIO_MIME_RE.search(mime_type) is not None


def has_video_mime(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and _VIDEO_MIME_RE.search(mime_type) is not None


def classify(candidate: CanonicalCandidate) -> Classification:
    """Classify a candidate as pure audio and/or video.

    Rules are applied in order and the first match wins. A resolution label
    such as ``720p`` only marks video when no audio signal matched first.
    """
    declared = candidate.declared_kind
    video_mime = has_video_mime(candidate.mime_type)
    is_video = declared is DeclaredKind.video or video_mime

    if declared is DeclaredKind.audio:
        return Classification(is_pure_audio=True, is_video=False)

    if has_audio_mime(candidate.mime_type) and not video_mime:
        return Classification(is_pure_audio=True, is_video=is_video)

    if (
        candidate.extension in AUDIO_EXTENSIONS
        and declared is not DeclaredKind.video
        and not video_mime
    ):
        return Classification(is_pure_audio=True, is_video=is_video)

    if candidate.label and _RESOLUTION_LABEL_RE.search(candidate.label):
        return Classification(is_pure_audio=False, is_video=True)

    return Classification(is_pure_audio=False, is_video=is_video)
