"""Canonical in-memory shape of a media descriptor."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class DeclaredKind(str, Enum):
    audio = "audio"
    video = "video"
    unknown = "unknown"


@dataclass(frozen=True)
class CanonicalCandidate:
    """A normalized descriptor eligible for selection.

    ``source_url`` is always non-empty; descriptors without one never become
    candidates.
    """

    source_url: str
    ordinal_index: int
    extension: Optional[str] = None
    mime_type: Optional[str] = None
    declared_kind: DeclaredKind = DeclaredKind.unknown
    label: Optional[str] = None
    bitrate_kbps: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Return the camelCase JSON form used by the HTTP API."""
        return {
            "sourceUrl": self.source_url,
            "extension": self.extension,
            "mimeType": self.mime_type,
            "declaredKind": self.declared_kind.value,
            "label": self.label,
            "bitrateKbps": self.bitrate_kbps,
            "ordinalIndex": self.ordinal_index,
        }
