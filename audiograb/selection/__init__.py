"""Descriptor normalization, classification and candidate ranking."""

from .candidate import CanonicalCandidate, DeclaredKind
from .classify import Classification, classify
from .normalize import extract_media_descriptors, normalize, normalize_all, resolve_title
from .ranker import SelectionResult, ensure_audio, rank, select

__all__ = [
    "CanonicalCandidate",
    "Classification",
    "DeclaredKind",
    "SelectionResult",
    "classify",
    "ensure_audio",
    "extract_media_descriptors",
    "normalize",
    "normalize_all",
    "rank",
    "resolve_title",
    "select",
]
