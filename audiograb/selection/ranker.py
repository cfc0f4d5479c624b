"""Score and select the best candidate for a desired output format."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..constants import (
    FORMAT_MATCH_BONUS,
    ORDINAL_TIE_BREAK,
    PURE_AUDIO_BONUS,
    VIDEO_PENALTY,
)
from ..errors import NoAudioAvailableError, NoCandidatesError
from .candidate import CanonicalCandidate
from .classify import Classification, classify

log = logging.getLogger(__name__)

TRANSCODE_TARGET = "mp3"


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: CanonicalCandidate
    classification: Classification
    score: float


@dataclass(frozen=True)
class SelectionResult:
    winner: CanonicalCandidate
    classification: Classification
    requires_transcode: bool


def score(
    candidate: CanonicalCandidate,
    classification: Classification,
    desired_extension: Optional[str],
) -> float:
    value = 0.0
    if classification.is_pure_audio:
        value += PURE_AUDIO_BONUS
    if desired_extension and (candidate.extension or "").lower() == desired_extension:
        value += FORMAT_MATCH_BONUS
    if classification.is_video:
        value += VIDEO_PENALTY
    value -= ORDINAL_TIE_BREAK * candidate.ordinal_index
    return value


def rank(
    candidates: Sequence[CanonicalCandidate],
    desired_extension: Optional[str],
) -> List[ScoredCandidate]:
    """Return candidates ordered best-first."""
    desired = _normalize_extension(desired_extension)
    scored = []
    for candidate in candidates:
        classification = classify(candidate)
        scored.append(
            ScoredCandidate(
                candidate=candidate,
                classification=classification,
                score=score(candidate, classification, desired),
            )
        )
    return sorted(scored, key=lambda entry: entry.score, reverse=True)


def select(
    candidates: Sequence[CanonicalCandidate],
    desired_extension: Optional[str],
) -> SelectionResult:
    """Pick exactly one winner from ``candidates``.

    Pure audio is a hard preference: a non-audio provisional winner is
    replaced by the best-ranked pure-audio candidate when one exists.
    """
    if not candidates:
        raise NoCandidatesError()

    ranked = rank(candidates, desired_extension)
    chosen = ranked[0]
    if not chosen.classification.is_pure_audio:
        for entry in ranked:
            if entry.classification.is_pure_audio:
                chosen = entry
                break

    desired = _normalize_extension(desired_extension)
    result = SelectionResult(
        winner=chosen.candidate,
        classification=chosen.classification,
        requires_transcode=requires_transcode(chosen.candidate, desired),
    )
    log.debug(
        "Selected candidate #%d (ext=%s, pure_audio=%s, score=%.3f) from %d",
        chosen.candidate.ordinal_index,
        chosen.candidate.extension,
        chosen.classification.is_pure_audio,
        chosen.score,
        len(ranked),
    )
    return result


def ensure_audio(result: SelectionResult) -> SelectionResult:
    """Enforce the audio-only guarantee for audio extraction callers."""
    if not result.classification.is_pure_audio:
        raise NoAudioAvailableError(
            details={"chosenMedia": result.winner.to_dict()},
        )
    return result


def requires_transcode(winner: CanonicalCandidate, desired_extension: Optional[str]) -> bool:
    # An absent extension counts as non-mp3.
    return desired_extension == TRANSCODE_TARGET and (winner.extension or "").lower() != TRANSCODE_TARGET


def _normalize_extension(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value.strip().lstrip(".").lower() or None
