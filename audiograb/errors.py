"""Exception taxonomy shared by the extraction pipeline and the HTTP layer.

Every error carries an HTTP status code and optional ``details`` so the API
can render it as ``{"error": ..., "details": ...}`` without inspecting the
exception type.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class AudiograbError(Exception):
    """Base class for all errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class InvalidInputError(AudiograbError):
    """Raised for user-correctable problems such as a bad URL or format."""

    status_code = 400


class ConfigurationError(AudiograbError):
    """Raised when the server is missing required configuration."""

    status_code = 500


# Job provider faults ---------------------------------------------------------


class JobError(AudiograbError):
    """Base class for faults reported by the external job provider."""

    status_code = 502


class JobStartError(JobError):
    """Raised when the provider rejects a submission or returns no job id."""


class JobFailedError(JobError):
    """Raised when a job reaches the Failed or Aborted state."""

    def __init__(self, status: str, details: Any = None) -> None:
        super().__init__(f"Actor run failed: {status}", details)
        self.status = status


class JobTimeoutError(JobError):
    """Raised when a job does not succeed within the polling window."""


class NoResultsError(JobError):
    """Raised when a succeeded job has an empty or missing result set."""


class AllProvidersFailedError(JobError):
    """Raised after every provider attempt failed; maps provider to last error."""

    def __init__(self, errors: Dict[str, str]) -> None:
        super().__init__("All extraction providers failed", errors)
        self.errors = errors


# Selection faults ------------------------------------------------------------


class SelectionError(AudiograbError):
    """Base class for 'provider returned unusable data' failures."""

    status_code = 502


class NoCandidatesError(SelectionError):
    """Raised when no descriptor survived normalization."""

    def __init__(self, message: str = "No media candidates found", details: Any = None) -> None:
        super().__init__(message, details)


class NoAudioAvailableError(SelectionError):
    """Raised when audio output is required but no pure-audio stream exists."""

    def __init__(self, message: str = "No audio streams found", details: Any = None) -> None:
        super().__init__(message, details)


# Delivery faults -------------------------------------------------------------


class UpstreamFetchError(AudiograbError):
    """Raised when the media host responds with a non-2xx status."""

    status_code = 502

    def __init__(self, status: Optional[int], details: Any = None) -> None:
        message = "Upstream fetch failed"
        if status is not None:
            message = f"{message} (HTTP {status})"
        super().__init__(message, details)
        self.status = status


class TranscodeError(AudiograbError):
    """Raised when the ffmpeg process reports an error."""

    status_code = 500
