"""Base definitions for external extraction job runners."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol


class JobStatus(str, Enum):
    pending = "Pending"
    running = "Running"
    succeeded = "Succeeded"
    failed = "Failed"
    aborted = "Aborted"
    timed_out = "TimedOut"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.succeeded, JobStatus.failed, JobStatus.aborted, JobStatus.timed_out}
)


@dataclass
class JobOptions:
    """Caller-supplied extraction options forwarded to the provider."""

    desired_format: str = "mp3"
    include_info: bool = True
    proxy_country: Optional[str] = None
    audio_quality: Optional[str] = None


@dataclass
class JobStatusReport:
    """One poll response from the provider."""

    status: JobStatus
    result_set_id: Optional[str] = None
    raw_status: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class JobRunner(Protocol):
    """Asynchronous job runner with start/poll/fetch operations."""

    async def start_job(self, source_url: str, provider: str, options: JobOptions) -> str:
        ...

    async def get_job_status(self, job_id: str) -> JobStatusReport:
        ...

    async def get_result_set(self, result_set_id: str) -> List[Any]:
        ...
