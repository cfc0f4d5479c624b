"""Drive an external extraction job from start to a selected media candidate."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from ..clients.base import JobOptions, JobRunner, JobStatus, JobStatusReport
from ..errors import (
    AllProvidersFailedError,
    JobError,
    JobFailedError,
    JobStartError,
    JobTimeoutError,
    NoAudioAvailableError,
    NoCandidatesError,
    NoResultsError,
)
from ..models import StageEvent
from ..selection import (
    CanonicalCandidate,
    SelectionResult,
    ensure_audio,
    extract_media_descriptors,
    normalize_all,
    resolve_title,
    select,
)

log = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]
EventSink = Callable[[StageEvent], None]


@dataclass(frozen=True)
class ProviderAttemptPolicy:
    """Ordered provider identifiers plus the total number of attempts.

    Attempt ``n`` uses ``providers[n % len(providers)]``.
    """

    providers: Tuple[str, ...]
    max_attempts: int = 1

    def __post_init__(self) -> None:
        if not self.providers:
            raise ValueError("ProviderAttemptPolicy requires at least one provider")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_list(cls, providers: Sequence[str], max_attempts: int = 1) -> "ProviderAttemptPolicy":
        return cls(providers=tuple(providers), max_attempts=max_attempts)

    def provider_for(self, attempt: int) -> str:
        return self.providers[attempt % len(self.providers)]


@dataclass
class JobState:
    """Lifecycle of one provider job; terminal states never change again."""

    id: str
    provider: str
    status: JobStatus = JobStatus.pending
    result_set_id: Optional[str] = None

    def apply(self, report: JobStatusReport) -> None:
        if self.status.is_terminal:
            raise RuntimeError(f"Job {self.id} already finished with {self.status.value}")
        self.status = report.status
        if report.result_set_id:
            self.result_set_id = report.result_set_id

    def time_out(self) -> None:
        if not self.status.is_terminal:
            self.status = JobStatus.timed_out


@dataclass
class ExtractionOutcome:
    title: Optional[str]
    candidates: List[CanonicalCandidate]
    selection: SelectionResult
    item: Dict[str, Any]
    provider: str
    job: JobState


class ExtractionOrchestrator:
    """Start a job, poll it to completion, fetch results, and select a winner.

    ``poll_interval`` and ``max_wait`` are in seconds and have no defaults:
    every call site decides its own polling window.
    """

    def __init__(
        self,
        runner: JobRunner,
        policy: ProviderAttemptPolicy,
        *,
        poll_interval: float,
        max_wait: float,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
        on_event: Optional[EventSink] = None,
    ) -> None:
        if poll_interval <= 0 or max_wait <= 0:
            raise ValueError("poll_interval and max_wait must be positive")
        self.runner = runner
        self.policy = policy
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self._sleep = sleep
        self._clock = clock
        self._on_event = on_event

    async def run(
        self,
        source_url: str,
        desired_extension: str,
        options: Optional[JobOptions] = None,
        *,
        require_audio: bool = True,
    ) -> ExtractionOutcome:
        options = options or JobOptions(desired_format=desired_extension)

        async def attempt(provider: str, _: int) -> JobState:
            job = await self._start(provider, source_url, options)
            return await self._poll_until_terminal(job)

        job = await self._with_fallback(attempt)
        items = await self._fetch(job)
        return self._select(items, desired_extension, job, require_audio=require_audio)

    async def start_with_fallback(
        self,
        source_url: str,
        options: JobOptions,
    ) -> Tuple[str, str, int]:
        """Start a job without waiting for it; returns ``(job_id, provider, attempt)``."""

        async def attempt(provider: str, index: int) -> Tuple[str, str, int]:
            job = await self._start(provider, source_url, options)
            return job.id, provider, index + 1

        return await self._with_fallback(attempt)

    # ------------------------------------------------------------------ stages

    async def _with_fallback(self, operation: Callable[[str, int], Awaitable[T]]) -> T:
        errors: Dict[str, str] = {}
        last_error: Optional[JobError] = None
        for index in range(self.policy.max_attempts):
            provider = self.policy.provider_for(index)
            try:
                return await operation(provider, index)
            except JobError as exc:
                last_error = exc
                errors[provider] = exc.message
                log.warning(
                    "Provider attempt %d/%d failed (actor=%s): %s",
                    index + 1,
                    self.policy.max_attempts,
                    provider,
                    exc.message,
                )

        if self.policy.max_attempts == 1 and last_error is not None:
            raise last_error
        raise AllProvidersFailedError(errors)

    async def _start(self, provider: str, source_url: str, options: JobOptions) -> JobState:
        self._record("job.start", "started", f"actor={provider}")
        try:
            job_id = await self.runner.start_job(source_url, provider, options)
        except JobError as exc:
            self._record("job.start", "failed", exc.message)
            raise
        if not job_id:
            self._record("job.start", "failed", "no run id")
            raise JobStartError("No run id returned", {"actor": provider})
        self._record("job.start", "ok", f"run={job_id}")
        return JobState(id=job_id, provider=provider)

    async def _poll_until_terminal(self, job: JobState) -> JobState:
        deadline = self._clock() + self.max_wait
        polls = 0
        while True:
            await self._sleep(self.poll_interval)
            report = await self.runner.get_job_status(job.id)
            polls += 1
            job.apply(report)
            log.debug("Run %s poll #%d: %s", job.id, polls, job.status.value)

            if job.status is JobStatus.succeeded:
                self._record("job.poll", "ok", f"succeeded after {polls} poll(s)")
                return job

            if job.status in (JobStatus.failed, JobStatus.aborted):
                status = report.raw_status or job.status.value
                self._record("job.poll", "failed", status)
                raise JobFailedError(status, {"runId": job.id, "actor": job.provider})

            if job.status is JobStatus.timed_out:
                self._record("job.poll", "failed", "provider timed out")
                raise JobTimeoutError(
                    "Actor run timed out on the provider",
                    {"runId": job.id, "actor": job.provider},
                )

            self._record("job.poll", "started", f"{job.status.value} (poll #{polls})")
            if self._clock() >= deadline:
                job.time_out()
                self._record("job.poll", "failed", "timeout")
                raise JobTimeoutError(
                    f"Actor run did not finish successfully within {round(self.max_wait)}s",
                    {"runId": job.id, "actor": job.provider, "polls": polls},
                )

    async def _fetch(self, job: JobState) -> List[Any]:
        self._record("results.fetch", "started", f"run={job.id}")
        if not job.result_set_id:
            self._record("results.fetch", "failed", "no dataset id")
            raise NoResultsError("No dataset id on run result", {"runId": job.id})

        items = await self.runner.get_result_set(job.result_set_id)
        if not items:
            self._record("results.fetch", "failed", "empty dataset")
            raise NoResultsError("No items in dataset", {"datasetId": job.result_set_id})
        self._record("results.fetch", "ok", f"{len(items)} item(s)")
        return items

    def _select(
        self,
        items: List[Any],
        desired_extension: str,
        job: JobState,
        *,
        require_audio: bool,
    ) -> ExtractionOutcome:
        # Providers return one result per job; later items are ignored.
        first = items[0] if isinstance(items[0], dict) else {}
        candidates = normalize_all(extract_media_descriptors(first))
        if not candidates:
            self._record("select", "failed", "no candidates")
            raise NoCandidatesError(
                "No audio streams found",
                {"actor": job.provider, "rawItem": first},
            )

        selection = select(candidates, desired_extension)
        if require_audio:
            try:
                ensure_audio(selection)
            except NoAudioAvailableError:
                self._record("select", "failed", "no pure-audio candidate")
                raise

        winner = selection.winner
        self._record(
            "select",
            "ok",
            f"ext={winner.extension or 'unknown'} transcode={selection.requires_transcode}",
        )
        log.info(
            "Selected media for run %s (actor=%s, ext=%s, candidates=%d, transcode=%s)",
            job.id,
            job.provider,
            winner.extension,
            len(candidates),
            selection.requires_transcode,
        )
        return ExtractionOutcome(
            title=resolve_title(first),
            candidates=candidates,
            selection=selection,
            item=first,
            provider=job.provider,
            job=job,
        )

    def _record(self, stage: str, status: str, detail: Optional[str] = None) -> None:
        event = StageEvent(stage=stage, status=status, detail=detail)
        log.debug("stage %s %s %s", stage, status, detail or "")
        if self._on_event is not None:
            self._on_event(event)
