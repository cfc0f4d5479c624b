"""Apify actor job runner over the REST API."""
from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from ..config import ProviderSettings
from ..constants import DEFAULT_AUDIO_QUALITY
from ..errors import JobError, JobStartError, NoResultsError
from .base import JobOptions, JobRunner, JobStatus, JobStatusReport
from .retry import retry_request

log = logging.getLogger(__name__)

STATUS_MAP: Dict[str, JobStatus] = {
    "READY": JobStatus.pending,
    "RUNNING": JobStatus.running,
    "SUCCEEDED": JobStatus.succeeded,
    "FAILED": JobStatus.failed,
    "ABORTING": JobStatus.aborted,
    "ABORTED": JobStatus.aborted,
    "TIMING-OUT": JobStatus.timed_out,
    "TIMED-OUT": JobStatus.timed_out,
}

_DETAIL_LIMIT = 2000


def build_actor_input(actor: str, source_url: str, options: JobOptions) -> Dict[str, Any]:
    """Return the run input expected by a given actor."""
    if "scrapearchitect" in actor:
        payload: Dict[str, Any] = {"video_urls": [{"url": source_url, "method": "GET"}]}
        if options.include_info:
            payload["include_info"] = True
        if options.proxy_country:
            payload["proxyConfiguration"] = {
                "useApifyProxy": True,
                "apifyProxyCountry": options.proxy_country,
            }
        return payload

    if "thenetaji" in actor:
        session = f"yt-{int(time.time() * 1000)}-{secrets.token_hex(3)}"
        return {
            "urls": [{"url": source_url}],
            "audioOnly": True,
            "audioFormat": options.desired_format or "mp3",
            "audioQuality": options.audio_quality or DEFAULT_AUDIO_QUALITY,
            "concurrency": 1,
            "proxy": {"useApifyProxy": True, "session": session},
        }

    if "web.harvester" in actor:
        proxy: Dict[str, Any] = {"useApifyProxy": True, "apifyProxyGroups": ["RESIDENTIAL"]}
        if options.proxy_country:
            proxy["apifyProxyCountry"] = options.proxy_country
        return {
            "includeInfo": options.include_info,
            "proxyConfiguration": proxy,
            "youtubeUrls": [{"url": source_url}],
        }

    return {"video_urls": [{"url": source_url, "method": "GET"}]}


class ApifyJobRunner(JobRunner):
    """Start, poll, and fetch Apify actor runs.

    The HTTP client is owned by the caller so one request can share it across
    start, poll and fetch calls.
    """

    def __init__(self, client: httpx.AsyncClient, settings: ProviderSettings) -> None:
        self.client = client
        self.settings = settings
        self.base_url = settings.api_base.rstrip("/")

    def _params(self) -> Dict[str, str]:
        return {"token": self.settings.require_token()}

    async def start_job(self, source_url: str, provider: str, options: JobOptions) -> str:
        url = f"{self.base_url}/v2/acts/{quote(provider, safe='')}/runs"
        payload = build_actor_input(provider, source_url, options)
        try:
            response = await self.client.post(url, params=self._params(), json=payload)
        except httpx.RequestError as exc:
            raise JobStartError(
                "Failed to start Apify actor",
                {"actor": provider, "error": f"{exc.__class__.__name__}: {exc}"},
            ) from exc

        if not response.is_success:
            raise JobStartError(
                "Failed to start Apify actor",
                {"actor": provider, "status": response.status_code, "body": _truncate(response.text)},
            )

        data = _json(response)
        run_id = _run_field(data, "id")
        if not run_id:
            raise JobStartError("No run id returned", {"actor": provider, "body": data})
        log.info("Apify run started (actor=%s, run=%s)", provider, run_id)
        return str(run_id)

    async def get_job_status(self, job_id: str) -> JobStatusReport:
        url = f"{self.base_url}/v2/actor-runs/{quote(job_id, safe='')}"
        try:
            response = await retry_request(self.client.get, url, params=self._params())
        except httpx.RequestError as exc:
            raise JobError(
                "Failed to fetch run status",
                {"runId": job_id, "error": f"{exc.__class__.__name__}: {exc}"},
            ) from exc
        if not response.is_success:
            raise JobError(
                "Failed to fetch run status",
                {"status": response.status_code, "body": _truncate(response.text)},
            )

        data = _json(response)
        raw_status = _run_field(data, "status")
        status = STATUS_MAP.get(str(raw_status or "").upper(), JobStatus.running)
        dataset_id = _run_field(data, "defaultDatasetId")
        return JobStatusReport(
            status=status,
            result_set_id=str(dataset_id) if dataset_id else None,
            raw_status=str(raw_status) if raw_status else None,
        )

    async def get_result_set(self, result_set_id: str) -> List[Any]:
        url = f"{self.base_url}/v2/datasets/{quote(result_set_id, safe='')}/items"
        try:
            response = await retry_request(self.client.get, url, params=self._params())
        except httpx.RequestError as exc:
            raise NoResultsError(
                "Failed to fetch dataset items",
                {"datasetId": result_set_id, "error": f"{exc.__class__.__name__}: {exc}"},
            ) from exc
        if not response.is_success:
            raise NoResultsError(
                "Failed to fetch dataset items",
                {"status": response.status_code, "body": _truncate(response.text)},
            )
        items = _json(response)
        if not isinstance(items, list):
            raise NoResultsError("No items in dataset", {"body": items})
        return items


def _run_field(data: Any, key: str) -> Optional[Any]:
    """Read a run field from either the wrapped (``data``) or bare response."""
    if not isinstance(data, dict):
        return None
    inner = data.get("data")
    if isinstance(inner, dict) and inner.get(key):
        return inner[key]
    return data.get(key)


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _truncate(text: str) -> str:
    return text[:_DETAIL_LIMIT]
