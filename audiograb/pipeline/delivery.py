"""Relay or transcode a selected media stream back to the caller."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional
from urllib.parse import unquote, urlparse

import httpx

from ..constants import DEFAULT_CHUNK_SIZE
from ..errors import InvalidInputError, UpstreamFetchError
from ..selection import CanonicalCandidate
from .filenames import content_disposition, sanitize_filename, with_extension
from .transcode import Transcoder, TranscodeSession, get_profile

log = logging.getLogger(__name__)

ClientFactory = Callable[[], httpx.AsyncClient]

_ERROR_BODY_LIMIT = 2000


def validate_media_url(url: Optional[str]) -> str:
    """Only plain http(s) URLs may be fetched on a caller's behalf."""
    if not url or not isinstance(url, str):
        raise InvalidInputError("Missing url query parameter")
    parsed = urlparse(url.strip())
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
        raise InvalidInputError("Invalid URL protocol")
    return url.strip()


def filename_from_url(url: str, default: str) -> str:
    name = unquote(urlparse(url).path.rsplit("/", 1)[-1])
    return name or default


@dataclass
class Delivery:
    """Outbound headers plus a streaming body.

    ``aclose`` is idempotent and releases the upstream response, HTTP client
    and any transcoder process.
    """

    media_type: str
    body: AsyncIterator[bytes]
    headers: Dict[str, str] = field(default_factory=dict)
    _cleanups: List[Callable[[], Awaitable[None]]] = field(default_factory=list, repr=False)
    _closed: bool = field(default=False, repr=False)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        for cleanup in reversed(self._cleanups):
            try:
                await cleanup()
            except Exception:  # pragma: no cover - best-effort release
                log.debug("Delivery cleanup failed", exc_info=True)


class MediaDeliverer:
    """Decides between a direct relay and an ffmpeg transcode."""

    def __init__(
        self,
        client_factory: ClientFactory,
        transcoder: Transcoder,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.client_factory = client_factory
        self.transcoder = transcoder
        self.chunk_size = chunk_size

    async def deliver(
        self,
        selected: CanonicalCandidate,
        desired_extension: str,
        requires_transcode: bool,
        filename: Optional[str] = None,
    ) -> Delivery:
        if requires_transcode:
            return await self.transcode(
                selected.source_url,
                desired_extension,
                filename or f"audio.{desired_extension}",
            )
        relay_name = filename
        if relay_name and selected.extension:
            relay_name = with_extension(relay_name, selected.extension)
        return await self.relay(
            selected.source_url,
            filename=relay_name,
            fallback_type=selected.mime_type,
        )

    async def relay(
        self,
        url: str,
        *,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
        fallback_type: Optional[str] = None,
    ) -> Delivery:
        """Stream ``url`` through unchanged."""
        client, response = await self._open(url)
        media_type = (
            content_type
            or response.headers.get("content-type")
            or fallback_type
            or "application/octet-stream"
        )
        headers: Dict[str, str] = {}
        length = response.headers.get("content-length")
        if length and "content-encoding" not in response.headers:
            headers["Content-Length"] = length
        if filename:
            headers["Content-Disposition"] = content_disposition(filename)

        delivery = Delivery(media_type=media_type, body=_empty_body(), headers=headers)
        delivery._cleanups.extend([client.aclose, response.aclose])

        async def body() -> AsyncIterator[bytes]:
            try:
                async for chunk in response.aiter_bytes(self.chunk_size):
                    yield chunk
            finally:
                await delivery.aclose()

        delivery.body = body()
        return delivery

    async def transcode(self, url: str, target_format: str, filename: str) -> Delivery:
        """Pipe ``url`` through ffmpeg into ``target_format``.

        The first encoded chunk is read before headers are produced so an
        early ffmpeg failure can still become a JSON error. Failures after
        that point abort the stream.
        """
        profile = get_profile(target_format)
        client, response = await self._open(url)
        session: Optional[TranscodeSession] = None
        try:
            session = await self.transcoder.start(profile)
            session.feed(response.aiter_bytes(self.chunk_size))
            first = await session.read(self.chunk_size)
            if not first:
                await session.finish()
        except BaseException:
            if session is not None:
                await session.close()
            await response.aclose()
            await client.aclose()
            raise

        name = with_extension(sanitize_filename(filename) or "audio", profile.extension)
        headers = {"Content-Disposition": content_disposition(name, f"download.{profile.extension}")}
        delivery = Delivery(media_type=profile.mime_type, body=_empty_body(), headers=headers)
        delivery._cleanups.extend([client.aclose, response.aclose, session.close])

        async def body() -> AsyncIterator[bytes]:
            try:
                if first:
                    yield first
                    while True:
                        chunk = await session.read(self.chunk_size)
                        if not chunk:
                            break
                        yield chunk
                    await session.finish()
            finally:
                await delivery.aclose()

        delivery.body = body()
        return delivery

    async def _open(self, url: str):
        url = validate_media_url(url)
        client = self.client_factory()
        try:
            request = client.build_request("GET", url)
            response = await client.send(request, stream=True)
        except httpx.RequestError as exc:
            await client.aclose()
            raise UpstreamFetchError(None, f"{exc.__class__.__name__}: {exc}") from exc

        if not response.is_success:
            try:
                await response.aread()
                details = response.text[:_ERROR_BODY_LIMIT]
            except httpx.HTTPError:
                details = None
            finally:
                await response.aclose()
                await client.aclose()
            log.warning("Upstream fetch failed (HTTP %s) for %s", response.status_code, url)
            raise UpstreamFetchError(response.status_code, details)
        return client, response


async def _empty_body() -> AsyncIterator[bytes]:
    return
    yield b""  # pragma: no cover
