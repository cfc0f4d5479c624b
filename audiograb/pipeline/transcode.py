"""Stream transcoding through an ffmpeg child process.

Input bytes are written to ffmpeg's stdin and the encoded output is read
from stdout, so nothing touches the filesystem.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Sequence

from ..errors import InvalidInputError, TranscodeError

log = logging.getLogger(__name__)

_STDERR_LIMIT = 8192


@dataclass(frozen=True)
class TranscodeProfile:
    """Audio codec and container used for one target format."""

    extension: str
    codec: str
    container: str
    mime_type: str
    bitrate: Optional[str] = None
    extra_args: Sequence[str] = field(default_factory=tuple)


TRANSCODE_PROFILES: Dict[str, TranscodeProfile] = {
    "mp3": TranscodeProfile("mp3", "libmp3lame", "mp3", "audio/mpeg", bitrate="192k"),
    "m4a": TranscodeProfile(
        "m4a",
        "aac",
        "ipod",
        "audio/mp4",
        bitrate="192k",
        # The mp4 muxer needs fragmented output to write to a pipe.
        extra_args=("-movflags", "frag_keyframe+empty_moov"),
    ),
    "aac": TranscodeProfile("aac", "aac", "adts", "audio/aac", bitrate="192k"),
    "ogg": TranscodeProfile("ogg", "libvorbis", "ogg", "audio/ogg"),
    "opus": TranscodeProfile("opus", "libopus", "opus", "audio/ogg"),
    "webm": TranscodeProfile("webm", "libopus", "webm", "audio/webm"),
    "wav": TranscodeProfile("wav", "pcm_s16le", "wav", "audio/wav"),
    "flac": TranscodeProfile("flac", "flac", "flac", "audio/flac"),
}


def get_profile(target_format: str) -> TranscodeProfile:
    key = (target_format or "").strip().lstrip(".").lower()
    profile = TRANSCODE_PROFILES.get(key)
    if profile is None:
        raise InvalidInputError(
            f"Unsupported target format: {target_format}",
            {"supported": sorted(TRANSCODE_PROFILES)},
        )
    return profile


def build_ffmpeg_command(
    profile: TranscodeProfile,
    ffmpeg_bin: str = "ffmpeg",
    bitrate: Optional[str] = None,
) -> List[str]:
    """Construct an ffmpeg command that reads stdin and writes stdout.

    Video streams are dropped (``-vn``); only the audio track is encoded.
    """
    args: List[str] = [
        ffmpeg_bin,
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        "pipe:0",
        "-vn",
        "-c:a",
        profile.codec,
    ]
    effective_bitrate = bitrate or profile.bitrate
    if effective_bitrate:
        args.extend(["-b:a", effective_bitrate])
    args.extend(profile.extra_args)
    args.extend(["-f", profile.container, "pipe:1"])
    return args


class Transcoder:
    """Spawns ffmpeg sessions for the configured binary."""

    def __init__(self, ffmpeg_bin: str = "ffmpeg", mp3_bitrate: Optional[str] = None) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.mp3_bitrate = mp3_bitrate

    async def start(self, profile: TranscodeProfile) -> "TranscodeSession":
        bitrate = self.mp3_bitrate if profile.extension == "mp3" else None
        command = build_ffmpeg_command(profile, self.ffmpeg_bin, bitrate)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TranscodeError(
                "ffmpeg failed to start",
                {"binary": self.ffmpeg_bin, "error": str(exc)},
            ) from exc
        log.info("ffmpeg start: %s", " ".join(command))
        return TranscodeSession(process, command)


class TranscodeSession:
    """One running ffmpeg process with a feeder task and a stderr drain."""

    def __init__(self, process: asyncio.subprocess.Process, command: List[str]) -> None:
        self.process = process
        self.command = command
        self._stderr = bytearray()
        self._feeder: Optional[asyncio.Task] = None
        self._stderr_task = asyncio.create_task(self._drain_stderr())

    def feed(self, chunks: AsyncIterator[bytes]) -> None:
        """Start copying ``chunks`` into ffmpeg's stdin in the background."""
        self._feeder = asyncio.create_task(self._pump(chunks))

    async def _pump(self, chunks: AsyncIterator[bytes]) -> None:
        stdin = self.process.stdin
        assert stdin is not None
        try:
            async for chunk in chunks:
                stdin.write(chunk)
                await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # ffmpeg closed its input; its exit status reports the cause.
            log.debug("ffmpeg stdin closed early")
        finally:
            if not stdin.is_closing():
                stdin.close()

    async def _drain_stderr(self) -> None:
        stream = self.process.stderr
        assert stream is not None
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            self._stderr.extend(chunk)
            if len(self._stderr) > _STDERR_LIMIT:
                del self._stderr[: len(self._stderr) - _STDERR_LIMIT]

    async def read(self, size: int) -> bytes:
        stdout = self.process.stdout
        assert stdout is not None
        return await stdout.read(size)

    async def finish(self) -> None:
        """Wait for ffmpeg to exit and raise ``TranscodeError`` on failure."""
        returncode = await self.process.wait()
        await self._stderr_task
        if self._feeder is not None and self._feeder.done() and not self._feeder.cancelled():
            feeder_error = self._feeder.exception()
            if feeder_error is not None:
                raise TranscodeError("Transcode input failed", str(feeder_error)) from feeder_error
        if returncode != 0:
            stderr = self._stderr.decode(errors="ignore").strip()
            log.error("ffmpeg error (code=%s): %s", returncode, stderr)
            raise TranscodeError("ffmpeg error", {"code": returncode, "stderr": stderr})
        log.info("ffmpeg end")

    async def close(self) -> None:
        """Stop feeding and make sure the child process is gone."""
        if self._feeder is not None and not self._feeder.done():
            self._feeder.cancel()
            await asyncio.gather(self._feeder, return_exceptions=True)
        if self.process.returncode is None:
            self.process.kill()
            await self.process.wait()
        if not self._stderr_task.done():
            self._stderr_task.cancel()
        await asyncio.gather(self._stderr_task, return_exceptions=True)
