"""Pydantic models for the HTTP API and progress events."""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StageEvent(BaseModel):
    stage: str
    status: Literal["started", "ok", "failed"]
    detail: Optional[str] = None


class ExtractRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_url: str = Field(alias="videoUrl", min_length=1)
    desired_format: str = Field(default="mp3", alias="desiredFormat")
    max_wait_ms: Optional[int] = Field(default=None, alias="maxWaitMs", gt=0)
    poll_interval_ms: Optional[int] = Field(default=None, alias="pollIntervalMs", gt=0)
    audio_only: bool = Field(default=True, alias="audioOnly")
    include_info: bool = Field(default=True, alias="includeInfo")
    proxy_country: Optional[str] = Field(default=None, alias="proxyCountry")

    @field_validator("desired_format")
    def normalize_format(cls, value: str) -> str:
        return (value or "").strip().lstrip(".").lower() or "mp3"


class ExtractItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    medias: List[Dict[str, Any]] = Field(default_factory=list)
    chosen_media: Dict[str, Any] = Field(alias="chosenMedia")
    transcode_needed: bool = Field(alias="transcodeNeeded")
    has_native_for_mp3: bool = Field(default=False, alias="hasNativeForMp3")
    provider: Optional[str] = None


class ExtractResponse(BaseModel):
    item: ExtractItem


class StartExtractRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_url: str = Field(alias="videoUrl", min_length=1)
    audio_format: str = Field(default="mp3", alias="audioFormat")
    quality: Optional[str] = None


class StartExtractResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    run_id: str = Field(alias="runId")
    actor: str
    quality: str
    attempt: int


class RunStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Optional[str] = None
    dataset_id: Optional[str] = Field(default=None, alias="datasetId")


class FetchAudioRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(min_length=1)
    filename: Optional[str] = None
    content_type: Optional[str] = Field(default=None, alias="contentType")
