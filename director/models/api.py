from __future__ import annotations

from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from .domain import ASPECT_RATIOS, RenderQueueEntry, WebhookDelivery

DURATION_MODES = {"30s": 30, "60s": 60}


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(..., validation_alias="prompt")
    template_id: Optional[str] = Field(default=None, validation_alias="template_id")
    duration_mode: Literal["30s", "60s"] = Field(default="30s", validation_alias="duration_mode")
    voice_id: Optional[str] = Field(default=None, validation_alias="voice_id")
    aspect_ratio: str = Field(default="16:9", validation_alias="aspect_ratio")
    burn_subtitles: bool = Field(default=True, validation_alias="burn_subtitles")
    webhook_url: Optional[HttpUrl] = Field(default=None, validation_alias="webhook_url")

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt is required")
        return value

    @field_validator("aspect_ratio")
    @classmethod
    def validate_aspect_ratio(cls, value: str) -> str:
        if value not in ASPECT_RATIOS:
            raise ValueError(f"aspect_ratio must be one of {', '.join(ASPECT_RATIOS)}")
        return value

    @property
    def target_duration(self) -> int:
        return DURATION_MODES[self.duration_mode]


class GenerateResponse(BaseModel):
    success: bool
    job_id: UUID
    project_id: UUID
    status: Literal["queued", "processing", "completed", "failed"]
    message: str
    video_url: Optional[str] = None


class RenderJobRequest(BaseModel):
    project_id: UUID
    aspect_ratio: str
    burn_subtitles: bool = False
    subtitle_style: Optional[str] = None
    priority: int = 0

    @field_validator("aspect_ratio")
    @classmethod
    def validate_aspect_ratio(cls, value: str) -> str:
        if value not in ASPECT_RATIOS:
            raise ValueError(f"aspect_ratio must be one of {', '.join(ASPECT_RATIOS)}")
        return value


class RenderJobCreatedResponse(BaseModel):
    job_id: UUID


class RenderJobResponse(BaseModel):
    job: RenderQueueEntry


class QueueProcessResponse(BaseModel):
    success: bool
    processed: bool
    message: str
    job: Optional[RenderQueueEntry] = None


class QueueStatsResponse(BaseModel):
    total: int
    pending: int
    processing: int
    completed: int
    failed: int


class WebhookDeliveryListResponse(BaseModel):
    items: List[WebhookDelivery]


class SweepResponse(BaseModel):
    processed: int
