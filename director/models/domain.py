from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from director.errors import InvalidTransition


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation every store column uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


ASPECT_RATIOS = ("16:9", "9:16", "1:1")


class JobStatus(str, Enum):
    QUEUED = "queued"
    SCRIPTING = "scripting"
    GENERATING_ASSETS = "generating_assets"
    STAGING = "staging"
    STITCHING = "stitching"
    COMPLETED = "completed"
    FAILED = "failed"


JOB_PIPELINE = [
    JobStatus.QUEUED,
    JobStatus.SCRIPTING,
    JobStatus.GENERATING_ASSETS,
    JobStatus.STAGING,
    JobStatus.STITCHING,
    JobStatus.COMPLETED,
]

TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class JobStatusHistory(BaseModel):
    status: JobStatus
    message: str
    occurred_at: datetime = Field(default_factory=utcnow)


class Scene(BaseModel):
    index: int
    narration_text: str
    visual_prompt: str
    duration_seconds: int


class VideoScript(BaseModel):
    title: str
    total_duration_seconds: int
    scenes: List[Scene]


class GenerationJob(BaseModel):
    id: UUID
    project_id: UUID
    user_id: str
    prompt: str
    template_id: str
    target_duration: int
    aspect_ratio: str
    burn_subtitles: bool = True
    voice_id: Optional[str] = None
    webhook_url: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    status_history: List[JobStatusHistory] = Field(default_factory=list)
    final_artifact_url: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    style_preset: Optional[str] = None
    script: Optional[VideoScript] = None
    included_scenes: List[int] = Field(default_factory=list)
    cancel_requested: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def transition(self, status: JobStatus, message: str) -> None:
        if self.is_terminal:
            raise InvalidTransition(f"job {self.id} is {self.status.value}; cannot move to {status.value}")
        if status != JobStatus.FAILED:
            current = JOB_PIPELINE.index(self.status)
            if JOB_PIPELINE.index(status) != current + 1:
                raise InvalidTransition(f"job {self.id} cannot move from {self.status.value} to {status.value}")
        self.status = status
        self.status_history.append(JobStatusHistory(status=status, message=message))
        self.updated_at = utcnow()


class AssetKind(str, Enum):
    NARRATION = "narration"
    VISUAL = "visual"


class SceneAssetResult(BaseModel):
    scene_index: int
    kind: AssetKind
    success: bool
    uri: Optional[str] = None
    error: Optional[str] = None
    payload: Optional[bytes] = Field(default=None, exclude=True, repr=False)


class StagedAssets(BaseModel):
    audio_uris: List[str] = Field(default_factory=list)
    video_uris: List[str] = Field(default_factory=list)
    narration_uri: Optional[str] = None
    scene_indices: List[int] = Field(default_factory=list)
    orphan_uris: List[str] = Field(default_factory=list)
    failures: List[SceneAssetResult] = Field(default_factory=list)


class Pacing(str, Enum):
    SLOW = "slow"
    NORMAL = "normal"
    FAST = "fast"


class Template(BaseModel):
    id: str
    name: str
    category: str
    style_preset: str
    voice_id: Optional[str] = None
    visual_style_prompt: Optional[str] = None
    visual_negative_prompt: Optional[str] = None
    motion_strength: Optional[int] = None
    usage_count: int = 0


class StyleProfile(BaseModel):
    template_id: str
    style_preset: str
    visual_style_suffix: str
    visual_negative_prompt: str
    voice_id: str
    motion_strength: int = Field(ge=1, le=4)
    pacing: Pacing


class SubtitleStyle(BaseModel):
    font_family: str
    font_size: int
    color: str = "#FFFFFF"
    background_color: str = "#000000"
    background_opacity: float = 0.0
    border_color: Optional[str] = None
    position: str = "bottom-center"
    alignment: str = "center"
    bold: bool = False
    uppercase: bool = False
    outline: int = 2
    shadow: int = 0


class RenderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RenderQueueEntry(BaseModel):
    id: UUID
    project_id: UUID
    user_id: Optional[str] = None
    aspect_ratio: str
    burn_subtitles: bool = False
    subtitle_style: Optional[str] = None
    status: RenderStatus = RenderStatus.PENDING
    priority: int = 0
    attempts: int = 0
    max_attempts: int = 3
    next_retry_at: Optional[datetime] = None
    output_url: Optional[str] = None
    error_message: Optional[str] = None
    processing_time_seconds: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class WebhookStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class WebhookDelivery(BaseModel):
    id: UUID
    project_id: UUID
    url: str
    status: WebhookStatus = WebhookStatus.PENDING
    payload: dict[str, Any]
    attempts: int = 0
    max_attempts: int = 3
    next_retry_at: Optional[datetime] = None
    response_status: Optional[int] = None
    response_body: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class AssetType(str, Enum):
    FINAL_VIDEO = "final-video"
    INTERMEDIATE_AUDIO = "intermediate-audio"
    INTERMEDIATE_VIDEO = "intermediate-video"


class CleanupStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CleanupQueueEntry(BaseModel):
    id: UUID
    project_id: UUID
    user_id: Optional[str] = None
    asset_type: AssetType
    asset_url: str
    scheduled_deletion_at: datetime
    status: CleanupStatus = CleanupStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    next_attempt_at: Optional[datetime] = None
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
