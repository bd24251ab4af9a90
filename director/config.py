from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_VOICE_CATALOG: list[dict[str, str]] = [
    {"alias": "rachel", "voice_id": "21m00Tcm4TlvDq8ikWAM", "name": "Rachel (Emotive Reader)"},
    {"alias": "adam", "voice_id": "pNInz6obpgDQGcFmaJgB", "name": "Adam (Cinematic Narrator)"},
    {"alias": "domi", "voice_id": "AZnzlk1XvdvUeBnXmlld", "name": "Domi (Dramatic Narrator)"},
    {"alias": "deep_male_narrator", "voice_id": "pNInz6obpgDQGcFmaJgB", "name": "Deep male narrator"},
    {"alias": "energetic_female_announcer", "voice_id": "AZnzlk1XvdvUeBnXmlld", "name": "Energetic announcer"},
    {"alias": "professional_neutral", "voice_id": "21m00Tcm4TlvDq8ikWAM", "name": "Professional neutral"},
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DIRECTOR_", env_file=".env", env_file_encoding="utf-8")

    host: str = "0.0.0.0"
    port: int = 8100

    default_template_id: str = "cinematic_story"

    kafka_enabled: bool = False
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_topic: str = "generation_jobs"
    kafka_updates_topic: str = "generation_updates"
    kafka_group_id: str = "ai-director-consumer"
    local_queue_workers: int = 1

    # Object storage configuration
    s3_endpoint_url: str = ""
    s3_region: str | None = None
    s3_public_url: str = ""
    s3_bucket: str = "video-assets"
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_addressing_style: str | None = None
    final_video_prefix: str = "final-videos"
    temp_audio_prefix: str = "temp-audio"
    render_output_prefix: str = "renders"

    # Relational store backing the render, webhook and cleanup queues
    database_url: str = "sqlite:///./director.db"

    # Script planning (OpenAI-compatible chat completions)
    openai_api_key: str = ""
    openai_model: str = "gpt-4-turbo-preview"
    openai_base_url: str = "https://api.openai.com"
    openai_temperature: float = 0.7
    llm_timeout_seconds: float = 60.0

    # Narration synthesis
    elevenlabs_api_key: str = ""
    elevenlabs_model_id: str = "eleven_multilingual_v2"
    elevenlabs_base_url: str = "https://api.elevenlabs.io"
    tts_timeout_seconds: float = 45.0
    voice_catalog: list[dict[str, str]] = Field(default_factory=lambda: list(DEFAULT_VOICE_CATALOG))

    # Scene visual synthesis (fal.ai queue API for Pika text-to-video)
    fal_key: str = ""
    fal_base_url: str = "https://queue.fal.run"
    fal_model: str = "fal-ai/pika/v2.2/text-to-video"
    video_request_timeout_seconds: float = 30.0
    video_generation_timeout_seconds: float = 180.0
    video_poll_interval_seconds: float = 1.0

    # Provider retry policy
    provider_max_attempts: int = 3
    provider_backoff_base_seconds: float = 2.0
    provider_backoff_cap_seconds: float = 30.0

    # Generation pipeline
    partial_failure_policy: Literal["degrade", "fail"] = "degrade"
    ffmpeg_binary: str = "ffmpeg"
    ffmpeg_timeout_seconds: float = 600.0
    source_width: int = 1920
    source_height: int = 1080
    work_dir: str | None = None

    # Render queue
    render_max_attempts: int = 3
    render_retry_step_seconds: float = 300.0
    render_poll_interval_seconds: float = 5.0

    # Webhooks
    webhook_max_attempts: int = 3
    webhook_timeout_seconds: float = 10.0
    webhook_backoff_base_seconds: float = 30.0
    webhook_backoff_cap_seconds: float = 3600.0
    webhook_secret: str = ""
    webhook_user_agent: str = "AI-Director-Worker/1.0"
    webhook_sweep_interval_seconds: float = 30.0

    # Storage retention
    final_video_retention_hours: int = 24
    cleanup_max_attempts: int = 3
    cleanup_backoff_base_seconds: float = 300.0
    cleanup_sweep_interval_seconds: float = 300.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
