from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from director.clients.llm import ChatCompletionClient
from director.clients.s3_storage import S3StorageClient
from director.clients.text2video import FalVideoClient
from director.clients.tts import ElevenLabsClient
from director.config import Settings
from director.events.publisher import JobEventPublisher
from director.models.domain import AssetType
from director.queue.render_queue import RenderQueue
from director.storage.database import create_db_engine, create_session_factory, init_db
from director.storage.repository import GenerationJobRepository, TemplateRepository
from director.storage.stores import CleanupStore, RenderQueueStore, WebhookStore

from .assets import ParallelAssetGenerator
from .cleanup import CleanupScheduler
from .orchestrator import GenerationOrchestrator
from .planner import ScriptPlanner
from .retry import RetryPolicy, exponential_backoff, linear_backoff
from .stager import AssetStager
from .stitcher import ProcessRunner, Stitcher
from .style import StyleResolver
from .webhooks import WebhookDispatcher

log = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    storage: S3StorageClient
    orchestrator: GenerationOrchestrator
    render_queue: RenderQueue
    webhooks: WebhookDispatcher
    cleanup: CleanupScheduler
    events: Optional[JobEventPublisher] = None


def provider_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.provider_max_attempts,
        backoff=exponential_backoff(
            settings.provider_backoff_base_seconds, cap=settings.provider_backoff_cap_seconds
        ),
    )


def build_container(
    settings: Settings,
    repo: GenerationJobRepository | None = None,
    templates: TemplateRepository | None = None,
) -> Container:
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    sessions = create_session_factory(engine)

    storage = S3StorageClient(
        bucket=settings.s3_bucket,
        access_key=settings.s3_access_key,
        secret_key=settings.s3_secret_key,
        endpoint_url=settings.s3_endpoint_url,
        region_name=settings.s3_region,
        public_url=settings.s3_public_url,
        addressing_style=settings.s3_addressing_style,
    )
    if not storage.is_configured():
        log.warning("object storage not configured, keeping assets in memory")

    events: JobEventPublisher | None = None
    if settings.kafka_enabled and settings.kafka_updates_topic:
        try:
            events = JobEventPublisher(
                bootstrap_servers=settings.kafka_bootstrap_servers,
                topic=settings.kafka_updates_topic,
            )
        except Exception:  # pragma: no cover - broker unavailable
            log.warning(
                "job event publisher unavailable",
                extra={"topic": settings.kafka_updates_topic},
                exc_info=True,
            )

    llm = ChatCompletionClient(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        temperature=settings.openai_temperature,
        timeout=settings.llm_timeout_seconds,
    )
    tts = ElevenLabsClient(
        api_key=settings.elevenlabs_api_key,
        model_id=settings.elevenlabs_model_id,
        base_url=settings.elevenlabs_base_url,
        timeout=settings.tts_timeout_seconds,
        voice_catalog=settings.voice_catalog,
    )
    video = FalVideoClient(
        api_key=settings.fal_key,
        model=settings.fal_model,
        base_url=settings.fal_base_url,
        request_timeout=settings.video_request_timeout_seconds,
        generation_timeout=settings.video_generation_timeout_seconds,
        poll_interval=settings.video_poll_interval_seconds,
    )

    stitcher = Stitcher(
        runner=ProcessRunner(timeout=settings.ffmpeg_timeout_seconds),
        storage=storage,
        ffmpeg_binary=settings.ffmpeg_binary,
        workdir=settings.work_dir,
    )
    webhooks = WebhookDispatcher(
        store=WebhookStore(sessions),
        max_attempts=settings.webhook_max_attempts,
        timeout=settings.webhook_timeout_seconds,
        backoff=exponential_backoff(
            settings.webhook_backoff_base_seconds, cap=settings.webhook_backoff_cap_seconds
        ),
        secret=settings.webhook_secret,
        user_agent=settings.webhook_user_agent,
    )
    cleanup = CleanupScheduler(
        store=CleanupStore(sessions),
        storage=storage,
        retention_hours={AssetType.FINAL_VIDEO: settings.final_video_retention_hours},
        max_attempts=settings.cleanup_max_attempts,
        backoff=exponential_backoff(settings.cleanup_backoff_base_seconds),
    )
    styles = StyleResolver(templates or TemplateRepository())
    orchestrator = GenerationOrchestrator(
        repo=repo or GenerationJobRepository(sessions),
        styles=styles,
        planner=ScriptPlanner(llm, provider_policy(settings)),
        assets=ParallelAssetGenerator(tts, video, provider_policy(settings), provider_policy(settings)),
        stager=AssetStager(storage, audio_prefix=settings.temp_audio_prefix),
        stitcher=stitcher,
        cleanup=cleanup,
        webhooks=webhooks,
        storage=storage,
        partial_failure_policy=settings.partial_failure_policy,
        final_video_prefix=settings.final_video_prefix,
        temp_audio_prefix=settings.temp_audio_prefix,
        render_output_prefix=settings.render_output_prefix,
        events=events,
    )
    render_queue = RenderQueue(
        store=RenderQueueStore(sessions),
        renderer=stitcher,
        projects=orchestrator,
        max_attempts=settings.render_max_attempts,
        backoff=linear_backoff(settings.render_retry_step_seconds),
        output_prefix=settings.render_output_prefix,
        source_width=settings.source_width,
        source_height=settings.source_height,
        on_change=events.publish_render if events is not None else None,
    )
    return Container(
        settings=settings,
        storage=storage,
        orchestrator=orchestrator,
        render_queue=render_queue,
        webhooks=webhooks,
        cleanup=cleanup,
        events=events,
    )
