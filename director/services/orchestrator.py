from __future__ import annotations

import asyncio
import logging
from typing import Optional
from uuid import UUID, uuid4

from director.clients.s3_storage import StorageClient
from director.errors import JobCancelled, NotFoundError, PartialFailure, describe_failure
from director.events.publisher import JobEventPublisher
from director.models.api import GenerateRequest
from director.models.domain import GenerationJob, JobStatus, Scene, StagedAssets, VideoScript
from director.queue.queue import BaseQueue
from director.storage.repository import GenerationJobRepository

from .assets import ParallelAssetGenerator
from .cleanup import CleanupScheduler
from .compositor import build_render_spec, resolve_subtitle_style
from .planner import ScriptPlanner
from .stager import AssetStager
from .stitcher import Stitcher
from .style import StyleResolver
from .subtitles import build_srt
from .webhooks import WebhookDispatcher, build_payload

SUBTITLE_CONTENT_TYPE = "application/x-subrip; charset=utf-8"


class GenerationOrchestrator:
    """Drives one generation job from prompt to published video.

    Stages run in a fixed order and the job status follows them. A cancel
    request is honoured at the next stage boundary. Any exception ends the
    job in ``failed`` with a message safe to show its owner.
    """

    def __init__(
        self,
        repo: GenerationJobRepository,
        styles: StyleResolver,
        planner: ScriptPlanner,
        assets: ParallelAssetGenerator,
        stager: AssetStager,
        stitcher: Stitcher,
        cleanup: CleanupScheduler,
        webhooks: WebhookDispatcher,
        storage: StorageClient,
        partial_failure_policy: str = "degrade",
        final_video_prefix: str = "final-videos",
        temp_audio_prefix: str = "temp-audio",
        render_output_prefix: str = "renders",
        events: JobEventPublisher | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.repo = repo
        self.styles = styles
        self.planner = planner
        self.assets = assets
        self.stager = stager
        self.stitcher = stitcher
        self.cleanup = cleanup
        self.webhooks = webhooks
        self.storage = storage
        self.partial_failure_policy = partial_failure_policy
        self.final_video_prefix = final_video_prefix.strip("/")
        self.temp_audio_prefix = temp_audio_prefix.strip("/")
        self.render_output_prefix = render_output_prefix.strip("/")
        self.events = events
        self.queue: BaseQueue | None = None
        self.log = logger or logging.getLogger(__name__)

    def bind_queue(self, queue: BaseQueue) -> None:
        self.queue = queue

    def create_job(self, payload: GenerateRequest, user_id: str, default_template_id: str) -> GenerationJob:
        template_id = payload.template_id or default_template_id
        self.styles.resolve(template_id)
        job = GenerationJob(
            id=uuid4(),
            project_id=uuid4(),
            user_id=user_id,
            prompt=payload.prompt.strip(),
            template_id=template_id,
            target_duration=payload.target_duration,
            aspect_ratio=payload.aspect_ratio,
            burn_subtitles=payload.burn_subtitles,
            voice_id=payload.voice_id,
            webhook_url=str(payload.webhook_url) if payload.webhook_url else None,
        )
        self._save(job)
        self.log.info(
            "generation job created",
            extra={"job_id": str(job.id), "project_id": str(job.project_id), "template_id": template_id},
        )
        if self.queue is not None:
            self.queue.enqueue(job.id)
        return job

    def get_job(self, job_id: UUID) -> GenerationJob:
        job = self.repo.get(job_id)
        if job is None:
            raise NotFoundError(f"job {job_id} not found")
        return job

    def cancel(self, job_id: UUID) -> GenerationJob:
        job = self.repo.request_cancel(job_id)
        if job is None:
            raise NotFoundError(f"job {job_id} not found")
        self.log.info("generation job cancel requested", extra={"job_id": str(job_id), "status": job.status.value})
        return job

    def process_job(self, job_id: UUID) -> None:
        asyncio.run(self.run(job_id))

    async def run(self, job_id: UUID) -> GenerationJob | None:
        job = self.repo.get(job_id)
        if job is None or job.is_terminal:
            return job
        staged: StagedAssets | None = None
        subtitle_uri: str | None = None
        try:
            self._checkpoint(job)
            self._advance(job, JobStatus.SCRIPTING, "Planning script")
            style = self.styles.resolve(job.template_id)
            job.style_preset = style.style_preset
            job.script = await self.planner.plan(job.prompt, job.target_duration, style)

            self._checkpoint(job)
            self._advance(job, JobStatus.GENERATING_ASSETS, f"Generating {len(job.script.scenes)} scenes")
            narration, visuals = await self.assets.generate(job.script, style, job.aspect_ratio, job.voice_id)

            self._checkpoint(job)
            self._advance(job, JobStatus.STAGING, "Staging assets")
            staged = await self.stager.stage(job.project_id, job.user_id, narration, visuals)
            self._enforce_partial_policy(job.script, staged)
            job.included_scenes = list(staged.scene_indices)

            self._checkpoint(job)
            self._advance(job, JobStatus.STITCHING, f"Stitching {len(staged.scene_indices)} scenes")
            if job.burn_subtitles:
                subtitle_uri = await self._upload_subtitles(job, job.script, staged.scene_indices, style.style_preset)
            spec = build_render_spec(
                job.aspect_ratio,
                style.style_preset,
                job.burn_subtitles,
                crop_source=False,
            )
            output_key = f"{self.final_video_prefix}/{job.user_id}/{job.project_id}.mp4"
            job.final_artifact_url = await self.stitcher.stitch(
                staged.video_uris, staged.narration_uri, subtitle_uri, spec, output_key
            )
            self._advance(job, JobStatus.COMPLETED, "Video ready")
        except Exception as exc:
            self._fail(job, exc)
            if staged is not None:
                await self.cleanup.post_stitch_cleanup(job.project_id, job.user_id, staged, _present(subtitle_uri))
            await self._notify(job)
            return job

        await self._on_completed(job, staged, subtitle_uri)
        return job

    # Project lookups used by the render queue.

    def final_artifact(self, project_id: UUID) -> Optional[str]:
        job = self.repo.get_by_project(project_id)
        if job is None or job.status != JobStatus.COMPLETED:
            return None
        return job.final_artifact_url

    async def subtitles(self, project_id: UUID, subtitle_style: str | None = None) -> Optional[str]:
        """Upload an SRT of the included scenes, cased for ``subtitle_style`` or the project's own style."""
        job = self.repo.get_by_project(project_id)
        if job is None or job.script is None:
            return None
        uppercase = resolve_subtitle_style(subtitle_style or job.style_preset).uppercase
        text = build_srt(_included(job.script, job.included_scenes), uppercase=uppercase)
        variant = "upper" if uppercase else "plain"
        key = f"{self.render_output_prefix}/{project_id}/subtitles_{variant}.srt"
        return await asyncio.to_thread(self.storage.upload_bytes, key, text.encode("utf-8"), SUBTITLE_CONTENT_TYPE)

    async def _on_completed(self, job: GenerationJob, staged: StagedAssets, subtitle_uri: str | None) -> None:
        await self.cleanup.post_stitch_cleanup(job.project_id, job.user_id, staged, _present(subtitle_uri))
        try:
            await self.cleanup.schedule_final(job.project_id, job.user_id, job.final_artifact_url)
        except Exception:
            self.log.warning("final video cleanup not scheduled", extra={"job_id": str(job.id)}, exc_info=True)
        self.styles.record_usage(job.template_id)
        await self._notify(job)
        self.log.info("generation job completed", extra={"job_id": str(job.id), "url": job.final_artifact_url})

    async def _notify(self, job: GenerationJob) -> None:
        if not job.webhook_url:
            return
        payload = build_payload(
            job.id,
            job.project_id,
            job.status.value,
            video_url=job.final_artifact_url,
            error=job.error,
        )
        try:
            await self.webhooks.deliver(job.project_id, payload, job.webhook_url)
        except Exception:
            self.log.warning("webhook dispatch failed", extra={"job_id": str(job.id)}, exc_info=True)

    async def _upload_subtitles(
        self, job: GenerationJob, script: VideoScript, indices: list[int], style_preset: str
    ) -> str:
        text = build_srt(_included(script, indices), uppercase=resolve_subtitle_style(style_preset).uppercase)
        key = f"{self.temp_audio_prefix}/{job.user_id}/{job.project_id}_subtitles.srt"
        return await asyncio.to_thread(self.storage.upload_bytes, key, text.encode("utf-8"), SUBTITLE_CONTENT_TYPE)

    def _enforce_partial_policy(self, script: VideoScript, staged: StagedAssets) -> None:
        if not staged.scene_indices:
            raise PartialFailure("no scene has both narration and visual", staged.failures)
        if self.partial_failure_policy == "fail" and len(staged.scene_indices) < len(script.scenes):
            raise PartialFailure(
                f"{len(script.scenes) - len(staged.scene_indices)} of {len(script.scenes)} scenes failed",
                staged.failures,
            )
        if len(staged.scene_indices) < len(script.scenes):
            self.log.warning(
                "continuing with partial scenes",
                extra={"included": staged.scene_indices, "planned": len(script.scenes)},
            )

    def _checkpoint(self, job: GenerationJob) -> None:
        if self.repo.is_cancel_requested(job.id):
            raise JobCancelled(f"job {job.id} cancelled before {job.status.value}")

    def _advance(self, job: GenerationJob, status: JobStatus, message: str) -> None:
        job.transition(status, message)
        self._save(job)

    def _fail(self, job: GenerationJob, exc: BaseException) -> None:
        kind, message = describe_failure(exc)
        if kind == "internal":
            self.log.exception("generation job failed", extra={"job_id": str(job.id)})
        else:
            self.log.warning(
                "generation job failed",
                extra={"job_id": str(job.id), "kind": kind, "error": str(exc)},
            )
        job.error = message
        job.error_kind = kind
        if not job.is_terminal:
            job.transition(JobStatus.FAILED, message)
        self._save(job)

    def _save(self, job: GenerationJob) -> None:
        self.repo.save(job)
        if self.events is not None:
            self.events.publish_job(job)


def _included(script: VideoScript, indices: list[int]) -> list[Scene]:
    wanted = set(indices) if indices else {scene.index for scene in script.scenes}
    return [scene for scene in script.scenes if scene.index in wanted]


def _present(uri: str | None) -> list[str]:
    return [uri] if uri else []
