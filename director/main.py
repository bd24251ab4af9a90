from __future__ import annotations

import logging
from uuid import UUID

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, status

from director.config import Settings, get_settings
from director.errors import DirectorError, InvalidTransition, NotFoundError, ValidationError
from director.models.api import (
    GenerateRequest,
    GenerateResponse,
    QueueProcessResponse,
    QueueStatsResponse,
    RenderJobCreatedResponse,
    RenderJobRequest,
    RenderJobResponse,
    SweepResponse,
    WebhookDeliveryListResponse,
)
from director.models.domain import GenerationJob, JobStatus
from director.queue.queue import KafkaQueue, LocalQueue
from director.services.container import Container, build_container
from director.services.orchestrator import GenerationOrchestrator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(title="AI Director")

_container: Container | None = None


def require_user_id(x_user_id: str = Header(default=None, alias="X-User-ID")) -> str:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-ID header required")
    return x_user_id


def get_container(settings: Settings = Depends(get_settings)) -> Container:
    global _container
    if _container is None:
        container = build_container(settings)
        container.orchestrator.bind_queue(_build_queue(settings, container.orchestrator))
        _container = container
    return _container


def _build_queue(settings: Settings, orchestrator: GenerationOrchestrator):
    if settings.kafka_enabled:
        return KafkaQueue(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            topic=settings.kafka_topic,
            group_id=settings.kafka_group_id,
            processor=orchestrator.process_job,
            consume=False,
        )
    return LocalQueue(processor=orchestrator.process_job, workers=settings.local_queue_workers)


def _http_error(exc: DirectorError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.user_message)
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.user_message)
    if isinstance(exc, InvalidTransition):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.user_message)


def _public_status(job: GenerationJob) -> str:
    if job.status in (JobStatus.QUEUED, JobStatus.COMPLETED, JobStatus.FAILED):
        return job.status.value
    return "processing"


def _job_response(job: GenerationJob) -> GenerateResponse:
    if job.status == JobStatus.FAILED:
        message = job.error or "Video generation failed."
    elif job.status_history:
        message = job.status_history[-1].message
    else:
        message = "Video generation queued"
    return GenerateResponse(
        success=job.status != JobStatus.FAILED,
        job_id=job.id,
        project_id=job.project_id,
        status=_public_status(job),
        message=message,
        video_url=job.final_artifact_url,
    )


@app.post("/generate", response_model=GenerateResponse, status_code=status.HTTP_202_ACCEPTED)
def generate(
    payload: GenerateRequest,
    user_id: str = Depends(require_user_id),
    container: Container = Depends(get_container),
) -> GenerateResponse:
    try:
        job = container.orchestrator.create_job(payload, user_id, container.settings.default_template_id)
    except DirectorError as exc:
        raise _http_error(exc) from exc
    return _job_response(job)


@app.get("/jobs/{job_id}", response_model=GenerateResponse)
def get_job(job_id: UUID, container: Container = Depends(get_container)) -> GenerateResponse:
    try:
        job = container.orchestrator.get_job(job_id)
    except DirectorError as exc:
        raise _http_error(exc) from exc
    return _job_response(job)


@app.post("/jobs/{job_id}:cancel", response_model=GenerateResponse)
def cancel_job(job_id: UUID, container: Container = Depends(get_container)) -> GenerateResponse:
    try:
        job = container.orchestrator.cancel(job_id)
    except DirectorError as exc:
        raise _http_error(exc) from exc
    return _job_response(job)


@app.post("/render-jobs", response_model=RenderJobCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_render_job(
    payload: RenderJobRequest,
    x_user_id: str | None = Header(default=None, alias="X-User-ID"),
    container: Container = Depends(get_container),
) -> RenderJobCreatedResponse:
    try:
        job_id = container.render_queue.create_render_job(
            payload.project_id,
            payload.aspect_ratio,
            payload.burn_subtitles,
            subtitle_style=payload.subtitle_style,
            priority=payload.priority,
            user_id=x_user_id,
        )
    except DirectorError as exc:
        raise _http_error(exc) from exc
    return RenderJobCreatedResponse(job_id=job_id)


@app.get("/render-jobs:stats", response_model=QueueStatsResponse)
def render_stats(container: Container = Depends(get_container)) -> QueueStatsResponse:
    return QueueStatsResponse(**container.render_queue.stats())


@app.get("/render-jobs/{job_id}", response_model=RenderJobResponse)
def get_render_job(job_id: UUID, container: Container = Depends(get_container)) -> RenderJobResponse:
    try:
        entry = container.render_queue.get_render_job_status(job_id)
    except DirectorError as exc:
        raise _http_error(exc) from exc
    return RenderJobResponse(job=entry)


@app.post("/render-jobs/{job_id}:retry", response_model=RenderJobResponse)
def retry_render_job(job_id: UUID, container: Container = Depends(get_container)) -> RenderJobResponse:
    try:
        entry = container.render_queue.retry_render_job(job_id)
    except DirectorError as exc:
        raise _http_error(exc) from exc
    return RenderJobResponse(job=entry)


@app.post("/queue/process", response_model=QueueProcessResponse)
async def process_queue(container: Container = Depends(get_container)) -> QueueProcessResponse:
    entry = await container.render_queue.process_next()
    if entry is None:
        return QueueProcessResponse(success=True, processed=False, message="No jobs in queue")
    return QueueProcessResponse(
        success=entry.status.value != "failed",
        processed=True,
        message=f"Render job {entry.status.value}",
        job=entry,
    )


@app.get("/projects/{project_id}/webhooks", response_model=WebhookDeliveryListResponse)
def list_webhooks(project_id: UUID, container: Container = Depends(get_container)) -> WebhookDeliveryListResponse:
    return WebhookDeliveryListResponse(items=container.webhooks.list_for_project(project_id))


@app.post("/projects/{project_id}/webhooks:cancel", response_model=SweepResponse)
def cancel_webhooks(project_id: UUID, container: Container = Depends(get_container)) -> SweepResponse:
    return SweepResponse(processed=container.webhooks.cancel_for_project(project_id))


@app.post("/webhooks:retry", response_model=SweepResponse)
async def retry_webhooks(container: Container = Depends(get_container)) -> SweepResponse:
    return SweepResponse(processed=await container.webhooks.retry_due())


@app.post("/cleanup:sweep", response_model=SweepResponse)
async def sweep_cleanup(container: Container = Depends(get_container)) -> SweepResponse:
    return SweepResponse(processed=await container.cleanup.sweep())


def serve() -> None:
    settings = get_settings()
    uvicorn.run("director.main:app", host=settings.host, port=settings.port)
