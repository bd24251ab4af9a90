from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol
from uuid import UUID, uuid4

from director.errors import ClaimConflict, DirectorError, InvalidTransition, NotFoundError, ValidationError
from director.models.domain import ASPECT_RATIOS, RenderQueueEntry, RenderStatus, utcnow
from director.services.compositor import build_render_spec
from director.services.retry import Backoff, linear_backoff
from director.storage.stores import RenderQueueStore


class ProjectLookup(Protocol):
    def final_artifact(self, project_id: UUID) -> Optional[str]: ...

    async def subtitles(self, project_id: UUID, subtitle_style: str | None = None) -> Optional[str]: ...


class RenderBackend(Protocol):
    async def render(self, input_uri, spec, output_key, subtitle_uri=None) -> str: ...


class RenderQueue:
    """Durable priority queue of derived exports for completed projects."""

    def __init__(
        self,
        store: RenderQueueStore,
        renderer: RenderBackend,
        projects: ProjectLookup,
        max_attempts: int = 3,
        backoff: Backoff | None = None,
        output_prefix: str = "renders",
        source_width: int = 1920,
        source_height: int = 1080,
        clock: Callable[[], datetime] = utcnow,
        on_change: Callable[[RenderQueueEntry], None] | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._renderer = renderer
        self._projects = projects
        self._max_attempts = max_attempts
        self._backoff = backoff or linear_backoff(300.0)
        self._output_prefix = output_prefix.strip("/")
        self._source_width = source_width
        self._source_height = source_height
        self._clock = clock
        self._on_change = on_change
        self.log = logger or logging.getLogger(__name__)

    def create_render_job(
        self,
        project_id: UUID,
        aspect_ratio: str,
        burn_subtitles: bool,
        subtitle_style: str | None = None,
        priority: int = 0,
        user_id: str | None = None,
    ) -> UUID:
        if aspect_ratio not in ASPECT_RATIOS:
            raise ValidationError(f"aspect_ratio must be one of {', '.join(ASPECT_RATIOS)}")
        entry = RenderQueueEntry(
            id=uuid4(),
            project_id=project_id,
            user_id=user_id,
            aspect_ratio=aspect_ratio,
            burn_subtitles=burn_subtitles,
            subtitle_style=subtitle_style,
            priority=priority,
            max_attempts=self._max_attempts,
            created_at=self._clock(),
        )
        self._store.insert(entry)
        self.log.info(
            "render job queued",
            extra={"job_id": str(entry.id), "project_id": str(project_id), "priority": priority},
        )
        self._notify(entry)
        return entry.id

    def get_render_job_status(self, job_id: UUID) -> RenderQueueEntry:
        entry = self._store.get(job_id)
        if entry is None:
            raise NotFoundError(f"render job {job_id} not found")
        return entry

    def retry_render_job(self, job_id: UUID) -> RenderQueueEntry:
        """Put a permanently failed entry back in line with a fresh attempt budget."""
        entry = self.get_render_job_status(job_id)
        if entry.status != RenderStatus.FAILED:
            raise InvalidTransition(f"render job {job_id} is {entry.status.value}; only failed jobs can be retried")
        if not self._store.reset(job_id):
            raise InvalidTransition(f"render job {job_id} changed state; retry again")
        entry = self.get_render_job_status(job_id)
        self._notify(entry)
        return entry

    def claim_next(self, now: datetime | None = None) -> RenderQueueEntry | None:
        now = now or self._clock()
        for candidate in self._store.pending_candidates(now):
            try:
                self._store.claim(candidate.id, now)
            except ClaimConflict:
                self.log.debug("render job claimed by another worker", extra={"job_id": str(candidate.id)})
                continue
            entry = self._store.get(candidate.id)
            self.log.info(
                "render job claimed",
                extra={"job_id": str(candidate.id), "attempt": entry.attempts if entry else None},
            )
            return entry
        return None

    async def process_next(self, now: datetime | None = None) -> RenderQueueEntry | None:
        entry = self.claim_next(now)
        if entry is None:
            return None
        started = self._clock()
        try:
            output_url = await self._render(entry)
        except Exception as exc:
            return self.fail(entry, exc)
        elapsed = int((self._clock() - started).total_seconds())
        if not self._store.complete(entry.id, output_url, self._clock(), elapsed):
            self.log.warning("render job left processing before completion", extra={"job_id": str(entry.id)})
        result = self.get_render_job_status(entry.id)
        self.log.info("render job completed", extra={"job_id": str(entry.id), "seconds": elapsed})
        self._notify(result)
        return result

    def fail(self, entry: RenderQueueEntry, exc: BaseException) -> RenderQueueEntry:
        now = self._clock()
        message = exc.user_message if isinstance(exc, DirectorError) and not exc.internal else str(exc)
        retry_at = None
        if entry.attempts < entry.max_attempts:
            retry_at = now + timedelta(seconds=self._backoff(entry.attempts))
        self._store.fail(entry.id, message, now, retry_at)
        result = self.get_render_job_status(entry.id)
        self.log.warning(
            "render job failed",
            extra={
                "job_id": str(entry.id),
                "attempt": entry.attempts,
                "max_attempts": entry.max_attempts,
                "next_retry_at": retry_at.isoformat() if retry_at else None,
                "error": str(exc),
            },
        )
        self._notify(result)
        return result

    def stats(self) -> Dict[str, int]:
        counts = self._store.counts()
        stats = {status.value: counts.get(status.value, 0) for status in RenderStatus}
        stats["total"] = sum(stats.values())
        return stats

    async def _render(self, entry: RenderQueueEntry) -> str:
        source = self._projects.final_artifact(entry.project_id)
        if not source:
            raise ValidationError(f"project {entry.project_id} has no completed video")
        spec = build_render_spec(
            entry.aspect_ratio,
            entry.subtitle_style,
            entry.burn_subtitles,
            source_width=self._source_width,
            source_height=self._source_height,
        )
        ratio = entry.aspect_ratio.replace(":", "x")
        output_key = f"{self._output_prefix}/{entry.project_id}/{entry.id}_{ratio}.mp4"
        subtitle_uri = None
        if entry.burn_subtitles:
            subtitle_uri = await self._projects.subtitles(entry.project_id, entry.subtitle_style)
        return await self._renderer.render(source, spec, output_key, subtitle_uri=subtitle_uri)

    def _notify(self, entry: RenderQueueEntry) -> None:
        if self._on_change is not None:
            self._on_change(entry)
