from __future__ import annotations

from threading import Lock
from typing import Dict, Iterable, List
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import sessionmaker

from director.models.domain import TERMINAL_JOB_STATUSES, GenerationJob, Template

from .database import GenerationJobRow

SYSTEM_TEMPLATES: List[Template] = [
    Template(
        id="cinematic_story",
        name="Cinematic Story",
        category="storytelling",
        style_preset="Photorealistic Cinematic",
        voice_id="deep_male_narrator",
        visual_style_prompt=(
            "Cinematic lighting, 8k resolution, photorealistic, slow camera movement, "
            "golden hour, highly detailed, shallow depth of field"
        ),
        visual_negative_prompt="cartoon, anime, blurry, distorted, low quality, pixelated, fast motion",
        motion_strength=1,
    ),
    Template(
        id="high_energy_promo",
        name="High Energy Promo",
        category="marketing",
        style_preset="High Energy Promo",
        voice_id="energetic_female_announcer",
        visual_style_prompt=(
            "Fast motion, dynamic camera angles, bright lighting, vibrant colors, "
            "high energy, professional cinematography"
        ),
        visual_negative_prompt="slow motion, dark, dull colors, static camera, low energy",
        motion_strength=4,
    ),
    Template(
        id="modern_minimalist",
        name="Modern Minimalist",
        category="corporate",
        style_preset="Minimal",
        voice_id="professional_neutral",
        visual_style_prompt=(
            "Clean composition, minimal distractions, soft lighting, modern aesthetic, "
            "steady camera, professional grade"
        ),
        visual_negative_prompt="cluttered, chaotic, harsh lighting, amateur",
        motion_strength=2,
    ),
]


class GenerationJobRepository:
    """Generation jobs stored as JSON documents so the API and workers share them."""

    def __init__(self, sessions: sessionmaker) -> None:
        self._sessions = sessions

    def save(self, job: GenerationJob) -> GenerationJob:
        values = {
            "status": job.status.value,
            "document": job.model_dump(mode="json"),
            "updated_at": job.updated_at,
        }
        # Never clear a cancel flag set by another process.
        if job.cancel_requested:
            values["cancel_requested"] = True
        with self._sessions.begin() as session:
            result = session.execute(
                update(GenerationJobRow).where(GenerationJobRow.id == str(job.id)).values(**values)
            )
            if result.rowcount == 0:
                session.add(
                    GenerationJobRow(
                        id=str(job.id),
                        project_id=str(job.project_id),
                        user_id=job.user_id,
                        cancel_requested=job.cancel_requested,
                        created_at=job.created_at,
                        **values,
                    )
                )
        return job

    def get(self, job_id: UUID) -> GenerationJob | None:
        with self._sessions() as session:
            row = session.get(GenerationJobRow, str(job_id))
            return _to_job(row) if row else None

    def get_by_project(self, project_id: UUID) -> GenerationJob | None:
        stmt = select(GenerationJobRow).where(GenerationJobRow.project_id == str(project_id))
        with self._sessions() as session:
            row = session.scalars(stmt).first()
            return _to_job(row) if row else None

    def request_cancel(self, job_id: UUID) -> GenerationJob | None:
        """Flag a job for cooperative cancellation; terminal jobs are left alone."""
        terminal = [status.value for status in TERMINAL_JOB_STATUSES]
        with self._sessions.begin() as session:
            session.execute(
                update(GenerationJobRow)
                .where(GenerationJobRow.id == str(job_id))
                .where(GenerationJobRow.status.not_in(terminal))
                .values(cancel_requested=True)
            )
        return self.get(job_id)

    def is_cancel_requested(self, job_id: UUID) -> bool:
        stmt = select(GenerationJobRow.cancel_requested).where(GenerationJobRow.id == str(job_id))
        with self._sessions() as session:
            return bool(session.scalar(stmt))

    def list(self) -> List[GenerationJob]:
        stmt = select(GenerationJobRow).order_by(GenerationJobRow.created_at.asc())
        with self._sessions() as session:
            return [_to_job(row) for row in session.scalars(stmt)]


class TemplateRepository:
    def __init__(self, templates: Iterable[Template] = SYSTEM_TEMPLATES) -> None:
        self._templates: Dict[str, Template] = {t.id: t.model_copy(deep=True) for t in templates}
        self._lock = Lock()

    def get(self, template_id: str) -> Template | None:
        with self._lock:
            template = self._templates.get(template_id)
            return template.model_copy(deep=True) if template else None

    def list(self) -> List[Template]:
        with self._lock:
            return [t.model_copy(deep=True) for t in self._templates.values()]

    def increment_usage(self, template_id: str) -> None:
        with self._lock:
            template = self._templates.get(template_id)
            if template is not None:
                template.usage_count += 1


def _to_job(row: GenerationJobRow) -> GenerationJob:
    job = GenerationJob.model_validate(row.document)
    job.cancel_requested = bool(row.cancel_requested)
    return job
