"""Durable stores for the render, webhook and cleanup queues.

Every state change is a conditional UPDATE whose WHERE clause names the
expected current state, and callers look at the affected row count to know
whether they won. Nothing here holds a lock across statements.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import sessionmaker

from director.errors import ClaimConflict
from director.models.domain import (
    CleanupQueueEntry,
    CleanupStatus,
    RenderQueueEntry,
    RenderStatus,
    WebhookDelivery,
    WebhookStatus,
)

from .database import CleanupQueueRow, RenderQueueRow, WebhookDeliveryRow


class RenderQueueStore:
    def __init__(self, sessions: sessionmaker) -> None:
        self._sessions = sessions

    def insert(self, entry: RenderQueueEntry) -> RenderQueueEntry:
        row = RenderQueueRow(
            id=str(entry.id),
            project_id=str(entry.project_id),
            user_id=entry.user_id,
            aspect_ratio=entry.aspect_ratio,
            burn_subtitles=entry.burn_subtitles,
            subtitle_style=entry.subtitle_style,
            status=entry.status.value,
            priority=entry.priority,
            attempts=entry.attempts,
            max_attempts=entry.max_attempts,
            next_retry_at=entry.next_retry_at,
            created_at=entry.created_at,
        )
        with self._sessions.begin() as session:
            session.add(row)
        return entry

    def get(self, entry_id: UUID) -> Optional[RenderQueueEntry]:
        with self._sessions() as session:
            row = session.get(RenderQueueRow, str(entry_id))
            return _to_render_entry(row) if row else None

    def pending_candidates(self, now: datetime, limit: int = 10) -> List[RenderQueueEntry]:
        stmt = (
            select(RenderQueueRow)
            .where(RenderQueueRow.status == RenderStatus.PENDING.value)
            .where(or_(RenderQueueRow.next_retry_at.is_(None), RenderQueueRow.next_retry_at <= now))
            .order_by(RenderQueueRow.priority.desc(), RenderQueueRow.created_at.asc())
            .limit(limit)
        )
        with self._sessions() as session:
            return [_to_render_entry(row) for row in session.scalars(stmt)]

    def claim(self, entry_id: UUID, now: datetime) -> None:
        """Move a pending entry to processing; raise ClaimConflict when another worker got there first."""
        stmt = (
            update(RenderQueueRow)
            .where(RenderQueueRow.id == str(entry_id))
            .where(RenderQueueRow.status == RenderStatus.PENDING.value)
            .where(RenderQueueRow.attempts < RenderQueueRow.max_attempts)
            .values(
                status=RenderStatus.PROCESSING.value,
                attempts=RenderQueueRow.attempts + 1,
                started_at=now,
            )
        )
        if self._execute(stmt) != 1:
            raise ClaimConflict(f"render job {entry_id} is no longer claimable")

    def complete(self, entry_id: UUID, output_url: str, now: datetime, processing_time_seconds: int) -> bool:
        stmt = (
            update(RenderQueueRow)
            .where(RenderQueueRow.id == str(entry_id))
            .where(RenderQueueRow.status == RenderStatus.PROCESSING.value)
            .values(
                status=RenderStatus.COMPLETED.value,
                output_url=output_url,
                error_message=None,
                next_retry_at=None,
                completed_at=now,
                processing_time_seconds=processing_time_seconds,
            )
        )
        return self._execute(stmt) == 1

    def fail(self, entry_id: UUID, error: str, now: datetime, retry_at: Optional[datetime]) -> bool:
        """Release a processing entry: back to pending at ``retry_at``, or failed when None."""
        values = {"error_message": error, "next_retry_at": retry_at}
        if retry_at is None:
            values.update(status=RenderStatus.FAILED.value, completed_at=now)
        else:
            values.update(status=RenderStatus.PENDING.value)
        stmt = (
            update(RenderQueueRow)
            .where(RenderQueueRow.id == str(entry_id))
            .where(RenderQueueRow.status == RenderStatus.PROCESSING.value)
            .values(**values)
        )
        return self._execute(stmt) == 1

    def reset(self, entry_id: UUID) -> bool:
        stmt = (
            update(RenderQueueRow)
            .where(RenderQueueRow.id == str(entry_id))
            .where(RenderQueueRow.status == RenderStatus.FAILED.value)
            .values(
                status=RenderStatus.PENDING.value,
                attempts=0,
                next_retry_at=None,
                error_message=None,
                started_at=None,
                completed_at=None,
            )
        )
        return self._execute(stmt) == 1

    def counts(self) -> Dict[str, int]:
        stmt = select(RenderQueueRow.status, func.count()).group_by(RenderQueueRow.status)
        with self._sessions() as session:
            return {status: count for status, count in session.execute(stmt)}

    def _execute(self, stmt) -> int:
        with self._sessions.begin() as session:
            return session.execute(stmt).rowcount


class WebhookStore:
    def __init__(self, sessions: sessionmaker) -> None:
        self._sessions = sessions

    def insert(self, delivery: WebhookDelivery) -> WebhookDelivery:
        row = WebhookDeliveryRow(
            id=str(delivery.id),
            project_id=str(delivery.project_id),
            url=delivery.url,
            status=delivery.status.value,
            payload=delivery.payload,
            attempts=delivery.attempts,
            max_attempts=delivery.max_attempts,
            next_retry_at=delivery.next_retry_at,
            created_at=delivery.created_at,
        )
        with self._sessions.begin() as session:
            session.add(row)
        return delivery

    def get(self, delivery_id: UUID) -> Optional[WebhookDelivery]:
        with self._sessions() as session:
            row = session.get(WebhookDeliveryRow, str(delivery_id))
            return _to_delivery(row) if row else None

    def list_for_project(self, project_id: UUID) -> List[WebhookDelivery]:
        stmt = (
            select(WebhookDeliveryRow)
            .where(WebhookDeliveryRow.project_id == str(project_id))
            .order_by(WebhookDeliveryRow.created_at.asc())
        )
        with self._sessions() as session:
            return [_to_delivery(row) for row in session.scalars(stmt)]

    def due(self, now: datetime, limit: int = 50) -> List[WebhookDelivery]:
        stmt = (
            select(WebhookDeliveryRow)
            .where(WebhookDeliveryRow.status == WebhookStatus.PENDING.value)
            .where(WebhookDeliveryRow.next_retry_at.is_not(None))
            .where(WebhookDeliveryRow.next_retry_at <= now)
            .order_by(WebhookDeliveryRow.next_retry_at.asc())
            .limit(limit)
        )
        with self._sessions() as session:
            return [_to_delivery(row) for row in session.scalars(stmt)]

    def record_success(
        self, delivery_id: UUID, expected_attempts: int, response_status: int, response_body: str, now: datetime
    ) -> bool:
        stmt = (
            update(WebhookDeliveryRow)
            .where(WebhookDeliveryRow.id == str(delivery_id))
            .where(WebhookDeliveryRow.status == WebhookStatus.PENDING.value)
            .where(WebhookDeliveryRow.attempts == expected_attempts)
            .values(
                status=WebhookStatus.SENT.value,
                attempts=expected_attempts + 1,
                response_status=response_status,
                response_body=response_body,
                next_retry_at=None,
                sent_at=now,
            )
        )
        return self._execute(stmt) == 1

    def record_failure(
        self,
        delivery_id: UUID,
        expected_attempts: int,
        response_status: Optional[int],
        response_body: Optional[str],
        retry_at: Optional[datetime],
    ) -> bool:
        """Count a failed attempt; ``retry_at=None`` makes the failure terminal."""
        status = WebhookStatus.PENDING if retry_at is not None else WebhookStatus.FAILED
        stmt = (
            update(WebhookDeliveryRow)
            .where(WebhookDeliveryRow.id == str(delivery_id))
            .where(WebhookDeliveryRow.status == WebhookStatus.PENDING.value)
            .where(WebhookDeliveryRow.attempts == expected_attempts)
            .values(
                status=status.value,
                attempts=expected_attempts + 1,
                response_status=response_status,
                response_body=response_body,
                next_retry_at=retry_at,
            )
        )
        return self._execute(stmt) == 1

    def cancel_for_project(self, project_id: UUID) -> int:
        stmt = (
            update(WebhookDeliveryRow)
            .where(WebhookDeliveryRow.project_id == str(project_id))
            .where(WebhookDeliveryRow.status == WebhookStatus.PENDING.value)
            .values(status=WebhookStatus.CANCELLED.value, next_retry_at=None)
        )
        return self._execute(stmt)

    def _execute(self, stmt) -> int:
        with self._sessions.begin() as session:
            return session.execute(stmt).rowcount


class CleanupStore:
    def __init__(self, sessions: sessionmaker) -> None:
        self._sessions = sessions

    def insert(self, entry: CleanupQueueEntry) -> CleanupQueueEntry:
        row = CleanupQueueRow(
            id=str(entry.id),
            project_id=str(entry.project_id),
            user_id=entry.user_id,
            asset_type=entry.asset_type.value,
            asset_url=entry.asset_url,
            scheduled_deletion_at=entry.scheduled_deletion_at,
            status=entry.status.value,
            attempts=entry.attempts,
            max_attempts=entry.max_attempts,
            next_attempt_at=entry.next_attempt_at,
            created_at=entry.created_at,
        )
        with self._sessions.begin() as session:
            session.add(row)
        return entry

    def get(self, entry_id: UUID) -> Optional[CleanupQueueEntry]:
        with self._sessions() as session:
            row = session.get(CleanupQueueRow, str(entry_id))
            return _to_cleanup_entry(row) if row else None

    def list_for_project(self, project_id: UUID) -> List[CleanupQueueEntry]:
        stmt = (
            select(CleanupQueueRow)
            .where(CleanupQueueRow.project_id == str(project_id))
            .order_by(CleanupQueueRow.created_at.asc())
        )
        with self._sessions() as session:
            return [_to_cleanup_entry(row) for row in session.scalars(stmt)]

    def due(self, now: datetime, limit: int = 100) -> List[CleanupQueueEntry]:
        stmt = (
            select(CleanupQueueRow)
            .where(CleanupQueueRow.status == CleanupStatus.PENDING.value)
            .where(CleanupQueueRow.scheduled_deletion_at <= now)
            .where(or_(CleanupQueueRow.next_attempt_at.is_(None), CleanupQueueRow.next_attempt_at <= now))
            .order_by(CleanupQueueRow.scheduled_deletion_at.asc())
            .limit(limit)
        )
        with self._sessions() as session:
            return [_to_cleanup_entry(row) for row in session.scalars(stmt)]

    def complete(self, entry_id: UUID, expected_attempts: int, now: datetime) -> bool:
        stmt = (
            update(CleanupQueueRow)
            .where(CleanupQueueRow.id == str(entry_id))
            .where(CleanupQueueRow.status == CleanupStatus.PENDING.value)
            .where(CleanupQueueRow.attempts == expected_attempts)
            .values(
                status=CleanupStatus.COMPLETED.value,
                attempts=expected_attempts + 1,
                error_message=None,
                next_attempt_at=None,
                completed_at=now,
            )
        )
        return self._execute(stmt) == 1

    def record_failure(
        self, entry_id: UUID, expected_attempts: int, error: str, retry_at: Optional[datetime], now: datetime
    ) -> bool:
        values = {
            "attempts": expected_attempts + 1,
            "error_message": error,
            "next_attempt_at": retry_at,
        }
        if retry_at is None:
            values.update(status=CleanupStatus.FAILED.value, completed_at=now)
        stmt = (
            update(CleanupQueueRow)
            .where(CleanupQueueRow.id == str(entry_id))
            .where(CleanupQueueRow.status == CleanupStatus.PENDING.value)
            .where(CleanupQueueRow.attempts == expected_attempts)
            .values(**values)
        )
        return self._execute(stmt) == 1

    def _execute(self, stmt) -> int:
        with self._sessions.begin() as session:
            return session.execute(stmt).rowcount


def _to_render_entry(row: RenderQueueRow) -> RenderQueueEntry:
    return RenderQueueEntry.model_validate(row, from_attributes=True)


def _to_delivery(row: WebhookDeliveryRow) -> WebhookDelivery:
    return WebhookDelivery.model_validate(row, from_attributes=True)


def _to_cleanup_entry(row: CleanupQueueRow) -> CleanupQueueEntry:
    return CleanupQueueEntry.model_validate(row, from_attributes=True)
