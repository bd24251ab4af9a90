from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
from uuid import UUID, uuid4

from director.clients.s3_storage import StorageClient
from director.models.domain import AssetType, CleanupQueueEntry, StagedAssets, utcnow
from director.storage.stores import CleanupStore

from .retry import Backoff, exponential_backoff

DEFAULT_RETENTION_HOURS: Dict[AssetType, int] = {
    AssetType.FINAL_VIDEO: 24,
    AssetType.INTERMEDIATE_AUDIO: 0,
    AssetType.INTERMEDIATE_VIDEO: 0,
}


class CleanupScheduler:
    def __init__(
        self,
        store: CleanupStore,
        storage: StorageClient,
        retention_hours: Dict[AssetType, int] | None = None,
        max_attempts: int = 3,
        backoff: Backoff | None = None,
        clock: Callable[[], datetime] = utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._storage = storage
        self._retention = dict(DEFAULT_RETENTION_HOURS)
        if retention_hours:
            self._retention.update(retention_hours)
        self._max_attempts = max_attempts
        self._backoff = backoff or exponential_backoff(300.0)
        self._clock = clock
        self.log = logger or logging.getLogger(__name__)

    async def register(
        self,
        project_id: UUID,
        user_id: str | None,
        asset_type: AssetType,
        asset_url: str,
        now: datetime | None = None,
    ) -> CleanupQueueEntry | None:
        """Delete immediately when the retention is zero, otherwise queue the deletion."""
        now = now or self._clock()
        hours = self._retention[asset_type]
        if hours <= 0:
            await self._delete(asset_url)
            self.log.info(
                "asset deleted",
                extra={"project_id": str(project_id), "asset_type": asset_type.value, "url": asset_url},
            )
            return None
        entry = CleanupQueueEntry(
            id=uuid4(),
            project_id=project_id,
            user_id=user_id,
            asset_type=asset_type,
            asset_url=asset_url,
            scheduled_deletion_at=now + timedelta(hours=hours),
            max_attempts=self._max_attempts,
            created_at=now,
        )
        self._store.insert(entry)
        self.log.info(
            "asset deletion scheduled",
            extra={"project_id": str(project_id), "at": entry.scheduled_deletion_at.isoformat()},
        )
        return entry

    async def schedule_final(self, project_id: UUID, user_id: str | None, url: str) -> CleanupQueueEntry | None:
        return await self.register(project_id, user_id, AssetType.FINAL_VIDEO, url)

    async def post_stitch_cleanup(
        self,
        project_id: UUID,
        user_id: str | None,
        staged: StagedAssets,
        extra_audio: List[str] | None = None,
    ) -> int:
        """Drop intermediates after a successful stitch. Failures are logged, not raised."""
        targets = [(AssetType.INTERMEDIATE_AUDIO, uri) for uri in staged.audio_uris + staged.orphan_uris]
        if staged.narration_uri:
            targets.append((AssetType.INTERMEDIATE_AUDIO, staged.narration_uri))
        targets.extend((AssetType.INTERMEDIATE_AUDIO, uri) for uri in extra_audio or [])
        targets.extend(
            (AssetType.INTERMEDIATE_VIDEO, uri) for uri in staged.video_uris if self._storage.key_from_url(uri)
        )
        removed = 0
        for asset_type, uri in targets:
            try:
                await self.register(project_id, user_id, asset_type, uri)
                removed += 1
            except Exception:
                self.log.warning(
                    "intermediate cleanup failed",
                    extra={"project_id": str(project_id), "url": uri},
                    exc_info=True,
                )
        return removed

    async def sweep(self, now: datetime | None = None) -> int:
        now = now or self._clock()
        due = self._store.due(now)
        for entry in due:
            try:
                await self._delete(entry.asset_url)
            except Exception as exc:
                attempts = entry.attempts + 1
                retry_at = None
                if attempts < entry.max_attempts:
                    retry_at = now + timedelta(seconds=self._backoff(attempts))
                self._store.record_failure(entry.id, entry.attempts, str(exc), retry_at, now)
                self.log.warning(
                    "scheduled deletion failed",
                    extra={
                        "entry_id": str(entry.id),
                        "attempt": attempts,
                        "next_attempt_at": retry_at.isoformat() if retry_at else None,
                        "error": str(exc),
                    },
                )
                continue
            self._store.complete(entry.id, entry.attempts, now)
            self.log.info("scheduled deletion completed", extra={"entry_id": str(entry.id)})
        return len(due)

    def list_for_project(self, project_id: UUID) -> List[CleanupQueueEntry]:
        return self._store.list_for_project(project_id)

    async def _delete(self, url: str) -> None:
        key = self._storage.key_from_url(url)
        if key is None:
            raise ValueError(f"{url} is not stored in this bucket")
        await asyncio.to_thread(self._storage.delete, key)
