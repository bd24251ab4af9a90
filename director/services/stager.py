from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional
from uuid import UUID

from director.clients.s3_storage import StorageClient
from director.models.domain import AssetKind, SceneAssetResult, StagedAssets

AUDIO_CONTENT_TYPE = "audio/mpeg"


def asset_name(project_id: UUID, index: int, kind: AssetKind) -> str:
    label, ext = ("audio", "mp3") if kind == AssetKind.NARRATION else ("video", "mp4")
    return f"{project_id}_scene_{index}_{label}.{ext}"


class AssetStager:
    """Moves generated scene assets into durable storage."""

    def __init__(
        self,
        storage: StorageClient,
        audio_prefix: str = "temp-audio",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._storage = storage
        self._audio_prefix = audio_prefix.strip("/")
        self.log = logger or logging.getLogger(__name__)

    async def stage(
        self,
        project_id: UUID,
        user_id: str,
        narration: List[SceneAssetResult],
        visuals: List[SceneAssetResult],
    ) -> StagedAssets:
        staged = StagedAssets()
        audio: Dict[int, str] = {}
        payloads: Dict[int, bytes] = {}
        for result in narration:
            if not result.success or result.payload is None:
                staged.failures.append(result)
                continue
            key = f"{self._audio_prefix}/{user_id}/{asset_name(project_id, result.scene_index, AssetKind.NARRATION)}"
            try:
                audio[result.scene_index] = await asyncio.to_thread(
                    self._storage.upload_bytes, key, result.payload, AUDIO_CONTENT_TYPE
                )
            except Exception as exc:
                self.log.warning(
                    "narration upload failed",
                    extra={"project_id": str(project_id), "scene": result.scene_index},
                    exc_info=True,
                )
                staged.failures.append(
                    SceneAssetResult(
                        scene_index=result.scene_index,
                        kind=AssetKind.NARRATION,
                        success=False,
                        error=f"upload failed: {exc}",
                    )
                )
                continue
            payloads[result.scene_index] = result.payload

        video: Dict[int, str] = {}
        for result in visuals:
            if result.success and result.uri:
                video[result.scene_index] = result.uri
            else:
                staged.failures.append(result)

        for index in sorted(set(audio) & set(video)):
            staged.scene_indices.append(index)
            staged.audio_uris.append(audio[index])
            staged.video_uris.append(video[index])

        # Uploaded clips of excluded scenes still need to be cleaned up.
        staged.orphan_uris = [uri for index, uri in sorted(audio.items()) if index not in video]

        if staged.scene_indices:
            combined = b"".join(payloads[index] for index in staged.scene_indices)
            key = f"{self._audio_prefix}/{user_id}/{project_id}_narration.mp3"
            staged.narration_uri = await asyncio.to_thread(
                self._storage.upload_bytes, key, combined, AUDIO_CONTENT_TYPE
            )

        self.log.info(
            "assets staged",
            extra={
                "project_id": str(project_id),
                "included": staged.scene_indices,
                "failures": len(staged.failures),
            },
        )
        return staged
