from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional, Protocol, Tuple

from director.errors import DirectorError
from director.models.domain import AssetKind, SceneAssetResult, StyleProfile, VideoScript

from .retry import RetryPolicy


class NarrationProvider(Protocol):
    async def synthesize(self, text: str, voice: str) -> bytes: ...


class VisualProvider(Protocol):
    async def generate(self, prompt: str, aspect_ratio: str = "16:9") -> str: ...


def partition(results: Iterable[SceneAssetResult]) -> Tuple[List[SceneAssetResult], List[SceneAssetResult]]:
    successes: List[SceneAssetResult] = []
    failures: List[SceneAssetResult] = []
    for result in results:
        (successes if result.success else failures).append(result)
    return successes, failures


def _safe_message(exc: BaseException) -> str:
    if isinstance(exc, DirectorError):
        return exc.user_message
    return DirectorError.user_message


class ParallelAssetGenerator:
    """Fans out narration and visual synthesis for every scene at once.

    Each task runs under its own retry policy. A task that still fails is
    reported as a failed :class:`SceneAssetResult`; sibling tasks are never
    cancelled because of it.
    """

    def __init__(
        self,
        narration: NarrationProvider,
        visuals: VisualProvider,
        narration_policy: RetryPolicy,
        visual_policy: RetryPolicy,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._narration = narration
        self._visuals = visuals
        self._narration_policy = narration_policy
        self._visual_policy = visual_policy
        self.log = logger or logging.getLogger(__name__)

    async def generate(
        self,
        script: VideoScript,
        style: StyleProfile,
        aspect_ratio: str = "16:9",
        voice_id: str | None = None,
    ) -> Tuple[List[SceneAssetResult], List[SceneAssetResult]]:
        voice = voice_id or style.voice_id
        narration_tasks = [self._narrate(scene.index, scene.narration_text, voice) for scene in script.scenes]
        visual_tasks = [self._visualize(scene.index, scene.visual_prompt, aspect_ratio) for scene in script.scenes]
        results = await asyncio.gather(*narration_tasks, *visual_tasks)
        count = len(script.scenes)
        narration = sorted(results[:count], key=lambda r: r.scene_index)
        visuals = sorted(results[count:], key=lambda r: r.scene_index)
        self.log.info(
            "scene assets generated",
            extra={
                "scenes": count,
                "narration_failures": len(partition(narration)[1]),
                "visual_failures": len(partition(visuals)[1]),
            },
        )
        return narration, visuals

    async def _narrate(self, index: int, text: str, voice: str) -> SceneAssetResult:
        try:
            audio = await self._narration_policy.run(
                lambda: self._narration.synthesize(text, voice), label=f"narration scene {index}"
            )
        except Exception as exc:
            self.log.warning("narration failed", extra={"scene": index, "error": str(exc)})
            return SceneAssetResult(
                scene_index=index, kind=AssetKind.NARRATION, success=False, error=_safe_message(exc)
            )
        return SceneAssetResult(scene_index=index, kind=AssetKind.NARRATION, success=True, payload=audio)

    async def _visualize(self, index: int, prompt: str, aspect_ratio: str) -> SceneAssetResult:
        try:
            url = await self._visual_policy.run(
                lambda: self._visuals.generate(prompt, aspect_ratio), label=f"visual scene {index}"
            )
        except Exception as exc:
            self.log.warning("visual generation failed", extra={"scene": index, "error": str(exc)})
            return SceneAssetResult(scene_index=index, kind=AssetKind.VISUAL, success=False, error=_safe_message(exc))
        return SceneAssetResult(scene_index=index, kind=AssetKind.VISUAL, success=True, uri=url)
