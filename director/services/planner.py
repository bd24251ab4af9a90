from __future__ import annotations

import json
import logging
import math
from typing import Any, List, Optional, Protocol

from director.errors import PlanningError
from director.models.domain import Scene, StyleProfile, VideoScript

from .retry import RetryPolicy

MIN_SCENES = 3
MAX_SCENES = 4
WORDS_PER_SCENE = 50


class JSONCompletionClient(Protocol):
    async def complete_json(self, system_prompt: str, user_prompt: str) -> str: ...


def scene_count_for(prompt: str) -> int:
    words = len(prompt.split())
    return max(MIN_SCENES, min(MAX_SCENES, math.ceil(words / WORDS_PER_SCENE)))


def scene_durations(target_duration: int, count: int) -> List[int]:
    """Split ``target_duration`` into ``count`` whole seconds; the last scene absorbs the remainder."""
    per_scene = target_duration // count
    durations = [per_scene] * count
    durations[-1] += target_duration - per_scene * count
    return durations


def inject_style(visual: str, style: StyleProfile) -> str:
    return (
        f"{visual.rstrip('. ')}. {style.visual_style_suffix}. "
        f"AVOID: {style.visual_negative_prompt}. MOTION: {style.motion_strength}/4"
    )


class ScriptPlanner:
    def __init__(
        self,
        llm: JSONCompletionClient,
        retry_policy: RetryPolicy,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._llm = llm
        self._retry = retry_policy
        self.log = logger or logging.getLogger(__name__)

    async def plan(self, prompt: str, target_duration: int, style: StyleProfile) -> VideoScript:
        count = scene_count_for(prompt)
        durations = scene_durations(target_duration, count)
        system_prompt = self._build_system_prompt(count, durations, target_duration, style)
        raw = await self._retry.run(lambda: self._llm.complete_json(system_prompt, prompt), label="script planning")
        title, drafts = self._parse(raw, count)
        scenes = [
            Scene(
                index=index,
                narration_text=narration,
                visual_prompt=inject_style(visual, style),
                duration_seconds=durations[index],
            )
            for index, (narration, visual) in enumerate(drafts)
        ]
        script = VideoScript(title=title, total_duration_seconds=target_duration, scenes=scenes)
        self.log.info(
            "script planned",
            extra={"scenes": len(scenes), "target_duration": target_duration, "template_id": style.template_id},
        )
        return script

    def _parse(self, raw: str, count: int) -> tuple[str, List[tuple[str, str]]]:
        try:
            data = json.loads(self._strip_code_fence(raw))
        except json.JSONDecodeError as exc:
            raise PlanningError(f"script response is not valid JSON: {exc}") from exc
        if not isinstance(data, dict) or not isinstance(data.get("scenes"), list):
            raise PlanningError("script response has no scenes list")
        drafts: List[tuple[str, str]] = []
        for item in data["scenes"]:
            draft = self._scene_fields(item)
            if draft is not None:
                drafts.append(draft)
            if len(drafts) == count:
                break
        if len(drafts) < count:
            raise PlanningError(f"script response has {len(drafts)} usable scenes, expected {count}")
        title = str(data.get("title") or "").strip() or "Untitled"
        return title, drafts

    def _scene_fields(self, item: Any) -> tuple[str, str] | None:
        if not isinstance(item, dict):
            return None
        narration = item.get("narration") or item.get("text") or ""
        visual = item.get("visual") or item.get("pikaPrompt") or item.get("visualDescription") or ""
        narration, visual = str(narration).strip(), str(visual).strip()
        if not narration or not visual:
            return None
        return narration, visual

    def _strip_code_fence(self, payload: str) -> str:
        text = payload.strip()
        if text.startswith("```"):
            text = text[3:]
            if text.lower().startswith("json"):
                text = text[4:]
            text = text.lstrip("\n\r")
        if text.endswith("```"):
            text = text[:-3]
        return text.strip()

    def _build_system_prompt(
        self, count: int, durations: List[int], target_duration: int, style: StyleProfile
    ) -> str:
        timing = ", ".join(f"scene {i + 1}: {d}s" for i, d in enumerate(durations))
        return (
            "You are a professional video script writer. "
            f"Break the user's prompt into exactly {count} cinematic scenes ({timing}). "
            f"PACING: {style.pacing.value}. VISUAL STYLE: {style.visual_style_suffix}. "
            f"MOTION STRENGTH: {style.motion_strength}/4. "
            "Return a JSON object with this structure: "
            '{"title": "Video Title", "scenes": [{"narration": "Narration text for the scene", '
            '"visual": "Base visual description for text-to-video"}]}. '
            f"The narration of all scenes together must be readable aloud in {target_duration} seconds. "
            "The visual should be a base description; template styling is appended automatically."
        )
