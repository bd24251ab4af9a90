from __future__ import annotations

import logging
from typing import Optional

from director.errors import NotFoundError
from director.models.domain import Pacing, StyleProfile
from director.storage.repository import TemplateRepository

DEFAULT_STYLE_SUFFIX = "Cinematic lighting, 8k resolution, photorealistic"
DEFAULT_NEGATIVE_PROMPT = "cartoon, blurry, distorted, low quality"
DEFAULT_VOICE = "rachel"
DEFAULT_MOTION_STRENGTH = 2


def pacing_for(motion_strength: int) -> Pacing:
    if motion_strength <= 1:
        return Pacing.SLOW
    if motion_strength >= 3:
        return Pacing.FAST
    return Pacing.NORMAL


class StyleResolver:
    def __init__(self, templates: TemplateRepository, logger: Optional[logging.Logger] = None) -> None:
        self._templates = templates
        self.log = logger or logging.getLogger(__name__)

    def resolve(self, template_id: str) -> StyleProfile:
        template = self._templates.get(template_id)
        if template is None:
            raise NotFoundError(f"template {template_id!r} not found")
        motion = template.motion_strength or DEFAULT_MOTION_STRENGTH
        motion = max(1, min(4, motion))
        profile = StyleProfile(
            template_id=template.id,
            style_preset=template.style_preset,
            visual_style_suffix=template.visual_style_prompt or DEFAULT_STYLE_SUFFIX,
            visual_negative_prompt=template.visual_negative_prompt or DEFAULT_NEGATIVE_PROMPT,
            voice_id=template.voice_id or DEFAULT_VOICE,
            motion_strength=motion,
            pacing=pacing_for(motion),
        )
        self.log.debug("style resolved", extra={"template_id": template_id, "pacing": profile.pacing.value})
        return profile

    def record_usage(self, template_id: str) -> None:
        self._templates.increment_usage(template_id)
