import pytest

from director.errors import NotFoundError
from director.models.domain import Pacing, Template
from director.services.style import StyleResolver, pacing_for
from director.storage.repository import TemplateRepository


def test_pacing_from_motion_strength():
    assert pacing_for(1) == Pacing.SLOW
    assert pacing_for(2) == Pacing.NORMAL
    assert pacing_for(3) == Pacing.FAST
    assert pacing_for(4) == Pacing.FAST


def test_system_templates_resolve():
    resolver = StyleResolver(TemplateRepository())

    cinematic = resolver.resolve("cinematic_story")
    promo = resolver.resolve("high_energy_promo")

    assert cinematic.pacing == Pacing.SLOW
    assert cinematic.voice_id == "deep_male_narrator"
    assert cinematic.style_preset == "Photorealistic Cinematic"
    assert promo.pacing == Pacing.FAST
    assert promo.motion_strength == 4


def test_missing_fields_fall_back_to_defaults():
    repo = TemplateRepository([Template(id="bare", name="Bare", category="misc", style_preset="Minimal")])

    profile = StyleResolver(repo).resolve("bare")

    assert profile.visual_style_suffix == "Cinematic lighting, 8k resolution, photorealistic"
    assert profile.visual_negative_prompt == "cartoon, blurry, distorted, low quality"
    assert profile.voice_id == "rachel"
    assert profile.motion_strength == 2
    assert profile.pacing == Pacing.NORMAL


def test_motion_strength_is_clamped():
    repo = TemplateRepository(
        [Template(id="wild", name="Wild", category="misc", style_preset="Impact", motion_strength=9)]
    )
    assert StyleResolver(repo).resolve("wild").motion_strength == 4


def test_unknown_template_is_a_validation_error():
    with pytest.raises(NotFoundError):
        StyleResolver(TemplateRepository()).resolve("nope")


def test_record_usage_increments_count():
    repo = TemplateRepository()
    resolver = StyleResolver(repo)
    resolver.record_usage("modern_minimalist")
    resolver.record_usage("modern_minimalist")
    assert repo.get("modern_minimalist").usage_count == 2
