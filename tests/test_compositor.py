import pytest

from director.errors import ValidationError
from director.services.compositor import (
    ass_colour,
    build_render_spec,
    escape_filter_value,
    force_style,
    resolve_subtitle_style,
)


def test_landscape_has_no_crop():
    spec = build_render_spec("16:9", "Minimal", burn_subtitles=False)
    assert spec.crop is None
    assert spec.video_filters() == []
    assert spec.filter_args() == []


def test_vertical_crop_on_full_hd():
    spec = build_render_spec("9:16", None, burn_subtitles=False, source_width=1920, source_height=1080)
    assert spec.crop.width == 607
    assert spec.crop.height == 1080
    assert spec.crop.x == (1920 - 607) // 2
    assert spec.video_filters() == ["crop=607:1080:656:0"]


def test_square_crop_is_centered():
    spec = build_render_spec("1:1", None, burn_subtitles=False)
    assert spec.video_filters() == ["crop=1080:1080:420:0"]


def test_unknown_aspect_ratio_is_rejected():
    with pytest.raises(ValidationError):
        build_render_spec("4:3", None, burn_subtitles=False)


def test_filter_order_is_crop_then_subtitles():
    spec = build_render_spec("9:16", "High Energy Promo", burn_subtitles=True, subtitle_path="/tmp/subs.srt")
    filters = spec.video_filters()
    assert filters[0].startswith("crop=")
    assert filters[1].startswith("subtitles=filename=/tmp/subs.srt")
    assert len(filters) == 2


def test_font_size_scaled_per_aspect_ratio():
    assert build_render_spec("16:9", "Minimal", True).subtitle_style.font_size == 28
    assert build_render_spec("9:16", "High Energy Promo", True).subtitle_style.font_size == 72
    assert build_render_spec("1:1", "Impact", True).subtitle_style.font_size == 67


def test_subtitles_skipped_when_not_burning():
    spec = build_render_spec("16:9", "Impact", burn_subtitles=False, subtitle_path="/tmp/subs.srt")
    assert spec.subtitle_path is None
    assert spec.subtitle_style is None
    assert not spec.burns_subtitles


def test_render_spec_is_deterministic():
    first = build_render_spec("9:16", "cinematic", True, "/tmp/a.srt")
    second = build_render_spec("9:16", "cinematic", True, "/tmp/a.srt")
    assert first == second
    assert first.video_filters() == second.video_filters()
    assert first.output_args() == second.output_args()


def test_output_codecs_are_fixed():
    args = build_render_spec("1:1", None, False).output_args()
    assert args[args.index("-c:v") + 1] == "libx264"
    assert args[args.index("-c:a") + 1] == "aac"
    assert args[args.index("-crf") + 1] == "23"
    assert args[args.index("-b:a") + 1] == "192k"


@pytest.mark.parametrize(
    "name, family",
    [
        ("High Energy Promo", "Impact"),
        ("Photorealistic Cinematic", "Cinzel"),
        ("impact", "Impact"),
        ("minimal", "Arial"),
        ("auto", "Cinzel"),
        ("unknown", "Cinzel"),
        (None, "Cinzel"),
    ],
)
def test_subtitle_style_lookup(name, family):
    assert resolve_subtitle_style(name).font_family == family


def test_ass_colours():
    assert ass_colour("#FFFF00") == "&H0000FFFF"
    assert ass_colour("#000000", 0.5) == "&H80000000"
    assert ass_colour("#FFFFFF") == "&H00FFFFFF"


def test_force_style_for_high_energy():
    style = force_style(resolve_subtitle_style("High Energy Promo"))
    assert "FontName=Impact" in style
    assert "Bold=1" in style
    assert "OutlineColour=&H0000FFFF" in style
    assert style.endswith("Alignment=5")


def test_force_style_for_cinematic():
    style = force_style(resolve_subtitle_style("Photorealistic Cinematic"))
    assert "BackColour=&H80000000" in style
    assert "Shadow=2" in style
    assert style.endswith("Alignment=2")


def test_filter_values_are_escaped():
    assert escape_filter_value("/tmp/plain.srt") == "/tmp/plain.srt"
    assert escape_filter_value("a,b") == "a\\,b"
    assert escape_filter_value("C:/x") == "C\\\\:/x"
