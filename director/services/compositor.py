"""Render specification for the external encoder.

``build_render_spec`` turns an aspect ratio and a template style into a
:class:`RenderSpec`; the spec renders itself into ffmpeg argument lists.
Nothing in this module touches the filesystem or spawns processes.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Dict, List, Optional

from director.errors import ValidationError
from director.models.domain import ASPECT_RATIOS, SubtitleStyle

DEFAULT_STYLE_NAME = "Photorealistic Cinematic"

TEMPLATE_STYLES: Dict[str, SubtitleStyle] = {
    "High Energy Promo": SubtitleStyle(
        font_family="Impact",
        font_size=48,
        color="#FFFFFF",
        background_color="#000000",
        border_color="#FFFF00",
        position="center-middle",
        bold=True,
        uppercase=True,
    ),
    "Photorealistic Cinematic": SubtitleStyle(
        font_family="Cinzel",
        font_size=32,
        color="#FFFFFF",
        background_color="#000000",
        background_opacity=0.5,
        position="bottom-center",
        shadow=2,
    ),
    "Impact": SubtitleStyle(
        font_family="Impact",
        font_size=56,
        color="#FFFFFF",
        background_color="#000000",
        border_color="#FF0000",
        position="center-middle",
        bold=True,
        uppercase=True,
    ),
    "Minimal": SubtitleStyle(
        font_family="Arial",
        font_size=28,
        color="#FFFFFF",
        background_color="#000000",
        background_opacity=0.3,
        position="bottom-center",
    ),
}

STYLE_PRESETS = {
    "auto": "Photorealistic Cinematic",
    "cinematic": "Photorealistic Cinematic",
    "impact": "Impact",
    "minimal": "Minimal",
}

FONT_SCALE = {"16:9": 1.0, "9:16": 1.5, "1:1": 1.2}

ASS_ALIGNMENT = {"bottom-center": 2, "center-middle": 5, "top-center": 8}


@dataclass(frozen=True)
class CropWindow:
    width: int
    height: int
    x: int
    y: int

    def filter(self) -> str:
        return f"crop={self.width}:{self.height}:{self.x}:{self.y}"


@dataclass(frozen=True)
class RenderSpec:
    aspect_ratio: str
    source_width: int
    source_height: int
    crop: Optional[CropWindow] = None
    subtitle_path: Optional[str] = None
    subtitle_style: Optional[SubtitleStyle] = None
    video_codec: str = "libx264"
    preset: str = "medium"
    crf: int = 23
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"
    container: str = "mp4"

    @property
    def burns_subtitles(self) -> bool:
        return self.subtitle_path is not None and self.subtitle_style is not None

    def with_subtitles(self, path: str) -> "RenderSpec":
        return dataclasses.replace(self, subtitle_path=path)

    def video_filters(self) -> List[str]:
        filters: List[str] = []
        if self.crop is not None:
            filters.append(self.crop.filter())
        if self.burns_subtitles:
            filters.append(
                "subtitles=filename={}:force_style={}".format(
                    escape_filter_value(self.subtitle_path),
                    escape_filter_value(force_style(self.subtitle_style)),
                )
            )
        return filters

    def filter_args(self) -> List[str]:
        filters = self.video_filters()
        return ["-vf", ",".join(filters)] if filters else []

    def output_args(self) -> List[str]:
        return [
            "-c:v", self.video_codec,
            "-preset", self.preset,
            "-crf", str(self.crf),
            "-c:a", self.audio_codec,
            "-b:a", self.audio_bitrate,
            "-f", self.container,
        ]


def crop_window(aspect_ratio: str, width: int, height: int) -> Optional[CropWindow]:
    if aspect_ratio == "16:9":
        return None
    if aspect_ratio == "9:16":
        crop_width = height * 9 // 16
        return CropWindow(crop_width, height, (width - crop_width) // 2, 0)
    if aspect_ratio == "1:1":
        side = min(width, height)
        return CropWindow(side, side, (width - side) // 2, (height - side) // 2)
    raise ValidationError(f"unsupported aspect ratio {aspect_ratio!r}; expected one of {', '.join(ASPECT_RATIOS)}")


def resolve_subtitle_style(name: Optional[str]) -> SubtitleStyle:
    """Look up a style by template name or preset; unknown names get the cinematic style."""
    if name in TEMPLATE_STYLES:
        return TEMPLATE_STYLES[name]
    preset = STYLE_PRESETS.get((name or "").strip().lower())
    return TEMPLATE_STYLES[preset or DEFAULT_STYLE_NAME]


def build_render_spec(
    aspect_ratio: str,
    template_style: Optional[str],
    burn_subtitles: bool,
    subtitle_path: Optional[str] = None,
    source_width: int = 1920,
    source_height: int = 1080,
    crop_source: bool = True,
) -> RenderSpec:
    """``crop_source=False`` is for sources already framed at ``aspect_ratio``."""
    crop = crop_window(aspect_ratio, source_width, source_height) if crop_source else None
    style = None
    if burn_subtitles:
        base = resolve_subtitle_style(template_style)
        scaled = int(round(base.font_size * FONT_SCALE[aspect_ratio]))
        style = base.model_copy(update={"font_size": scaled})
    return RenderSpec(
        aspect_ratio=aspect_ratio,
        source_width=source_width,
        source_height=source_height,
        crop=crop,
        subtitle_path=subtitle_path if burn_subtitles else None,
        subtitle_style=style,
    )


def ass_colour(hex_colour: str, opacity: float = 1.0) -> str:
    """``#RRGGBB`` to the ``&HAABBGGRR`` form used by ASS styles (AA is transparency)."""
    value = hex_colour.lstrip("#")
    red, green, blue = value[0:2], value[2:4], value[4:6]
    alpha = round((1.0 - opacity) * 255)
    return f"&H{alpha:02X}{blue}{green}{red}".upper()


def force_style(style: SubtitleStyle) -> str:
    fields = [
        f"FontName={style.font_family}",
        f"FontSize={style.font_size}",
        f"PrimaryColour={ass_colour(style.color)}",
    ]
    if style.bold:
        fields.append("Bold=1")
    if style.border_color:
        fields.append(f"OutlineColour={ass_colour(style.border_color)}")
    if style.background_opacity > 0:
        fields.append(f"BackColour={ass_colour(style.background_color, style.background_opacity)}")
    fields.append(f"Outline={style.outline}")
    if style.shadow:
        fields.append(f"Shadow={style.shadow}")
    fields.append(f"Alignment={ASS_ALIGNMENT.get(style.position, 2)}")
    return ",".join(fields)


def escape_filter_value(value: str) -> str:
    """Escape an option value for the filter option parser, then for the filtergraph parser."""
    for char in ("\\", "'", ":"):
        value = value.replace(char, "\\" + char)
    for char in ("\\", "'", "[", "]", ",", ";"):
        value = value.replace(char, "\\" + char)
    return value
