from __future__ import annotations

from typing import Iterable, List, Optional

from director.models.domain import Scene


def format_timestamp(seconds: float) -> str:
    millis = int(round(max(0.0, seconds) * 1000))
    hours, millis = divmod(millis, 3_600_000)
    minutes, millis = divmod(millis, 60_000)
    secs, millis = divmod(millis, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def build_srt(scenes: Iterable[Scene], words_per_cue: Optional[int] = None, uppercase: bool = False) -> str:
    """Cue the narration of ``scenes`` back to back on the scene timeline.

    With ``words_per_cue`` each scene's narration is split into cues of that
    many words sharing the scene's duration evenly.
    """
    blocks: List[str] = []
    cursor = 0.0
    counter = 1
    for scene in scenes:
        duration = float(scene.duration_seconds)
        text = scene.narration_text.strip()
        if uppercase:
            text = text.upper()
        words = text.split()
        if words_per_cue and len(words) > words_per_cue:
            chunks = [words[i : i + words_per_cue] for i in range(0, len(words), words_per_cue)]
        else:
            chunks = [words]
        segment = duration / len(chunks)
        for chunk_idx, chunk in enumerate(chunks):
            start = format_timestamp(cursor + segment * chunk_idx)
            end = format_timestamp(cursor + segment * (chunk_idx + 1))
            blocks.append(f"{counter}\n{start} --> {end}\n{' '.join(chunk)}\n")
            counter += 1
        cursor += duration
    return "\n".join(blocks)
