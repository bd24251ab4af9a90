from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Awaitable, List, Optional, Protocol, Sequence, TypeVar

import httpx

from director.clients.s3_storage import StorageClient
from director.errors import StageFailure

from .compositor import RenderSpec

T = TypeVar("T")

VIDEO_CONTENT_TYPE = "video/mp4"


class ProcessError(RuntimeError):
    def __init__(self, returncode: int | None, stderr: str) -> None:
        super().__init__(f"process exited with {returncode}: {stderr[-2000:]}")
        self.returncode = returncode
        self.stderr = stderr


class Runner(Protocol):
    async def run(self, args: Sequence[str]) -> None: ...


class ProcessRunner:
    """Runs an external command from an argument list, never through a shell."""

    def __init__(self, timeout: float = 600.0, logger: Optional[logging.Logger] = None) -> None:
        self.timeout = timeout
        self.log = logger or logging.getLogger(__name__)

    async def run(self, args: Sequence[str]) -> None:
        self.log.debug("running process", extra={"args": list(args)})
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(process.communicate(), self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ProcessError(None, f"timed out after {self.timeout:g}s")
        if process.returncode != 0:
            raise ProcessError(process.returncode, stderr.decode("utf-8", errors="replace"))


def concat_list(paths: Sequence[Path]) -> str:
    lines = []
    for path in paths:
        quoted = str(path).replace("'", "'\\''")
        lines.append(f"file '{quoted}'")
    return "\n".join(lines) + "\n"


class Stitcher:
    """Concatenates clips, muxes narration and burns subtitles into one published artifact.

    Stages run strictly in order inside a private temporary directory. The
    first failing stage aborts the call with :class:`StageFailure`; nothing
    is uploaded unless every stage succeeded.
    """

    def __init__(
        self,
        runner: Runner,
        storage: StorageClient,
        ffmpeg_binary: str = "ffmpeg",
        workdir: str | None = None,
        download_timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._runner = runner
        self._storage = storage
        self._ffmpeg = ffmpeg_binary
        self._workdir = workdir
        self._download_timeout = download_timeout
        self._transport = transport
        self.log = logger or logging.getLogger(__name__)

    async def stitch(
        self,
        clip_uris: Sequence[str],
        narration_uri: str,
        subtitle_uri: Optional[str],
        spec: RenderSpec,
        output_key: str,
    ) -> str:
        with tempfile.TemporaryDirectory(prefix="stitch-", dir=self._workdir) as tmp:
            work = Path(tmp)
            concatenated = work / "concat.mp4"
            muxed = work / "muxed.mp4"
            final = work / f"final.{spec.container}"

            await self._stage("concatenate", self._concatenate(clip_uris, work, concatenated))
            await self._stage("mux_audio", self._mux(concatenated, narration_uri, work, muxed))
            await self._stage("burn_subtitles", self._encode(muxed, subtitle_uri, spec, work, final))
            url = await self._stage("publish", self._publish(final, output_key))
        self.log.info("stitch completed", extra={"clips": len(clip_uris), "output_key": output_key})
        return url

    async def render(
        self,
        input_uri: str,
        spec: RenderSpec,
        output_key: str,
        subtitle_uri: Optional[str] = None,
    ) -> str:
        """Re-encode an existing artifact with ``spec``; used for derived exports."""
        with tempfile.TemporaryDirectory(prefix="render-", dir=self._workdir) as tmp:
            work = Path(tmp)
            source = work / "source.mp4"
            final = work / f"output.{spec.container}"
            await self._stage("fetch_source", self._fetch(input_uri, source))
            await self._stage("burn_subtitles", self._encode(source, subtitle_uri, spec, work, final))
            url = await self._stage("publish", self._publish(final, output_key))
        self.log.info("render completed", extra={"aspect_ratio": spec.aspect_ratio, "output_key": output_key})
        return url

    async def _stage(self, stage: str, operation: Awaitable[T]) -> T:
        try:
            return await operation
        except Exception as exc:
            self.log.error("stitch stage failed", extra={"stage": stage, "error": str(exc)})
            raise StageFailure(stage, exc) from exc

    async def _concatenate(self, clip_uris: Sequence[str], work: Path, output: Path) -> None:
        if not clip_uris:
            raise ValueError("no clips to concatenate")
        clips: List[Path] = []
        for index, uri in enumerate(clip_uris):
            path = work / f"clip_{index}.mp4"
            await self._fetch(uri, path)
            clips.append(path)
        list_file = work / "clips.txt"
        list_file.write_text(concat_list(clips), encoding="utf-8")
        await self._runner.run(
            [self._ffmpeg, "-y", "-f", "concat", "-safe", "0", "-i", str(list_file), "-c", "copy", str(output)]
        )

    async def _mux(self, video: Path, narration_uri: str, work: Path, output: Path) -> None:
        narration = work / "narration.mp3"
        await self._fetch(narration_uri, narration)
        await self._runner.run(
            [
                self._ffmpeg, "-y",
                "-i", str(video),
                "-i", str(narration),
                "-c:v", "copy",
                "-c:a", "aac",
                "-map", "0:v:0",
                "-map", "1:a:0",
                str(output),
            ]
        )

    async def _encode(
        self, source: Path, subtitle_uri: Optional[str], spec: RenderSpec, work: Path, output: Path
    ) -> None:
        if subtitle_uri and spec.subtitle_style is not None:
            subtitles = work / "subtitles.srt"
            await self._fetch(subtitle_uri, subtitles)
            spec = spec.with_subtitles(str(subtitles))
        await self._runner.run(
            [self._ffmpeg, "-y", "-i", str(source), *spec.filter_args(), *spec.output_args(), str(output)]
        )

    async def _publish(self, path: Path, output_key: str) -> str:
        content = await asyncio.to_thread(path.read_bytes)
        return await asyncio.to_thread(self._storage.upload_bytes, output_key, content, VIDEO_CONTENT_TYPE)

    async def _fetch(self, uri: str, dest: Path) -> None:
        key = self._storage.key_from_url(uri)
        if key is not None:
            content = await asyncio.to_thread(self._storage.download_bytes, key)
        elif uri.startswith(("http://", "https://")):
            async with httpx.AsyncClient(
                timeout=self._download_timeout, transport=self._transport, follow_redirects=True
            ) as client:
                response = await client.get(uri)
                response.raise_for_status()
                content = response.content
        else:
            content = await asyncio.to_thread(Path(uri).read_bytes)
        await asyncio.to_thread(dest.write_bytes, content)
