"""
Video Combiner - server-side concatenation with FFmpeg

Pipeline for one request (a CombineJob):
1. validate the file count
2. write every upload to a job-owned temp path
3. probe the encoder; missing encoder is a deployment problem (503)
4. concat filter over all video+audio streams, re-encoded to H.264/AAC
5. check the output file really exists
6. read it into memory (off the event loop)
7. delete every temp path of the job, whatever happened above

The filter graph is used instead of the concat demuxer's file list so paths
never have to be quoted inside a list file, which breaks on Windows.
"""

import asyncio
import logging
import os
import secrets
import time
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from api.logging_config import log_combine_event
from core.errors import (
    CombineError,
    CombineValidationError,
    PayloadTooLarge,
    ServiceUnavailable,
)

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 1024 * 1024

ENCODER_MISSING_MESSAGE = "FFmpeg is not available. Please ensure FFmpeg is installed on the server."
ENCODER_MISSING_SUGGESTION = (
    "Install FFmpeg or point FFMPEG_PATH at the binary. "
    "If this error persists, please contact support."
)


class IncomingFile(Protocol):
    """What the pipeline needs from an upload (FastAPI's UploadFile fits)."""

    filename: Optional[str]

    async def read(self, size: int = -1) -> bytes: ...


class MediaEncoder(Protocol):

    async def is_available(self) -> bool: ...

    async def concat(self, inputs: Sequence[Path], output: Path) -> None: ...


def normalize_path(path: Path) -> str:
    """Absolute path with forward slashes (FFmpeg accepts these everywhere)."""
    return str(Path(path).resolve()).replace("\\", "/")


def build_concat_filter(count: int) -> str:
    """[0:v][0:a][1:v][1:a]...concat=n=N:v=1:a=1[v][a]"""
    labels = "".join(f"[{i}:v][{i}:a]" for i in range(count))
    return f"{labels}concat=n={count}:v=1:a=1[v][a]"


class FFmpegEncoder:
    """Runs the ffmpeg binary as a subprocess."""

    def __init__(
        self,
        binary: str = "ffmpeg",
        timeout: int = 900,
        video_codec: str = "libx264",
        preset: str = "fast",
        crf: int = 23,
        audio_codec: str = "aac",
        audio_bitrate: str = "192k",
    ):
        self.binary = binary
        self.timeout = timeout
        self.video_codec = video_codec
        self.preset = preset
        self.crf = crf
        self.audio_codec = audio_codec
        self.audio_bitrate = audio_bitrate

    def build_command(self, inputs: Sequence[Path], output: Path) -> List[str]:
        cmd = [self.binary]
        for path in inputs:
            cmd += ["-i", normalize_path(path)]
        cmd += [
            "-filter_complex", build_concat_filter(len(inputs)),
            "-map", "[v]",
            "-map", "[a]",
            "-c:v", self.video_codec,
            "-preset", self.preset,
            "-crf", str(self.crf),
            "-c:a", self.audio_codec,
            "-b:a", self.audio_bitrate,
            "-y",
            normalize_path(output),
        ]
        return cmd

    async def is_available(self) -> bool:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary, "-version",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            code = await asyncio.wait_for(proc.wait(), timeout=30)
        except (OSError, asyncio.TimeoutError) as e:
            logger.error(f"FFmpeg probe failed ({self.binary}): {e}")
            return False
        return code == 0

    async def concat(self, inputs: Sequence[Path], output: Path) -> None:
        cmd = self.build_command(inputs, output)
        logger.info(f"FFmpeg command (truncated): {' '.join(cmd)[:300]}...")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CombineError(f"FFmpeg failed to start: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise CombineError(f"FFmpeg timed out after {self.timeout}s") from e

        if proc.returncode != 0:
            tail = stderr.decode(errors="replace")[-500:] if stderr else ""
            raise CombineError(f"FFmpeg failed (exit code {proc.returncode}): {tail}")


class CombineJob:
    """
    Temp files of one combine request.

    Every path handed out is deleted exactly once when the job closes.
    Names carry a random suffix so concurrent jobs never collide.
    """

    def __init__(self, temp_dir: Path, job_id: Optional[str] = None):
        self.temp_dir = Path(temp_dir)
        self.job_id = job_id or f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"
        self.input_paths: List[Path] = []
        self.output_path = self.temp_dir / f"combined-{self.job_id}.mp4"
        self._closed = False

    def new_input_path(self, filename: Optional[str] = None) -> Path:
        suffix = Path(filename).suffix.lower() if filename else ""
        path = self.temp_dir / f"combine-{self.job_id}-{len(self.input_paths):02d}{suffix or '.mp4'}"
        self.input_paths.append(path)
        return path

    @property
    def paths(self) -> List[Path]:
        return [*self.input_paths, self.output_path]

    def cleanup(self) -> int:
        """Delete all job paths; returns how many were removed."""
        if self._closed:
            return 0
        self._closed = True
        removed = 0
        for path in self.paths:
            try:
                os.unlink(path)
                removed += 1
            except FileNotFoundError:
                pass
            except OSError as e:
                # One stale file must not stop the rest from going
                logger.warning(f"Could not delete temp file {path}: {e}")
        return removed

    def __enter__(self) -> "CombineJob":
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()


class VideoCombiner:
    """combine(files) -> bytes, with the encoder swappable for tests."""

    def __init__(
        self,
        encoder: MediaEncoder,
        temp_dir: str,
        max_file_bytes: int = 500 * 1024 * 1024,
        min_files: int = 2,
        max_files: int = 10,
    ):
        self.encoder = encoder
        self.temp_dir = Path(temp_dir)
        self.max_file_bytes = max_file_bytes
        self.min_files = min_files
        self.max_files = max_files

    def check_count(self, count: int) -> None:
        if count < self.min_files:
            raise CombineValidationError(f"Need at least {self.min_files} videos to combine")
        if count > self.max_files:
            raise CombineValidationError(f"At most {self.max_files} videos can be combined at once")

    async def combine(self, files: Sequence[IncomingFile]) -> bytes:
        self.check_count(len(files))

        with CombineJob(self.temp_dir) as job:
            log_combine_event(job.job_id, "received", f"{len(files)} video files")
            for upload in files:
                await self._save_upload(upload, job.new_input_path(upload.filename))

            if not await self.encoder.is_available():
                logger.error("FFmpeg is not available")
                raise ServiceUnavailable(ENCODER_MISSING_MESSAGE, suggestion=ENCODER_MISSING_SUGGESTION)

            log_combine_event(job.job_id, "encoding", f"concat filter over {len(job.input_paths)} inputs")
            await self.encoder.concat(job.input_paths, job.output_path)

            if not job.output_path.exists():
                raise CombineError("Combined video file was not created")

            video = await asyncio.to_thread(job.output_path.read_bytes)
            log_combine_event(job.job_id, "done", f"{len(video) / 1024 / 1024:.2f} MB")
            return video

    async def _save_upload(self, upload: IncomingFile, path: Path) -> None:
        """Stream one upload to disk; file I/O runs in a worker thread."""
        written = 0
        f = await asyncio.to_thread(open, path, "wb")
        try:
            while True:
                chunk = await upload.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > self.max_file_bytes:
                    raise PayloadTooLarge(
                        f"File {upload.filename or path.name} exceeds the "
                        f"{self.max_file_bytes // (1024 * 1024)}MB limit"
                    )
                await asyncio.to_thread(f.write, chunk)
        finally:
            await asyncio.to_thread(f.close)
