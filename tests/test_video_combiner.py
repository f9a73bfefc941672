"""
Tests for the video combine pipeline.

The encoder is swapped for a fake; every test checks that the job's temp
directory ends up exactly as it started.
"""

import asyncio
import os
import sys
from pathlib import Path

import pytest

from api.video_combiner import (
    CombineJob,
    FFmpegEncoder,
    VideoCombiner,
    build_concat_filter,
    normalize_path,
)
from core.errors import CombineError, CombineValidationError, PayloadTooLarge, ServiceUnavailable


def temp_listing(path: Path):
    return sorted(os.listdir(path))


class TestCombineCounts:

    @pytest.mark.asyncio
    async def test_single_file_rejected(self, tmp_path, fake_encoder, make_uploads):
        combiner = VideoCombiner(fake_encoder, str(tmp_path))

        with pytest.raises(CombineValidationError) as exc_info:
            await combiner.combine(make_uploads(1))

        assert exc_info.value.status_code == 400
        assert fake_encoder.calls == []
        assert temp_listing(tmp_path) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [2, 10])
    async def test_accepted_counts(self, tmp_path, fake_encoder, make_uploads, count):
        uploads = make_uploads(count)
        expected = b"".join(bytes([65 + i % 26]) * 16 for i in range(count))
        combiner = VideoCombiner(fake_encoder, str(tmp_path))

        video = await combiner.combine(uploads)

        assert video == expected
        assert len(fake_encoder.calls[0]) == count
        assert fake_encoder.inputs_existed == [True]
        assert temp_listing(tmp_path) == []

    @pytest.mark.asyncio
    async def test_eleven_files_rejected(self, tmp_path, fake_encoder, make_uploads):
        combiner = VideoCombiner(fake_encoder, str(tmp_path))

        with pytest.raises(CombineValidationError):
            await combiner.combine(make_uploads(11))

        assert temp_listing(tmp_path) == []


class TestCombineFailures:

    @pytest.mark.asyncio
    async def test_encoder_unavailable(self, tmp_path, make_encoder, make_uploads):
        encoder = make_encoder(available=False)
        combiner = VideoCombiner(encoder, str(tmp_path))

        with pytest.raises(ServiceUnavailable) as exc_info:
            await combiner.combine(make_uploads(3))

        payload = exc_info.value.to_payload()
        assert exc_info.value.status_code == 503
        assert "FFmpeg" in payload["error"]
        assert payload["suggestion"]
        assert encoder.calls == []
        assert temp_listing(tmp_path) == []

    @pytest.mark.asyncio
    async def test_encoder_failure_cleans_up(self, tmp_path, make_encoder, make_uploads):
        encoder = make_encoder(error=CombineError("FFmpeg failed (exit code 1): Invalid data"))
        combiner = VideoCombiner(encoder, str(tmp_path))

        with pytest.raises(CombineError) as exc_info:
            await combiner.combine(make_uploads(2))

        assert "exit code 1" in exc_info.value.message
        assert encoder.inputs_existed == [True]
        assert temp_listing(tmp_path) == []

    @pytest.mark.asyncio
    async def test_missing_output(self, tmp_path, make_encoder, make_uploads):
        combiner = VideoCombiner(make_encoder(write_output=False), str(tmp_path))

        with pytest.raises(CombineError) as exc_info:
            await combiner.combine(make_uploads(2))

        assert exc_info.value.status_code == 500
        assert "not created" in exc_info.value.message
        assert temp_listing(tmp_path) == []

    @pytest.mark.asyncio
    async def test_oversized_upload(self, tmp_path, fake_encoder, make_uploads):
        combiner = VideoCombiner(fake_encoder, str(tmp_path), max_file_bytes=10)

        with pytest.raises(PayloadTooLarge) as exc_info:
            await combiner.combine(make_uploads(2, size=11))

        assert exc_info.value.status_code == 413
        assert fake_encoder.calls == []
        assert temp_listing(tmp_path) == []

    @pytest.mark.asyncio
    async def test_temp_dir_is_created(self, tmp_path, fake_encoder, make_uploads):
        temp_dir = tmp_path / "nested" / "combine"
        combiner = VideoCombiner(fake_encoder, str(temp_dir))

        await combiner.combine(make_uploads(2))

        assert temp_dir.is_dir()
        assert temp_listing(temp_dir) == []

    @pytest.mark.asyncio
    async def test_file_io_runs_in_worker_threads(self, tmp_path, fake_encoder, make_uploads, monkeypatch):
        offloaded = []
        real_to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(func.__name__)
            return await real_to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)
        combiner = VideoCombiner(fake_encoder, str(tmp_path))

        video = await combiner.combine(make_uploads(2, size=16))

        assert video == b"A" * 16 + b"B" * 16
        assert offloaded.count("open") == 2
        assert offloaded.count("write") == 2
        assert offloaded.count("close") == 2
        assert "read_bytes" in offloaded


class TestCombineJob:

    def test_names_are_unique_per_job(self, tmp_path):
        first = CombineJob(tmp_path)
        second = CombineJob(tmp_path)

        assert first.job_id != second.job_id
        assert first.output_path != second.output_path
        assert first.new_input_path("a.MOV").name.endswith("-00.mov")
        assert first.new_input_path(None).name.endswith("-01.mp4")

    def test_cleanup_tolerates_missing_files(self, tmp_path):
        with CombineJob(tmp_path) as job:
            job.new_input_path("a.mp4").write_bytes(b"a")
            job.new_input_path("b.mp4")  # never written

        assert temp_listing(tmp_path) == []
        assert job.cleanup() == 0

    def test_cleanup_continues_past_failures(self, tmp_path):
        job = CombineJob(tmp_path)
        blocker = job.new_input_path("a.mp4")
        blocker.mkdir()  # unlink on a directory fails
        job.new_input_path("b.mp4").write_bytes(b"b")
        job.output_path.write_bytes(b"out")

        removed = job.cleanup()

        assert removed == 2
        assert temp_listing(tmp_path) == [blocker.name]


class TestFFmpegEncoder:

    def test_concat_filter(self):
        assert build_concat_filter(3) == "[0:v][0:a][1:v][1:a][2:v][2:a]concat=n=3:v=1:a=1[v][a]"

    def test_command(self, tmp_path):
        inputs = [tmp_path / "one.mp4", tmp_path / "two.mp4"]
        output = tmp_path / "out.mp4"

        cmd = FFmpegEncoder("/usr/bin/ffmpeg").build_command(inputs, output)

        assert cmd[0] == "/usr/bin/ffmpeg"
        assert cmd[1:5] == ["-i", normalize_path(inputs[0]), "-i", normalize_path(inputs[1])]
        assert cmd[cmd.index("-filter_complex") + 1] == build_concat_filter(2)
        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-preset") + 1] == "fast"
        assert cmd[cmd.index("-crf") + 1] == "23"
        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert cmd[cmd.index("-b:a") + 1] == "192k"
        assert cmd[-2:] == ["-y", normalize_path(output)]

    def test_paths_are_absolute_with_forward_slashes(self):
        path = normalize_path(Path("relative") / "clip.mp4")
        assert Path(path).is_absolute()
        assert "\\" not in path

    @pytest.mark.asyncio
    async def test_missing_binary_is_unavailable(self, tmp_path):
        encoder = FFmpegEncoder(str(tmp_path / "no-such-ffmpeg"))
        assert await encoder.is_available() is False

    @pytest.mark.asyncio
    async def test_missing_binary_fails_concat(self, tmp_path):
        encoder = FFmpegEncoder(str(tmp_path / "no-such-ffmpeg"))

        with pytest.raises(CombineError) as exc_info:
            await encoder.concat([tmp_path / "a.mp4", tmp_path / "b.mp4"], tmp_path / "out.mp4")

        assert "failed to start" in exc_info.value.message


def fake_ffmpeg(directory: Path, body: str) -> str:
    """Write an executable shell script standing in for the ffmpeg binary."""
    script = directory / "ffmpeg"
    script.write_text(f"#!/bin/sh\n{body}\n")
    script.chmod(0o755)
    return str(script)


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
class TestFFmpegSubprocess:

    @pytest.mark.asyncio
    async def test_version_check_succeeds(self, tmp_path):
        encoder = FFmpegEncoder(fake_ffmpeg(tmp_path, "exit 0"))
        assert await encoder.is_available() is True

    @pytest.mark.asyncio
    async def test_nonzero_exit_carries_stderr_tail(self, tmp_path):
        encoder = FFmpegEncoder(fake_ffmpeg(tmp_path, 'echo "Invalid data found when processing input" >&2\nexit 1'))

        with pytest.raises(CombineError) as exc_info:
            await encoder.concat([tmp_path / "a.mp4", tmp_path / "b.mp4"], tmp_path / "out.mp4")

        assert "exit code 1" in exc_info.value.message
        assert "Invalid data found when processing input" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_hung_encoder_is_killed(self, tmp_path):
        encoder = FFmpegEncoder(fake_ffmpeg(tmp_path, "exec sleep 30"), timeout=1)

        with pytest.raises(CombineError) as exc_info:
            await encoder.concat([tmp_path / "a.mp4", tmp_path / "b.mp4"], tmp_path / "out.mp4")

        assert "timed out after 1s" in exc_info.value.message
