"""Tests for the recording process wrapper."""

import asyncio
import sys

import pytest

from events import LiveEvent
from recorder import RecorderError, RecorderProcess
from settings import Channel

from conftest import install_fake_recorder


def make_event(dest, video_id="xyz123"):
    return LiveEvent(video_id, Channel(id="chA", save_to=str(dest)), {"title": "Stream"})


class TestRecorderProcess:
    def test_command_ends_with_watch_url(self, tmp_path) -> None:
        recorder = RecorderProcess(
            make_event(tmp_path), "/usr/bin/python3", "yt_dlp", ["--live-from-start"]
        )
        assert recorder.command == [
            "/usr/bin/python3",
            "-m",
            "yt_dlp",
            "--live-from-start",
            "https://www.youtube.com/watch?v=xyz123",
        ]

    @pytest.mark.asyncio
    async def test_clean_exit(self, tmp_path) -> None:
        dest = install_fake_recorder(tmp_path / "out")
        (dest / "release").write_text("0")
        recorder = RecorderProcess(make_event(dest), sys.executable, "fake_recorder")

        session = await recorder.start()
        notice = await asyncio.wait_for(recorder.wait(), timeout=20)

        assert session.event.event_id == "xyz123"
        assert notice.event_id == "xyz123"
        assert notice.process is session.process
        assert notice.ok
        invoked = list(dest.glob("invoked-*.txt"))
        assert len(invoked) == 1
        assert "xyz123" in invoked[0].read_text()

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_reported(self, tmp_path) -> None:
        dest = install_fake_recorder(tmp_path / "out")
        (dest / "release").write_text("3")
        recorder = RecorderProcess(make_event(dest), sys.executable, "fake_recorder")

        await recorder.start()
        notice = await asyncio.wait_for(recorder.wait(), timeout=20)

        assert not notice.ok
        assert notice.error == "exited with code 3"

    @pytest.mark.asyncio
    async def test_missing_runtime_raises(self, tmp_path) -> None:
        recorder = RecorderProcess(
            make_event(tmp_path), str(tmp_path / "no-python"), "fake_recorder"
        )
        with pytest.raises(RecorderError, match="watch\\?v=xyz123"):
            await recorder.start()

    @pytest.mark.asyncio
    async def test_output_goes_to_log_dir(self, tmp_path) -> None:
        dest = install_fake_recorder(tmp_path / "out")
        (dest / "release").write_text("0")
        logs = tmp_path / "logs"
        recorder = RecorderProcess(
            make_event(dest), sys.executable, "fake_recorder", log_dir=logs
        )

        await recorder.start()
        await asyncio.wait_for(recorder.wait(), timeout=20)

        text = (logs / "chA" / "xyz123.log").read_text()
        assert "START Stream for chA" in text
        assert "END ok" in text

    @pytest.mark.asyncio
    async def test_terminate_stops_running_recorder(self, tmp_path) -> None:
        dest = install_fake_recorder(tmp_path / "out")
        recorder = RecorderProcess(make_event(dest), sys.executable, "fake_recorder")

        await recorder.start()
        await recorder.terminate(timeout=5)
        notice = await asyncio.wait_for(recorder.wait(), timeout=10)

        assert not notice.ok
