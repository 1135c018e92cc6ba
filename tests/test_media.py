"""Tests for media metadata, the probe adapter and formatting helpers."""

from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

import ffmpeg
import pytest

from conftest import FakeRunner, make_probe
from hevc_queue.domain.exceptions import ExternalToolMissingException, MeasurementException, ProbeFailedException
from hevc_queue.domain.media import (
    MediaMetadata,
    StreamInfo,
    last_timemark,
    pad_timemark,
    parse_duration,
    parse_frame_rate,
)
from hevc_queue.services.probe import MediaProbe
from hevc_queue.utils.ffmpeg_utils import available_filters, parse_filter_list
from hevc_queue.utils.format_utils import format_channels, format_timedelta, formatted_size, normalize_language


class TestTimeParsing:
    """Tests for duration and timemark helpers."""

    @pytest.mark.parametrize(
        "value, seconds",
        [("3600.5", 3600.5), ("01:00:00.500", 3600.5), ("02:30", 150.0), ("00:41:07.52", 2467.52), ("garbage", 0.0)],
    )
    def test_parse_duration(self, value, seconds):
        assert parse_duration(value) == pytest.approx(seconds)

    def test_pad_timemark(self):
        assert pad_timemark("00:41:07.5") == "00:41:07.500"
        assert pad_timemark("00:41:07.52") == "00:41:07.520"
        assert pad_timemark("00:41:07") == "00:41:07.000"

    def test_last_timemark(self):
        lines = [
            "frame=  100 fps=50 time=00:00:04.17 bitrate=N/A",
            "Stream mapping:",
            "frame=  200 fps=50 time=00:00:08.3 bitrate=N/A",
        ]
        assert last_timemark(lines) == "00:00:08.300"
        assert last_timemark(["nothing"]) is None

    def test_frame_rate(self):
        assert parse_frame_rate("24000/1001") == pytest.approx(23.976, abs=1e-3)
        assert parse_frame_rate("0/0") == 0.0
        assert parse_frame_rate(None) == 0.0


class TestMediaMetadata:
    """Tests for MediaMetadata and StreamInfo."""

    def test_fields(self, tmp_path: Path):
        data = make_probe(duration=100.0, size=2048)
        data["streams"][1]["tags"] = {"LANGUAGE": "jpn", "title": "Main"}
        metadata = MediaMetadata(tmp_path / "a.mkv", data, input_index=1)
        assert metadata.duration == 100.0
        assert metadata.size == 2048
        assert metadata.format_name == "matroska,webm"
        audio = metadata.streams[1]
        assert audio.language == "jpn"
        assert audio.title == "Main"
        assert audio.specifier == "1:1"

    def test_needs_duration(self, tmp_path: Path):
        assert MediaMetadata(tmp_path / "a.mkv", make_probe(duration=None)).needs_duration
        assert not MediaMetadata(tmp_path / "a.srt", make_probe(duration=None, format_name="srt")).needs_duration

    def test_size_falls_back_to_file(self, tmp_path: Path):
        path = tmp_path / "a.mkv"
        path.write_bytes(b"\x00" * 10)
        data = make_probe()
        del data["format"]["size"]
        assert MediaMetadata(path, data).size == 10

    def test_with_default(self):
        stream = StreamInfo(index=1, codec_type="audio", disposition={"default": 1, "forced": 0})
        assert stream.with_default(False).disposition == {"default": 0, "forced": 0}
        assert stream.disposition["default"] == 1


class TestMediaProbe:
    """Tests for the probe adapter."""

    def test_probe(self, tmp_path: Path):
        path = tmp_path / "a.mkv"
        with patch("hevc_queue.services.probe.ffmpeg.probe", return_value=make_probe()) as probe:
            metadata = MediaProbe(FakeRunner(), ffprobe_cmd="ffprobe").probe(path)
        probe.assert_called_once_with(str(path), cmd="ffprobe")
        assert metadata.duration == 100.0

    def test_probe_error(self, tmp_path: Path):
        error = ffmpeg.Error("ffprobe", b"", b"Invalid data found when processing input")
        with patch("hevc_queue.services.probe.ffmpeg.probe", side_effect=error):
            with pytest.raises(ProbeFailedException) as exc_info:
                MediaProbe(FakeRunner()).probe(tmp_path / "a.mkv")
        assert "Invalid data" in exc_info.value.diagnostic

    def test_missing_ffprobe(self, tmp_path: Path):
        with patch("hevc_queue.services.probe.ffmpeg.probe", side_effect=FileNotFoundError()):
            with pytest.raises(ExternalToolMissingException):
                MediaProbe(FakeRunner(), ffprobe_cmd="ffprobe").probe(tmp_path / "a.mkv")

    def test_duration_fallback(self, tmp_path: Path):
        runner = FakeRunner(lambda spec: {"lines": ["frame= 10 time=00:00:05.00", "frame= 20 time=00:01:30.5"]})
        with patch("hevc_queue.services.probe.ffmpeg.probe", return_value=make_probe(duration=None)):
            metadata = MediaProbe(runner).probe(tmp_path / "a.mkv")
        assert metadata.duration == 90.5
        assert runner.specs[0].args == ("-map", "0")

    def test_duration_fallback_without_timemark(self, tmp_path: Path):
        runner = FakeRunner(lambda spec: {"lines": []})
        with patch("hevc_queue.services.probe.ffmpeg.probe", return_value=make_probe(duration=None)):
            with pytest.raises(MeasurementException):
                MediaProbe(runner).probe(tmp_path / "a.mkv")

    def test_subtitle_needs_no_duration(self, tmp_path: Path):
        runner = FakeRunner()
        doc = make_probe(duration=None, format_name="srt", streams=[{"index": 0, "codec_type": "subtitle", "codec_name": "subrip"}])
        with patch("hevc_queue.services.probe.ffmpeg.probe", return_value=doc):
            metadata = MediaProbe(runner).probe(tmp_path / "a.srt", input_index=2)
        assert metadata.duration is None
        assert metadata.streams[0].specifier == "2:0"
        assert runner.specs == []


class TestFilterCatalog:
    """Tests for the ffmpeg filter catalog."""

    def test_parse_filter_list(self):
        output = "Filters:\n  T.. = Timeline support\n ... loudnorm          A->A       EBU R128\n TSC volume     A->A   Change volume."
        assert parse_filter_list(output) == {"loudnorm", "volume"}

    def test_available_filters_cached(self):
        runner = FakeRunner()
        execute = lambda spec: runner.run(spec).wait()
        first = available_filters(execute, "ffmpeg")
        second = available_filters(execute, "ffmpeg")
        assert "volumedetect" in first
        assert first is second
        assert len(runner.specs) == 1


class TestFormatting:
    """Tests for the formatting helpers."""

    def test_format_timedelta(self):
        assert format_timedelta(timedelta(seconds=7261)) == "02:01:01"
        assert format_timedelta(None) == "00:00:00"

    def test_formatted_size(self):
        assert formatted_size(0) == "0 B"
        assert formatted_size(1536) == "1.50 KB"
        assert formatted_size(2097152) == "2 MB"

    @pytest.mark.parametrize(
        "channels, name",
        [(1, "Mono"), (2, "Stereo"), (3, "3.0 Channel"), (6, "5.1 Channel"), (8, "7.1 Channel"), (None, "Unknown Channels")],
    )
    def test_format_channels(self, channels, name):
        assert format_channels(channels) == name

    @pytest.mark.parametrize(
        "code, name",
        [("en", "English"), ("eng", "English"), ("fra", "French"), ("fre", "French"), ("ja", "Japanese"), (None, "Unknown"), ("klingon", "Klingon")],
    )
    def test_normalize_language(self, code, name):
        assert normalize_language(code) == name
