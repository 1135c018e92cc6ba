"""Shared test fixtures for HEVC Queue.

The fakes here stand in for ffmpeg and ffprobe: `FakeRunner` hands out
`FakeHandle`s whose output lines and exit code come from a script, and
`FakeProber` returns canned probe documents. Jobs and the queue run for real
on top of them.
"""

import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from hevc_queue.domain.exceptions import KilledException, NonZeroExitException, ProbeFailedException
from hevc_queue.domain.media import MediaMetadata
from hevc_queue.domain.models import JobOptions
from hevc_queue.services.probe import MediaProbe
from hevc_queue.services.process_controller import (
    COMPLETED,
    FAILED,
    PROGRESS_LINE,
    STARTED,
    OutputTarget,
    ProcessEvent,
    ProcessHandle,
    ProcessResult,
    ProcessRunner,
)
from hevc_queue.utils.ffmpeg_utils import clear_filter_cache

FILTER_LIST = "\n".join(
    [
        "Filters:",
        " ... cropdetect        V->V       Auto-detect crop size.",
        " ... idet              V->V       Interlace detect Filter.",
        " ... volumedetect      A->N       Detect audio volume.",
        " ... loudnorm          A->A       EBU R128 loudness normalization",
        " TSC dynaudnorm        A->A       Dynamic Audio Normalizer.",
        " TSC volume            A->A       Change input volume.",
    ]
)

ENCODE_PROGRESS = [
    "frame=  120 fps= 24 q=28.0 size=     256kB time=00:00:05.00 bitrate= 419.4kbits/s speed=1.0x",
    "frame=  240 fps= 24 q=28.0 size=     512kB time=00:00:10.00 bitrate= 419.4kbits/s speed=1.0x",
]


class FakeHandle(ProcessHandle):
    """
    A scripted process.

    Without `hold` every event is queued at once. With `hold` the terminal
    event is only queued by `release()` (success) or `kill()` (failure).
    Successful FILE commands create their output file.
    """

    can_suspend = True

    def __init__(
        self,
        spec,
        lines: Optional[List[str]] = None,
        exit_code: int = 0,
        stdout: Optional[bytes] = None,
        hold: bool = False,
        output_bytes: bytes = b"\x00" * 512,
    ):
        super().__init__(spec)
        self.lines = list(lines or [])
        self.exit_code = exit_code
        self.stdout = stdout
        self.hold = hold
        self.output_bytes = output_bytes
        self.signals: List[str] = []
        self.killed = False
        self._finished = False
        self._lock = threading.Lock()

    def start(self) -> "FakeHandle":
        self.events.put(ProcessEvent(STARTED, self.command_line))
        for line in self.lines:
            self.events.put(ProcessEvent(PROGRESS_LINE, self.command_line, line=line))
        if not self.hold:
            self._complete()
        return self

    def _complete(self) -> None:
        with self._lock:
            if self._finished:
                return
            self._finished = True
        if self.exit_code != 0:
            error = NonZeroExitException(self.spec.tool, self.exit_code, "\n".join(self.lines))
            self.events.put(ProcessEvent(FAILED, self.command_line, error=error))
            return
        if self.spec.output is OutputTarget.FILE and self.spec.output_path is not None:
            Path(self.spec.output_path).write_bytes(self.output_bytes)
        result = ProcessResult(self.command_line, 0, list(self.lines), self.stdout)
        self.events.put(ProcessEvent(COMPLETED, self.command_line, result=result))

    def release(self) -> None:
        self._complete()

    def pause(self) -> bool:
        self.signals.append("SIGSTOP")
        self.suspended = True
        return True

    def resume(self) -> bool:
        self.signals.append("SIGCONT")
        self.suspended = False
        return True

    def kill(self) -> None:
        self.signals.append("SIGTERM")
        self.killed = True
        with self._lock:
            if self._finished:
                return
            self._finished = True
        self.events.put(ProcessEvent(FAILED, self.command_line, error=KilledException()))


def default_script(spec) -> Dict[str, Any]:
    """Plausible ffmpeg output for every analysis pass a job runs."""
    args = " ".join(spec.args)
    if "-filters" in spec.args:
        return {"stdout": FILTER_LIST.encode()}
    if "cropdetect" in args:
        return {"lines": ["[Parsed_cropdetect_0 @ 0x1] x1:0 x2:1919 y1:0 y2:1079 crop=1920:1080:0:0"]}
    if "idet" in spec.args:
        return {
            "lines": ["[Parsed_idet_0 @ 0x1] Multi frame detection: TFF:     0 BFF:     0 Progressive:   250 Undetermined: 0"]
        }
    if "volumedetect" in args:
        streams = args.count("volumedetect")
        return {
            "lines": [f"[Parsed_volumedetect_{i} @ 0x1] max_volume: -6.0 dB" for i in range(streams)]
        }
    if spec.output is OutputTarget.FILE:
        return {"lines": list(ENCODE_PROGRESS)}
    return {}


class FakeRunner(ProcessRunner):
    """Records every spec and returns scripted handles."""

    def __init__(self, script: Optional[Callable[[Any], Optional[Dict[str, Any]]]] = None):
        self.script = script
        self.specs: List[Any] = []
        self.handles: List[FakeHandle] = []
        self._condition = threading.Condition()

    def run(self, spec) -> FakeHandle:
        kwargs = None
        if self.script is not None:
            kwargs = self.script(spec)
        if kwargs is None:
            kwargs = default_script(spec)
        handle = FakeHandle(spec, **kwargs)
        with self._condition:
            self.specs.append(spec)
            self.handles.append(handle)
            self._condition.notify_all()
        return handle.start()

    def wait_for(self, predicate: Callable[[FakeHandle], bool], timeout: float = 5.0) -> FakeHandle:
        """Blocks until a handle matching `predicate` was started."""
        found: List[FakeHandle] = []

        def matched() -> bool:
            found[:] = [h for h in self.handles if predicate(h)]
            return bool(found)

        with self._condition:
            if not self._condition.wait_for(matched, timeout):
                raise AssertionError("No matching process was started")
        return found[0]

    def encodes(self) -> List[Any]:
        return [s for s in self.specs if s.output is OutputTarget.FILE and ("-crf" in s.args or "-b:v" in s.args)]


def make_probe(
    duration: Optional[float] = 100.0,
    size: int = 1_000_000,
    streams: Optional[List[Dict[str, Any]]] = None,
    format_name: str = "matroska,webm",
) -> Dict[str, Any]:
    fmt: Dict[str, Any] = {"format_name": format_name, "size": str(size)}
    if duration is not None:
        fmt["duration"] = f"{duration:.6f}"
    if streams is None:
        streams = [video_stream(), audio_stream(1)]
    return {"format": fmt, "streams": streams}


def video_stream(index: int = 0, codec: str = "h264", pix_fmt: str = "yuv420p", **extra) -> Dict[str, Any]:
    stream = {
        "index": index,
        "codec_type": "video",
        "codec_name": codec,
        "pix_fmt": pix_fmt,
        "width": 1920,
        "height": 1080,
        "avg_frame_rate": "24000/1001",
    }
    stream.update(extra)
    return stream


def audio_stream(index: int, codec: str = "ac3", channels: int = 6, language: str = "eng", **extra) -> Dict[str, Any]:
    stream = {
        "index": index,
        "codec_type": "audio",
        "codec_name": codec,
        "channels": channels,
        "tags": {"language": language},
    }
    stream.update(extra)
    return stream


def subtitle_stream(index: int, codec: str = "subrip", language: str = "eng", **extra) -> Dict[str, Any]:
    stream = {"index": index, "codec_type": "subtitle", "codec_name": codec, "tags": {"language": language}}
    stream.update(extra)
    return stream


class FakeProber(MediaProbe):
    """
    Returns canned probe documents by file name.

    `outputs` is used for any file that is not the source, e.g. the encoded
    output; it defaults to the source's document.
    """

    def __init__(self, source: Optional[Dict[str, Any]] = None, outputs: Optional[Dict[str, Any]] = None, by_name=None):
        super().__init__(runner=FakeRunner())
        self.source = source or make_probe()
        self.outputs = outputs
        self.by_name: Dict[str, Dict[str, Any]] = dict(by_name or {})
        self.probed: List[Path] = []
        self.source_path: Optional[Path] = None

    def probe(self, path, execute=None, input_index: int = 0) -> MediaMetadata:
        path = Path(path)
        self.probed.append(path)
        if not path.exists():
            raise ProbeFailedException(str(path), "No such file or directory")
        if path.name in self.by_name:
            data = self.by_name[path.name]
        elif self.source_path is None or path.resolve() == self.source_path:
            self.source_path = path.resolve()
            data = self.source
        else:
            data = self.outputs or self.source
        return MediaMetadata(path, data, input_index)


@pytest.fixture(autouse=True)
def _fresh_filter_cache():
    clear_filter_cache()
    yield
    clear_filter_cache()


@pytest.fixture
def source_file(tmp_path: Path) -> Path:
    source_dir = tmp_path / "source"
    source_dir.mkdir()
    source = source_dir / "movie.mkv"
    source.write_bytes(b"\x00" * 1024)
    return source


@pytest.fixture
def destination(tmp_path: Path) -> Path:
    out = tmp_path / "out"
    out.mkdir()
    return out


@pytest.fixture
def options(destination: Path, tmp_path: Path) -> JobOptions:
    return JobOptions(destination=destination, temp_dir=tmp_path / "tmp", normalize_level=2)


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def prober() -> FakeProber:
    return FakeProber()
