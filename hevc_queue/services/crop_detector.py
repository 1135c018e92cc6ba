"""
Crop detection.

Black borders are measured with ffmpeg's `cropdetect` filter at twelve evenly
spaced timestamps, two frames each, one pass at a time. The samples are reduced
to a single rectangle: the widest width with the x offset it was measured
with, and the tallest height with its y offset. Width and height may therefore
come from different samples, which keeps a scene with letterboxing in only one
direction from cropping the other.
"""
import re
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from loguru import logger

from ..config.common import FFMPEG_BIN
from ..config.video import CROP_DETECT_FILTER, CROP_FRAMES_PER_SAMPLE, CROP_SAMPLE_COUNT
from ..domain.exceptions import ExternalToolException, MeasurementException
from ..domain.media import StreamInfo
from ..domain.models import CropSample
from .process_controller import CommandSpec, ProcessResult

CROP_PATTERN = re.compile(r"crop=(-?\d+):(-?\d+):(-?\d+):(-?\d+)")

Executor = Callable[[CommandSpec], ProcessResult]


def parse_crop(lines: Iterable[str]) -> Optional[CropSample]:
    """Returns the last crop rectangle cropdetect printed, or None."""
    found = None
    for line in lines:
        for match in CROP_PATTERN.finditer(line):
            found = match
    if found is None:
        return None
    width, height, x, y = (int(v) for v in found.groups())
    return CropSample(width, height, x, y)


def aggregate_crop(samples: Iterable[CropSample]) -> Optional[CropSample]:
    """
    Reduces crop samples to one rectangle.

    The width is the maximum sample width, paired with the x of the first
    sample reaching it; the height is the maximum sample height, paired with
    the y of the first sample reaching it.
    """
    width = height = None
    x = y = 0
    for sample in samples:
        if width is None or sample.width > width:
            width, x = sample.width, sample.x
        if height is None or sample.height > height:
            height, y = sample.height, sample.y
    if width is None:
        return None
    return CropSample(width, height, x, y)


def sample_timestamps(duration: float, count: int = CROP_SAMPLE_COUNT) -> List[float]:
    """Timestamps at i/(count+1) of the duration, latest first."""
    interval = duration / (count + 1)
    return [interval * i for i in range(count, 0, -1)]


class CropDetector:
    """Samples crop geometry of one video stream through ffmpeg."""

    def __init__(self, ffmpeg_cmd: str = FFMPEG_BIN, sample_count: int = CROP_SAMPLE_COUNT):
        self.ffmpeg_cmd = ffmpeg_cmd
        self.sample_count = sample_count

    def sample_spec(self, path: Path, stream: StreamInfo, start: Optional[float]) -> CommandSpec:
        """
        Builds one sampling pass.

        With a `start`, the pass seeks there and decodes two frames. Without one
        (fallback mode) it decodes from the beginning of the file, which is
        slower but works on sources whose index does not allow seeking.
        """
        args = ["-map", f"0:{stream.index}"]
        if start is not None:
            args += ["-frames:v", str(CROP_FRAMES_PER_SAMPLE)]
        args += ["-c:v", "rawvideo", "-vf", CROP_DETECT_FILTER]
        return CommandSpec(self.ffmpeg_cmd, tuple(args), inputs=(Path(path),), seek=start)

    def _measure(self, execute: Executor, spec: CommandSpec) -> CropSample:
        result = execute(spec)
        sample = parse_crop(result.lines)
        if sample is None:
            raise MeasurementException("cropdetect reported no rectangle", result.output)
        return sample

    def detect(self, path: Path, stream: StreamInfo, duration: float, execute: Executor) -> Optional[CropSample]:
        """
        Samples the stream and returns the aggregated crop rectangle.

        Each failed sample is retried once in fallback mode; a fallback failure
        propagates. `KilledException` is never retried.
        """
        samples: List[CropSample] = []
        timestamps = sample_timestamps(duration, self.sample_count)
        for number, start in enumerate(timestamps, start=1):
            try:
                sample = self._measure(execute, self.sample_spec(path, stream, start))
            except (ExternalToolException, MeasurementException) as e:
                logger.warning(
                    f"Crop sample {number}/{len(timestamps)} at {start:.1f}s failed ({e}), "
                    f"retrying from the start of the file"
                )
                sample = self._measure(execute, self.sample_spec(path, stream, None))
            logger.debug(f"Crop sample {number}/{len(timestamps)} at {start:.1f}s: {sample.filter}")
            samples.append(sample)
        return aggregate_crop(samples)
