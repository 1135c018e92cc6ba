"""
Interlace detection with ffmpeg's `idet` filter.

A fixed window of frames is decoded through `idet`; the filter's final
multi-frame tally ("TFF: n BFF: n Progressive: n ...") decides whether the
source is deinterlaced.
"""
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from loguru import logger

from ..config.common import FFMPEG_BIN
from ..config.video import IDET_FRAME_COUNT
from ..domain.exceptions import MeasurementException
from ..domain.media import StreamInfo
from .process_controller import CommandSpec, ProcessResult

IDET_PATTERN = re.compile(
    r"Multi frame detection:\s*TFF:\s*(\d+)\s*BFF:\s*(\d+)\s*Progressive:\s*(\d+)"
)


@dataclass(frozen=True)
class FieldTally:
    tff: int
    bff: int
    progressive: int

    @property
    def interlaced(self) -> bool:
        return self.tff + self.bff >= self.progressive


def parse_idet(lines: Iterable[str]) -> Optional[FieldTally]:
    """Returns the last multi-frame tally printed by idet, or None."""
    found = None
    for line in lines:
        match = IDET_PATTERN.search(line)
        if match:
            found = match
    if found is None:
        return None
    return FieldTally(*(int(v) for v in found.groups()))


class InterlaceDetector:
    def __init__(self, ffmpeg_cmd: str = FFMPEG_BIN, frames: int = IDET_FRAME_COUNT):
        self.ffmpeg_cmd = ffmpeg_cmd
        self.frames = frames

    def detect(self, path: Path, stream: StreamInfo, execute: Callable[[CommandSpec], ProcessResult]) -> FieldTally:
        spec = CommandSpec(
            self.ffmpeg_cmd,
            ("-map", f"0:{stream.index}", "-frames:v", str(self.frames), "-vf", "idet"),
            inputs=(Path(path),),
        )
        result = execute(spec)
        tally = parse_idet(result.lines)
        if tally is None:
            raise MeasurementException("idet reported no frame tally", result.output)
        logger.debug(f"idet: TFF {tally.tff}, BFF {tally.bff}, progressive {tally.progressive}")
        return tally
