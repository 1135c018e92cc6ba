"""
Media probe adapter.

Runs ffprobe through `ffmpeg.probe` and returns a `MediaMetadata`. Some
containers (raw streams, broken indexes) report no duration; for those the file
is decoded once to a null muxer and the last `time=` timemark ffmpeg prints is
taken as the duration.
"""
from pathlib import Path
from pprint import pformat
from typing import Callable, Optional

import ffmpeg
from loguru import logger

from ..config.common import FFMPEG_BIN, FFPROBE_BIN
from ..domain.exceptions import (
    ExternalToolMissingException,
    MeasurementException,
    ProbeFailedException,
)
from ..domain.media import MediaMetadata, last_timemark, parse_duration
from .process_controller import CommandSpec, ProcessResult, ProcessRunner

Executor = Callable[[CommandSpec], ProcessResult]


class MediaProbe:
    """
    Probes media files.

    Args:
        runner: Process runner used for the fallback duration pass when no
                executor is given to `probe()`.
        ffprobe_cmd: ffprobe executable.
        ffmpeg_cmd: ffmpeg executable used by the fallback pass.
    """

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        ffprobe_cmd: str = FFPROBE_BIN,
        ffmpeg_cmd: str = FFMPEG_BIN,
    ):
        self.runner = runner or ProcessRunner()
        self.ffprobe_cmd = ffprobe_cmd
        self.ffmpeg_cmd = ffmpeg_cmd

    def probe(self, path: Path, execute: Optional[Executor] = None, input_index: int = 0) -> MediaMetadata:
        """
        Probes `path`, measuring the duration when the container lacks one.

        Args:
            path: File to probe.
            execute: Callable running a `CommandSpec` to completion; defaults
                     to this probe's runner.
            input_index: ffmpeg input index recorded on every stream.

        Raises:
            ProbeFailedException: If ffprobe cannot read the file.
            ExternalToolMissingException: If ffprobe is not installed.
        """
        try:
            data = ffmpeg.probe(str(path), cmd=self.ffprobe_cmd)
        except ffmpeg.Error as e:
            stderr = e.stderr.decode("utf-8", errors="replace") if e.stderr else ""
            logger.error(f"ffmpeg.probe failed for {path}")
            raise ProbeFailedException(str(path), stderr) from e
        except FileNotFoundError as e:
            raise ExternalToolMissingException(Path(self.ffprobe_cmd).name) from e
        logger.trace(f"Probe data for {Path(path).name}:\n{pformat(data)}")

        metadata = MediaMetadata(path, data, input_index)
        if metadata.needs_duration:
            logger.info(f"No duration reported for {Path(path).name}, measuring it")
            metadata.duration = self.measure_duration(path, execute)
        return metadata

    def measure_duration(self, path: Path, execute: Optional[Executor] = None) -> float:
        """Decodes `path` to a null muxer and returns the last reported timemark in seconds."""
        spec = CommandSpec(self.ffmpeg_cmd, ("-map", "0"), inputs=(Path(path),))
        if execute is None:
            result = self.runner.run(spec).wait()
        else:
            result = execute(spec)
        timemark = last_timemark(result.lines)
        if timemark is None:
            raise MeasurementException(
                f"Could not determine the duration of {Path(path).name}", result.output
            )
        duration = parse_duration(timemark)
        logger.debug(f"Measured duration of {Path(path).name}: {timemark} ({duration}s)")
        return duration
