"""
Audio normalization.

The normalization level selects one of three mutually exclusive strategies:

- level >= 5: dynamic per-frame normalization (dynaudnorm). Not implemented;
  the job fails with `NormalizationNotImplementedException`.
- level >= 4: two-pass EBU R128 normalization. A first pass runs `loudnorm`
  over every audio stream and the JSON measurement block of each stream is
  parsed from ffmpeg's stderr; the encode then applies `loudnorm` in linear
  mode with the measured values.
- level >= 3: peak normalization. A first pass runs `volumedetect`; each
  stream gets a `volume` filter lifting its peak to -2 dBFS and is re-encoded
  at a fixed per-channel bitrate.

Below level 3 the stage does nothing. Each strategy first checks that the
installed ffmpeg provides the filter it needs.
"""
import json
import re
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from ..config.audio import (
    DYNAMIC_NORMALIZE_LEVEL,
    LOUDNORM_LEVEL,
    LOUDNORM_TARGET_I,
    LOUDNORM_TARGET_LRA,
    LOUDNORM_TARGET_TP,
    NORMALIZED_AUDIO_CODEC,
    NORMALIZED_AUDIO_KBPS_PER_CHANNEL,
    PEAK_HEADROOM_DB,
    PEAK_NORMALIZE_LEVEL,
)
from ..config.common import FFMPEG_BIN
from ..domain.exceptions import (
    FilterUnavailableException,
    MeasurementException,
    NormalizationNotImplementedException,
)
from ..domain.media import StreamInfo
from ..domain.models import LoudnessMeasurement, PeakMeasurement
from ..utils.ffmpeg_utils import available_filters
from .command_builder import EncodeCommand
from .process_controller import CommandSpec, ProcessResult

Executor = Callable[[CommandSpec], ProcessResult]
Window = Tuple[Optional[float], Optional[float]]

MAX_VOLUME_PATTERN = re.compile(
    r"\[Parsed_volumedetect_(\d+) @ [^\]]*\]\s*max_volume:\s*(-?[0-9]+(?:\.[0-9]+)?) dB"
)
LOUDNORM_BLOCK_PATTERN = re.compile(
    r"\[Parsed_loudnorm_(\d+) @ [^\]]*\]\s*(\{.*?\})", re.DOTALL
)


def peak_gain(max_volume: float) -> float:
    """Gain in dB bringing a stream's peak to -PEAK_HEADROOM_DB dBFS."""
    return -1 * max_volume - PEAK_HEADROOM_DB


def loudnorm_target() -> str:
    return f"loudnorm=I={LOUDNORM_TARGET_I}:TP={LOUDNORM_TARGET_TP}:LRA={LOUDNORM_TARGET_LRA}"


def loudnorm_filter(measurement: LoudnessMeasurement) -> str:
    """Second-pass loudnorm expression parameterized by a first-pass measurement."""
    return (
        f"{loudnorm_target()}"
        f":measured_I={measurement.input_i}"
        f":measured_LRA={measurement.input_lra}"
        f":measured_TP={measurement.input_tp}"
        f":measured_thresh={measurement.input_thresh}"
        f":offset={measurement.target_offset}"
        f":linear=true:print_format=summary"
    )


def _ordered_by_instance(matches: Iterable[Tuple[int, object]]) -> List[object]:
    # Later blocks of the same filter instance replace earlier ones.
    by_instance: Dict[int, object] = {}
    for instance, value in matches:
        by_instance[instance] = value
    return [by_instance[k] for k in sorted(by_instance)]


def parse_max_volumes(lines: Iterable[str]) -> List[PeakMeasurement]:
    """Parses `max_volume` of every volumedetect instance, in filter order."""
    matches = []
    for line in lines:
        match = MAX_VOLUME_PATTERN.search(line)
        if match:
            matches.append((int(match.group(1)), PeakMeasurement(float(match.group(2)))))
    return _ordered_by_instance(matches)


def parse_loudnorm(output: str) -> List[LoudnessMeasurement]:
    """Parses the JSON measurement block of every loudnorm instance, in filter order."""
    matches = []
    for match in LOUDNORM_BLOCK_PATTERN.finditer(output):
        try:
            block = json.loads(match.group(2))
            measurement = LoudnessMeasurement(
                input_i=float(block["input_i"]),
                input_lra=float(block["input_lra"]),
                input_tp=float(block["input_tp"]),
                input_thresh=float(block["input_thresh"]),
                target_offset=float(block["target_offset"]),
            )
        except (ValueError, KeyError) as e:
            raise MeasurementException(f"Malformed loudnorm measurement: {e}", output) from e
        matches.append((int(match.group(1)), measurement))
    return _ordered_by_instance(matches)


class AudioNormalizer:
    """Measures audio streams and adds the resulting filters to an encode command."""

    def __init__(self, ffmpeg_cmd: str = FFMPEG_BIN):
        self.ffmpeg_cmd = ffmpeg_cmd

    def measure_spec(self, path: Path, streams: Sequence[StreamInfo], expression: str, window: Window) -> CommandSpec:
        """One analysis pass running `expression` over every audio stream."""
        chains = [f"[0:{s.index}]{expression}[a{i}]" for i, s in enumerate(streams)]
        args = ["-filter_complex", ";".join(chains)]
        for i in range(len(streams)):
            args += ["-map", f"[a{i}]"]
        seek, duration = window
        return CommandSpec(
            self.ffmpeg_cmd, tuple(args), inputs=(Path(path),), seek=seek, duration=duration
        )

    def _require(self, filter_name: str, execute: Executor) -> None:
        if filter_name not in available_filters(execute, self.ffmpeg_cmd):
            raise FilterUnavailableException(filter_name)

    def measure_peaks(self, path: Path, streams: Sequence[StreamInfo], execute: Executor, window: Window = (None, None)) -> List[PeakMeasurement]:
        result = execute(self.measure_spec(path, streams, "volumedetect", window))
        peaks = parse_max_volumes(result.lines)
        if len(peaks) != len(streams):
            raise MeasurementException(
                f"volumedetect measured {len(peaks)} of {len(streams)} audio streams", result.output
            )
        return peaks

    def measure_loudness(self, path: Path, streams: Sequence[StreamInfo], execute: Executor, window: Window = (None, None)) -> List[LoudnessMeasurement]:
        expression = f"{loudnorm_target()}:print_format=json"
        result = execute(self.measure_spec(path, streams, expression, window))
        measurements = parse_loudnorm(result.output)
        if len(measurements) != len(streams):
            raise MeasurementException(
                f"loudnorm measured {len(measurements)} of {len(streams)} audio streams", result.output
            )
        return measurements

    def normalize(
        self,
        command: EncodeCommand,
        path: Path,
        streams: Sequence[StreamInfo],
        level: int,
        execute: Executor,
        window: Window = (None, None),
    ) -> EncodeCommand:
        """
        Runs the strategy selected by `level` and returns the updated command.

        Output audio stream `i` is `streams[i]`; the filters are attached to
        the `a:i` output specifier.
        """
        if level < PEAK_NORMALIZE_LEVEL or not streams:
            return command

        if level >= DYNAMIC_NORMALIZE_LEVEL:
            self._require("dynaudnorm", execute)
            raise NormalizationNotImplementedException()

        if level >= LOUDNORM_LEVEL:
            self._require("loudnorm", execute)
            measurements = self.measure_loudness(path, streams, execute, window)
            for i, (stream, measurement) in enumerate(zip(streams, measurements)):
                logger.info(
                    f"Audio stream {stream.index}: {measurement.input_i} LUFS, "
                    f"{measurement.input_tp} dBTP, LRA {measurement.input_lra}"
                )
                command = command.with_stream_filter(f"a:{i}", loudnorm_filter(measurement))
                command = self._reencode(command, i, stream)
            return command

        self._require("volumedetect", execute)
        self._require("volume", execute)
        for i, (stream, peak) in enumerate(zip(streams, self.measure_peaks(path, streams, execute, window))):
            gain = peak_gain(peak.max_volume)
            logger.info(f"Audio stream {stream.index}: peak {peak.max_volume}dB, applying {gain}dB")
            command = command.with_stream_filter(f"a:{i}", f"volume={gain}dB")
            command = self._reencode(command, i, stream)
        return command

    @staticmethod
    def _reencode(command: EncodeCommand, i: int, stream: StreamInfo) -> EncodeCommand:
        channels = stream.channels or 2
        command = command.with_option(f"-c:a:{i}", NORMALIZED_AUDIO_CODEC)
        return command.with_option(f"-b:a:{i}", f"{NORMALIZED_AUDIO_KBPS_PER_CHANNEL * channels}k")
