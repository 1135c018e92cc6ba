"""
Immutable builder for the main encode command.

Each pipeline stage receives an `EncodeCommand`, and returns a new one with its
additions (filters, stream maps, per-stream codec options, x265 parameters).
Nothing is shared or mutated between stages; the encode stage finally renders
the accumulated value into a `CommandSpec`.
"""
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional, Tuple

from ..config.common import FFMPEG_BIN
from ..config.video import (
    DEFAULT_AUDIO_CODEC,
    DEFAULT_DATA_CODEC,
    DEFAULT_SUBTITLE_CODEC,
    VIDEO_ENCODER,
    X265_PARAM_SEPARATOR,
)
from .process_controller import CommandSpec, OutputTarget

DEFAULT_CODEC_OPTIONS = (
    ("-c:v", VIDEO_ENCODER),
    ("-c:a", DEFAULT_AUDIO_CODEC),
    ("-c:s", DEFAULT_SUBTITLE_CODEC),
    ("-c:d", DEFAULT_DATA_CODEC),
)

Pairs = Tuple[Tuple[str, str], ...]


def _set_pair(pairs: Pairs, key: str, value: str) -> Pairs:
    """Replaces the value of `key` in place, or appends the pair."""
    if any(k == key for k, _ in pairs):
        return tuple((k, value if k == key else v) for k, v in pairs)
    return pairs + ((key, value),)


@dataclass(frozen=True)
class EncodeCommand:
    inputs: Tuple[Path, ...] = ()
    seek: Optional[float] = None
    duration: Optional[float] = None
    maps: Tuple[str, ...] = ()
    codec_options: Pairs = DEFAULT_CODEC_OPTIONS
    options: Pairs = ()
    video_filters: Tuple[str, ...] = ()
    stream_filters: Pairs = ()
    x265_params: Tuple[str, ...] = ()
    pass_param: Optional[str] = None
    pixel_format: Optional[str] = None

    @classmethod
    def for_source(cls, path: Path) -> "EncodeCommand":
        return cls(inputs=(Path(path),))

    @classmethod
    def remux(cls, path: Path, x265_params: Tuple[str, ...] = ()) -> "EncodeCommand":
        """A copy-everything command re-encoding only the video, used by later passes."""
        return cls(
            inputs=(Path(path),),
            maps=("0",),
            codec_options=(("-c", "copy"), ("-c:v", VIDEO_ENCODER)),
            x265_params=x265_params,
        )

    def with_input(self, path: Path) -> Tuple["EncodeCommand", int]:
        """Adds an input file and returns the new command with the input's index."""
        return replace(self, inputs=self.inputs + (Path(path),)), len(self.inputs)

    def with_input_window(self, seek: Optional[float], duration: Optional[float]) -> "EncodeCommand":
        return replace(self, seek=seek, duration=duration)

    def with_map(self, specifier: str) -> "EncodeCommand":
        return replace(self, maps=self.maps + (specifier,))

    def with_option(self, key: str, value: str) -> "EncodeCommand":
        """Sets an output option; setting the same key again replaces its value."""
        if key.startswith("-c:") or key == "-c":
            return replace(self, codec_options=_set_pair(self.codec_options, key, str(value)))
        return replace(self, options=_set_pair(self.options, key, str(value)))

    def with_video_filter(self, expression: str) -> "EncodeCommand":
        return replace(self, video_filters=self.video_filters + (expression,))

    def with_stream_filter(self, specifier: str, expression: str) -> "EncodeCommand":
        """Appends a filter to the chain of one output stream, e.g. ("a:0", "volume=4.0dB")."""
        return replace(self, stream_filters=self.stream_filters + ((specifier, expression),))

    def with_x265_param(self, params: str) -> "EncodeCommand":
        parts = tuple(p for p in params.split(X265_PARAM_SEPARATOR) if p)
        return replace(self, x265_params=self.x265_params + parts)

    def with_pass_param(self, param: Optional[str]) -> "EncodeCommand":
        return replace(self, pass_param=param)

    def with_pixel_format(self, pix_fmt: str) -> "EncodeCommand":
        return replace(self, pixel_format=pix_fmt)

    def option(self, key: str) -> Optional[str]:
        for k, v in self.codec_options + self.options:
            if k == key:
                return v
        return None

    def filters_for(self, specifier: str) -> List[str]:
        return [expr for spec, expr in self.stream_filters if spec == specifier]

    def x265_param_string(self) -> str:
        params = list(self.x265_params)
        if self.pass_param:
            params.append(self.pass_param)
        return X265_PARAM_SEPARATOR.join(params)

    def output_args(self) -> List[str]:
        args: List[str] = []
        for specifier in self.maps:
            args += ["-map", specifier]
        for key, value in self.codec_options + self.options:
            args += [key, value]
        if self.video_filters:
            args += ["-vf", ",".join(self.video_filters)]
        seen = []
        for specifier, _ in self.stream_filters:
            if specifier not in seen:
                seen.append(specifier)
        for specifier in seen:
            args += [f"-filter:{specifier}", ",".join(self.filters_for(specifier))]
        if self.pixel_format:
            args += ["-pix_fmt", self.pixel_format]
        params = self.x265_param_string()
        if params:
            args += ["-x265-params", params]
        return args

    def to_spec(self, output_path: Path, program: str = FFMPEG_BIN) -> CommandSpec:
        return CommandSpec(
            program,
            tuple(self.output_args()),
            inputs=self.inputs,
            seek=self.seek,
            duration=self.duration,
            output=OutputTarget.FILE,
            output_path=Path(output_path),
        )
