"""
Media metadata as reported by ffprobe.

`MediaMetadata` wraps the JSON document returned by `ffmpeg.probe` and exposes
the container duration, size and format name, plus one `StreamInfo` per
stream. `StreamInfo` carries the fields the pipeline reads (codec, pixel
format, dimensions, channels, language, title, disposition) and the index of
the ffmpeg input it belongs to, which changes when extra inputs such as
converted subtitle files are added to the encode command.
"""
import re
from dataclasses import dataclass, field, replace
from fractions import Fraction
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

# Matches the "time=HH:MM:SS.xx" field of an ffmpeg status line.
TIMEMARK_PATTERN = re.compile(r"time=\s*(-?[0-9:.]+)")


def parse_duration(duration_str: str) -> float:
    """
    Parses a duration string into total seconds.

    Handles the two formats ffmpeg tools emit:
    1. A floating-point number of seconds (e.g., "3600.5").
    2. A timecode in the format 'HH:MM:SS.sss' (e.g., "01:00:00.500").
       Hours are optional in the timecode format.

    Args:
        duration_str: The string containing the duration to parse.

    Returns:
        The total duration in seconds as a float. Returns 0.0 if parsing fails.
    """
    try:
        return float(duration_str)
    except (TypeError, ValueError):
        pattern = r"(?:(\d{1,2}):)?(\d{1,2}):(\d{1,2}(?:\.\d+)?)"
        match = re.fullmatch(pattern, str(duration_str).strip())
        if match:
            hours_str, minutes_str, seconds_str = match.groups()
            hours = int(hours_str) if hours_str else 0
            minutes = int(minutes_str)
            seconds = float(seconds_str)
            return float(hours * 3600 + minutes * 60 + seconds)
        logger.warning(f"Could not parse duration string: {duration_str}")
    return 0.0


def pad_timemark(timemark: str) -> str:
    """
    Pads the fractional part of a timemark to millisecond precision.

    ffmpeg prints centiseconds ("00:41:07.52"), some builds print fewer digits
    ("00:41:07.5") or none at all. "00:41:07.5" becomes "00:41:07.500" and
    "00:41:07" becomes "00:41:07.000".
    """
    timemark = timemark.strip()
    whole, dot, fraction = timemark.partition(".")
    if not dot:
        return f"{whole}.000"
    return f"{whole}.{fraction.ljust(3, '0')}"


def last_timemark(lines: List[str]) -> Optional[str]:
    """Returns the last `time=` value found in ffmpeg's status output, padded."""
    found = None
    for line in lines:
        for match in TIMEMARK_PATTERN.finditer(line):
            found = match.group(1)
    if found is None:
        return None
    return pad_timemark(found)


def parse_frame_rate(rate: Optional[str]) -> float:
    """Converts an ffprobe rational such as "24000/1001" to a float, 0.0 when unknown."""
    if not rate:
        return 0.0
    try:
        return float(Fraction(rate))
    except (ValueError, ZeroDivisionError):
        return 0.0


def _optional_float(value: Any) -> Optional[float]:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed


@dataclass(frozen=True)
class StreamInfo:
    """One stream of one ffmpeg input."""

    index: int
    codec_type: Optional[str]
    codec_name: Optional[str] = None
    codec_long_name: Optional[str] = None
    profile: Optional[str] = None
    pix_fmt: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    channels: Optional[int] = None
    avg_frame_rate: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)
    disposition: Dict[str, int] = field(default_factory=dict)
    input: int = 0

    @classmethod
    def from_probe(cls, stream: Dict[str, Any], input_index: int = 0) -> "StreamInfo":
        tags = {str(k).lower(): v for k, v in (stream.get("tags") or {}).items()}
        return cls(
            index=int(stream.get("index", 0)),
            codec_type=stream.get("codec_type"),
            codec_name=stream.get("codec_name"),
            codec_long_name=stream.get("codec_long_name"),
            profile=stream.get("profile"),
            pix_fmt=stream.get("pix_fmt"),
            width=stream.get("width"),
            height=stream.get("height"),
            channels=stream.get("channels"),
            avg_frame_rate=stream.get("avg_frame_rate"),
            tags=tags,
            disposition=dict(stream.get("disposition") or {}),
            input=input_index,
        )

    @property
    def title(self) -> Optional[str]:
        return self.tags.get("title")

    @property
    def language(self) -> Optional[str]:
        return self.tags.get("language")

    @property
    def specifier(self) -> str:
        """The `-map` specifier selecting this stream, e.g. "0:1"."""
        return f"{self.input}:{self.index}"

    @property
    def frame_rate(self) -> float:
        return parse_frame_rate(self.avg_frame_rate)

    def with_default(self, default: bool) -> "StreamInfo":
        return replace(self, disposition={**self.disposition, "default": int(default)})


class MediaMetadata:
    """
    Container and stream metadata of one file.

    Attributes:
        path (Path): The probed file.
        probe (dict): The raw ffprobe document.
        format_name (str): ffprobe's format name, e.g. "matroska,webm" or "srt".
        duration (float | None): Duration in seconds, None when ffprobe did not
            report a numeric duration.
        size (int): File size in bytes.
        streams (list[StreamInfo]): Every stream, in container order.
    """

    def __init__(self, path: Path, probe: Dict[str, Any], input_index: int = 0):
        self.path = Path(path)
        self.probe = probe
        fmt = probe.get("format") or {}
        self.format_name: str = fmt.get("format_name") or ""
        self.duration: Optional[float] = _optional_float(fmt.get("duration"))
        size = _optional_float(fmt.get("size"))
        if size is None and self.path.exists():
            size = self.path.stat().st_size
        self.size: int = int(size or 0)
        self.streams: List[StreamInfo] = [
            StreamInfo.from_probe(s, input_index) for s in probe.get("streams") or []
        ]

    @property
    def needs_duration(self) -> bool:
        """True when the duration must be measured by decoding the file."""
        return self.format_name != "srt" and self.duration is None

    def __repr__(self) -> str:
        return (
            f"MediaMetadata(path={self.path.name!r}, format={self.format_name!r}, "
            f"duration={self.duration}, streams={len(self.streams)})"
        )
