"""
Value objects shared by the pipeline stages, the queue and the CLI.
"""
from dataclasses import dataclass, field, fields
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..config.audio import HE_AUDIO_DEFAULT_KBPS_PER_CHANNEL
from ..config.video import (
    DEFAULT_NORMALIZE_LEVEL,
    DEFAULT_OUTPUT_FORMAT,
    DEFAULT_PRESET,
    DEFAULT_PREVIEW_LENGTH,
    DEFAULT_QUALITY,
)
from .media import StreamInfo


@dataclass
class JobOptions:
    """
    Resolved options of one job.

    A job takes its own copy when it is created. Only the preset resolution
    (`preset`, `bitdepth`) and relocation (`destination`) stages change fields
    afterwards.
    """

    quality: int = DEFAULT_QUALITY
    video_bitrate: Optional[int] = None  # kbit/s; None selects constant quality
    preset: str = DEFAULT_PRESET
    output_format: str = DEFAULT_OUTPUT_FORMAT
    destination: Path = field(default_factory=Path.home)
    normalize_level: int = DEFAULT_NORMALIZE_LEVEL
    native_language: Optional[str] = None
    preview: bool = False
    preview_length: float = DEFAULT_PREVIEW_LENGTH  # seconds
    multi_pass: int = 0
    bitdepth: Optional[int] = None
    as_preset: Optional[str] = None
    scale: Optional[int] = None
    extra_options: Optional[str] = None
    he_audio_bitrate: int = HE_AUDIO_DEFAULT_KBPS_PER_CHANNEL
    temp_dir: Optional[Path] = None
    screenshots: bool = False
    sample: bool = False
    stats: bool = False
    override: bool = False
    delete: bool = False
    test: bool = False
    he_audio: bool = False
    force_he_audio: bool = False
    downmix_he_audio: bool = False
    accurate_timestamps: bool = False
    skip_upconvert: bool = False

    @classmethod
    def from_mapping(cls, values: Dict[str, Any]) -> "JobOptions":
        """Builds options from a mapping, ignoring keys that are not option names."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in values.items() if k in known and v is not None}
        for key in ("destination", "temp_dir"):
            if key in kwargs:
                kwargs[key] = Path(kwargs[key]).expanduser()
        return cls(**kwargs)


@dataclass
class JobProgress:
    """Last progress report of an encode."""

    fps: float = 0.0
    percent: float = 0.0
    elapsed: timedelta = field(default_factory=timedelta)
    eta: Optional[timedelta] = None
    speed: float = 0.0
    frames: int = 0
    timemark: Optional[str] = None
    estimated_size: Optional[int] = None


@dataclass(frozen=True)
class CropSample:
    """A crop rectangle measured at one timestamp."""

    width: int
    height: int
    x: int
    y: int

    @property
    def filter(self) -> str:
        return f"crop={self.width}:{self.height}:{self.x}:{self.y}"


@dataclass(frozen=True)
class LoudnessMeasurement:
    """First-pass loudnorm measurement of one audio stream."""

    input_i: float
    input_lra: float
    input_tp: float
    input_thresh: float
    target_offset: float


@dataclass(frozen=True)
class PeakMeasurement:
    """volumedetect measurement of one audio stream."""

    max_volume: float


@dataclass
class ClassifiedStreams:
    """A job's streams partitioned by codec type, in container order."""

    video: List[StreamInfo] = field(default_factory=list)
    audio: List[StreamInfo] = field(default_factory=list)
    subtitle: List[StreamInfo] = field(default_factory=list)
    other: List[StreamInfo] = field(default_factory=list)


@dataclass(frozen=True)
class StageDescriptor:
    """One named step of the job pipeline."""

    name: str
    action: str
    function: Callable
