"""
Stream classification and option resolution.

This module turns probed streams and job options into decisions for the
encode command:

- partitioning streams by codec type and rejecting sources already in HEVC,
- expanding named presets into x265 parameters, filters and settings,
- choosing the output pixel format from the detected or requested bit depth,
- mapping streams, picking default tracks by native language and naming
  untitled tracks,
- re-encoding audio to Opus for the high-efficiency audio mode.

The functions are pure: they take an `EncodeCommand` and return a new one.
"""
import re
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from loguru import logger

from ..config.audio import (
    HE_AUDIO_CHANNEL_LAYOUTS,
    HE_AUDIO_CODEC,
    HE_AUDIO_DOWNMIX_FILTER,
    HE_AUDIO_DOWNMIX_THRESHOLD,
    HE_AUDIO_FRAME_DURATION,
    HE_AUDIO_TITLE_CODEC,
    LOSSLESS_AUDIO_CODECS,
    LOSSLESS_AUDIO_PREFIXES,
    TITLE_SYNTH_LEVEL,
)
from ..config.presets import NO_PRESET, PRESET_SEPARATOR, PRESET_SETTING_KEYS, PRESETS
from ..config.video import (
    BIT_DEPTH_OVERRIDE_PIX_FMTS,
    DEFAULT_BIT_DEPTH,
    SUPPORTED_BIT_DEPTHS,
    TARGET_VIDEO_CODEC,
)
from ..domain.exceptions import (
    AlreadyEncodedException,
    UnknownPresetException,
    UnknownPresetOptionException,
)
from ..domain.media import StreamInfo
from ..domain.models import ClassifiedStreams, JobOptions
from ..utils.format_utils import format_channels, normalize_language
from .command_builder import EncodeCommand

_PIX_FMT_DEPTH = re.compile(r"(\d{1,2})(?:le|be)$")


# --- Classification ---

def classify_streams(streams: Sequence[StreamInfo]) -> ClassifiedStreams:
    """Partitions streams by codec type, dropping streams ffmpeg cannot identify."""
    classified = ClassifiedStreams()
    for stream in streams:
        if stream.codec_type == "video":
            classified.video.append(stream)
        elif stream.codec_type == "audio":
            classified.audio.append(stream)
        elif stream.codec_type == "subtitle":
            classified.subtitle.append(stream)
        elif stream.codec_type is None or stream.codec_name in (None, "unknown"):
            logger.warning(f"Stream {stream.index} has an unknown codec and will be dropped")
        else:
            classified.other.append(stream)
    return classified


def check_target_codec(classified: ClassifiedStreams, override: bool) -> None:
    """Raises `AlreadyEncodedException` if a video stream is already HEVC and no override is set."""
    for stream in classified.video:
        if stream.codec_name == TARGET_VIDEO_CODEC:
            if not override:
                raise AlreadyEncodedException()
            logger.warning(f"Video stream {stream.index} is already {TARGET_VIDEO_CODEC}, encoding anyway")


# --- Presets ---

def resolve_presets(as_preset: Optional[str], presets: Mapping[str, Dict[str, Any]] = PRESETS) -> List[Dict[str, Any]]:
    """
    Returns the settings of each preset named in `as_preset`.

    `as_preset` is a colon-separated list of preset names; "none" or an
    empty value selects nothing.

    Raises:
        UnknownPresetException: If a name is not a known preset.
        UnknownPresetOptionException: If a preset contains an unknown setting.
    """
    if not as_preset or as_preset == NO_PRESET:
        return []
    resolved = []
    for name in as_preset.split(PRESET_SEPARATOR):
        if name not in presets:
            raise UnknownPresetException(name)
        settings = presets[name]
        for key in settings:
            if key not in PRESET_SETTING_KEYS:
                raise UnknownPresetOptionException(key)
        resolved.append(settings)
    return resolved


def apply_presets(
    command: EncodeCommand,
    options: JobOptions,
    presets: Mapping[str, Dict[str, Any]] = PRESETS,
) -> Tuple[EncodeCommand, JobOptions]:
    """Applies the presets named by `options.as_preset`; later presets win."""
    for settings in resolve_presets(options.as_preset, presets):
        if settings.get("x265_options"):
            command = command.with_x265_param(str(settings["x265_options"]))
        if settings.get("video_filters"):
            command = command.with_video_filter(str(settings["video_filters"]))
        if settings.get("preset"):
            options = replace(options, preset=str(settings["preset"]))
        if settings.get("bitdepth"):
            options = replace(options, bitdepth=int(settings["bitdepth"]))
    return command, options


# --- Bit depth ---

def detect_bit_depth(pix_fmt: Optional[str]) -> int:
    """
    Infers the bit depth of a pixel format, clamped to the supported tiers.

    "yuv420p10le" -> 10, "yuv444p12be" -> 12, "yuv420p14le" -> 12,
    "yuv420p" -> 8.
    """
    if not pix_fmt:
        return DEFAULT_BIT_DEPTH
    match = _PIX_FMT_DEPTH.search(pix_fmt)
    if not match:
        return DEFAULT_BIT_DEPTH
    depth = int(match.group(1))
    for tier in SUPPORTED_BIT_DEPTHS:
        if depth >= tier:
            return tier
    return DEFAULT_BIT_DEPTH


def resolve_pixel_format(override: Optional[int], detected: int) -> str:
    """Output pixel format: an explicit bit depth wins over the detected one."""
    if override in BIT_DEPTH_OVERRIDE_PIX_FMTS:
        return BIT_DEPTH_OVERRIDE_PIX_FMTS[override]
    if override:
        logger.warning(f"Unsupported bit depth {override}, using the source's")
    return BIT_DEPTH_OVERRIDE_PIX_FMTS.get(detected, BIT_DEPTH_OVERRIDE_PIX_FMTS[DEFAULT_BIT_DEPTH])


# --- Mapping ---

def first_native_index(streams: Sequence[StreamInfo], native_language: Optional[str]) -> Optional[int]:
    """Position of the first stream whose language matches `native_language`."""
    if not native_language:
        return None
    native = normalize_language(native_language)
    for position, stream in enumerate(streams):
        if normalize_language(stream.language) == native:
            return position
    return None


def audio_title(stream: StreamInfo) -> str:
    """e.g. "English AC3 (5.1 Channel)" or "Japanese AAC LC (Stereo)"."""
    codec = (stream.codec_name or "unknown").upper()
    profile = f" {stream.profile}" if stream.profile and stream.profile != "unknown" else ""
    return f"{normalize_language(stream.language)} {codec}{profile} ({format_channels(stream.channels)})"


def _mark_defaults(command: EncodeCommand, kind: str, count: int, default: Optional[int]) -> EncodeCommand:
    if default is None:
        return command
    for i in range(count):
        command = command.with_option(f"-disposition:{kind}:{i}", "default" if i == default else "0")
    return command


def map_streams(
    command: EncodeCommand,
    video: StreamInfo,
    classified: ClassifiedStreams,
    options: JobOptions,
) -> Tuple[EncodeCommand, ClassifiedStreams]:
    """
    Maps the video stream, then audio, subtitle and other streams in order.

    The first audio stream in the native language becomes the default audio
    track. Only when there is none, the first native-language subtitle becomes
    the default subtitle. Untitled audio and subtitle tracks get a synthesized
    title when the normalization level allows it.

    Returns:
        The updated command and the streams with their default disposition set.
    """
    synthesize = options.normalize_level >= TITLE_SYNTH_LEVEL
    command = command.with_map(video.specifier)

    default_audio = first_native_index(classified.audio, options.native_language)
    audio = []
    for i, stream in enumerate(classified.audio):
        command = command.with_map(stream.specifier)
        if not stream.title and synthesize:
            title = audio_title(stream)
            logger.debug(f"Audio stream {stream.index} titled '{title}'")
            command = command.with_option(f"-metadata:s:a:{i}", f"title={title}")
        if default_audio is not None:
            stream = stream.with_default(i == default_audio)
        audio.append(stream)
    command = _mark_defaults(command, "a", len(audio), default_audio)

    default_subtitle = None
    if default_audio is None:
        default_subtitle = first_native_index(classified.subtitle, options.native_language)
    subtitles = []
    for i, stream in enumerate(classified.subtitle):
        command = command.with_map(stream.specifier)
        if not stream.title and synthesize:
            command = command.with_option(
                f"-metadata:s:s:{i}", f"title={normalize_language(stream.language)}"
            )
        if default_subtitle is not None:
            stream = stream.with_default(i == default_subtitle)
        subtitles.append(stream)
    command = _mark_defaults(command, "s", len(subtitles), default_subtitle)

    for stream in classified.other:
        command = command.with_map(stream.specifier)

    if default_audio is not None:
        logger.info(f"Default audio track: stream {classified.audio[default_audio].index}")
    elif default_subtitle is not None:
        logger.info(f"Default subtitle track: stream {classified.subtitle[default_subtitle].index}")

    return command, replace(classified, audio=audio, subtitle=subtitles)


# --- High-efficiency audio ---

def is_lossless(codec_name: Optional[str]) -> bool:
    codec = (codec_name or "").lower()
    return codec in LOSSLESS_AUDIO_CODECS or codec.startswith(LOSSLESS_AUDIO_PREFIXES)


def he_audio(command: EncodeCommand, streams: Sequence[StreamInfo], options: JobOptions) -> EncodeCommand:
    """
    Re-encodes audio streams to Opus at `he_audio_bitrate` kbit/s per channel.

    Lossless streams are kept unless `force_he_audio` is set. With
    `downmix_he_audio`, streams with more than three channels are matrixed
    down to Dolby Pro Logic II stereo first.
    """
    synthesize = options.normalize_level >= TITLE_SYNTH_LEVEL
    for i, stream in enumerate(streams):
        if is_lossless(stream.codec_name) and not options.force_he_audio:
            logger.info(f"Keeping lossless {stream.codec_name} audio stream {stream.index}")
            continue
        channels = stream.channels or 2
        command = command.with_option(f"-c:a:{i}", HE_AUDIO_CODEC)
        if options.downmix_he_audio and channels > HE_AUDIO_DOWNMIX_THRESHOLD:
            logger.info(f"Downmixing audio stream {stream.index} from {channels} channels to stereo")
            command = command.with_option(f"-ac:a:{i}", "2")
            command = command.with_stream_filter(f"a:{i}", HE_AUDIO_DOWNMIX_FILTER)
            channels = 2
        command = command.with_stream_filter(f"a:{i}", f"aformat=channel_layouts={HE_AUDIO_CHANNEL_LAYOUTS}")
        command = command.with_option(f"-frame_duration:a:{i}", str(HE_AUDIO_FRAME_DURATION))
        command = command.with_option(f"-b:a:{i}", f"{options.he_audio_bitrate * channels}k")
        if not stream.title and synthesize:
            title = f"{normalize_language(stream.language)} {HE_AUDIO_TITLE_CODEC} ({format_channels(channels)})"
            command = command.with_option(f"-metadata:s:a:{i}", f"title={title}")
    return command
