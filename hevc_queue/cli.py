"""
Command-Line Interface (CLI) setup for HEVC Queue.

This module uses Python's `argparse` to define and parse the command-line
arguments, and turns them into the `JobOptions` every job is created with.
"""
import argparse
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import __version__
from .config.common import USER_OPTION_DEFAULTS
from .config.presets import PRESETS
from .config.video import SUPPORTED_BIT_DEPTHS
from .domain.models import JobOptions


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hevc-queue",
        description="Batch HEVC (x265) transcoder built on ffmpeg.",
    )
    parser.add_argument("inputs", nargs="+", type=Path, help="Video files or directories to encode.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    video = parser.add_argument_group("video")
    video.add_argument("-q", "--quality", type=int, help="Constant quality (x265 CRF). Default: 19.")
    video.add_argument(
        "-b", "--video-bitrate", type=int, metavar="KBPS",
        help="Target video bitrate in kbit/s. Replaces constant quality; required for --multi-pass."
    )
    video.add_argument("-p", "--preset", type=str, help="x265 speed preset. Default: fast.")
    video.add_argument(
        "--as-preset", type=str,
        help=f"Named preset(s) separated by ':'. Available: {', '.join(sorted(PRESETS))}."
    )
    video.add_argument("--bitdepth", type=int, choices=sorted(SUPPORTED_BIT_DEPTHS), help="Force the output bit depth.")
    video.add_argument("--scale", type=int, metavar="HEIGHT", help="Scale the video to this height.")
    video.add_argument("--multi-pass", type=int, metavar="PASSES", help="Number of encode passes (bitrate mode only).")
    video.add_argument("-x", "--extra-options", type=str, help="Extra x265 parameters, ':' separated.")
    video.add_argument(
        "--accurate-timestamps", action="store_true", default=None,
        help="Place a keyframe every second (x265 keyint = frame rate)."
    )
    video.add_argument("--override", action="store_true", default=None, help="Re-encode sources that are already HEVC.")

    audio = parser.add_argument_group("audio and subtitles")
    audio.add_argument(
        "-n", "--normalize-level", type=int, metavar="LEVEL",
        help="0: no analysis, 1: crop, 2: titles, 3: peak normalization and deinterlace, 4: loudnorm. Default: 2."
    )
    audio.add_argument("-l", "--native-language", type=str, help="Language of the default audio/subtitle track.")
    audio.add_argument(
        "--he-audio", action="store_true", default=None, help="Re-encode lossy audio to Opus, keeping lossless tracks."
    )
    audio.add_argument(
        "--force-he-audio", action="store_true", default=None, help="Re-encode all audio to Opus, lossless tracks included."
    )
    audio.add_argument("--downmix-he-audio", action="store_true", default=None, help="Downmix Opus audio to stereo.")
    audio.add_argument("--he-audio-bitrate", type=int, metavar="KBPS", help="Opus bitrate per channel. Default: 40.")
    audio.add_argument("--skip-upconvert", action="store_true", default=None, help="Keep bitmap subtitles as they are.")

    output = parser.add_argument_group("output")
    output.add_argument("-d", "--destination", type=Path, help="Output directory. Default: home directory.")
    output.add_argument("-f", "--output-format", type=str, help="Output container extension. Default: mkv.")
    output.add_argument("--preview", action="store_true", default=None, help="Encode only a window around the middle.")
    output.add_argument("--preview-length", type=float, metavar="SECONDS", help="Preview and sample length. Default: 30.")
    output.add_argument("--screenshots", action="store_true", default=None, help="Save six stills of the output.")
    output.add_argument("--sample", action="store_true", default=None, help="Cut a sample clip from the output.")
    output.add_argument("--stats", action="store_true", default=None, help="Append a row to the stats CSV.")
    output.add_argument("--delete", action="store_true", default=None, help="Replace the source with the output.")
    output.add_argument("--test", action="store_true", default=None, help="Run every analysis stage, skip the encode.")
    output.add_argument(
        "--temp-dir", type=Path, default=None,
        help="Directory for temporary files. Useful for pointing to a RAM disk to reduce HDD/SSD writes."
    )
    output.add_argument("--error-log-dir", type=Path, default=None, help="Also write failures to error.txt here.")

    parser.add_argument(
        "--log-level", type=str, default="INFO", choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set the logging level."
    )
    parser.add_argument("--debug", action="store_true", help="Shortcut for --log-level DEBUG.")
    return parser


def get_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parses command-line arguments.

    Args:
        argv: Arguments to parse; defaults to `sys.argv[1:]`.

    Returns:
        argparse.Namespace: The parsed arguments. Options not given on the
                            command line are None.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.multi_pass and args.multi_pass > 1 and not args.video_bitrate:
        parser.error("--multi-pass requires --video-bitrate")

    # Create temp_dir if it doesn't exist yet.
    if args.temp_dir:
        try:
            args.temp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            parser.error(f"The temporary directory '{args.temp_dir}' could not be created: {e}")
        args.temp_dir = args.temp_dir.resolve()

    if args.debug:
        args.log_level = "DEBUG"
    return args


def options_from_args(args: argparse.Namespace, defaults: Optional[Dict[str, Any]] = None) -> JobOptions:
    """
    Resolves job options: command-line values win over `defaults` from
    `config.user.yaml`, which win over the built-in defaults.
    """
    values: Dict[str, Any] = dict(USER_OPTION_DEFAULTS if defaults is None else defaults)
    values.update({key: value for key, value in vars(args).items() if value is not None})
    return JobOptions.from_mapping(values)
