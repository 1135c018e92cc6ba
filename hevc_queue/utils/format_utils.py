"""
This module contains helper functions for formatting data into human-readable strings.
These functions are used in logging, in synthesized track titles and in the stats
file, to present durations, file sizes, channel layouts and languages consistently.
"""

from datetime import timedelta
from typing import Optional

from ..config.languages import (
    ISO_639_1_TO_639_2B,
    ISO_639_2B_NAMES,
    ISO_639_2T_TO_639_2B,
    UNKNOWN_LANGUAGE,
)


def format_timedelta(td_object: timedelta) -> str:
    """
    Formats a timedelta object into a "HH:MM:SS" string.

    Args:
        td_object: The timedelta object to format.

    Returns:
        A string representing the timedelta in HH:MM:SS format.
        For example, a timedelta of 7261 seconds becomes "02:01:01".
        Returns "00:00:00" if the input is not a valid timedelta object.
    """
    if not isinstance(td_object, timedelta):
        return "00:00:00"

    total_seconds = int(td_object.total_seconds())
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02}:{minutes:02}:{seconds:02}"


def formatted_size(size_bytes: float) -> str:
    """
    Converts a size in bytes to a human-readable string (e.g., B, KB, MB, GB, TB).

    Args:
        size_bytes: The size of the file in bytes.

    Returns:
        A formatted string with the appropriate unit.
        For example, 1536 becomes "1.50 KB", and 2097152 becomes "2 MB".
    """
    if size_bytes < 0:
        size_bytes = 0
    if size_bytes == 0:
        return "0 B"

    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    factor = 1024.0
    for unit in units:
        if size_bytes < factor:
            if unit == "B":
                return f"{int(size_bytes)} {unit}"
            return f"{size_bytes:.2f} {unit}".replace(".00", "")
        size_bytes /= factor

    return f"{size_bytes:.2f} {units[-1]}".replace(".00", "")


def format_channels(channels: Optional[int]) -> str:
    """
    Names a channel count the way release titles do.

    1 -> "Mono", 2 -> "Stereo", odd counts -> "N.0 Channel",
    even counts -> "(N-1).1 Channel" (6 -> "5.1 Channel").
    """
    if not channels:
        return "Unknown Channels"
    if channels == 1:
        return "Mono"
    if channels == 2:
        return "Stereo"
    if channels % 2:
        return f"{channels}.0 Channel"
    return f"{channels - 1}.1 Channel"


def normalize_language(code: Optional[str]) -> str:
    """
    Resolves a language tag to an English language name.

    Two-letter codes go through ISO 639-1, three-letter codes through
    ISO 639-2 (bibliographic or terminological). Anything else is assumed to
    already be a name and is capitalized. A missing tag is "Unknown".
    """
    if not code:
        return UNKNOWN_LANGUAGE
    code = code.strip()
    lowered = code.lower()
    if len(lowered) == 2:
        bibliographic = ISO_639_1_TO_639_2B.get(lowered)
        if bibliographic:
            return ISO_639_2B_NAMES[bibliographic]
    elif len(lowered) == 3:
        bibliographic = ISO_639_2T_TO_639_2B.get(lowered, lowered)
        if bibliographic in ISO_639_2B_NAMES:
            return ISO_639_2B_NAMES[bibliographic]
    return code.capitalize()
