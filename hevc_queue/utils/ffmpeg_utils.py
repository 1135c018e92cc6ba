"""
This module provides utility functions related to FFmpeg and other external tools.

It answers two questions the pipeline asks before relying on a tool: is the
executable installed, and does the installed ffmpeg provide a given filter.
"""
import re
import shutil
from typing import Callable, Dict, Optional, Set

from loguru import logger

from ..config.common import FFMPEG_BIN
from ..services.process_controller import (
    CommandSpec,
    OutputTarget,
    ProcessResult,
    run_to_completion,
)

# A line of `ffmpeg -filters`, e.g. " TSC loudnorm          A->A       EBU R128 ...".
_FILTER_LINE = re.compile(r"^\s*[TSC.|]{2,3}\s+(\S+)\s+\S*->\S*")

# Filter names per ffmpeg executable, populated on first query.
_filter_cache: Dict[str, Set[str]] = {}


def tool_available(program: str) -> bool:
    """Returns True if `program` is an existing path or resolvable on PATH."""
    return shutil.which(program) is not None


def parse_filter_list(output: str) -> Set[str]:
    """Extracts filter names from the output of `ffmpeg -filters`."""
    names = set()
    for line in output.splitlines():
        match = _FILTER_LINE.match(line)
        if match:
            names.add(match.group(1))
    return names


def available_filters(
    execute: Optional[Callable[[CommandSpec], ProcessResult]] = None,
    ffmpeg_cmd: str = FFMPEG_BIN,
) -> Set[str]:
    """
    Returns the set of filters compiled into `ffmpeg_cmd`.

    Args:
        execute: Callable running a `CommandSpec` to completion. Jobs pass their
                 own executor so the query can be paused and stopped like any
                 other pass.
        ffmpeg_cmd: The ffmpeg executable to query.

    Returns:
        The filter names. The result is cached per executable.
    """
    if ffmpeg_cmd in _filter_cache:
        return _filter_cache[ffmpeg_cmd]
    spec = CommandSpec(ffmpeg_cmd, ("-hide_banner", "-filters"), output=OutputTarget.MEMORY)
    result = (execute or run_to_completion)(spec)
    text = (result.stdout or b"").decode("utf-8", errors="replace")
    if not text.strip():
        text = result.output
    filters = parse_filter_list(text)
    logger.debug(f"{ffmpeg_cmd} provides {len(filters)} filters")
    _filter_cache[ffmpeg_cmd] = filters
    return filters


def clear_filter_cache() -> None:
    _filter_cache.clear()
