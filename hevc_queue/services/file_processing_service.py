"""
Input discovery for the command line.

Arguments may be files or directories. Directories are scanned recursively and
only files whose guessed MIME type is `video/*` are kept. Files passed
explicitly are kept as long as they exist, whatever their type.
"""
import mimetypes
from pathlib import Path
from typing import Iterable, List

from loguru import logger

from ..config.video import SCREENSHOT_DIR_NAME

# Not in every platform mime table.
mimetypes.add_type("video/x-matroska", ".mkv")
mimetypes.add_type("video/mp2t", ".m2ts")


def is_video_file(path: Path) -> bool:
    """Returns True if the file's guessed MIME type is `video/*`."""
    mime_type, _ = mimetypes.guess_type(path.name)
    return bool(mime_type) and mime_type.startswith("video/")


def collect_video_files(paths: Iterable[Path]) -> List[Path]:
    """
    Expands the given paths into the ordered list of files to encode.

    Directory contents are sorted so that the queue order is stable between
    runs. Screenshot folders produced by earlier runs are skipped, and a file
    reached twice is only returned once.

    Args:
        paths: Files and/or directories given on the command line.

    Returns:
        Resolved file paths in discovery order.
    """
    files: List[Path] = []
    seen = set()

    def add(candidate: Path) -> None:
        resolved = candidate.resolve()
        if resolved not in seen:
            seen.add(resolved)
            files.append(resolved)

    for path in paths:
        path = Path(path).expanduser()
        if not path.exists():
            logger.error(f"Input path does not exist: {path}")
            continue
        if path.is_file():
            add(path)
            continue
        found = 0
        for candidate in sorted(path.rglob("*")):
            if SCREENSHOT_DIR_NAME in candidate.relative_to(path).parts[:-1]:
                continue
            if candidate.is_file() and is_video_file(candidate):
                add(candidate)
                found += 1
        logger.debug(f"Found {found} video file(s) under {path}")
    return files
