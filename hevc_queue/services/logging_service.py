"""
Logging setup and the on-disk logs written next to the console output.

- `configure_logging()` installs the loguru stderr sink used by the CLI.
- `StatsLog` appends one CSV row per finished job to the stats file.
- `ErrorLog` appends a plain-text record per failed job, including the
  external tool's diagnostic output, so failures can be inspected after a
  long batch without running it again in debug mode.
"""
import csv
import sys
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from ..config.common import LOGGER_FORMAT, STATS_FILE_NAME, STATS_HEADER
from ..utils.format_utils import format_timedelta, formatted_size


def configure_logging(level: str = "INFO") -> None:
    """Replaces loguru's default sink with a stderr sink at `level`."""
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOGGER_FORMAT)


class Log:
    """
    Base class of the file logs.

    Takes a base path that is either a directory (the log file is created
    inside it) or a file path (its parent is used), and makes sure the
    directory exists.
    """

    linesep_marker: str = "=" * 50

    def __init__(self, log_base_path: Path):
        self.log_file_path: Path
        log_base_path = Path(log_base_path)
        if log_base_path.is_dir() or not log_base_path.suffix:
            self.log_dir: Path = log_base_path.resolve()
        else:
            self.log_dir = log_base_path.parent.resolve()
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def write(self, *args, **kwargs):
        raise NotImplementedError("Subclasses must implement the write() method.")


class ErrorLog(Log):
    """Appends human-readable failure records to a text file."""

    DEFAULT_ERROR_FILENAME = "error.txt"

    def __init__(self, error_log_dir: Path, filename: str = DEFAULT_ERROR_FILENAME):
        super().__init__(error_log_dir)
        self.log_file_path = self.log_dir / filename

    def write(self, *error_messages: str):
        """
        Appends the given messages, one per line, followed by a separator line.

        If the file cannot be written the messages go to the console logger
        instead, so they are not lost.
        """
        if not error_messages:
            return
        content_to_write = "\n".join(error_messages) + "\n" + self.linesep_marker + "\n"
        try:
            with self._lock, self.log_file_path.open("a", encoding="utf-8") as f:
                f.write(content_to_write)
        except OSError as e:
            logger.error(f"Failed to write to error log {self.log_file_path}: {e}")
            for msg in error_messages:
                logger.error(f"  - {msg}")


class StatsLog(Log):
    """
    Append-only CSV of finished encodes.

    The header row is written when the file does not exist yet. Fields that
    contain a comma are quoted.
    """

    def __init__(self, stats_path: Optional[Path] = None):
        stats_path = Path(stats_path) if stats_path else Path.cwd() / STATS_FILE_NAME
        super().__init__(stats_path.parent)
        self.log_file_path = self.log_dir / stats_path.name

    def write(
        self,
        path: Union[str, Path],
        original_size: int,
        new_size: int,
        ratio: float,
        elapsed: timedelta,
        encoded_at: Optional[datetime] = None,
    ):
        encoded_at = encoded_at or datetime.now()
        try:
            relative = Path(path).resolve().relative_to(Path.cwd())
        except ValueError:
            relative = Path(path)
        row = (
            encoded_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(relative),
            formatted_size(original_size),
            formatted_size(new_size),
            f"{ratio}%",
            format_timedelta(elapsed),
        )
        with self._lock:
            new_file = not self.log_file_path.exists()
            with self.log_file_path.open("a", encoding="utf-8", newline="") as f:
                writer = csv.writer(f, quoting=csv.QUOTE_MINIMAL)
                if new_file:
                    writer.writerow(STATS_HEADER)
                writer.writerow(row)
        logger.debug(f"Stats appended to {self.log_file_path}")
