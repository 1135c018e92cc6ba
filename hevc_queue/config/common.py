"""
Common configuration settings used throughout the application.

This module contains globally shared settings: the logger format, the job
status constants and the locations of the external tools. It also loads the
user-specific `config.user.yaml` file so that tool paths, option defaults and
extra presets can be customized without modifying the source code.
"""
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger

# --- User-Defined Configuration ---
# 'config.user.yaml' is looked up in the current working directory first and
# then at the project root.

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
USER_CONFIG_NAME = "config.user.yaml"
USER_CONFIG_CANDIDATES = (Path.cwd() / USER_CONFIG_NAME, PROJECT_ROOT / USER_CONFIG_NAME)


def load_user_config() -> Dict[str, Any]:
    """
    Loads the first readable user configuration file.

    Returns:
        The parsed YAML mapping, or an empty dict when no file exists or the
        file cannot be parsed (a warning is logged in that case).
    """
    for candidate in USER_CONFIG_CANDIDATES:
        if not candidate.is_file():
            continue
        try:
            with candidate.open("r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not load or parse '{candidate}': {e}")
            return {}
        if isinstance(loaded, dict):
            return loaded
        return {}
    logger.debug("User config not found. Relying on system PATH for executables.")
    return {}


USER_CONFIG: Dict[str, Any] = load_user_config()
_paths_config: Dict[str, Any] = USER_CONFIG.get("paths") or {}

# The directory containing the ffmpeg and ffprobe executables. If None, the
# executables are expected on the system's PATH.
MODULE_PATH: Optional[Path] = (
    Path(_paths_config["ffmpeg_dir"]) if _paths_config.get("ffmpeg_dir") else None
)


def _tool(name: str, override: Optional[str] = None) -> str:
    if override:
        return str(override)
    if MODULE_PATH is not None:
        candidate = MODULE_PATH / name
        if candidate.exists() or shutil.which(name, path=str(MODULE_PATH)):
            return str(candidate)
    return name


FFMPEG_BIN = _tool("ffmpeg")
FFPROBE_BIN = _tool("ffprobe")
MKVEXTRACT_BIN = _tool("mkvextract", _paths_config.get("mkvextract"))
VOBSUB2SRT_BIN = _tool("vobsub2srt", _paths_config.get("vobsub2srt"))

# Option defaults and extra presets supplied by the user.
USER_OPTION_DEFAULTS: Dict[str, Any] = USER_CONFIG.get("defaults") or {}
USER_PRESETS: Dict[str, Any] = USER_CONFIG.get("presets") or {}


# --- Logging Configuration ---

# The format string for the Loguru logger.
LOGGER_FORMAT = (
    "<green>{time:MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


# --- Files ---

# Append-only CSV written to the current working directory when stats are on.
STATS_FILE_NAME = "hevc_queue_stats.csv"
STATS_HEADER = (
    "Encoded Date",
    "Relative Path",
    "Original Size",
    "New Size",
    "Percentage",
    "Duration of Encode",
)

# Prefix for the per-job working directory holding temporary artifacts.
WORK_DIR_PREFIX = "hevc_queue-"


# --- Job Status Constants ---
# A job is created pending, moves to running, may toggle between running and
# paused, and terminates exactly once.

JOB_STATUS_PENDING = "pending"  # Enqueued, no stage has run yet.
JOB_STATUS_RUNNING = "running"  # The stage sequencer is advancing.
JOB_STATUS_PAUSED = "paused"  # Suspended between stages or inside a subprocess.
JOB_STATUS_FINISHED = "finished"  # Every stage completed.
JOB_STATUS_FAILED = "failed"  # A stage raised, or the job was stopped while active.
JOB_STATUS_STOPPED = "stopped"  # Removed from the queue before it ever started.

JOB_TERMINAL_STATUSES = frozenset(
    {JOB_STATUS_FINISHED, JOB_STATUS_FAILED, JOB_STATUS_STOPPED}
)
