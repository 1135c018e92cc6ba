"""
Configuration settings related to video processing.

This module defines the target codec, the default encoder arguments, and the
constants used by the analysis passes (crop detection, interlace detection,
verification) that run before and after the main encode.
"""

# --- Encoder Settings ---
# Sources whose video stream is already in this codec are skipped unless the
# override flag is set.
TARGET_VIDEO_CODEC = "hevc"
VIDEO_ENCODER = "libx265"
DEFAULT_AUDIO_CODEC = "copy"
DEFAULT_SUBTITLE_CODEC = "copy"
DEFAULT_DATA_CODEC = "copy"

DEFAULT_QUALITY = 19
DEFAULT_PRESET = "fast"
DEFAULT_OUTPUT_FORMAT = "mkv"
DEFAULT_NORMALIZE_LEVEL = 2
DEFAULT_PREVIEW_LENGTH = 30.0  # seconds

# Character joining the low-level x265 parameters into a single argument.
X265_PARAM_SEPARATOR = ":"
X265_STATS_FILE_NAME = "x265stats.log"

# --- Bit Depth ---
# Explicit override -> output pixel format.
BIT_DEPTH_OVERRIDE_PIX_FMTS = {
    8: "yuv420p",
    10: "yuv420p10le",
    12: "yuv420p12le",
    16: "yuv420p16le",
}
# Supported detected depths, highest first; anything else falls back to 8-bit.
SUPPORTED_BIT_DEPTHS = (16, 12, 10, 8)
DEFAULT_BIT_DEPTH = 8

# --- Crop Detection ---
CROP_SAMPLE_COUNT = 12
CROP_FRAMES_PER_SAMPLE = 2
CROP_DETECT_FILTER = "cropdetect=0.094:2:0"

# --- Interlace Detection ---
IDET_FRAME_COUNT = 250
DEINTERLACE_FILTER = "yadif"

# --- Verification ---
# Maximum allowed difference in seconds between source and output durations.
DURATION_TOLERANCE = 1.0

# --- Extras ---
SCREENSHOT_COUNT = 6
SCREENSHOT_DIR_NAME = "screenshots"

# Bitmap subtitle codecs that can be converted to text via OCR.
BITMAP_SUBTITLE_CODECS = ("dvdsub", "dvd_subtitle")
