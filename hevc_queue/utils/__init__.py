"""
Utilities Package for HEVC Queue.

Modules:
    - ffmpeg_utils.py: Checks for external executables and queries the
      filters compiled into the installed ffmpeg.
    - format_utils.py: Helpers formatting durations, sizes, channel counts
      and language tags into human-readable strings.
"""
