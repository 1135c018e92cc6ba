"""
Configuration Package for HEVC Queue.

This package centralizes the static configuration of the transcoder so that the
pipeline code never hardcodes tool names, thresholds or encoder defaults.

This package includes settings for:
- Common application settings like the log format, job statuses and the
  user-overridable locations of ffmpeg, ffprobe, mkvextract and vobsub2srt.
- Video encoding defaults (target codec, sampling constants, pixel formats).
- Audio normalization targets and high-efficiency audio settings.
- ISO 639 language names used to title and select default tracks.
- Named encoding presets shipped as YAML, extendable from `config.user.yaml`.
"""
