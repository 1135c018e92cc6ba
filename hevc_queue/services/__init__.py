"""
Services Package for HEVC Queue.

This package contains the service layer: components that each perform one
well-defined task for the job pipeline and know nothing about job state.

- **Process Controller (`ProcessRunner`, `ProcessHandle`):**
  Spawns ffmpeg and the subtitle tools, streams their diagnostic lines and
  supports suspend, continue and kill.

- **Media Probe (`MediaProbe`):**
  Reads container and stream metadata with `ffmpeg.probe`, measuring the
  duration when the container does not report one.

- **Analyzers (`CropDetector`, `AudioNormalizer`, `InterlaceDetector`):**
  Run short measurement passes and turn their output into filter arguments.

- **Command Builder (`EncodeCommand`):**
  The immutable value every stage extends with maps, codecs and filters.

- **Stream Classifier:**
  Stream partitioning, preset resolution, bit depth, mapping and titles.

- **Subtitle Upconverter, File Processing and Logging services.**
"""
