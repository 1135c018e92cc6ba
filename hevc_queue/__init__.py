"""
HEVC Queue: a batch transcoder that drives ffmpeg/x265 through a fixed pipeline.

Each input file becomes a `VideoJob` that walks an ordered list of stages
(probe, stream classification, preset resolution, subtitle upconversion,
bit-depth detection, audio normalization, crop and interlace detection, stream
mapping, encode, multi-pass, verification, relocation, extras and stats).
An `EncoderQueue` runs one job at a time and can pause, resume or stop the
active job, which forwards the request to the live ffmpeg process.

Typical usage:

    from hevc_queue.domain.models import JobOptions
    from hevc_queue.pipeline.encoder_queue import EncoderQueue

    queue = EncoderQueue()
    queue.enqueue(Path("movie.mkv"), JobOptions(destination=Path("out")))
    queue.start()
    queue.wait()
"""

__version__ = "0.3.0"
