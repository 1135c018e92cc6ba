"""
Defines custom exception types for HEVC Queue.

Every failure that can end a job maps to one class here, so the queue can
record a precise, human-readable cause and the CLI can print it. Exceptions
that originate from an external tool keep the captured tool output in
`diagnostic`, which is only shown in debug mode.

All custom exceptions inherit from the base `HevcQueueException`.
"""
from typing import Optional


class HevcQueueException(Exception):
    """Base class for all custom exceptions in HEVC Queue."""

    message = "Unexpected error"

    def __init__(self, message: Optional[str] = None, diagnostic: Optional[str] = None):
        super().__init__(message or self.message)
        self.diagnostic = diagnostic


# --- Job Stage Exceptions ---
class JobException(HevcQueueException):
    """Base class for exceptions raised by a pipeline stage."""

    message = "Job failed"


class OutputAlreadyExistsException(JobException):
    """
    Raised when the resolved output path already exists.

    Existing outputs are never overwritten; the filesystem check runs before
    any analysis so the job fails fast.
    """

    message = "Output already exists"


class AlreadyEncodedException(JobException):
    """Raised when the video stream is already in the target codec and no override is set."""

    message = "Video already encoded in HEVC"


class NoVideoStreamException(JobException):
    """Raised when the source has no usable video stream."""

    message = "No video stream found"


class UnknownPresetException(JobException):
    """Raised when a named preset does not exist."""

    def __init__(self, name: str):
        super().__init__(f"Unknown preset: {name}")
        self.name = name


class UnknownPresetOptionException(JobException):
    """Raised when a preset contains a setting the pipeline does not understand."""

    def __init__(self, name: str):
        super().__init__(f"Unknown preset option: {name}")
        self.name = name


class FilterUnavailableException(JobException):
    """Raised when the installed ffmpeg lacks a filter an analysis requires."""

    def __init__(self, filter_name: str):
        super().__init__(f"ffmpeg filter unavailable: {filter_name}")
        self.filter_name = filter_name


class NormalizationNotImplementedException(JobException):
    """
    Raised for the dynamic (per-frame) audio normalization level.

    The level is accepted on the command line but has no implementation;
    selecting it always fails the job.
    """

    message = "Dynamic audio normalization is not implemented"


class MeasurementException(JobException):
    """Raised when an analysis pass finished but its output could not be parsed."""

    message = "Could not parse analysis output"


class EncodeFailedException(JobException):
    """Raised when the main encode command exits with an error."""

    def __init__(self, detail: str, diagnostic: Optional[str] = None):
        super().__init__(f"Encode failed: {detail}", diagnostic)
        self.detail = detail


class DurationMismatchException(JobException):
    """
    Raised when the produced output is shorter or longer than the source.

    The malformed output is deleted before this is raised.
    """

    def __init__(self, delta: float):
        super().__init__(f"Output duration differs from the source by {delta:.3f}s")
        self.delta = delta


class IncompatibleWithConstantQualityException(JobException):
    """Raised when multi-pass encoding is requested without a target bitrate."""

    message = "Multi-pass encoding requires a target video bitrate"


class TestModeSkipException(JobException):
    """Raised by the encode stage in test mode, before ffmpeg is invoked."""

    __test__ = False
    message = "Test mode: encode skipped"


class StoppedPrematurelyException(JobException):
    """Raised or recorded when a running job is stopped by the user."""

    message = "Stopped prematurely"


# --- External Process Exceptions ---
class ProcessException(HevcQueueException):
    """Base class for failures of an external tool invocation."""

    message = "External process failed"


class ExternalToolMissingException(ProcessException):
    """Raised when an external executable cannot be found."""

    def __init__(self, tool: str):
        super().__init__(f"{tool} is not installed or not on PATH")
        self.tool = tool


class KilledException(ProcessException):
    """Raised when an external process was terminated by a signal."""

    message = "Process was killed"


class ExternalToolException(ProcessException):
    """Raised when an external tool ran but reported an error."""

    def __init__(
        self,
        tool: str,
        exit_code: Optional[int],
        diagnostic: Optional[str] = None,
        message: Optional[str] = None,
    ):
        super().__init__(message or f"{tool} exited with code {exit_code}", diagnostic)
        self.tool = tool
        self.exit_code = exit_code


class NonZeroExitException(ExternalToolException):
    """Raised by the process controller when a command exits non-zero."""

    def __init__(self, tool: str, exit_code: int, output: str = ""):
        super().__init__(tool, exit_code, output)
        self.output = output


class ProbeFailedException(ExternalToolException):
    """Raised when ffprobe cannot read a file."""

    def __init__(self, path: str, diagnostic: Optional[str] = None):
        super().__init__("ffprobe", None, diagnostic, f"ffprobe could not read {path}")
        self.path = path


# --- Queue Control Exceptions ---
class QueueStateException(HevcQueueException):
    """Base class for control calls made in an invalid queue state."""

    message = "Invalid queue state"


class AlreadyRunningException(QueueStateException):
    """Raised by `start()` when the queue is already running."""

    message = "Queue is already running"


class AlreadyPausedException(QueueStateException):
    """Raised by `pause()` when the queue is already paused."""

    message = "Queue is already paused"


class NotRunningException(QueueStateException):
    """Raised by `pause()` or `stop()` when the queue is not running."""

    message = "Queue is not running"


class NotPausedException(QueueStateException):
    """Raised by `resume()` when the queue is not paused."""

    message = "Queue is not paused"
