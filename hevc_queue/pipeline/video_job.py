"""
The job state machine.

A `VideoJob` takes one source file through an ordered, fixed list of stages.
Each stage is a method receiving the current `EncodeCommand` and returning the
next one, so the encode command is built up stage by stage without shared
mutable state. Stages run strictly one after the other on the thread calling
`run()` (or the thread started by `start()`).

Lifecycle:

    pending -> running <-> paused -> finished | failed | stopped

Control from other threads:

- `pause()` closes the suspend barrier checked before every stage and
  suspends the live ffmpeg process, if any.
- `resume()` reopens the barrier and continues the process.
- `stop()` kills the live process, cancels the remaining stages, marks the job
  failed (`StoppedPrematurelyException`) unless it already terminated, and
  deletes its temporary files before returning.

Every temporary file a stage creates is registered in `temp_artifacts` and
deleted on the terminal transition, before the terminal event is published.
"""
import re
import shutil
import tempfile
import threading
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from loguru import logger

from ..config.audio import CROP_DETECT_LEVEL, DEINTERLACE_LEVEL
from ..config.common import (
    FFMPEG_BIN,
    JOB_STATUS_FAILED,
    JOB_STATUS_FINISHED,
    JOB_STATUS_PAUSED,
    JOB_STATUS_PENDING,
    JOB_STATUS_RUNNING,
    JOB_STATUS_STOPPED,
    JOB_TERMINAL_STATUSES,
    WORK_DIR_PREFIX,
)
from ..config.presets import PRESETS
from ..config.video import (
    BITMAP_SUBTITLE_CODECS,
    DEINTERLACE_FILTER,
    DURATION_TOLERANCE,
    SCREENSHOT_COUNT,
    SCREENSHOT_DIR_NAME,
    X265_STATS_FILE_NAME,
)
from ..domain.exceptions import (
    DurationMismatchException,
    EncodeFailedException,
    ExternalToolException,
    ExternalToolMissingException,
    HevcQueueException,
    IncompatibleWithConstantQualityException,
    KilledException,
    NoVideoStreamException,
    OutputAlreadyExistsException,
    StoppedPrematurelyException,
    TestModeSkipException,
)
from ..domain.media import MediaMetadata, TIMEMARK_PATTERN, pad_timemark, parse_duration
from ..domain.models import ClassifiedStreams, JobOptions, JobProgress, StageDescriptor
from ..services.audio_normalizer import AudioNormalizer
from ..services.command_builder import EncodeCommand
from ..services.crop_detector import CropDetector
from ..services.interlace_detector import InterlaceDetector
from ..services.logging_service import StatsLog
from ..services.probe import MediaProbe
from ..services.process_controller import (
    CommandSpec,
    OutputTarget,
    ProcessHandle,
    ProcessResult,
    ProcessRunner,
)
from ..services.stream_classifier import (
    apply_presets,
    check_target_codec,
    classify_streams,
    detect_bit_depth,
    he_audio,
    map_streams,
    resolve_pixel_format,
)
from ..services.subtitle_upconverter import SubtitleUpconverter
from ..utils.format_utils import format_timedelta, formatted_size
from . import events

_FRAME_PATTERN = re.compile(r"frame=\s*(\d+)")
_FPS_PATTERN = re.compile(r"fps=\s*([\d.]+)")

_TERMINAL_EVENTS = {
    JOB_STATUS_FINISHED: events.JOB_FINISHED,
    JOB_STATUS_FAILED: events.JOB_FAILED,
    JOB_STATUS_STOPPED: events.JOB_STOPPED,
}


def parse_status_line(line: str) -> Optional[Dict[str, object]]:
    """
    Parses an ffmpeg status line.

    Returns:
        A dict with `frames`, `fps` and `timemark` (padded), or None when the
        line carries no `time=` field.
    """
    time_match = TIMEMARK_PATTERN.search(line)
    if not time_match or time_match.group(1).startswith("-"):
        return None
    frame_match = _FRAME_PATTERN.search(line)
    fps_match = _FPS_PATTERN.search(line)
    return {
        "frames": int(frame_match.group(1)) if frame_match else 0,
        "fps": float(fps_match.group(1)) if fps_match else 0.0,
        "timemark": pad_timemark(time_match.group(1)),
    }


class VideoJob:
    """
    One source file's transcoding unit.

    Args:
        path: The source file.
        options: Resolved options; the job keeps its own copy.
        job_id: Identifier assigned by the queue's sequence.
        runner: Spawns external commands. Tests pass a scripted runner.
        prober: Media probe adapter; defaults to one sharing `runner`.
        watch_ignore: List receiving paths a file watcher must not re-ingest.
        stats_log: CSV stats log used when `options.stats` is set.
        presets: Named presets available to `options.as_preset`.
    """

    def __init__(
        self,
        path: Path,
        options: Optional[JobOptions] = None,
        job_id: int = 0,
        runner: Optional[ProcessRunner] = None,
        prober: Optional[MediaProbe] = None,
        watch_ignore: Optional[List[Path]] = None,
        stats_log: Optional[StatsLog] = None,
        presets: Optional[Dict[str, dict]] = None,
    ):
        self.id = job_id
        self.path: Path = Path(path).resolve()
        self.source_path: Path = self.path
        self.dir: Path = self.path.parent
        self.base: str = self.path.name
        self.name: str = self.path.stem
        self.ext: str = self.path.suffix
        self.options: JobOptions = replace(options or JobOptions())

        self.status: str = JOB_STATUS_PENDING
        self.stage_index: int = -1
        self.error: Optional[Exception] = None
        self.progress = JobProgress()
        self.outbox = events.EventOutbox()

        self.metadata: Optional[MediaMetadata] = None
        self.output_metadata: Optional[MediaMetadata] = None
        self.streams = ClassifiedStreams()
        self.video_stream = None
        self.command = EncodeCommand.for_source(self.path)
        self.temp_artifacts: Set[Path] = set()
        self.pass_number = 0
        self.encode_elapsed = timedelta()
        self.ratio: Optional[float] = None
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.active_process: Optional[ProcessHandle] = None
        self.watch_ignore: List[Path] = watch_ignore if watch_ignore is not None else []

        self._runner = runner or ProcessRunner()
        self._prober = prober or MediaProbe(self._runner)
        self._stats_log = stats_log
        self._presets = presets if presets is not None else PRESETS
        self.crop_detector = CropDetector()
        self.audio_normalizer = AudioNormalizer()
        self.interlace_detector = InterlaceDetector()
        self.upconverter = SubtitleUpconverter()

        self._lock = threading.RLock()
        self._pauser = threading.Event()
        self._pauser.set()
        self._cancelled = False
        self._sequenced = False
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._work_dir: Optional[Path] = None
        self._pre_encode_command: Optional[EncodeCommand] = None
        self._logged_percent = -1

        self._set_destination(self.options.destination)

    def __repr__(self) -> str:
        return f"VideoJob(id={self.id}, path={str(self.source_path)!r}, status={self.status!r})"

    # --- Paths ---

    def _set_destination(self, destination: Path) -> None:
        destination = Path(destination).expanduser().resolve()
        self.options = replace(self.options, destination=destination)
        suffix = "-preview" if self.options.preview else ""
        self.output_base = f"{self.name}{suffix}.{self.options.output_format}"
        self.output_dir = destination
        self.output_path = destination / self.output_base
        self.sample_path = destination / f"{self.name}-sample.{self.options.output_format}"

    @property
    def work_dir(self) -> Path:
        """Private scratch directory of this job, created on first use."""
        with self._lock:
            if self._work_dir is None:
                temp_root = self.options.temp_dir
                if temp_root is not None:
                    Path(temp_root).mkdir(parents=True, exist_ok=True)
                self._work_dir = Path(
                    tempfile.mkdtemp(prefix=f"{WORK_DIR_PREFIX}{self.id}-", dir=temp_root)
                )
            return self._work_dir

    @property
    def stats_file(self) -> Path:
        return self.work_dir / X265_STATS_FILE_NAME

    @property
    def expected_duration(self) -> Optional[float]:
        if self.options.preview:
            return self.options.preview_length
        return self.metadata.duration if self.metadata else None

    def _track(self, path: Path) -> None:
        path = Path(path).resolve()
        areas = [self.output_dir]
        if self._work_dir is not None:
            areas.append(self._work_dir.resolve())
        if not any(path.is_relative_to(area) for area in areas):
            raise ValueError(f"{path} is outside the job's output and working directories")
        with self._lock:
            self.temp_artifacts.add(path)

    def _untrack(self, path: Path) -> None:
        with self._lock:
            self.temp_artifacts.discard(Path(path).resolve())

    # --- Control ---

    def start(self) -> threading.Thread:
        """Runs the job on a new thread."""
        self._thread = threading.Thread(target=self.run, name=f"job-{self.id}", daemon=True)
        self._thread.start()
        return self._thread

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the job is terminal. Returns False on timeout."""
        return self._done.wait(timeout)

    @property
    def terminal(self) -> bool:
        return self.status in JOB_TERMINAL_STATUSES

    def pause(self) -> bool:
        """
        Pauses a running job.

        The suspend barrier stops the next stage from starting, and the live
        subprocess, if there is one, is sent a suspend signal.

        Returns:
            False if the job was not running.
        """
        with self._lock:
            if self.status != JOB_STATUS_RUNNING:
                return False
            self.status = JOB_STATUS_PAUSED
            self._pauser.clear()
            handle = self.active_process
            if handle is not None and not handle.pause():
                if not handle.can_suspend:
                    logger.warning(
                        f"[{self.base}] {handle.spec.tool} cannot be suspended on this platform; "
                        f"the job will pause after the current stage"
                    )
        logger.info(f"[{self.base}] Paused")
        self.outbox.publish(events.JobEvent(events.JOB_PAUSED, self.id, self._stage_name()))
        return True

    def resume(self) -> bool:
        """Resumes a paused job. Returns False if the job was not paused."""
        with self._lock:
            if self.status != JOB_STATUS_PAUSED:
                return False
            self.status = JOB_STATUS_RUNNING
            handle = self.active_process
            if handle is not None:
                handle.resume()
            self._pauser.set()
        logger.info(f"[{self.base}] Resumed")
        self.outbox.publish(events.JobEvent(events.JOB_RESUMED, self.id, self._stage_name()))
        return True

    def stop(self) -> None:
        """
        Stops the job unconditionally.

        A job that was never begun ends `stopped`; an active job ends `failed`
        with `StoppedPrematurelyException`. Temporary files are deleted before
        this method returns.
        """
        with self._lock:
            self._cancelled = True
            handle = self.active_process
            never_started = self.status == JOB_STATUS_PENDING
        if handle is not None:
            handle.kill()
        self._pauser.set()
        if never_started:
            self._terminate(JOB_STATUS_STOPPED)
            self._done.set()
        else:
            self._terminate(JOB_STATUS_FAILED, StoppedPrematurelyException())
        self._cleanup()

    # --- Sequencer ---

    def _stage_name(self) -> Optional[str]:
        if 0 <= self.stage_index < len(self.STAGES):
            return self.STAGES[self.stage_index].name
        return None

    def begin(self) -> bool:
        """
        Moves a pending job to `running` without running any stage.

        From here on `pause()` closes the suspend barrier and `stop()` fails
        the job with `StoppedPrematurelyException`, even before `run()` is
        called.

        Returns:
            False if the job was not pending.
        """
        with self._lock:
            if self.status != JOB_STATUS_PENDING:
                return False
            self.status = JOB_STATUS_RUNNING
            self.started_at = datetime.now()
        logger.info(f"Processing {self.source_path}...")
        self.outbox.publish(events.JobEvent(events.JOB_RUNNING, self.id))
        return True

    def run(self) -> str:
        """
        Runs every stage in order on the calling thread.

        Returns:
            The terminal status.
        """
        with self._lock:
            if self._sequenced or self.status in JOB_TERMINAL_STATUSES:
                logger.warning(f"[{self.base}] Job already {self.status}, not running it again")
                if self.status in JOB_TERMINAL_STATUSES:
                    self._done.set()
                return self.status
            self._sequenced = True
        self.begin()

        command = self.command
        try:
            for index, stage in enumerate(self.STAGES):
                self._pauser.wait()
                if self._cancelled:
                    raise StoppedPrematurelyException()
                self.stage_index = index
                logger.debug(f"[{self.base}] {stage.action}")
                self.outbox.publish(events.JobEvent(events.JOB_STAGE, self.id, stage.name, index))
                command = stage.function(self, command)
                self.command = command
        except Exception as e:
            self._fail(e)
        else:
            if self._terminate(JOB_STATUS_FINISHED):
                logger.success(f"[{self.base}] Finished processing at {self.finished_at:%Y-%m-%d %H:%M:%S}")
        finally:
            self._cleanup()
            self._done.set()
        return self.status

    def _fail(self, error: Exception) -> None:
        if self._cancelled and isinstance(error, (KilledException, StoppedPrematurelyException)):
            error = StoppedPrematurelyException()
        elif not isinstance(error, HevcQueueException):
            logger.exception(f"[{self.base}] Unexpected error in stage '{self._stage_name()}'")
        if self._terminate(JOB_STATUS_FAILED, error):
            logger.error(f"[{self.base}] {error}")
            if getattr(error, "diagnostic", None):
                logger.debug(f"[{self.base}] Diagnostic output:\n{error.diagnostic}")

    def _terminate(self, status: str, error: Optional[Exception] = None) -> bool:
        """Moves to a terminal status once; later calls are ignored."""
        with self._lock:
            if self.status in JOB_TERMINAL_STATUSES:
                return False
            self.status = status
            self.error = error
            self.finished_at = datetime.now()
        self._cleanup()
        self.outbox.publish(
            events.JobEvent(_TERMINAL_EVENTS[status], self.id, self._stage_name(), error)
        )
        return True

    def _cleanup(self) -> None:
        with self._lock:
            paths = sorted(self.temp_artifacts)
            self.temp_artifacts.clear()
            work_dir, self._work_dir = self._work_dir, None
        for path in paths:
            try:
                path.unlink(missing_ok=True)
                logger.debug(f"[{self.base}] Deleted temporary file {path}")
            except OSError as e:
                logger.warning(f"[{self.base}] Could not delete temporary file {path}: {e}")
        if work_dir is not None and work_dir.exists():
            try:
                shutil.rmtree(work_dir)
            except OSError as e:
                logger.warning(f"[{self.base}] Could not delete working directory {work_dir}: {e}")

    def _execute(self, spec: CommandSpec, on_line: Optional[Callable[[str], None]] = None) -> ProcessResult:
        """
        Runs one external command as this job's single live subprocess.

        The handle is published in `active_process` for the duration of the
        command so that pause, resume and stop can reach it.
        """
        with self._lock:
            if self._cancelled:
                raise StoppedPrematurelyException()
            if self.active_process is not None:
                raise RuntimeError(f"Job {self.id} already has a live subprocess")
            handle = self._runner.run(spec)
            self.active_process = handle
            if self.status == JOB_STATUS_PAUSED:
                handle.pause()
        try:
            return handle.wait(on_line)
        finally:
            with self._lock:
                self.active_process = None

    # --- Stages ---

    def _stage_filesystem(self, command: EncodeCommand) -> EncodeCommand:
        if self.output_path.exists():
            raise OutputAlreadyExistsException(f"Output already exists: {self.output_path}")
        return command

    def _stage_metadata(self, command: EncodeCommand) -> EncodeCommand:
        self.metadata = self._prober.probe(self.path, execute=self._execute)
        logger.debug(f"[{self.base}] {self.metadata}")
        return command

    def _stage_streams(self, command: EncodeCommand) -> EncodeCommand:
        self.streams = classify_streams(self.metadata.streams)
        check_target_codec(self.streams, self.options.override)
        if not self.streams.video:
            raise NoVideoStreamException()
        logger.info(
            f"[{self.base}] {len(self.streams.video)} video, {len(self.streams.audio)} audio, "
            f"{len(self.streams.subtitle)} subtitle, {len(self.streams.other)} other streams"
        )

        if self.options.preview:
            seek = (self.metadata.duration or 0.0) / 2
            logger.info(f"[{self.base}] Preview: {self.options.preview_length}s from {seek:.1f}s")
            command = command.with_input_window(seek, self.options.preview_length)

        if self.options.multi_pass > 1:
            if not self.options.video_bitrate:
                raise IncompatibleWithConstantQualityException()
            command = command.with_pass_param(self._pass_param(1))
        return command

    def _stage_preset(self, command: EncodeCommand) -> EncodeCommand:
        command, self.options = apply_presets(command, self.options, self._presets)
        return command

    def _stage_upconvert(self, command: EncodeCommand) -> EncodeCommand:
        if self.options.skip_upconvert or self.options.test:
            return command
        subtitles = []
        for stream in self.streams.subtitle:
            if stream.codec_name not in BITMAP_SUBTITLE_CODECS:
                subtitles.append(stream)
                continue
            try:
                track = self.upconverter.upconvert(self.path, stream, self.work_dir, self._execute)
            except (ExternalToolMissingException, ExternalToolException) as e:
                logger.warning(f"[{self.base}] Upconvert error on subtitle stream {stream.index}: {e}")
                raise
            for artifact in track.artifacts:
                self._track(artifact)
            command, input_index = command.with_input(track.srt_path)
            converted = self._prober.probe(track.srt_path, execute=self._execute, input_index=input_index)
            subtitles.append(
                replace(converted.streams[0], tags=dict(stream.tags), disposition=dict(stream.disposition))
            )
            logger.info(f"[{self.base}] Subtitle stream {stream.index} converted to SRT")
        self.streams = replace(self.streams, subtitle=subtitles)
        return command

    def _stage_bit_depth(self, command: EncodeCommand) -> EncodeCommand:
        if len(self.streams.video) > 1:
            logger.warning(f"[{self.base}] More than one video stream detected, using the first")
        self.video_stream = self.streams.video[0]
        detected = detect_bit_depth(self.video_stream.pix_fmt)
        pix_fmt = resolve_pixel_format(self.options.bitdepth, detected)
        logger.info(f"[{self.base}] Source is {detected}-bit ({self.video_stream.pix_fmt}), output {pix_fmt}")
        return command.with_pixel_format(pix_fmt)

    def _stage_normalize_audio(self, command: EncodeCommand) -> EncodeCommand:
        return self.audio_normalizer.normalize(
            command,
            self.path,
            self.streams.audio,
            self.options.normalize_level,
            self._execute,
            (command.seek, command.duration),
        )

    def _stage_crop(self, command: EncodeCommand) -> EncodeCommand:
        if self.options.normalize_level < CROP_DETECT_LEVEL:
            return command
        video = self.video_stream
        rect = self.crop_detector.detect(self.path, video, self.metadata.duration or 0.0, self._execute)
        if rect is None or (rect.width, rect.height) == (video.width, video.height):
            logger.info(f"[{self.base}] No crop needed")
            return command
        logger.info(f"[{self.base}] Cropping {video.width}x{video.height} to {rect.filter}")
        return command.with_video_filter(rect.filter)

    def _stage_deinterlace(self, command: EncodeCommand) -> EncodeCommand:
        if self.options.normalize_level < DEINTERLACE_LEVEL:
            return command
        tally = self.interlace_detector.detect(self.path, self.video_stream, self._execute)
        if not tally.interlaced:
            return command
        logger.info(f"[{self.base}] Interlaced source detected, deinterlacing")
        return command.with_video_filter(DEINTERLACE_FILTER)

    def _stage_map(self, command: EncodeCommand) -> EncodeCommand:
        command, self.streams = map_streams(command, self.video_stream, self.streams, self.options)
        return command

    def _stage_he_audio(self, command: EncodeCommand) -> EncodeCommand:
        if not (self.options.he_audio or self.options.force_he_audio):
            return command
        return he_audio(command, self.streams.audio, self.options)

    def _stage_encode(self, command: EncodeCommand) -> EncodeCommand:
        self.pass_number += 1
        if self.options.test:
            raise TestModeSkipException()
        self._pre_encode_command = command
        self.output_dir.mkdir(parents=True, exist_ok=True)

        frame_rate = self.video_stream.frame_rate
        if self.options.accurate_timestamps and frame_rate:
            command = command.with_x265_param(f"keyint={round(frame_rate)}")
        if self.options.scale:
            command = command.with_video_filter(f"scale=-1:{self.options.scale}")
        if self.options.video_bitrate:
            command = command.with_option("-b:v", f"{self.options.video_bitrate}k")
        else:
            command = command.with_option("-crf", str(self.options.quality))
        command = command.with_option("-preset", self.options.preset)
        if self.options.extra_options:
            command = command.with_x265_param(self.options.extra_options)

        spec = command.to_spec(self.output_path)
        self._track(self.output_path)
        started = datetime.now()
        self._logged_percent = -1
        pass_info = f" (pass {self.pass_number}/{self.options.multi_pass})" if self.options.multi_pass > 1 else ""
        logger.info(f"[{self.base}] Encoding to {self.output_path}{pass_info}")
        try:
            self._execute(spec, on_line=lambda line: self._on_encode_line(line, started))
        except ExternalToolException as e:
            raise EncodeFailedException(f"ffmpeg exited with code {e.exit_code}", e.diagnostic) from e
        elapsed = datetime.now() - started
        self.encode_elapsed += elapsed
        self._untrack(self.output_path)
        logger.info(f"[{self.base}] Encoded{pass_info} in {format_timedelta(elapsed)}")
        return command

    def _on_encode_line(self, line: str, started: datetime) -> None:
        status = parse_status_line(line)
        if status is None:
            return
        duration = self.expected_duration or 0.0
        frame_rate = self.video_stream.frame_rate if self.video_stream else 0.0
        position = parse_duration(status["timemark"])
        percent = min(100.0, position / duration * 100) if duration else 0.0
        speed = status["fps"] / frame_rate if frame_rate else 0.0
        eta = None
        if speed > 0 and duration:
            eta = timedelta(seconds=(100 - percent) / 100 * duration / speed)
        estimated_size = None
        if percent > 10 and self.output_path.exists():
            estimated_size = int(self.output_path.stat().st_size / percent * 100)

        self.progress = JobProgress(
            fps=status["fps"],
            percent=percent,
            elapsed=datetime.now() - started,
            eta=eta,
            speed=speed,
            frames=status["frames"],
            timemark=status["timemark"],
            estimated_size=estimated_size,
        )
        self.outbox.publish(events.JobEvent(events.JOB_PROGRESS, self.id, self._stage_name(), self.progress))
        if int(percent) > self._logged_percent:
            self._logged_percent = int(percent)
            eta_text = format_timedelta(eta) if eta is not None else "--:--:--"
            size_text = f" ~{formatted_size(estimated_size)}" if estimated_size else ""
            logger.info(
                f"[{self.base}] {status['fps']}fps {percent:.1f}% [{status['timemark']}] | "
                f"{format_timedelta(self.progress.elapsed)} [x{speed:.3f}] eta {eta_text}{size_text}"
            )

    def _pass_param(self, pass_number: int) -> str:
        stats = self.stats_file
        self._track(stats)
        self._track(stats.with_name(stats.name + ".cutree"))
        return f"pass={pass_number}:stats={stats}"

    def _stage_multi_pass(self, command: EncodeCommand) -> EncodeCommand:
        if self.options.multi_pass <= 1:
            return command
        if not self.options.video_bitrate:
            raise IncompatibleWithConstantQualityException()
        if self.pass_number >= self.options.multi_pass:
            return command

        pass_input = Path(f"{self.output_path}-pass{self.pass_number}")
        self._track(pass_input)
        shutil.move(str(self.output_path), str(pass_input))
        self.path = pass_input
        logger.info(f"[{self.base}] Starting pass {self.pass_number + 1} of {self.options.multi_pass}")

        seed = self._pre_encode_command.x265_params if self._pre_encode_command else ()
        command = EncodeCommand.remux(pass_input, seed).with_pass_param(self._pass_param(self.pass_number + 1))
        command = self._stage_bit_depth(command)
        command = self._stage_encode(command)
        return self._stage_multi_pass(command)

    def _stage_verify(self, command: EncodeCommand) -> EncodeCommand:
        self.output_metadata = self._prober.probe(self.output_path, execute=self._execute)
        source_size = self.metadata.size
        new_size = self.output_metadata.size
        self.ratio = round(new_size / source_size * 100, 2) if source_size else 0.0
        logger.info(
            f"[{self.base}] {formatted_size(source_size)} -> {formatted_size(new_size)} ({self.ratio}%)"
        )
        if self.options.preview:
            return command
        delta = (self.metadata.duration or 0.0) - (self.output_metadata.duration or 0.0)
        if abs(delta) > DURATION_TOLERANCE:
            logger.error(f"[{self.base}] Output duration is off by {delta:.3f}s, deleting {self.output_path}")
            self.output_path.unlink(missing_ok=True)
            raise DurationMismatchException(delta)
        return command

    def _stage_relocate(self, command: EncodeCommand) -> EncodeCommand:
        if not self.options.delete:
            return command
        new_destination = self.source_path.parent / self.output_base
        logger.info(f"[{self.base}] Replacing {self.source_path} with {new_destination}")
        self.source_path.unlink()
        self.watch_ignore.append(new_destination)
        shutil.move(str(self.output_path), str(new_destination))
        self._set_destination(self.source_path.parent)
        return command

    def _stage_screenshots(self, command: EncodeCommand) -> EncodeCommand:
        if not self.options.screenshots:
            return command
        folder = self.output_dir / SCREENSHOT_DIR_NAME
        folder.mkdir(parents=True, exist_ok=True)
        duration = (self.output_metadata.duration if self.output_metadata else None) or self.expected_duration or 0.0
        produced = []
        for i in range(1, SCREENSHOT_COUNT + 1):
            target = folder / f"{self.output_path.stem}-{i}.png"
            spec = CommandSpec(
                FFMPEG_BIN,
                ("-frames:v", "1", "-update", "1"),
                inputs=(self.output_path,),
                seek=duration * i / (SCREENSHOT_COUNT + 1),
                output=OutputTarget.FILE,
                output_path=target,
            )
            try:
                self._execute(spec)
            except ExternalToolException as e:
                logger.warning(f"[{self.base}] Screenshot {i} failed: {e}")
                continue
            if target.exists():
                produced.append(target)
        if len(produced) < SCREENSHOT_COUNT:
            logger.warning(f"[{self.base}] Only {len(produced)} of {SCREENSHOT_COUNT} screenshots were produced")
        else:
            logger.info(f"[{self.base}] Screenshots saved to {folder}")
        return command

    def _stage_sample(self, command: EncodeCommand) -> EncodeCommand:
        if not self.options.sample:
            return command
        if self.options.preview:
            logger.warning(f"[{self.base}] A sample cannot be taken in preview mode")
            return command
        duration = (self.output_metadata.duration if self.output_metadata else None) or 0.0
        spec = CommandSpec(
            FFMPEG_BIN,
            ("-map", "0", "-c", "copy"),
            inputs=(self.output_path,),
            seek=duration / 2,
            duration=self.options.preview_length,
            output=OutputTarget.FILE,
            output_path=self.sample_path,
        )
        self._track(self.sample_path)
        self._execute(spec)
        self._untrack(self.sample_path)
        logger.info(f"[{self.base}] Sample saved to {self.sample_path}")
        return command

    def _stage_stats(self, command: EncodeCommand) -> EncodeCommand:
        if not self.options.stats:
            return command
        stats_log = self._stats_log or StatsLog()
        stats_log.write(
            self.output_path,
            self.metadata.size,
            self.output_metadata.size if self.output_metadata else 0,
            self.ratio or 0.0,
            self.encode_elapsed,
        )
        return command

    STAGES = (
        StageDescriptor("Initialize filesystem", "Checking the output path", _stage_filesystem),
        StageDescriptor("Get Initial Metadata", "Probing the source", _stage_metadata),
        StageDescriptor("Process Streams", "Classifying streams", _stage_streams),
        StageDescriptor("Set AS Preset", "Resolving presets", _stage_preset),
        StageDescriptor("Upconvert", "Converting bitmap subtitles", _stage_upconvert),
        StageDescriptor("Set Video Bit Depth", "Detecting bit depth", _stage_bit_depth),
        StageDescriptor("Normalize Audio", "Measuring audio levels", _stage_normalize_audio),
        StageDescriptor("Auto Crop", "Detecting black borders", _stage_crop),
        StageDescriptor("Deinterlace", "Detecting interlacing", _stage_deinterlace),
        StageDescriptor("Map Streams", "Mapping streams", _stage_map),
        StageDescriptor("Map High Efficiency Audio", "Setting up Opus audio", _stage_he_audio),
        StageDescriptor("Encode", "Encoding", _stage_encode),
        StageDescriptor("Multipass", "Running further passes", _stage_multi_pass),
        StageDescriptor("Verify Encode", "Verifying the output", _stage_verify),
        StageDescriptor("Move Output", "Replacing the source", _stage_relocate),
        StageDescriptor("Screenshots", "Taking screenshots", _stage_screenshots),
        StageDescriptor("Sample", "Extracting a sample", _stage_sample),
        StageDescriptor("Stats", "Writing stats", _stage_stats),
    )
