"""
The queue scheduler.

`EncoderQueue` owns the pending jobs and a single processing slot. A dispatcher
thread promotes jobs one at a time in FIFO order and runs each to a terminal
status before looking at the next one. Only the dispatcher writes the
processing slot.
"""
import itertools
import threading
from collections import deque
from enum import Enum
from pathlib import Path
from typing import Deque, List, Optional, Union

from loguru import logger

from ..config.common import JOB_STATUS_FINISHED
from ..domain.exceptions import (
    AlreadyPausedException,
    AlreadyRunningException,
    NotPausedException,
    NotRunningException,
)
from ..domain.models import JobOptions
from ..services.logging_service import ErrorLog, StatsLog
from ..services.probe import MediaProbe
from ..services.process_controller import ProcessRunner
from . import events
from .video_job import VideoJob


class QueueState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class EncoderQueue:
    """
    Serializes jobs through a single processing slot.

    Args:
        runner: Process runner handed to every job created by `enqueue`.
        prober: Media probe handed to every job created by `enqueue`.
        stats_log: Stats CSV shared by the jobs.
        error_log: When given, every failed job is also written to it.

    Attributes:
        pending: Jobs waiting to be promoted, in FIFO order.
        processing: The active job, or None.
        finished: Jobs that ended `finished`.
        failed: Jobs that ended `failed` or `stopped`.
        watch_ignore: Paths a file watcher must not pick up again.
        outbox: Queue lifecycle events.
    """

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        prober: Optional[MediaProbe] = None,
        stats_log: Optional[StatsLog] = None,
        error_log: Optional[ErrorLog] = None,
    ):
        self.runner = runner or ProcessRunner()
        self.prober = prober or MediaProbe(self.runner)
        self.stats_log = stats_log
        self.error_log = error_log

        self.pending: Deque[VideoJob] = deque()
        self.processing: Optional[VideoJob] = None
        self.finished: List[VideoJob] = []
        self.failed: List[VideoJob] = []
        self.watch_ignore: List[Path] = []
        self.state = QueueState.STOPPED
        self.outbox = events.EventOutbox()

        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self._condition = threading.Condition(self._lock)
        self._dispatcher: Optional[threading.Thread] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self.pending) + (1 if self.processing is not None else 0)

    @property
    def idle(self) -> bool:
        with self._lock:
            return self.processing is None and not self.pending

    def enqueue(self, job: Union[VideoJob, Path, str], options: Optional[JobOptions] = None) -> VideoJob:
        """
        Appends a job to the pending sequence.

        A path is wrapped in a new `VideoJob` sharing this queue's runner,
        prober, stats log and ignore list. If the queue is running and idle the
        dispatcher promotes the job right away.
        """
        if not isinstance(job, VideoJob):
            job = VideoJob(
                Path(job),
                options,
                job_id=next(self._ids),
                runner=self.runner,
                prober=self.prober,
                watch_ignore=self.watch_ignore,
                stats_log=self.stats_log,
            )
        with self._condition:
            self.pending.append(job)
            logger.debug(f"Enqueued job {job.id}: {job.source_path}")
            self._condition.notify_all()
        return job

    def remove(self, job: VideoJob) -> bool:
        """
        Drops a pending job, which ends `stopped`.

        Returns:
            False if the job was not pending.
        """
        with self._condition:
            if job not in self.pending:
                logger.warning(f"Job {job.id} is not pending and cannot be removed")
                return False
            self.pending.remove(job)
            self.failed.append(job)
        job.stop()
        logger.info(f"Removed {job.source_path} from the queue")
        return True

    # --- Control ---

    def start(self) -> None:
        """
        Starts processing, or resumes a paused queue.

        Raises:
            AlreadyRunningException: If the queue is already running.
        """
        with self._condition:
            if self.state is QueueState.RUNNING:
                raise AlreadyRunningException()
            if self.state is QueueState.PAUSED:
                self.resume()
                return
            self.state = QueueState.RUNNING
            if self._dispatcher is None or not self._dispatcher.is_alive():
                self._dispatcher = threading.Thread(target=self._dispatch, name="encoder-queue", daemon=True)
                self._dispatcher.start()
            self._condition.notify_all()
        logger.info(f"Queue started with {len(self)} job(s)")
        self.outbox.publish(events.QueueEvent(events.QUEUE_RUNNING))

    def pause(self) -> None:
        """
        Pauses the queue and the active job.

        Raises:
            AlreadyPausedException: If the queue is already paused.
            NotRunningException: If the queue is not running.
        """
        with self._condition:
            if self.state is QueueState.PAUSED:
                raise AlreadyPausedException()
            if self.state is not QueueState.RUNNING:
                raise NotRunningException()
            self.state = QueueState.PAUSED
            job = self.processing
        if job is not None:
            job.pause()
        logger.info("Queue paused")
        self.outbox.publish(events.QueueEvent(events.QUEUE_PAUSED, job))

    def resume(self) -> None:
        """
        Resumes a paused queue and its active job.

        Raises:
            NotPausedException: If the queue is not paused.
        """
        with self._condition:
            if self.state is not QueueState.PAUSED:
                raise NotPausedException()
            self.state = QueueState.RUNNING
            job = self.processing
            self._condition.notify_all()
        if job is not None:
            job.resume()
        logger.info("Queue resumed")
        self.outbox.publish(events.QueueEvent(events.QUEUE_RESUMED, job))

    def stop(self) -> Optional[VideoJob]:
        """
        Stops the active job. The queue keeps its state and promotes the next
        pending job as usual.

        Returns:
            The stopped job, or None when nothing was processing.

        Raises:
            NotRunningException: If the queue was never started or was shut down.
        """
        with self._condition:
            if self.state is QueueState.STOPPED:
                raise NotRunningException()
            job = self.processing
        if job is not None:
            logger.info(f"Stopping {job.source_path}")
            job.stop()
        self.outbox.publish(events.QueueEvent(events.QUEUE_STOPPED, job))
        return job

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Halts the queue: stops the active job and stops promoting pending ones."""
        with self._condition:
            self.state = QueueState.STOPPED
            job = self.processing
            dispatcher = self._dispatcher
            self._condition.notify_all()
        if job is not None:
            job.stop()
        if dispatcher is not None and dispatcher is not threading.current_thread():
            dispatcher.join(timeout)
        logger.info(f"Queue shut down, {len(self.pending)} job(s) left pending")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Blocks until the queue is drained or shut down.

        Returns:
            False on timeout.
        """
        with self._condition:
            return self._condition.wait_for(
                lambda: self.state is QueueState.STOPPED or (self.processing is None and not self.pending),
                timeout,
            )

    # --- Dispatcher ---

    def _next_job(self) -> Optional[VideoJob]:
        with self._condition:
            while self.state is not QueueState.STOPPED and (self.state is QueueState.PAUSED or not self.pending):
                self._condition.wait()
            if self.state is QueueState.STOPPED:
                return None
            job = self.pending.popleft()
            self.processing = job
            job.begin()
            return job

    def _dispatch(self) -> None:
        while True:
            job = self._next_job()
            if job is None:
                return
            logger.info(f"Processing job {job.id}: {job.source_path}")
            self.outbox.publish(events.QueueEvent(events.QUEUE_PROCESSING, job))
            job.run()
            self._record(job)

    def _record(self, job: VideoJob) -> None:
        if job.status == JOB_STATUS_FINISHED:
            bucket = self.finished
        else:
            bucket = self.failed
            self._report_failure(job)
        with self._condition:
            bucket.append(job)
            self.processing = None
            drained = not self.pending
            self._condition.notify_all()
        self.outbox.publish(events.QueueEvent(events.QUEUE_JOB_DONE, job))
        if drained:
            self._report_batch()
            self.outbox.publish(events.QueueEvent(events.QUEUE_DRAINED))

    def _report_failure(self, job: VideoJob) -> None:
        error = job.error
        if error is None:
            return
        diagnostic = getattr(error, "diagnostic", None)
        if self.error_log is not None:
            messages = [f"{job.source_path}: {type(error).__name__}: {error}"]
            if diagnostic:
                messages.append(diagnostic)
            self.error_log.write(*messages)

    def _report_batch(self) -> None:
        if not self.failed:
            logger.success(f"Queue finished: {len(self.finished)} job(s) encoded")
            return
        failed_inputs = "\n".join(f"  {job.source_path}: {job.error}" for job in self.failed)
        logger.warning(
            f"Queue finished: {len(self.finished)} job(s) encoded, {len(self.failed)} failed:\n{failed_inputs}"
        )
