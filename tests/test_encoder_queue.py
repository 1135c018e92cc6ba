"""Tests for the queue scheduler."""

import queue
import time
from pathlib import Path

import pytest

from conftest import ENCODE_PROGRESS, FakeRunner
from hevc_queue.config.common import JOB_STATUS_FAILED, JOB_STATUS_FINISHED, JOB_STATUS_STOPPED
from hevc_queue.domain.exceptions import (
    AlreadyPausedException,
    AlreadyRunningException,
    NotPausedException,
    NotRunningException,
    OutputAlreadyExistsException,
    StoppedPrematurelyException,
)
from hevc_queue.pipeline import events
from hevc_queue.pipeline.encoder_queue import EncoderQueue, QueueState
from hevc_queue.services.logging_service import ErrorLog


def hold_encode_of(name):
    def script(spec):
        if "-crf" in spec.args and spec.output_path is not None and spec.output_path.name == name:
            return {"lines": list(ENCODE_PROGRESS), "hold": True}
        return None

    return script


def wait_for_event(subscriber, kind, timeout=5.0):
    while True:
        event = subscriber.get(timeout=timeout)
        if event.kind == kind:
            return event


@pytest.fixture
def sources(tmp_path: Path):
    source_dir = tmp_path / "source"
    source_dir.mkdir()
    paths = []
    for name in ("a.mkv", "b.mkv", "c.mkv"):
        path = source_dir / name
        path.write_bytes(b"\x00" * 1024)
        paths.append(path)
    return paths


class TestScheduling:
    """Tests for FIFO promotion and the processing slot."""

    def test_runs_in_order(self, sources, options, runner, prober):
        encoder_queue = EncoderQueue(runner=runner, prober=prober)
        jobs = [encoder_queue.enqueue(path, options) for path in sources]
        assert [job.id for job in jobs] == [1, 2, 3]
        assert len(encoder_queue) == 3

        encoder_queue.start()
        assert encoder_queue.wait(10)
        assert encoder_queue.finished == jobs
        assert encoder_queue.failed == []
        assert encoder_queue.idle
        assert [spec.output_path.name for spec in runner.encodes()] == ["a.mkv", "b.mkv", "c.mkv"]

    def test_stop_promotes_next_job(self, sources, options, prober):
        runner = FakeRunner(hold_encode_of("b.mkv"))
        encoder_queue = EncoderQueue(runner=runner, prober=prober)
        a, b, c = [encoder_queue.enqueue(path, options) for path in sources]
        subscriber = encoder_queue.outbox.subscribe()

        encoder_queue.start()
        handle = runner.wait_for(lambda h: h.hold)
        assert encoder_queue.processing is b

        assert encoder_queue.stop() is b
        assert handle.killed
        assert encoder_queue.wait(10)

        assert encoder_queue.finished == [a, c]
        assert encoder_queue.failed == [b]
        assert b.status == JOB_STATUS_FAILED
        assert isinstance(b.error, StoppedPrematurelyException)
        assert [spec.output_path.name for spec in runner.encodes()] == ["a.mkv", "b.mkv", "c.mkv"]
        assert encoder_queue.state is QueueState.RUNNING

        wait_for_event(subscriber, events.QUEUE_DRAINED)
        kinds = encoder_queue.outbox.kinds()
        assert events.QUEUE_RUNNING in kinds
        assert events.QUEUE_STOPPED in kinds
        assert kinds.count(events.QUEUE_PROCESSING) == 3
        assert kinds.count(events.QUEUE_JOB_DONE) == 3

    def test_enqueue_while_idle(self, sources, options, runner, prober):
        encoder_queue = EncoderQueue(runner=runner, prober=prober)
        subscriber = encoder_queue.outbox.subscribe()
        encoder_queue.start()
        job = encoder_queue.enqueue(sources[0], options)
        done = wait_for_event(subscriber, events.QUEUE_JOB_DONE)
        assert done.job is job
        assert job.status == JOB_STATUS_FINISHED

    def test_jobs_share_watch_ignore(self, sources, options, runner, prober):
        encoder_queue = EncoderQueue(runner=runner, prober=prober)
        job = encoder_queue.enqueue(sources[0], options)
        assert job.watch_ignore is encoder_queue.watch_ignore

    def test_remove_pending_job(self, sources, options, runner, prober):
        encoder_queue = EncoderQueue(runner=runner, prober=prober)
        a, b, c = [encoder_queue.enqueue(path, options) for path in sources]
        assert encoder_queue.remove(b)
        assert not encoder_queue.remove(b)
        assert b.status == JOB_STATUS_STOPPED

        encoder_queue.start()
        assert encoder_queue.wait(10)
        assert encoder_queue.finished == [a, c]
        assert encoder_queue.failed == [b]
        assert [spec.output_path.name for spec in runner.encodes()] == ["a.mkv", "c.mkv"]


class TestControl:
    """Tests for state checks and pause relay."""

    def test_state_errors(self, runner, prober):
        encoder_queue = EncoderQueue(runner=runner, prober=prober)
        with pytest.raises(NotRunningException):
            encoder_queue.pause()
        with pytest.raises(NotRunningException):
            encoder_queue.stop()
        with pytest.raises(NotPausedException):
            encoder_queue.resume()

        encoder_queue.start()
        with pytest.raises(AlreadyRunningException):
            encoder_queue.start()
        with pytest.raises(NotPausedException):
            encoder_queue.resume()

        encoder_queue.pause()
        assert encoder_queue.state is QueueState.PAUSED
        with pytest.raises(AlreadyPausedException):
            encoder_queue.pause()

        encoder_queue.start()
        assert encoder_queue.state is QueueState.RUNNING
        assert encoder_queue.stop() is None
        encoder_queue.shutdown(5)

    def test_pause_relays_to_active_job(self, sources, options, prober):
        runner = FakeRunner(hold_encode_of("a.mkv"))
        encoder_queue = EncoderQueue(runner=runner, prober=prober)
        a, b = [encoder_queue.enqueue(path, options) for path in sources[:2]]
        encoder_queue.start()
        handle = runner.wait_for(lambda h: h.hold)

        encoder_queue.pause()
        assert handle.signals == ["SIGSTOP"]
        assert a.status == "paused"

        encoder_queue.resume()
        assert handle.signals == ["SIGSTOP", "SIGCONT"]
        handle.release()
        assert encoder_queue.wait(10)
        assert encoder_queue.finished == [a, b]

    def test_paused_queue_does_not_promote(self, sources, options, runner, prober):
        encoder_queue = EncoderQueue(runner=runner, prober=prober)
        subscriber = encoder_queue.outbox.subscribe()
        encoder_queue.start()
        encoder_queue.pause()
        encoder_queue.enqueue(sources[0], options)
        with pytest.raises(queue.Empty):
            wait_for_event(subscriber, events.QUEUE_PROCESSING, timeout=0.3)
        assert len(encoder_queue.pending) == 1

        encoder_queue.resume()
        wait_for_event(subscriber, events.QUEUE_JOB_DONE)
        assert not encoder_queue.pending

    def test_shutdown_leaves_pending_jobs(self, sources, options, prober):
        runner = FakeRunner(hold_encode_of("a.mkv"))
        encoder_queue = EncoderQueue(runner=runner, prober=prober)
        a, b, c = [encoder_queue.enqueue(path, options) for path in sources]
        encoder_queue.start()
        runner.wait_for(lambda h: h.hold)

        encoder_queue.shutdown(5)
        assert encoder_queue.state is QueueState.STOPPED
        assert encoder_queue.wait(0)
        assert isinstance(a.error, StoppedPrematurelyException)
        assert list(encoder_queue.pending) == [b, c]
        assert [spec.output_path.name for spec in runner.encodes()] == ["a.mkv"]


class TestFailureReporting:
    """Tests for failure bookkeeping."""

    def test_failed_job_written_to_error_log(self, sources, options, runner, prober, destination, tmp_path):
        (destination / "a.mkv").write_bytes(b"previous")
        error_log = ErrorLog(tmp_path / "errors")
        encoder_queue = EncoderQueue(runner=runner, prober=prober, error_log=error_log)
        a, b = [encoder_queue.enqueue(path, options) for path in sources[:2]]
        encoder_queue.start()
        assert encoder_queue.wait(10)

        assert encoder_queue.failed == [a]
        assert encoder_queue.finished == [b]
        assert isinstance(a.error, OutputAlreadyExistsException)
        content = error_log.log_file_path.read_text(encoding="utf-8")
        assert "a.mkv: OutputAlreadyExistsException" in content


class TestEventOutbox:
    """Tests for event delivery."""

    def test_every_subscriber_sees_every_event_in_order(self):
        outbox = events.EventOutbox()
        first = outbox.subscribe()
        outbox.publish(events.JobEvent(events.JOB_RUNNING, 1))
        second = outbox.subscribe()
        outbox.publish(events.JobEvent(events.JOB_STAGE, 1, "Encode", 11))
        outbox.publish(events.JobEvent(events.JOB_FINISHED, 1))

        assert [first.get_nowait().kind for _ in range(3)] == [events.JOB_RUNNING, events.JOB_STAGE, events.JOB_FINISHED]
        assert [second.get_nowait().kind for _ in range(2)] == [events.JOB_STAGE, events.JOB_FINISHED]
        assert second.empty()

    def test_replay(self):
        outbox = events.EventOutbox()
        outbox.publish(events.QueueEvent(events.QUEUE_RUNNING))
        subscriber = outbox.subscribe(replay=True)
        assert subscriber.get_nowait().kind == events.QUEUE_RUNNING

    def test_progress_not_kept_in_history(self):
        outbox = events.EventOutbox()
        subscriber = outbox.subscribe()
        outbox.publish(events.JobEvent(events.JOB_PROGRESS, 1))
        assert outbox.kinds() == []
        assert subscriber.get_nowait().kind == events.JOB_PROGRESS

    def test_unsubscribe(self):
        outbox = events.EventOutbox()
        subscriber = outbox.subscribe()
        outbox.unsubscribe(subscriber)
        outbox.publish(events.JobEvent(events.JOB_RUNNING, 1))
        assert subscriber.empty()


class TestPromotionWindow:
    """Tests for control calls landing between promotion and the first stage."""

    def test_pause_before_first_stage(self, sources, options, runner, prober):
        encoder_queue = EncoderQueue(runner=runner, prober=prober)
        encoder_queue.enqueue(sources[0], options)
        encoder_queue.state = QueueState.RUNNING
        job = encoder_queue._next_job()
        assert encoder_queue.processing is job

        encoder_queue.pause()
        assert job.status == "paused"
        job.start()
        time.sleep(0.2)
        assert job.stage_index == -1
        assert runner.specs == []

        encoder_queue.resume()
        assert job.wait(10)
        assert job.status == JOB_STATUS_FINISHED

    def test_stop_before_first_stage(self, sources, options, runner, prober, tmp_path):
        error_log = ErrorLog(tmp_path / "errors")
        encoder_queue = EncoderQueue(runner=runner, prober=prober, error_log=error_log)
        encoder_queue.enqueue(sources[0], options)
        encoder_queue.state = QueueState.RUNNING
        job = encoder_queue._next_job()

        assert encoder_queue.stop() is job
        assert job.status == JOB_STATUS_FAILED
        assert isinstance(job.error, StoppedPrematurelyException)
        assert job.run() == JOB_STATUS_FAILED
        assert job.wait(0)
        assert runner.specs == []

        encoder_queue._record(job)
        assert encoder_queue.failed == [job]
        content = error_log.log_file_path.read_text(encoding="utf-8")
        assert "a.mkv: StoppedPrematurelyException" in content
