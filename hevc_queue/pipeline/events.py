"""
Lifecycle events and the outbox that delivers them.

Jobs and the queue publish events to an `EventOutbox`. Every subscriber gets
its own FIFO queue, so each observer sees all events in publication order,
independently of when or in which order observers subscribed.
"""
import queue
import threading
from dataclasses import dataclass
from typing import Any, List, Optional

# Job events
JOB_RUNNING = "running"
JOB_STAGE = "stage"
JOB_PROGRESS = "progress"
JOB_PAUSED = "paused"
JOB_RESUMED = "resumed"
JOB_FINISHED = "finished"
JOB_FAILED = "failed"
JOB_STOPPED = "stopped"

# Queue events
QUEUE_RUNNING = "running"
QUEUE_PAUSED = "paused"
QUEUE_RESUMED = "resumed"
QUEUE_STOPPED = "stopped"
QUEUE_PROCESSING = "processing"
QUEUE_JOB_DONE = "job_done"
QUEUE_DRAINED = "finished"


@dataclass(frozen=True)
class JobEvent:
    kind: str
    job_id: int
    stage: Optional[str] = None
    payload: Any = None


@dataclass(frozen=True)
class QueueEvent:
    kind: str
    job: Any = None


class EventOutbox:
    """
    Fan-out of events to subscriber queues.

    Every event except progress reports is also kept in `history`.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[queue.Queue] = []
        self.history: List[Any] = []

    def subscribe(self, replay: bool = False) -> queue.Queue:
        """
        Returns a new queue receiving every event published from now on.

        With `replay`, events already published are delivered first.
        """
        subscriber: queue.Queue = queue.Queue()
        with self._lock:
            if replay:
                for event in self.history:
                    subscriber.put(event)
            self._subscribers.append(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: queue.Queue) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def publish(self, event: Any) -> None:
        with self._lock:
            if getattr(event, "kind", None) != JOB_PROGRESS:
                self.history.append(event)
            for subscriber in self._subscribers:
                subscriber.put(event)

    def kinds(self) -> List[str]:
        with self._lock:
            return [event.kind for event in self.history]
