"""
ProgressPublisher -- push-based progress channel for import jobs.

Contract:
    ``publish()`` never blocks the batch pipeline.  Each subscriber owns a
    bounded queue; when it is full the oldest snapshot is dropped (every
    snapshot is cumulative, so the newest one supersedes the rest).

    ``subscribe()`` returns a Subscription to poll or iterate;
    ``listen()`` drains a Subscription on a daemon thread and hands each
    snapshot to a callback.  Callback errors are logged and swallowed so
    one observer can never break another.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable, Iterator
from uuid import UUID

from storefront_kernel.logging_config import get_logger

from storefront_import.domain.types import ProgressSnapshot

logger = get_logger("import.progress")

_CLOSED = object()


class Subscription:
    """One observer's bounded snapshot queue."""

    def __init__(
        self,
        publisher: ProgressPublisher,
        job_id: UUID | None,
        maxsize: int,
    ):
        self._publisher = publisher
        self.job_id = job_id
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self.dropped = 0

    def matches(self, snapshot: ProgressSnapshot) -> bool:
        return self.job_id is None or snapshot.job_id == self.job_id

    def offer(self, item: object) -> None:
        """Enqueue without blocking, evicting the oldest entry when full."""
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: float | None = None) -> ProgressSnapshot | None:
        """Next snapshot, or None on timeout or once closed."""
        if self._closed.is_set() and self._queue.empty():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            return None
        return item

    def drain(self) -> list[ProgressSnapshot]:
        """Everything currently queued, without waiting."""
        items: list[ProgressSnapshot] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return items
            if item is not _CLOSED:
                items.append(item)

    def __iter__(self) -> Iterator[ProgressSnapshot]:
        while True:
            item = self.get()
            if item is None:
                return
            yield item

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._publisher._unsubscribe(self)
        self.offer(_CLOSED)


class ProgressPublisher:
    """Fan-out of ProgressSnapshots to per-subscriber queues."""

    def __init__(self, queue_size: int = 100):
        if queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        self._queue_size = queue_size
        self._subscribers: list[Subscription] = []
        self._latest: dict[UUID, ProgressSnapshot] = {}
        self._lock = threading.Lock()

    def publish(self, snapshot: ProgressSnapshot) -> None:
        """Fan out one snapshot.  A terminal snapshot also forgets the job."""
        with self._lock:
            if snapshot.is_terminal:
                self._latest.pop(snapshot.job_id, None)
            else:
                self._latest[snapshot.job_id] = snapshot
            targets = [s for s in self._subscribers if s.matches(snapshot)]
        for subscription in targets:
            subscription.offer(snapshot)

    def subscribe(self, job_id: UUID | None = None, replay_latest: bool = False) -> Subscription:
        """Subscribe to one job (or every job when ``job_id`` is None).

        With ``replay_latest`` the most recent snapshot(s) are queued first,
        so a late observer starts from the current state.
        """
        subscription = Subscription(self, job_id, self._queue_size)
        with self._lock:
            self._subscribers.append(subscription)
            if replay_latest:
                for snapshot in self._latest.values():
                    if subscription.matches(snapshot):
                        subscription.offer(snapshot)
        return subscription

    def listen(
        self,
        callback: Callable[[ProgressSnapshot], None],
        job_id: UUID | None = None,
    ) -> Subscription:
        """Deliver snapshots to ``callback`` on a daemon thread.

        Close the returned Subscription to stop the thread.
        """
        subscription = self.subscribe(job_id)

        def _pump() -> None:
            for snapshot in subscription:
                try:
                    callback(snapshot)
                except Exception:
                    logger.exception(
                        "progress_listener_failed",
                        extra={"job_id": str(snapshot.job_id)},
                    )

        threading.Thread(
            target=_pump,
            name=f"import-progress-{job_id or 'all'}",
            daemon=True,
        ).start()
        return subscription

    def latest(self, job_id: UUID) -> ProgressSnapshot | None:
        """Most recent snapshot of a job still in progress."""
        with self._lock:
            return self._latest.get(job_id)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @property
    def tracked_jobs(self) -> int:
        with self._lock:
            return len(self._latest)

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
