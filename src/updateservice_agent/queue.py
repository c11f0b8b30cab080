"""De-duplicating work queue and the worker threads that drain it."""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from threading import Condition, Event, Thread
from typing import Callable, Dict, List, Optional, Set, Tuple

from updateservice.events import ReconcileRequest, ReconcileResult

LOG = logging.getLogger(__name__)


class RequestQueue:
    """FIFO of reconcile requests in which each key appears at most once.

    A key handed out by :meth:`get` is "processing" until :meth:`done` is
    called. Adding it again meanwhile marks it dirty, and it is queued once
    more on ``done``, so two workers never hold the same key.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._cond = Condition()
        self._queue: List[ReconcileRequest] = []
        self._queued: Set[ReconcileRequest] = set()
        self._processing: Set[ReconcileRequest] = set()
        self._dirty: Set[ReconcileRequest] = set()
        self._delayed: List[Tuple[float, int, ReconcileRequest]] = []
        self._sequence = itertools.count()
        self._shutdown = False

    def add(self, request: ReconcileRequest) -> None:
        with self._cond:
            if self._shutdown:
                return
            if request in self._processing:
                self._dirty.add(request)
                return
            if request in self._queued:
                return
            self._queued.add(request)
            self._queue.append(request)
            self._cond.notify()

    def add_after(self, request: ReconcileRequest, delay: float) -> None:
        if delay <= 0:
            self.add(request)
            return
        with self._cond:
            if self._shutdown:
                return
            heapq.heappush(self._delayed, (self._clock() + delay, next(self._sequence), request))
            self._cond.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[ReconcileRequest]:
        """Return the next request, or ``None`` on timeout or shutdown."""

        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                self._promote_delayed()
                if self._queue:
                    request = self._queue.pop(0)
                    self._queued.discard(request)
                    self._processing.add(request)
                    return request
                if self._shutdown:
                    return None
                if deadline is not None and self._clock() >= deadline:
                    return None
                self._cond.wait(self._next_wait(deadline))

    def done(self, request: ReconcileRequest) -> None:
        with self._cond:
            self._processing.discard(request)
            if request in self._dirty:
                self._dirty.discard(request)
                if request not in self._queued:
                    self._queued.add(request)
                    self._queue.append(request)
                    self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def pending_delayed(self) -> int:
        with self._cond:
            return len(self._delayed)

    def _promote_delayed(self) -> None:
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, request = heapq.heappop(self._delayed)
            if request in self._processing:
                self._dirty.add(request)
            elif request not in self._queued:
                self._queued.add(request)
                self._queue.append(request)

    def _next_wait(self, deadline: Optional[float]) -> Optional[float]:
        now = self._clock()
        waits = []
        if self._delayed:
            waits.append(self._delayed[0][0] - now)
        if deadline is not None:
            waits.append(deadline - now)
        if not waits:
            return None
        return max(0.0, min(waits))


class ReconcileWorker(Thread):
    """Drain ``queue`` into ``reconcile`` until ``stop_event`` is set.

    Successful passes are re-queued after the delay they return. Failed
    passes are re-queued after ``error_requeue_delay``.
    """

    def __init__(
        self,
        queue: RequestQueue,
        reconcile: Callable[[ReconcileRequest, Event], ReconcileResult],
        stop_event: Event,
        error_requeue_delay: float = 10.0,
        poll_interval: float = 1.0,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(daemon=True, name=name)
        self._queue = queue
        self._reconcile = reconcile
        self._stop_event = stop_event
        self._error_requeue_delay = error_requeue_delay
        self._poll_interval = poll_interval
        self.processed: Dict[ReconcileRequest, int] = {}

    def run(self) -> None:
        while not self._stop_event.is_set():
            request = self._queue.get(timeout=self._poll_interval)
            if request is None:
                continue
            self.process(request)

    def process(self, request: ReconcileRequest) -> None:
        try:
            result = self._reconcile(request, self._stop_event)
        except Exception:
            LOG.exception("reconcile of %s failed; retrying in %.1fs", request, self._error_requeue_delay)
            self._queue.done(request)
            self._queue.add_after(request, self._error_requeue_delay)
            return
        finally:
            self.processed[request] = self.processed.get(request, 0) + 1

        self._queue.done(request)
        if result.requeue_after is not None:
            self._queue.add_after(request, result.requeue_after)
