"""Single-worker FIFO queue that runs engine operations one at a time."""

from __future__ import annotations

import logging
import queue
from concurrent.futures import Future
from dataclasses import dataclass
from threading import Lock, Thread
from typing import Any, Callable

from .exceptions import QueueOrderingViolation
from .operations import Operation

LOG = logging.getLogger(__name__)

_STOP = object()


@dataclass
class _Pending:
    sequence: int
    operation: Operation
    future: Future


class OperationSerializer:
    """Execute submitted operations strictly in submission order.

    A single daemon thread drains the queue.  Operation N+1 starts only after
    operation N settled, whether it succeeded or raised; the outcome is
    delivered through the :class:`~concurrent.futures.Future` returned by
    :meth:`submit`.
    """

    def __init__(
        self,
        handler: Callable[[Operation], Any],
        *,
        name: str = "banip-serializer",
    ) -> None:
        self._handler = handler
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._lock = Lock()
        self._next_sequence = 0
        self._expected_sequence = 0
        self._closed = False
        self._worker = Thread(target=self._run, name=name, daemon=True)
        self._worker.start()

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, operation: Operation) -> Future:
        future: Future = Future()
        with self._lock:
            if self._closed:
                raise RuntimeError("operation serializer is closed")
            self._queue.put(_Pending(self._next_sequence, operation, future))
            self._next_sequence += 1
        return future

    def close(self, timeout: float | None = None) -> None:
        """Run everything already queued, then stop the worker."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_STOP)
        self._worker.join(timeout)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._execute(item)
            finally:
                self._queue.task_done()

    def _execute(self, pending: _Pending) -> None:
        if pending.sequence != self._expected_sequence:
            LOG.critical(
                "operation #%d dequeued while #%d was expected",
                pending.sequence,
                self._expected_sequence,
            )
            pending.future.set_exception(
                QueueOrderingViolation(
                    f"expected operation #{self._expected_sequence}, got #{pending.sequence}"
                )
            )
            return
        self._expected_sequence += 1

        if not pending.future.set_running_or_notify_cancel():
            LOG.debug("operation #%d cancelled before it started", pending.sequence)
            return

        try:
            result = self._handler(pending.operation)
        except Exception as exc:
            LOG.debug("operation #%d failed: %s", pending.sequence, exc)
            pending.future.set_exception(exc)
        except BaseException as exc:
            LOG.critical("operation #%d stopped the worker: %r", pending.sequence, exc)
            pending.future.set_exception(exc)
            self._abandon(exc)
            raise
        else:
            pending.future.set_result(result)

    def _abandon(self, cause: BaseException) -> None:
        """Close the serializer and fail every operation still queued."""

        with self._lock:
            self._closed = True
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            try:
                if item is not _STOP and item.future.set_running_or_notify_cancel():
                    error = RuntimeError("operation serializer worker stopped")
                    error.__cause__ = cause
                    item.future.set_exception(error)
            finally:
                self._queue.task_done()
