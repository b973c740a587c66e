"""A bounded FIFO queue with shutdown, drain and user-wake signalling."""

from __future__ import annotations

import threading
from collections import deque
from typing import Any


class QueueInterrupted(Exception):
    """The queue is shutting down, or draining with nothing left to hand out."""


class QueueBoundExceeded(Exception):
    """The queue already holds as many items as its bound allows."""


class QueueEmpty(Exception):
    """A non-blocking read found the queue empty."""


class QueueUserWake(Exception):
    """A blocked wait was woken by signal_user_wake()."""


class LinkedBlockingQueue:
    """Thread-safe bounded FIFO queue.

    Shutdown stops all traffic at once, even if items are still queued.
    Draining refuses new items but lets readers take the remaining ones
    before they are told the queue is finished.
    """

    def __init__(self, size_bound: int) -> None:
        self._size_bound = size_bound
        self._items: deque[Any] = deque()
        self._cond = threading.Condition()
        self._shutdown = False
        self._draining = False
        self._pending_user_wake = False
        self._lifetime_size = 0

    @property
    def size_bound(self) -> int:
        return self._size_bound

    @property
    def lifetime_size(self) -> int:
        """How many items have ever been accepted by offer()."""
        return self._lifetime_size

    def __len__(self) -> int:
        return len(self._items)

    def offer(self, item: Any) -> None:
        """Append ``item`` to the tail of the queue."""
        with self._cond:
            if self._shutdown or self._draining:
                raise QueueInterrupted("queue is no longer accepting items")
            if len(self._items) == self._size_bound:
                raise QueueBoundExceeded(
                    f"queue reached its limit of {self._size_bound} items"
                )
            was_empty = not self._items
            self._items.append(item)
            self._lifetime_size += 1
            if was_empty:
                # Only wake a reader on the empty -> non-empty transition.
                self._cond.notify()

    def _check_readable(self) -> None:
        if self._shutdown:
            raise QueueInterrupted("queue is shut down")
        if not self._items:
            if self._draining:
                raise QueueInterrupted("queue is drained")
            raise QueueEmpty("queue is empty")

    def peek(self) -> Any:
        """Return the head item without removing it."""
        with self._cond:
            self._check_readable()
            return self._items[0]

    def poll(self) -> Any:
        """Remove and return the head item without blocking."""
        with self._cond:
            self._check_readable()
            return self._items.popleft()

    def wait(self) -> Any:
        """Block until an item is available, then remove and return it.

        Raises QueueInterrupted on shutdown (even with items queued) or when
        draining with nothing left, and QueueUserWake once per user wake.
        """
        with self._cond:
            self._cond.wait_for(
                lambda: bool(self._items)
                or self._draining
                or self._shutdown
                or self._pending_user_wake
            )
            if self._shutdown:
                raise QueueInterrupted("queue is shut down")
            if self._pending_user_wake:
                self._pending_user_wake = False
                raise QueueUserWake("woken by user request")
            if self._draining and not self._items:
                raise QueueInterrupted("queue is drained")
            return self._items.popleft()

    def flush(self) -> list[Any]:
        """Remove and return every queued item, oldest first."""
        with self._cond:
            items = list(self._items)
            self._items.clear()
            return items

    def destroy(self) -> list[Any]:
        """Tear the queue down and return whatever items it still held."""
        with self._cond:
            items = list(self._items)
            self._items.clear()
            self._shutdown = True
            self._cond.notify_all()
            return items

    def signal_shutdown(self) -> None:
        """Stop the queue immediately; readers and writers are interrupted."""
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()

    def signal_drain(self) -> None:
        """Refuse new items; readers may still take what is queued."""
        with self._cond:
            self._draining = True
            self._cond.notify_all()

    def signal_user_wake(self) -> None:
        """Wake one blocked wait() with QueueUserWake."""
        with self._cond:
            self._pending_user_wake = True
            self._cond.notify()