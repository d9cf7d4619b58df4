"""Fan-out broadcaster for status events.

``publish`` never blocks the caller. Each subscriber owns a bounded buffer
drained by its own delivery thread; when a slow subscriber's buffer is full
the oldest undelivered event is discarded and counted in
``Subscription.dropped``. The bus also keeps a bounded history of recent
events for reports and late readers.
"""

from __future__ import annotations

import itertools
import threading
from collections import deque
from typing import Callable, Optional

from loguru import logger

from .constants import DEFAULT_STATUS_BUFFER_SIZE, DEFAULT_STATUS_HISTORY_SIZE
from .models import StatusEvent

Listener = Callable[[StatusEvent], None]

_subscription_ids = itertools.count(1)


class Subscription:
    """One listener with its drop-oldest buffer and delivery thread."""

    def __init__(self, bus: "StatusBus", listener: Listener, buffer_size: int, name: Optional[str] = None) -> None:
        self.id = next(_subscription_ids)
        self.name = name or f"subscriber-{self.id}"
        self._bus = bus
        self._listener = listener
        self._buffer: deque[StatusEvent] = deque(maxlen=buffer_size)
        self._cond = threading.Condition()
        self._closed = False
        self._busy = False
        self.dropped = 0
        self.delivered = 0
        self._thread = threading.Thread(target=self._run, name=f"status-{self.name}", daemon=True)
        self._thread.start()

    def offer(self, event: StatusEvent) -> None:
        with self._cond:
            if self._closed:
                return
            if len(self._buffer) == self._buffer.maxlen:
                self.dropped += 1
            self._buffer.append(event)
            self._cond.notify_all()

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._buffer and not self._closed:
                    self._cond.wait()
                if not self._buffer and self._closed:
                    return
                event = self._buffer.popleft()
                self._busy = True
            try:
                self._listener(event)
            except Exception as exc:
                logger.exception("Status listener {} failed on {}: {}", self.name, event.task_id, exc)
            finally:
                with self._cond:
                    self._busy = False
                    self.delivered += 1
                    self._cond.notify_all()

    def wait_idle(self, timeout: float = 5.0) -> bool:
        """Block until every buffered event has been delivered."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._buffer and not self._busy, timeout=timeout)

    def close(self, timeout: float = 1.0) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        self._bus._remove(self)
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout)


class StatusBus:
    def __init__(
        self,
        buffer_size: int = DEFAULT_STATUS_BUFFER_SIZE,
        history_size: int = DEFAULT_STATUS_HISTORY_SIZE,
    ) -> None:
        self.buffer_size = buffer_size
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []
        self._history: deque[StatusEvent] = deque(maxlen=history_size)

    def subscribe(self, listener: Listener, *, name: Optional[str] = None, buffer_size: Optional[int] = None) -> Subscription:
        sub = Subscription(self, listener, buffer_size or self.buffer_size, name)
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    def publish(self, event: StatusEvent) -> None:
        with self._lock:
            self._history.append(event)
            subscribers = list(self._subscriptions)
        for sub in subscribers:
            sub.offer(event)

    def history(self, session_id: Optional[str] = None) -> list[StatusEvent]:
        with self._lock:
            events = list(self._history)
        if session_id is None:
            return events
        return [e for e in events if e.session_id == session_id]

    def close(self) -> None:
        with self._lock:
            subscribers = list(self._subscriptions)
        for sub in subscribers:
            sub.close()
