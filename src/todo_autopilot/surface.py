"""Execution-surface boundary: command protocol, signal channel and adapters.

Commands go out through :class:`ExecutionSurface`; free-text responses come
back asynchronously through the session's :class:`SignalChannel`.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from loguru import logger

from .errors import ExecutionSurfaceUnavailable
from .models import SurfaceSignal
from .utils import _now_iso


class ExecutionSurface(Protocol):
    def send_instruction(self, task_id: str, text: str) -> bool:
        ...

    def send_probe(self, task_id: str, text: str) -> None:
        ...


class SignalChannel:
    """Per-task FIFO queues of surface signals.

    ``wait`` blocks until a signal for the task arrives, the timeout passes,
    or the channel is closed (session cancellation).
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._queues: dict[str, deque[SurfaceSignal]] = defaultdict(deque)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, signal: SurfaceSignal) -> bool:
        with self._cond:
            if self._closed:
                logger.debug("Dropping signal for {}: channel closed", signal.task_id)
                return False
            self._queues[signal.task_id].append(signal)
            self._cond.notify_all()
            return True

    def wait(self, task_id: str, timeout: float) -> Optional[SurfaceSignal]:
        deadline = time.monotonic() + max(0.0, timeout)
        with self._cond:
            while True:
                queue = self._queues.get(task_id)
                if queue:
                    return queue.popleft()
                if self._closed:
                    return None
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------

@dataclass
class SurfaceCommand:
    seq: int
    task_id: str
    kind: str
    text: str
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "task_id": self.task_id,
            "kind": self.kind,
            "text": self.text,
            "timestamp": self.timestamp,
        }


class OutboxSurface:
    """Queue commands for a remote collaborator that polls and posts signals back."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._commands: list[SurfaceCommand] = []
        self.available = True

    def _record(self, task_id: str, kind: str, text: str) -> None:
        if not self.available:
            raise ExecutionSurfaceUnavailable("execution surface is offline", task_id=task_id)
        with self._lock:
            self._commands.append(SurfaceCommand(len(self._commands) + 1, task_id, kind, text))

    def send_instruction(self, task_id: str, text: str) -> bool:
        self._record(task_id, "instruction", text)
        return True

    def send_probe(self, task_id: str, text: str) -> None:
        self._record(task_id, "probe", text)

    def commands(self, since: int = 0) -> list[SurfaceCommand]:
        with self._lock:
            return [c for c in self._commands if c.seq > since]


class ScriptedSurface:
    """Deterministic surface that answers commands from per-task scripts.

    ``scripts`` maps a task id to the replies emitted, in order, for each
    command sent for that task (instruction first, then probes). A ``None``
    entry means "stay silent". When a script runs out, the default replies
    are used. Task ids listed in ``offline_for`` raise
    :class:`ExecutionSurfaceUnavailable` on their instruction.
    """

    def __init__(
        self,
        channel: SignalChannel,
        scripts: Optional[dict[str, list[Optional[str]]]] = None,
        *,
        on_instruction: Optional[str] = "working on it",
        on_probe: Optional[str] = "yes, done",
        offline_for: Optional[set[str]] = None,
    ) -> None:
        self.channel = channel
        self.scripts = {tid: list(replies) for tid, replies in (scripts or {}).items()}
        self.on_instruction = on_instruction
        self.on_probe = on_probe
        self.offline_for = set(offline_for or ())
        self._lock = threading.Lock()
        self.sent: list[tuple[str, str, str]] = []

    def _reply(self, task_id: str, default: Optional[str]) -> None:
        with self._lock:
            script = self.scripts.get(task_id)
            text = script.pop(0) if script else default
        if text is not None:
            self.channel.publish(SurfaceSignal(task_id=task_id, text=text))

    def send_instruction(self, task_id: str, text: str) -> bool:
        if task_id in self.offline_for:
            raise ExecutionSurfaceUnavailable(f"surface offline while sending {task_id}", task_id=task_id)
        with self._lock:
            self.sent.append((task_id, "instruction", text))
        self._reply(task_id, self.on_instruction)
        return True

    def send_probe(self, task_id: str, text: str) -> None:
        with self._lock:
            self.sent.append((task_id, "probe", text))
        self._reply(task_id, self.on_probe)

    def count(self, task_id: str, kind: str) -> int:
        with self._lock:
            return sum(1 for tid, k, _ in self.sent if tid == task_id and k == kind)
