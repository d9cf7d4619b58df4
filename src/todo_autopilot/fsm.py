"""Task state machine: transition table and the confirmation-loop reducer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .constants import NEEDS_INPUT_DETAIL
from .models import ConfirmationSession, FailureReason, TaskState, Verdict

VALID_TRANSITIONS: dict[TaskState, set[TaskState]] = {
    TaskState.PENDING: {TaskState.REFINING, TaskState.EXECUTING, TaskState.CANCELLED},
    TaskState.REFINING: {TaskState.VALIDATED, TaskState.REJECTED, TaskState.CANCELLED},
    TaskState.VALIDATED: {TaskState.EXECUTING, TaskState.CANCELLED},
    TaskState.EXECUTING: {TaskState.AWAITING_CONFIRMATION, TaskState.FAILED, TaskState.CANCELLED},
    TaskState.AWAITING_CONFIRMATION: {
        TaskState.EXECUTING,
        TaskState.COMPLETED,
        TaskState.FAILED,
        TaskState.CANCELLED,
    },
    TaskState.COMPLETED: set(),
    TaskState.FAILED: set(),
    TaskState.CANCELLED: set(),
    TaskState.REJECTED: set(),
}

TERMINAL_STATES = frozenset(state for state, targets in VALID_TRANSITIONS.items() if not targets)

# States a task may be dispatched from.
DISPATCHABLE_STATES = frozenset({TaskState.PENDING, TaskState.VALIDATED})

# States owned by a running worker.
ACTIVE_STATES = frozenset({TaskState.EXECUTING, TaskState.AWAITING_CONFIRMATION})


def is_terminal(state: TaskState) -> bool:
    return state in TERMINAL_STATES


def can_transition(source: TaskState, target: TaskState) -> bool:
    return target in VALID_TRANSITIONS.get(source, set())


class Step(str, Enum):
    """What the worker does after a signal has been judged."""

    COMPLETE = "complete"
    PROBE = "probe"
    FAIL = "fail"


@dataclass
class Decision:
    step: Step
    reason: Optional[FailureReason] = None
    detail: Optional[str] = None


def reduce_confirmation(session: ConfirmationSession, verdict: Optional[Verdict], *, signal_text: Optional[str] = None) -> Decision:
    """Fold one verdict into the confirmation session and decide the next step.

    ``verdict`` is None when the deadline passed without a signal. A PROBE
    decision consumes one attempt and marks the probe as pending.
    """
    if signal_text is not None:
        session.last_signal = signal_text

    if verdict is None:
        return Decision(Step.FAIL, FailureReason.CONFIRMATION_TIMEOUT, "no signal before the confirmation deadline")

    if verdict == Verdict.NEEDS_INPUT:
        return Decision(Step.FAIL, FailureReason.FALLBACK_NEEDS_INPUT, NEEDS_INPUT_DETAIL)

    if verdict == Verdict.COMPLETED:
        session.probe_pending = False
        return Decision(Step.COMPLETE, detail="completion confirmed")

    if verdict == Verdict.FAILED or session.attempts_exhausted:
        if session.attempts_exhausted:
            return Decision(
                Step.FAIL,
                FailureReason.MAX_ATTEMPTS_EXCEEDED,
                f"still incomplete after {session.attempt_count} probe(s)",
            )
        return Decision(Step.FAIL, FailureReason.CONFIRMATION_TIMEOUT, "confirmation deadline elapsed")

    session.attempt_count += 1
    session.probe_pending = True
    return Decision(Step.PROBE, detail=f"probe {session.attempt_count}/{session.max_attempts}")
