"""Phase-by-phase execution with a per-task confirmation loop.

Phases run strictly in order; the tasks of one phase run concurrently on a
thread pool and the next phase starts only after every task of the current
phase is terminal.
"""

from __future__ import annotations

import concurrent.futures
import time
from typing import Optional

from loguru import logger

from .classifier import ConfirmationClassifier, FallbackDetector, InputRequestDetector, SignalClassifier
from .errors import ExecutionSurfaceUnavailable, SessionStateError
from .fsm import ACTIVE_STATES, DISPATCHABLE_STATES, Step, is_terminal, reduce_confirmation
from .models import (
    ConfirmationSession,
    FailureReason,
    Phase,
    PhaseResult,
    SessionReport,
    SessionStatus,
    SurfaceSignal,
    TaskState,
    Verdict,
)
from .session import Session
from .surface import ExecutionSurface
from .utils import sort_ids


class OrchestrationEngine:
    """Drive a planned session through an execution surface."""

    def __init__(
        self,
        surface: ExecutionSurface,
        *,
        classifier: Optional[SignalClassifier] = None,
        detector: Optional[InputRequestDetector] = None,
    ) -> None:
        self.surface = surface
        self.classifier = classifier
        self.detector = detector

    def run(self, session: Session) -> SessionReport:
        """Execute every phase of ``session.plan`` and return the report.

        Raises:
            SessionStateError: If the session has no plan or is not in the prepared state.
            ExecutionSurfaceUnavailable: If the surface goes away; open tasks are
                cancelled first and the report is attached to the exception.
        """
        if session.plan is None:
            raise SessionStateError(f"Session {session.id} has no execution plan")
        if session.status != SessionStatus.PREPARED:
            raise SessionStateError(f"Session {session.id} is {session.status.value}, not prepared")

        classifier = self.classifier or ConfirmationClassifier(session.rules)
        detector = self.detector or FallbackDetector(session.rules)
        session.status = SessionStatus.RUNNING
        session.freeze_priorities()
        phases = session.plan.phases
        logger.info("Session {}: executing {} phase(s)", session.id, len(phases))
        session.publish_progress("session_start", f"{len(phases)} phase(s)")

        try:
            for phase in phases:
                if session.cancelled:
                    break
                self._run_phase(session, phase, len(phases), classifier, detector)
        except ExecutionSurfaceUnavailable as exc:
            logger.error("Session {} aborted: {}", session.id, exc)
            session.cancel(f"execution surface unavailable: {exc}", reason=FailureReason.SURFACE_UNAVAILABLE)
            session.mark_aborted()
            session.publish_progress("session_aborted", str(exc))
            exc.report = session.report()
            raise

        if not session.cancelled:
            session.mark_finished()
        report = session.report()
        session.publish_progress(
            "session_complete",
            f"{len(report.completed)} completed, {len(report.failed)} failed, {len(report.cancelled)} cancelled",
        )
        return report

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _run_phase(
        self,
        session: Session,
        phase: Phase,
        total: int,
        classifier: SignalClassifier,
        detector: InputRequestDetector,
    ) -> PhaseResult:
        started = time.monotonic()
        logger.info("Executing phase {}/{} with {} task(s)", phase.index + 1, total, len(phase.task_ids))
        session.publish_progress("phase_start", f"phase {phase.index + 1}/{total}: {', '.join(phase.task_ids)}")

        surface_error: Optional[ExecutionSurfaceUnavailable] = None
        if len(phase.task_ids) == 1:
            task_id = phase.task_ids[0]
            try:
                self._run_task(session, task_id, classifier, detector)
            except ExecutionSurfaceUnavailable as exc:
                surface_error = exc
            except Exception as exc:
                self._fail_unexpected(session, task_id, exc)
        else:
            workers = min(session.plan.max_parallel, len(phase.task_ids))
            with concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="autopilot") as executor:
                futures = {
                    executor.submit(self._run_task, session, tid, classifier, detector): tid
                    for tid in phase.task_ids
                }
                for future in concurrent.futures.as_completed(futures):
                    task_id = futures[future]
                    try:
                        future.result()
                    except ExecutionSurfaceUnavailable as exc:
                        surface_error = surface_error or exc
                    except Exception as exc:
                        self._fail_unexpected(session, task_id, exc)

        result = self._phase_result(session, phase, time.monotonic() - started)
        session.phase_results.append(result)
        if result.failed or result.cancelled:
            logger.warning(
                "Phase {} had {} failure(s) and {} cancellation(s)",
                phase.index + 1,
                len(result.failed),
                len(result.cancelled),
            )
            for tid in result.failed:
                task = session.tasks[tid]
                logger.warning("  - {} failed ({}): {}", tid, task.failure_reason.value if task.failure_reason else "error", task.detail)
        session.publish_progress(
            "phase_complete",
            f"phase {phase.index + 1}/{total}: {len(result.completed)} completed, {len(result.failed)} failed",
        )
        if surface_error is not None:
            raise surface_error
        return result

    @staticmethod
    def _fail_unexpected(session: Session, task_id: str, exc: Exception) -> None:
        logger.exception("Unexpected error executing {}: {}", task_id, exc)
        state = session.tasks[task_id].state
        if state in ACTIVE_STATES:
            session.transition(task_id, TaskState.FAILED, f"unexpected error: {exc}")
        elif not is_terminal(state):
            session.transition(task_id, TaskState.CANCELLED, f"unexpected error: {exc}")

    @staticmethod
    def _phase_result(session: Session, phase: Phase, duration: float) -> PhaseResult:
        result = PhaseResult(index=phase.index, task_ids=list(phase.task_ids), duration_seconds=round(duration, 3))
        for tid in phase.task_ids:
            state = session.tasks[tid].state
            if state == TaskState.COMPLETED:
                result.completed.append(tid)
            elif state == TaskState.FAILED:
                result.failed.append(tid)
            elif state == TaskState.CANCELLED:
                result.cancelled.append(tid)
        return result

    # ------------------------------------------------------------------
    # Per-task worker
    # ------------------------------------------------------------------

    def _run_task(
        self,
        session: Session,
        task_id: str,
        classifier: SignalClassifier,
        detector: InputRequestDetector,
    ) -> None:
        task = session.tasks[task_id]
        if is_terminal(task.state):
            return
        if task.state not in DISPATCHABLE_STATES:
            raise SessionStateError(f"{task_id} cannot be dispatched from {task.state.value}")

        unmet = [d for d in sort_ids(task.dependencies) if d in session.tasks and session.tasks[d].state != TaskState.COMPLETED]
        if unmet:
            session.transition(
                task_id,
                TaskState.CANCELLED,
                f"dependency not completed: {', '.join(unmet)}",
                reason=FailureReason.DEPENDENCY_FAILED,
            )
            return
        if session.cancelled:
            session.transition(task_id, TaskState.CANCELLED, "session cancelled", reason=FailureReason.SESSION_CANCELLED)
            return
        if not session.transition(task_id, TaskState.EXECUTING, "dispatched"):
            return

        conf = session.open_confirmation(task_id)
        try:
            self._confirmation_loop(session, task_id, conf, classifier, detector)
        except ExecutionSurfaceUnavailable as exc:
            detail = f"execution surface unavailable: {exc}"
            session.transition(task_id, TaskState.CANCELLED, detail, reason=FailureReason.SURFACE_UNAVAILABLE)
            session.cancel(detail, reason=FailureReason.SURFACE_UNAVAILABLE)
            raise
        finally:
            session.close_confirmation(task_id)

    def _confirmation_loop(
        self,
        session: Session,
        task_id: str,
        conf: ConfirmationSession,
        classifier: SignalClassifier,
        detector: InputRequestDetector,
    ) -> None:
        task = session.tasks[task_id]
        ack = self.surface.send_instruction(task_id, task.text)
        if not ack:
            logger.warning("Instruction for {} was not acknowledged", task_id)
        if not session.transition(task_id, TaskState.AWAITING_CONFIRMATION, "instruction sent"):
            return

        while True:
            signal = session.signals.wait(task_id, conf.remaining())
            if session.cancelled:
                session.transition(task_id, TaskState.CANCELLED, "session cancelled", reason=FailureReason.SESSION_CANCELLED)
                return

            verdict = self._judge(conf, signal, classifier, detector)
            decision = reduce_confirmation(conf, verdict, signal_text=signal.text if signal else None)

            if decision.step == Step.COMPLETE:
                session.transition(task_id, TaskState.COMPLETED, decision.detail)
                return
            if decision.step == Step.FAIL:
                logger.info("{} failed: {} ({})", task_id, decision.reason.value if decision.reason else "", decision.detail)
                session.transition(task_id, TaskState.FAILED, decision.detail, reason=decision.reason)
                return

            if not session.transition(task_id, TaskState.EXECUTING, "more work remains"):
                return
            self.surface.send_probe(task_id, session.settings.probe_text)
            if not session.transition(task_id, TaskState.AWAITING_CONFIRMATION, decision.detail):
                return

    @staticmethod
    def _judge(
        conf: ConfirmationSession,
        signal: Optional[SurfaceSignal],
        classifier: SignalClassifier,
        detector: InputRequestDetector,
    ) -> Optional[Verdict]:
        if signal is None:
            return None
        if detector.detect(signal.text):
            return Verdict.NEEDS_INPUT
        return classifier.classify(
            signal.text,
            probe_pending=conf.probe_pending,
            limits_exceeded=conf.attempts_exhausted or conf.expired(),
        )
