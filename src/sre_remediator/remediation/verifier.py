"""Rollout verification: poll a workload after apply until it is healthy, failed, timed out or cancelled."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from sre_remediator.cluster import WORKLOAD_KINDS, ClusterAccessor, PodStatus, ResourceRef
from sre_remediator.errors import ClusterError
from sre_remediator.remediation.models import VerificationOutcome, VerificationResult

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_TIMEOUT_SECONDS = 300.0


@dataclass
class VerificationState:
    """Polling state of one target."""

    target: ResourceRef
    deadline: float
    poll_interval: float
    last_observed_phase: str | None = None
    polls: int = 0


class RolloutVerifier:
    """
    Confirm that an applied fix actually made the workload healthy.

    Every state other than Polling is terminal. A pod is Ready when it is Running
    with all containers ready and Failed when its phase is Failed; any other phase
    or a transient API error keeps polling. For a controller the member pods are
    re-resolved on every tick and the first ready pod concludes Ready unless
    require_all_ready is set.
    """

    def __init__(
        self,
        accessor: ClusterAccessor,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        require_all_ready: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.accessor = accessor
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.require_all_ready = require_all_ready
        self._clock = clock

    def verify(self, target: ResourceRef, cancel: threading.Event | None = None) -> VerificationResult:
        cancel = cancel or threading.Event()
        state = VerificationState(
            target=target,
            deadline=self._clock() + self.timeout,
            poll_interval=self.poll_interval,
        )
        logger.info("Verifying rollout of %s", target)
        while True:
            if cancel.is_set():
                return self._finish(state, VerificationOutcome.CANCELLED, "verification cancelled")
            remaining = state.deadline - self._clock()
            if remaining <= 0:
                return self._finish(
                    state,
                    VerificationOutcome.TIMED_OUT,
                    f"not ready after {self.timeout:.0f}s (last phase: {state.last_observed_phase or 'unknown'})",
                )
            if cancel.wait(min(state.poll_interval, remaining)):
                return self._finish(state, VerificationOutcome.CANCELLED, "verification cancelled")
            result = self._tick(state)
            if result is not None:
                return result

    def _tick(self, state: VerificationState) -> VerificationResult | None:
        state.polls += 1
        target = state.target
        if target.kind in WORKLOAD_KINDS:
            try:
                pod_names = self.accessor.workload_pod_names(target.kind, target.namespace, target.name)
            except ClusterError as e:
                logger.warning("Resolving pods of %s failed, will retry: %s", target, e)
                return None
            if not pod_names:
                logger.info("No pods found for %s yet", target)
                return None
        else:
            pod_names = [target.name]

        statuses: list[PodStatus] = []
        for pod_name in pod_names:
            try:
                status = self.accessor.pod_status(target.namespace, pod_name)
            except ClusterError as e:
                logger.warning("Getting status of pod %s/%s failed, will retry: %s", target.namespace, pod_name, e)
                continue
            statuses.append(status)
            state.last_observed_phase = status.phase
            self._log_status(status)
            if status.is_ready and not self.require_all_ready:
                return self._finish(state, VerificationOutcome.READY, f"pod {pod_name} is running and ready", pod_name)

        if len(statuses) < len(pod_names):
            return None
        if self.require_all_ready and all(s.is_ready for s in statuses):
            return self._finish(state, VerificationOutcome.READY, f"all {len(statuses)} pod(s) are running and ready")
        if all(s.phase == "Failed" for s in statuses):
            names = ", ".join(s.name for s in statuses)
            return self._finish(state, VerificationOutcome.FAILED, f"pod(s) {names} failed")
        return None

    @staticmethod
    def _log_status(status: PodStatus) -> None:
        logger.debug("Pod %s/%s phase=%s", status.namespace, status.name, status.phase)
        for c in status.container_statuses:
            extra = f" {c.state}: {c.reason} {c.message or ''}" if c.reason else ""
            logger.debug("  container %s ready=%s%s", c.name, c.ready, extra)

    def _finish(
        self,
        state: VerificationState,
        outcome: VerificationOutcome,
        message: str,
        ready_pod: str | None = None,
    ) -> VerificationResult:
        log = logger.info if outcome is VerificationOutcome.READY else logger.warning
        log("Verification of %s: %s (%s)", state.target, outcome.value, message)
        return VerificationResult(
            target=state.target,
            outcome=outcome,
            message=message,
            last_observed_phase=state.last_observed_phase,
            ready_pod=ready_pod,
            polls=state.polls,
        )
