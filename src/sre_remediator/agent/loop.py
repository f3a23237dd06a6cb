"""Periodic driver firing one orchestration cycle per interval."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Literal

logger = logging.getLogger(__name__)

OverlapPolicy = Literal["allow", "skip"]


class OrchestrationLoop:
    """
    Fire `cycle(cancel_event)` every `interval` seconds.

    Ticks never wait for the previous cycle. With overlap_policy="allow" a slow
    cycle may run alongside the next one; with "skip" a tick that finds a cycle
    still running is dropped. stop() cancels in-flight cycles through their
    cancel events and waits for them.
    """

    def __init__(
        self,
        cycle: Callable[[threading.Event], Any],
        interval: float = 60.0,
        overlap_policy: OverlapPolicy = "allow",
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self._cycle = cycle
        self.interval = interval
        self.overlap_policy = overlap_policy
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._running: dict[threading.Thread, threading.Event] = {}
        self._driver: threading.Thread | None = None
        self.cycles_started = 0
        self.ticks_skipped = 0

    @property
    def running_cycles(self) -> int:
        with self._lock:
            return len(self._running)

    def trigger(self) -> bool:
        """Start one cycle in a worker thread; returns False when the tick is skipped."""
        with self._lock:
            if self.overlap_policy == "skip" and self._running:
                self.ticks_skipped += 1
                logger.warning("Previous cycle still running, skipping this tick")
                return False
            self.cycles_started += 1
            cancel = threading.Event()
            worker = threading.Thread(
                target=self._run_cycle,
                args=(cancel,),
                name=f"cycle-{self.cycles_started}",
                daemon=True,
            )
            self._running[worker] = cancel
        logger.info("Starting orchestration cycle %d", self.cycles_started)
        worker.start()
        return True

    def _run_cycle(self, cancel: threading.Event) -> None:
        try:
            self._cycle(cancel)
        except Exception:
            logger.exception("Orchestration cycle crashed")
        finally:
            with self._lock:
                self._running.pop(threading.current_thread(), None)

    def run_forever(self) -> None:
        """Block, firing a cycle immediately and then once per interval until stop()."""
        logger.info("Orchestration loop started (interval=%ss, overlap=%s)", self.interval, self.overlap_policy)
        while not self._stop.is_set():
            self.trigger()
            if self._stop.wait(self.interval):
                break
        logger.info("Orchestration loop stopped")

    def start(self) -> threading.Thread:
        """Run the loop in a background thread."""
        self._driver = threading.Thread(target=self.run_forever, name="orchestration-loop", daemon=True)
        self._driver.start()
        return self._driver

    def stop(self, timeout: float | None = None) -> None:
        """Stop ticking, cancel running cycles and wait for them to return."""
        self._stop.set()
        with self._lock:
            running = list(self._running.items())
        for _, cancel in running:
            cancel.set()
        for worker, _ in running:
            worker.join(timeout)
        if self._driver is not None and self._driver is not threading.current_thread():
            self._driver.join(timeout)
