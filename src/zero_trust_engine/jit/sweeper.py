"""Background JIT expiry sweep.

The sweeper runs :meth:`JITAccessCoordinator.sweep` on a fixed interval in a
daemon thread, independent of caller activity. Expiry events reach callers
through the audit log's subscribers rather than console output.
"""
from __future__ import annotations

import logging
import threading

from zero_trust_engine.jit.coordinator import JITAccessCoordinator
from zero_trust_engine.jit.models import JITGrant

logger = logging.getLogger(__name__)


class JITExpirySweeper:
    """Start/stop controlled periodic sweep.

    Parameters
    ----------
    coordinator:
        Coordinator whose grants are swept.
    interval_seconds:
        Seconds between sweep cycles. Must be positive.

    Example
    -------
    ::

        sweeper = JITExpirySweeper(coordinator, interval_seconds=30)
        sweeper.start()
        ...
        sweeper.stop()
    """

    def __init__(self, coordinator: JITAccessCoordinator, interval_seconds: float = 60.0) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self._coordinator = coordinator
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.cycles = 0

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the sweep thread. Calling start on a running sweeper is a no-op."""
        with self._lock:
            if self.running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run, name="jit-expiry-sweeper", daemon=True
            )
            self._thread.start()
        logger.info("JIT expiry sweeper started (interval=%ss)", self._interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the thread to stop and wait up to *timeout* seconds for it."""
        with self._lock:
            thread = self._thread
            self._stop_event.set()
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("JIT expiry sweeper did not stop within %ss", timeout)
            else:
                logger.info("JIT expiry sweeper stopped after %d cycles", self.cycles)
        with self._lock:
            if self._thread is thread and (thread is None or not thread.is_alive()):
                self._thread = None

    def run_once(self) -> list[JITGrant]:
        """Run a single sweep cycle in the calling thread."""
        expired = self._coordinator.sweep()
        self.cycles += 1
        if expired:
            logger.info("JIT sweep expired %d grant(s)", len(expired))
        return expired

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("JIT sweep cycle failed")
            self._stop_event.wait(self._interval)

    def __enter__(self) -> "JITExpirySweeper":
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()
