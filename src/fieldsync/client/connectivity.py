"""Connectivity monitoring for the sync client.

The monitor holds a single reachability flag fed by three sources:

- Platform signals (``set_platform_state``), authoritative.
- Remote call outcomes: a transport failure (``report_failure``) flips
  the flag to unreachable, a completed call (``report_success``) to
  reachable.
- An optional background probe checking that the server answers.

Listeners receive one event per transition, in the order the flag
changed. They are called outside the state lock, on the thread that
caused the transition, and must not block: a concurrent transition waits
for delivery to finish. Long work (such as a sync pass) belongs on its
own thread.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_PROBE_INTERVAL = 5.0  # seconds


class ConnectivityEvent(Enum):
    """Edge events emitted on reachability transitions."""

    BECAME_REACHABLE = "became-reachable"
    BECAME_UNREACHABLE = "became-unreachable"


Listener = Callable[[ConnectivityEvent], None]


class ConnectivityMonitor:
    """Tracks whether the remote authority is reachable.

    Usage:
        monitor = ConnectivityMonitor(probe=client.health_check)
        monitor.add_listener(on_change)
        monitor.start()
        ...
        monitor.stop()
    """

    def __init__(
        self,
        initially_reachable: bool = False,
        probe: Callable[[], bool] | None = None,
        probe_interval: float = DEFAULT_PROBE_INTERVAL,
    ) -> None:
        """Initialize the monitor.

        Args:
            initially_reachable: Starting value of the flag.
            probe: Callable returning True when the server answers.
            probe_interval: Seconds between probe calls.
        """
        self._reachable = initially_reachable
        self._probe = probe
        self._probe_interval = probe_interval

        self._lock = threading.Lock()
        self._delivery_lock = threading.RLock()
        self._listeners: list[Listener] = []

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_reachable(self) -> bool:
        """Current value of the reachability flag."""
        with self._lock:
            return self._reachable

    def add_listener(self, listener: Listener) -> None:
        """Register a callback for transition events."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        """Unregister a callback."""
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # === Signals ===

    def set_platform_state(self, reachable: bool) -> None:
        """Apply an authoritative platform reachability signal."""
        self._transition(reachable, source="platform")

    def report_failure(self, error: BaseException | None = None) -> None:
        """Record that a remote call failed at the transport level."""
        if error is not None:
            logger.debug(f"Remote call failed: {error}")
        self._transition(False, source="remote call")

    def report_success(self) -> None:
        """Record that a remote call completed."""
        self._transition(True, source="remote call")

    def _transition(self, reachable: bool, source: str) -> None:
        # Held across update and delivery: events reach listeners in flag order
        with self._delivery_lock:
            with self._lock:
                if self._reachable == reachable:
                    return
                self._reachable = reachable
                listeners = list(self._listeners)

            event = (
                ConnectivityEvent.BECAME_REACHABLE
                if reachable
                else ConnectivityEvent.BECAME_UNREACHABLE
            )
            logger.info(f"Connectivity changed ({source}): {event.value}")

            for listener in listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception(f"Connectivity listener failed on {event.value}")

    # === Probe thread ===

    def start(self) -> None:
        """Start the background probe, if a probe was given."""
        if self._probe is None:
            return
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                logger.warning("Connectivity probe already running")
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run,
                name="ConnectivityProbe",
                daemon=True,
            )
            self._thread.start()
        logger.debug(f"Connectivity probe started (every {self._probe_interval}s)")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background probe.

        Args:
            timeout: Maximum time to wait for thread to stop
        """
        self._stop_event.set()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._thread = None

    def probe_now(self) -> bool:
        """Run the probe once and apply its result.

        Returns:
            The probe result, or the current flag when no probe is set.
        """
        if self._probe is None:
            return self.is_reachable
        try:
            reachable = bool(self._probe())
        except Exception:
            logger.exception("Connectivity probe raised")
            reachable = False
        self._transition(reachable, source="probe")
        return reachable

    def _run(self) -> None:
        """Probe loop."""
        while not self._stop_event.is_set():
            self.probe_now()
            self._stop_event.wait(self._probe_interval)
