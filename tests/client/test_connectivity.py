"""Tests for the connectivity monitor."""

from __future__ import annotations

import threading

from fieldsync.client.connectivity import ConnectivityEvent, ConnectivityMonitor


class TestConnectivityMonitor:
    """Tests for ConnectivityMonitor."""

    def test_initial_state(self) -> None:
        """Should start with the given flag."""
        assert ConnectivityMonitor().is_reachable is False
        assert ConnectivityMonitor(initially_reachable=True).is_reachable is True

    def test_one_event_per_transition(self) -> None:
        """Repeated signals with the same value emit nothing."""
        events: list[ConnectivityEvent] = []
        monitor = ConnectivityMonitor()
        monitor.add_listener(events.append)

        monitor.set_platform_state(True)
        monitor.set_platform_state(True)
        monitor.report_success()
        monitor.report_failure(OSError("down"))
        monitor.report_failure()
        monitor.set_platform_state(True)

        assert events == [
            ConnectivityEvent.BECAME_REACHABLE,
            ConnectivityEvent.BECAME_UNREACHABLE,
            ConnectivityEvent.BECAME_REACHABLE,
        ]

    def test_remove_listener(self) -> None:
        """Removed listeners are not called."""
        events: list[ConnectivityEvent] = []
        monitor = ConnectivityMonitor()
        monitor.add_listener(events.append)
        monitor.remove_listener(events.append)

        monitor.set_platform_state(True)
        assert events == []

    def test_failing_listener_does_not_stop_others(self) -> None:
        """A raising listener is logged and the rest still run."""
        events: list[ConnectivityEvent] = []

        def broken(event: ConnectivityEvent) -> None:
            raise RuntimeError("boom")

        monitor = ConnectivityMonitor()
        monitor.add_listener(broken)
        monitor.add_listener(events.append)

        monitor.set_platform_state(True)
        assert events == [ConnectivityEvent.BECAME_REACHABLE]
        assert monitor.is_reachable is True

    def test_concurrent_transitions_arrive_in_order(self) -> None:
        """A transition from another thread waits until delivery finishes."""
        events: list[ConnectivityEvent] = []
        monitor = ConnectivityMonitor(initially_reachable=True)
        other = threading.Thread(target=monitor.report_success)

        def slow(event: ConnectivityEvent) -> None:
            if event == ConnectivityEvent.BECAME_UNREACHABLE:
                other.start()
                other.join(timeout=0.2)

        monitor.add_listener(slow)
        monitor.add_listener(events.append)

        monitor.report_failure()
        other.join(timeout=2.0)

        assert events == [
            ConnectivityEvent.BECAME_UNREACHABLE,
            ConnectivityEvent.BECAME_REACHABLE,
        ]
        assert monitor.is_reachable is True

    def test_probe_now(self) -> None:
        """Should apply the probe result."""
        results = iter([True, False])
        monitor = ConnectivityMonitor(probe=lambda: next(results))

        assert monitor.probe_now() is True
        assert monitor.is_reachable is True
        assert monitor.probe_now() is False
        assert monitor.is_reachable is False

    def test_probe_exception_means_unreachable(self) -> None:
        """A raising probe counts as unreachable."""

        def probe() -> bool:
            raise OSError("no route")

        monitor = ConnectivityMonitor(initially_reachable=True, probe=probe)
        assert monitor.probe_now() is False
        assert monitor.is_reachable is False

    def test_probe_now_without_probe(self) -> None:
        """Without a probe the current flag is returned."""
        monitor = ConnectivityMonitor(initially_reachable=True)
        assert monitor.probe_now() is True

    def test_background_probe(self) -> None:
        """The probe thread flips the flag and stops cleanly."""
        became_reachable = threading.Event()
        monitor = ConnectivityMonitor(probe=lambda: True, probe_interval=0.01)
        monitor.add_listener(
            lambda e: became_reachable.set() if e == ConnectivityEvent.BECAME_REACHABLE else None
        )

        monitor.start()
        try:
            assert became_reachable.wait(timeout=2.0)
        finally:
            monitor.stop(timeout=2.0)

        assert monitor._thread is None

    def test_start_without_probe_is_noop(self) -> None:
        """No thread is started without a probe."""
        monitor = ConnectivityMonitor()
        monitor.start()
        assert monitor._thread is None
