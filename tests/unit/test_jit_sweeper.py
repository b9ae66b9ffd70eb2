"""Tests for zero_trust_engine.jit.sweeper — JITExpirySweeper."""
from __future__ import annotations

import datetime
import threading

import pytest

from zero_trust_engine.audit import AuditLog, AuditRecord
from zero_trust_engine.identity import IdentityStore
from zero_trust_engine.jit import JITAccessCoordinator, JITExpirySweeper, JITStatus

NOW = datetime.datetime(2026, 3, 1, 9, 0, tzinfo=datetime.timezone.utc)


class FakeClock:
    def __init__(self, now: datetime.datetime) -> None:
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture()
def audit_log() -> AuditLog:
    return AuditLog()


@pytest.fixture()
def coordinator(audit_log: AuditLog, clock: FakeClock) -> JITAccessCoordinator:
    store = IdentityStore(audit_log=audit_log, clock=clock)
    return JITAccessCoordinator(store, audit_log=audit_log, clock=clock)


def grant_for(coordinator: JITAccessCoordinator, username: str, hours: int = 1) -> str:
    store = coordinator._store
    identity = store.create(username, role="IncidentResponder")
    grant = coordinator.request(
        identity.identity_id,
        "Investigation",
        "Containment of compromised host",
        hours,
        approval_required=False,
    )
    return grant.request_id


class TestLifecycle:
    def test_interval_must_be_positive(self, coordinator: JITAccessCoordinator) -> None:
        with pytest.raises(ValueError):
            JITExpirySweeper(coordinator, interval_seconds=0)

    def test_not_running_initially(self, coordinator: JITAccessCoordinator) -> None:
        sweeper = JITExpirySweeper(coordinator, interval_seconds=10)
        assert sweeper.running is False
        assert sweeper.interval_seconds == 10

    def test_start_and_stop(self, coordinator: JITAccessCoordinator) -> None:
        sweeper = JITExpirySweeper(coordinator, interval_seconds=0.01)
        sweeper.start()
        assert sweeper.running is True
        sweeper.stop()
        assert sweeper.running is False

    def test_start_twice_is_noop(self, coordinator: JITAccessCoordinator) -> None:
        sweeper = JITExpirySweeper(coordinator, interval_seconds=0.01)
        sweeper.start()
        first_thread = sweeper._thread
        sweeper.start()
        assert sweeper._thread is first_thread
        sweeper.stop()

    def test_stop_without_start(self, coordinator: JITAccessCoordinator) -> None:
        JITExpirySweeper(coordinator).stop()

    def test_context_manager(self, coordinator: JITAccessCoordinator) -> None:
        with JITExpirySweeper(coordinator, interval_seconds=0.01) as sweeper:
            assert sweeper.running is True
        assert sweeper.running is False


class TestSweeping:
    def test_run_once_expires_due_grants(
        self, coordinator: JITAccessCoordinator, clock: FakeClock
    ) -> None:
        request_id = grant_for(coordinator, "ir1")
        clock.now = NOW + datetime.timedelta(hours=2)
        sweeper = JITExpirySweeper(coordinator)
        expired = sweeper.run_once()
        assert [g.request_id for g in expired] == [request_id]
        assert sweeper.cycles == 1

    def test_background_thread_expires_without_caller_activity(
        self, coordinator: JITAccessCoordinator, audit_log: AuditLog, clock: FakeClock
    ) -> None:
        request_id = grant_for(coordinator, "ir1")
        expired_event = threading.Event()

        def on_record(record: AuditRecord) -> None:
            if record.action == "jit_expired":
                expired_event.set()

        audit_log.subscribe(on_record)
        clock.now = NOW + datetime.timedelta(hours=1, seconds=1)

        with JITExpirySweeper(coordinator, interval_seconds=0.01):
            assert expired_event.wait(timeout=5.0)

        assert coordinator.get(request_id).status is JITStatus.EXPIRED

    def test_failing_cycle_does_not_kill_thread(
        self, coordinator: JITAccessCoordinator, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        calls: list[int] = []
        ran_again = threading.Event()

        def flaky(now: datetime.datetime | None = None) -> list[object]:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("store offline")
            ran_again.set()
            return []

        monkeypatch.setattr(coordinator, "sweep", flaky)
        with JITExpirySweeper(coordinator, interval_seconds=0.01):
            assert ran_again.wait(timeout=5.0)
