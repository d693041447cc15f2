from __future__ import annotations

import threading
from typing import List, Tuple

from letterbase.auto_sync import AutoSyncController
from letterbase.exporter import ExportResult
from letterbase.importer import ImportResult
from letterbase.sync_service import CycleResult, SyncNotConfiguredError


class _StubService:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls = 0
        self.ran = threading.Event()

    def cycle(self) -> CycleResult:
        self.calls += 1
        self.ran.set()
        if self.error is not None:
            raise self.error
        return CycleResult(exported=ExportResult(updated=["a"]), imported=ImportResult(conflicts=[4]))


def test_trigger_now_reports_success() -> None:
    events: List[Tuple[str, dict]] = []
    controller = AutoSyncController(
        _StubService(), interval_seconds=30, status_callback=lambda status, payload: events.append((status, payload))
    )

    assert controller.trigger_now() is True
    assert events == [("synced", {"exported": 1, "imported": 0, "conflicts": [4]})]
    assert controller.state.runs == 1
    assert controller.state.last_error is None


def test_failed_cycle_is_reported_and_not_retried() -> None:
    service = _StubService(SyncNotConfiguredError("GOOGLE_SPREADSHEET_ID is not configured"))
    events: List[Tuple[str, dict]] = []
    controller = AutoSyncController(
        service, interval_seconds=30, status_callback=lambda status, payload: events.append((status, payload))
    )

    assert controller.trigger_now() is False
    assert service.calls == 1
    assert controller.state.failures == 1
    assert controller.state.last_error == "GOOGLE_SPREADSHEET_ID is not configured"
    assert events == [("error", {"message": "GOOGLE_SPREADSHEET_ID is not configured"})]


def test_background_thread_runs_and_stops() -> None:
    service = _StubService()
    controller = AutoSyncController(service, interval_seconds=3600)

    controller.start()
    try:
        assert service.ran.wait(timeout=5)
        assert controller.is_running()
    finally:
        controller.stop()

    assert not controller.is_running()
    assert service.calls == 1
