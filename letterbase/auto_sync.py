"""Background controller that runs export/import cycles periodically."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from letterbase.sheets_gateway import SheetsGatewayError
from letterbase.sync_service import SyncError, SyncService

logger = logging.getLogger(__name__)


StatusPayload = Dict[str, object]
StatusCallback = Callable[[str, StatusPayload], None]


@dataclass
class AutoSyncState:
    runs: int = 0
    failures: int = 0
    last_error: Optional[str] = None
    last_finished: Optional[float] = None


class AutoSyncController:
    """Run :meth:`SyncService.cycle` on a daemon thread.

    Ticks never overlap: a manual :meth:`trigger_now` waits for a running
    tick.  A failed tick is logged and reported, and the next attempt only
    happens on the following interval.
    """

    def __init__(
        self,
        service: Optional[SyncService] = None,
        *,
        interval_seconds: Optional[int] = None,
        status_callback: Optional[StatusCallback] = None,
    ) -> None:
        self._service = service or SyncService()
        if interval_seconds is None:
            interval_seconds = self._service.settings.sync_interval_seconds
        self._interval = max(1, int(interval_seconds))
        self._status_callback = status_callback
        self._state = AutoSyncState()
        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> AutoSyncState:
        return self._state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="letterbase-auto-sync", daemon=True)
        self._thread.start()
        logger.info("Auto sync started (every %ss)", self._interval)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Auto sync stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def trigger_now(self) -> bool:
        """Run one cycle on the calling thread; ``False`` when it failed."""

        return self._tick()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _run(self) -> None:
        while not self._stop_event.is_set():
            self._tick()
            self._stop_event.wait(self._interval)

    def _tick(self) -> bool:
        with self._tick_lock:
            try:
                outcome = self._service.cycle()
            except (SyncError, SheetsGatewayError) as exc:
                return self._record_failure(exc)
            except Exception as exc:  # pragma: no cover - unexpected failure
                logger.exception("Auto sync tick failed")
                return self._record_failure(exc)
            finally:
                self._state.runs += 1
                self._state.last_finished = time.time()
        self._state.last_error = None
        self._notify_status(
            "synced",
            {
                "exported": outcome.exported.rows_affected,
                "imported": outcome.imported.imported,
                "conflicts": list(outcome.imported.conflicts),
            },
        )
        return True

    def _record_failure(self, exc: Exception) -> bool:
        self._state.failures += 1
        self._state.last_error = str(exc)
        logger.warning("Auto sync cycle failed: %s", exc)
        self._notify_status("error", {"message": str(exc)})
        return False

    def _notify_status(self, status: str, payload: StatusPayload) -> None:
        if self._status_callback:
            try:
                self._status_callback(status, payload)
            except Exception:  # pragma: no cover - UI callback guard
                logger.debug("Auto sync status callback failed", exc_info=True)


__all__ = ["AutoSyncController", "AutoSyncState"]
