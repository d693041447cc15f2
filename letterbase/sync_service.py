"""Trigger surface for the sync engine.

The scheduler, the command line and the application call into
:class:`SyncService`; the module level ``run_*`` helpers build one from the
saved settings.  Errors propagate to the caller after the ledger recorded
them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from letterbase import conflicts, ledger
from letterbase.exporter import ExportResult, export_to_sheets
from letterbase.importer import ImportResult, import_from_sheets
from letterbase.models import format_timestamp
from letterbase.sheets_gateway import SheetsGateway, build_service, parse_spreadsheet_id
from settings import SyncSettings, load_sync_settings

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[SyncSettings], Any]
LogCallback = Callable[[str], None]


class SyncError(Exception):
    """Base error for the sync engine's trigger layer."""


class SyncNotConfiguredError(SyncError):
    """Raised when no spreadsheet is configured."""


@dataclass
class CycleResult:
    exported: ExportResult
    imported: ImportResult


class SyncService:
    """Run exports, imports and full cycles against the configured worksheet."""

    def __init__(
        self,
        settings: Optional[SyncSettings] = None,
        *,
        service_factory: ServiceFactory = build_service,
        log_callback: Optional[LogCallback] = None,
    ) -> None:
        self._settings = settings
        self._service_factory = service_factory
        self._log_callback = log_callback

    @property
    def settings(self) -> SyncSettings:
        if self._settings is None:
            self._settings = load_sync_settings()
        return self._settings

    def gateway(self) -> SheetsGateway:
        settings = self.settings
        spreadsheet_id = parse_spreadsheet_id(settings.spreadsheet_id)
        if not spreadsheet_id:
            raise SyncNotConfiguredError("GOOGLE_SPREADSHEET_ID is not configured")
        return SheetsGateway(self._service_factory(settings), spreadsheet_id, settings.sheet_name)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def export(self) -> ExportResult:
        result = export_to_sheets(self.gateway(), settings=self.settings)
        self._log(f"Export: {len(result.updated)} updated, {len(result.appended)} appended")
        return result

    def import_(self) -> ImportResult:
        result = import_from_sheets(self.gateway(), settings=self.settings)
        message = f"Import: {result.imported} imported"
        if result.conflict_message:
            message += f"; {result.conflict_message}"
        self._log(message)
        return result

    def cycle(self) -> CycleResult:
        """Export then import, sharing one gateway."""

        gateway = self.gateway()
        exported = export_to_sheets(gateway, settings=self.settings)
        imported = import_from_sheets(gateway, settings=self.settings)
        self._log(
            f"Cycle: {exported.rows_affected} exported, {imported.imported} imported, "
            f"{len(imported.conflicts)} conflict(s)"
        )
        return CycleResult(exported=exported, imported=imported)

    def status(self, limit: int = 20) -> Dict[str, List[Dict[str, object]]]:
        runs = [
            {
                "id": entry.id,
                "direction": entry.direction.value,
                "status": entry.status.value,
                "rows_affected": entry.rows_affected,
                "error": entry.error,
                "started_at": format_timestamp(entry.started_at),
                "finished_at": format_timestamp(entry.finished_at),
            }
            for entry in ledger.recent_runs(limit)
        ]
        return {"runs": runs, "conflicts": conflicts.recent(limit)}

    def _log(self, message: str) -> None:
        logger.info(message)
        if self._log_callback:
            try:
                self._log_callback(message)
            except Exception:  # pragma: no cover - UI callback guard
                logger.debug("Sync log callback failed", exc_info=True)


def run_export(settings: Optional[SyncSettings] = None) -> ExportResult:
    return SyncService(settings).export()


def run_import(settings: Optional[SyncSettings] = None) -> ImportResult:
    return SyncService(settings).import_()


def run_cycle(settings: Optional[SyncSettings] = None) -> CycleResult:
    return SyncService(settings).cycle()


def sync_status(limit: int = 20) -> Dict[str, List[Dict[str, object]]]:
    return SyncService().status(limit)


__all__ = [
    "CycleResult",
    "SyncError",
    "SyncNotConfiguredError",
    "SyncService",
    "run_cycle",
    "run_export",
    "run_import",
    "sync_status",
]
