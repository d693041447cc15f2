"""Application configuration helpers for LetterBase."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Tuple

from letterbase import app_paths


logger = logging.getLogger(__name__)


SYNC_SETTINGS_PATH = str(app_paths.data_path("sync_settings.json"))

DEFAULT_SPREADSHEET_ID = os.getenv("GOOGLE_SPREADSHEET_ID", "")
DEFAULT_SHEET_NAME = os.getenv("GOOGLE_SHEET_NAME", "Ноябрь_2025")
DEFAULT_CREDENTIALS_PATH = os.getenv(
    "LETTERBASE_CREDENTIALS_PATH",
    str(app_paths.credentials_path("service_account.json")),
)
DEFAULT_SERVICE_ACCOUNT_EMAIL = os.getenv("GOOGLE_SERVICE_ACCOUNT_EMAIL", "")
DEFAULT_FORMULA_SEPARATOR = os.getenv("GOOGLE_SHEET_FORMULA_SEPARATOR", ";")
DEFAULT_APP_BASE_URL = os.getenv("APP_URL", "")
DEFAULT_DEADLINE_WORKING_DAYS = 7
DEFAULT_ELEVATED_ROLES: Tuple[str, ...] = ("ADMIN", "SUPERADMIN")
DEFAULT_SYNC_INTERVAL_SECONDS = 30

_FORMULA_SEPARATORS = (";", ",")


def _private_key_from_env() -> str:
    return os.getenv("GOOGLE_PRIVATE_KEY", "").replace("\\n", "\n")


@dataclass
class SyncSettings:
    spreadsheet_id: str = DEFAULT_SPREADSHEET_ID
    sheet_name: str = DEFAULT_SHEET_NAME
    credential_path: str = DEFAULT_CREDENTIALS_PATH
    service_account_email: str = DEFAULT_SERVICE_ACCOUNT_EMAIL
    private_key: str = field(default_factory=_private_key_from_env, repr=False)
    formula_separator: str = DEFAULT_FORMULA_SEPARATOR
    app_base_url: str = DEFAULT_APP_BASE_URL
    deadline_working_days: int = DEFAULT_DEADLINE_WORKING_DAYS
    elevated_roles: Tuple[str, ...] = DEFAULT_ELEVATED_ROLES
    sync_interval_seconds: int = DEFAULT_SYNC_INTERVAL_SECONDS

    def to_json(self) -> Dict[str, object]:
        # The private key only ever comes from the environment.
        return {
            "spreadsheet_id": self.spreadsheet_id,
            "sheet_name": self.sheet_name,
            "credential_path": self.credential_path,
            "service_account_email": self.service_account_email,
            "formula_separator": self.formula_separator,
            "app_base_url": self.app_base_url,
            "deadline_working_days": self.deadline_working_days,
            "elevated_roles": list(self.elevated_roles),
            "sync_interval_seconds": self.sync_interval_seconds,
        }


def _default_payload() -> Dict[str, object]:
    return SyncSettings().to_json()


def _clamp_int(value: object, default: int, minimum: int, maximum: int) -> int:
    try:
        return max(minimum, min(maximum, int(value)))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _ensure_sync_settings(path: str = SYNC_SETTINGS_PATH) -> Dict[str, object]:
    default_settings = _default_payload()
    if not os.path.exists(path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(default_settings, handle, indent=2, ensure_ascii=False)
        return json.loads(json.dumps(default_settings))

    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, Mapping):
        logger.warning("Ignoring malformed sync settings file %s", path)
        return default_settings

    merged: Dict[str, object] = dict(default_settings)
    for key, value in data.items():
        if key not in default_settings:
            continue
        if key == "deadline_working_days":
            merged[key] = _clamp_int(value, DEFAULT_DEADLINE_WORKING_DAYS, 0, 60)
        elif key == "sync_interval_seconds":
            merged[key] = _clamp_int(value, DEFAULT_SYNC_INTERVAL_SECONDS, 10, 3600)
        elif key == "elevated_roles" and isinstance(value, list):
            merged[key] = [str(role).strip().upper() for role in value if str(role).strip()]
        elif key == "formula_separator":
            if value in _FORMULA_SEPARATORS:
                merged[key] = value
        elif isinstance(value, str):
            merged[key] = value
    return merged


def _apply_env_overrides(data: Dict[str, object]) -> None:
    overrides = {
        "spreadsheet_id": "GOOGLE_SPREADSHEET_ID",
        "sheet_name": "GOOGLE_SHEET_NAME",
        "credential_path": "LETTERBASE_CREDENTIALS_PATH",
        "service_account_email": "GOOGLE_SERVICE_ACCOUNT_EMAIL",
        "formula_separator": "GOOGLE_SHEET_FORMULA_SEPARATOR",
        "app_base_url": "APP_URL",
    }
    for key, env_var in overrides.items():
        value = os.getenv(env_var)
        if value:
            data[key] = value


def load_sync_settings(path: str = SYNC_SETTINGS_PATH) -> SyncSettings:
    data = _ensure_sync_settings(path)
    _apply_env_overrides(data)

    roles: List[str] = [str(role) for role in data.get("elevated_roles") or DEFAULT_ELEVATED_ROLES]
    return SyncSettings(
        spreadsheet_id=str(data.get("spreadsheet_id", "")).strip(),
        sheet_name=str(data.get("sheet_name") or DEFAULT_SHEET_NAME),
        credential_path=str(data.get("credential_path", DEFAULT_CREDENTIALS_PATH)),
        service_account_email=str(data.get("service_account_email", "")),
        formula_separator=str(data.get("formula_separator") or DEFAULT_FORMULA_SEPARATOR),
        app_base_url=str(data.get("app_base_url", "")).rstrip("/"),
        deadline_working_days=int(data.get("deadline_working_days", DEFAULT_DEADLINE_WORKING_DAYS)),
        elevated_roles=tuple(roles),
        sync_interval_seconds=int(data.get("sync_interval_seconds", DEFAULT_SYNC_INTERVAL_SECONDS)),
    )


def save_sync_settings(settings: SyncSettings, path: str = SYNC_SETTINGS_PATH) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    payload = settings.to_json()

    with open(path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, ensure_ascii=False)


__all__ = [
    "SyncSettings",
    "DEFAULT_SPREADSHEET_ID",
    "DEFAULT_SHEET_NAME",
    "DEFAULT_CREDENTIALS_PATH",
    "DEFAULT_SERVICE_ACCOUNT_EMAIL",
    "DEFAULT_FORMULA_SEPARATOR",
    "DEFAULT_DEADLINE_WORKING_DAYS",
    "DEFAULT_ELEVATED_ROLES",
    "SYNC_SETTINGS_PATH",
    "load_sync_settings",
    "save_sync_settings",
]
