"""Helpers for validating and normalising Google service account credentials."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, Mapping

__all__ = [
    "CredentialsFileInvalidError",
    "REQUIRED_FIELDS",
    "TOKEN_URI",
    "load_service_account_data",
    "service_account_info_from_env",
]


class CredentialsFileInvalidError(Exception):
    """Raised when service account data is missing required fields."""


TOKEN_URI = "https://oauth2.googleapis.com/token"

REQUIRED_FIELDS: Iterable[str] = (
    "type",
    "project_id",
    "private_key",
    "client_email",
    "token_uri",
)


def _normalise_private_key(key: str) -> str:
    key = key.replace("\r\n", "\n").replace("\r", "\n")
    key = key.replace("\\n", "\n")
    if not key.endswith("\n"):
        key += "\n"
    return key


def _load_json(path: Path) -> Mapping[str, object]:
    try:
        with path.open("r", encoding="utf-8-sig") as handle:
            raw = handle.read()
    except OSError as exc:
        raise CredentialsFileInvalidError(f"Cannot read credentials file: {exc}") from exc

    payload_text = raw.lstrip("\ufeff").strip()
    if not payload_text:
        raise CredentialsFileInvalidError("Service account JSON is empty.")

    try:
        payload = json.loads(payload_text)
    except json.JSONDecodeError as exc:
        raise CredentialsFileInvalidError(f"Invalid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise CredentialsFileInvalidError("Service account JSON must be an object.")
    return payload


def _validate_payload(payload: Mapping[str, object]) -> Dict[str, object]:
    data: Dict[str, object] = dict(payload)
    missing: list[str] = []

    for field in REQUIRED_FIELDS:
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            missing.append(field)

    if data.get("type") != "service_account":
        missing.append("type")

    if missing:
        ordered = ", ".join(sorted(dict.fromkeys(missing)))
        raise CredentialsFileInvalidError(f"Service account JSON is missing fields: {ordered}")

    data["private_key"] = _normalise_private_key(str(data["private_key"]))
    return data


def load_service_account_data(path: Path) -> Dict[str, object]:
    """Return validated service account data from ``path``."""

    return _validate_payload(_load_json(path))


def service_account_info_from_env(email: str, private_key: str) -> Dict[str, object]:
    """Build the minimal service account mapping from an e-mail and a PEM key."""

    if not email.strip() or not private_key.strip():
        raise CredentialsFileInvalidError(
            "Both GOOGLE_SERVICE_ACCOUNT_EMAIL and GOOGLE_PRIVATE_KEY are required."
        )
    return {
        "type": "service_account",
        "client_email": email.strip(),
        "private_key": _normalise_private_key(private_key),
        "token_uri": TOKEN_URI,
    }
