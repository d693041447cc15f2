"""Owner resolution against the user directory.

The owner column of the sheet is authoritative for who may log in: every
distinct owner value is resolved to a user (created on first sight), and once
at least one owner resolved, ordinary accounts missing from the column lose
their login while the referenced ones get it back.  Elevated roles are never
toggled.

Resolution runs as a single pass before any letter is touched and returns an
:class:`OwnerResolution` that the importer threads through its row loop.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import db
from letterbase.models import Identity, Letter
from letterbase.row_codec import SheetRow, is_email_value, normalize_owner_value, owner_cell

logger = logging.getLogger(__name__)


@dataclass
class OwnerResolution:
    owner_ids: Dict[str, str] = field(default_factory=dict)
    created_ids: List[str] = field(default_factory=list)
    enabled_ids: List[str] = field(default_factory=list)
    disabled_count: int = 0

    def owner_id_for(self, raw_value: str) -> Optional[str]:
        key = normalize_owner_value(raw_value)
        if key is None:
            return None
        return self.owner_ids.get(key)

    @property
    def referenced_ids(self) -> Set[str]:
        return set(self.owner_ids.values())


def collect_owner_values(rows: Iterable[SheetRow]) -> Dict[str, str]:
    """Return ``{normalised key: first raw spelling}`` in row order."""

    values: Dict[str, str] = {}
    for row in rows:
        raw = row.owner_text
        key = normalize_owner_value(raw)
        if key is not None and key not in values:
            values[key] = raw
    return values


def _index_identities(identities: Sequence[Identity]) -> Tuple[Dict[str, Identity], Dict[str, Identity]]:
    by_email: Dict[str, Identity] = {}
    by_name: Dict[str, Identity] = {}
    for identity in identities:
        if identity.email:
            by_email.setdefault(identity.email.lower(), identity)
        if identity.name:
            name_key = normalize_owner_value(identity.name)
            if name_key and "@" not in name_key:
                by_name.setdefault(name_key, identity)
    return by_email, by_name


def _create_identity(key: str, raw: str) -> Identity:
    if is_email_value(raw):
        record = db.create_user(email=key, name=raw.split("@", 1)[0], can_login=True)
    else:
        record = db.create_user(name=raw, can_login=True)
    return Identity.from_record(record)


def resolve_owners(rows: Sequence[SheetRow], *, elevated_roles: Iterable[str]) -> OwnerResolution:
    elevated = {role.upper() for role in elevated_roles}
    resolution = OwnerResolution()
    owner_values = collect_owner_values(rows)
    if not owner_values:
        return resolution

    by_email, by_name = _index_identities([Identity.from_record(user) for user in db.fetch_users()])

    for key, raw in owner_values.items():
        is_email = is_email_value(raw)
        identity = by_email.get(key) if is_email else by_name.get(key)
        if identity is None:
            identity = _create_identity(key, raw)
            resolution.created_ids.append(identity.id)
            if is_email:
                by_email[key] = identity
            else:
                by_name[key] = identity
            logger.info("Created user %s for owner value %r", identity.id, raw)
        elif not identity.can_login and identity.role.upper() not in elevated:
            identity = Identity.from_record(db.update_user(identity.id, {"can_login": True}))
            resolution.enabled_ids.append(identity.id)
            logger.info("Re-enabled login for user %s", identity.id)
        resolution.owner_ids[key] = identity.id

    referenced = sorted(resolution.referenced_ids)
    resolution.disabled_count = db.update_users(
        {"can_login": False}, exclude_ids=referenced, exclude_roles=sorted(elevated)
    )
    db.update_users({"can_login": True}, ids=referenced, exclude_roles=sorted(elevated))
    if resolution.disabled_count:
        logger.info("Disabled login for %s user(s) missing from the owner column", resolution.disabled_count)
    return resolution


def owner_options(letters: Iterable[Letter]) -> List[str]:
    """Sorted distinct owner display strings of live letters."""

    options = {owner_cell(letter.owner) for letter in letters if not letter.is_deleted}
    return sorted(option for option in options if option)


__all__ = [
    "OwnerResolution",
    "collect_owner_values",
    "normalize_owner_value",
    "owner_options",
    "resolve_owners",
]
