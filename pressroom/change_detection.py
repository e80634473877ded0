"""Decide whether a freshly computed snapshot is worth pushing."""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional


def fingerprint(payload: Any) -> str:
    """Return the canonical JSON string used to compare snapshots."""

    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


class ChangeDetector:
    """Base class; ``observe`` returns ``True`` when *snapshot* should be emitted."""

    def observe(self, snapshot: Any, *, force: bool = False) -> bool:
        raise NotImplementedError


class PayloadChangeDetector(ChangeDetector):
    """Emit when the canonical serialisation differs from the last emitted one."""

    def __init__(self) -> None:
        self.last_fingerprint: Optional[str] = None

    def observe(self, snapshot: Any, *, force: bool = False) -> bool:
        current = fingerprint(snapshot)
        if not force and current == self.last_fingerprint:
            return False
        self.last_fingerprint = current
        return True


class NewestIdChangeDetector(ChangeDetector):
    """Emit when the id of the newest record moves.

    The forced emission records the newest id when the list is non-empty.
    Afterwards an empty list, or an unchanged newest id, never emits.
    """

    def __init__(self, list_key: str = "notifications", id_key: str = "id") -> None:
        self.list_key = list_key
        self.id_key = id_key
        self.last_id: Optional[Any] = None

    def newest_id(self, snapshot: Mapping[str, Any]) -> Optional[Any]:
        records = snapshot.get(self.list_key) or []
        if not records:
            return None
        return records[0].get(self.id_key)

    def observe(self, snapshot: Mapping[str, Any], *, force: bool = False) -> bool:
        newest = self.newest_id(snapshot)
        if force:
            if newest is not None:
                self.last_id = newest
            return True
        if newest is None or newest == self.last_id:
            return False
        self.last_id = newest
        return True


__all__ = [
    "fingerprint",
    "ChangeDetector",
    "PayloadChangeDetector",
    "NewestIdChangeDetector",
]
