"""Deterministic change-detection policy.

This module intentionally contains *no* store access.  Callers pass the
baseline entity explicitly, so a decision never depends on captured state.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from optibatch.exceptions import InvalidIdentifier

ID_KEY = "id"
LOCKED_KEY = "locked"

# Flags owned by the engine, never part of an entity's observable fields.
TRANSIENT_KEYS: frozenset[str] = frozenset({LOCKED_KEY, "pending"})


def require_identifier(record: Mapping[str, Any]) -> str:
    """Return ``record["id"]`` or raise :class:`InvalidIdentifier`.

    Only non-empty ``str`` ids are accepted; ``1`` and ``"1"`` are not
    interchangeable.
    """
    if ID_KEY not in record:
        raise InvalidIdentifier("Record has no id", value=None)
    value = record[ID_KEY]
    if not isinstance(value, str):
        raise InvalidIdentifier(f"Id must be a string, got {type(value).__name__}", value=value)
    if not value:
        raise InvalidIdentifier("Id must be non-empty", value=value)
    return value


def strip_transient(record: Mapping[str, Any]) -> dict[str, Any]:
    """Copy *record* without engine-owned flags."""
    return {key: value for key, value in record.items() if key not in TRANSIENT_KEYS}


def compared_keys(proposed: Mapping[str, Any]) -> list[str]:
    return [key for key in proposed if key != ID_KEY and key not in TRANSIENT_KEYS]


def is_change_meaningful(original: Mapping[str, Any], proposed: Mapping[str, Any]) -> bool:
    """Decide whether *proposed* changes any observable field of *original*.

    Policy:
    - Both ids must be valid and identical, else :class:`InvalidIdentifier`.
    - Only keys present in *proposed* are compared, minus ``id`` and the
      transient flags.
    - A key missing from *original* counts as a change.
    - Values compare with ``==``, so nested containers compare structurally.
    """
    original_id = require_identifier(original)
    proposed_id = require_identifier(proposed)
    if original_id != proposed_id:
        raise InvalidIdentifier(
            f"Update id {proposed_id!r} does not match entity id {original_id!r}",
            value=proposed_id,
        )

    for key in compared_keys(proposed):
        if key not in original:
            return True
        if original[key] != proposed[key]:
            return True
    return False
