"""Base model for optibatch records.

Every record the engine hands out (batches, change events) inherits from
:class:`OptibatchBaseModel` which provides:

* ``frozen=True`` so a record cannot be edited after it was emitted.
* ``extra="forbid"`` so a typo in a field name fails loudly.
* ``ensure_tz_aware`` for the timestamp validators of subclasses.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_tz_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class OptibatchBaseModel(BaseModel):
    """Base for immutable optibatch records."""

    model_config = ConfigDict(frozen=True, extra="forbid")
