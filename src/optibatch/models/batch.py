"""Batch record: the unit of work sent to the external commit function."""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any

from pydantic import Field, field_validator, model_validator

from optibatch.models._base import OptibatchBaseModel, ensure_tz_aware, utcnow
from optibatch.state.policy import ID_KEY, require_identifier


class Batch(OptibatchBaseModel):
    """Pending updates drained together at one timer tick.

    ``updates`` keeps pending-set insertion order.  ``previous`` holds each
    affected entity as it stood right before the batch was applied (the
    revert target).
    """

    seq: int = Field(..., ge=1, description="Dispatch sequence number, increasing per engine")
    updates: tuple[dict[str, Any], ...] = Field(..., min_length=1)
    previous: dict[str, dict[str, Any]] = Field(default_factory=dict)
    dispatched_at: datetime = Field(default_factory=utcnow)

    @field_validator("dispatched_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        return ensure_tz_aware(value)

    @model_validator(mode="after")
    def _check_unique_ids(self) -> Batch:
        seen: set[str] = set()
        for update in self.updates:
            entity_id = require_identifier(update)
            if entity_id in seen:
                raise ValueError(f"id {entity_id!r} appears twice in batch {self.seq}")
            seen.add(entity_id)
        return self

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(update[ID_KEY] for update in self.updates)

    def patch_for(self, entity_id: str) -> dict[str, Any] | None:
        for update in self.updates:
            if update[ID_KEY] == entity_id:
                return update
        return None

    def to_payload(self) -> list[dict[str, Any]]:
        """Deep copy of the updates, safe to hand to the commit function."""
        return [copy.deepcopy(update) for update in self.updates]
