"""Change notifications.

Every mutation of the store (submission, dispatch, commit, revert) is
announced to subscribers as one of these events.  Subscribers re-read the
current view; the event only says what changed and why.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field, field_validator

from optibatch.models._base import OptibatchBaseModel, ensure_tz_aware, utcnow


class ChangeReason(StrEnum):
    SUBMITTED = "submitted"
    DISPATCHED = "dispatched"
    COMMITTED = "committed"
    REVERTED = "reverted"


class ChangeEvent(OptibatchBaseModel):
    """A notification that the current view is stale."""

    reason: ChangeReason
    ids: tuple[str, ...] = Field(default=(), description="Entity ids whose view may have changed")
    batch_seq: int | None = Field(default=None, description="Batch involved, if any")
    error: str | None = Field(default=None, description="Commit failure text for REVERTED events")
    observed_at: datetime = Field(default_factory=utcnow)

    @field_validator("observed_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        return ensure_tz_aware(value)
