"""Coalescing of submitted updates into the pending set."""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from optibatch.exceptions import UnknownEntityError
from optibatch.state.policy import is_change_meaningful, require_identifier, strip_transient


@dataclass(slots=True)
class Classification:
    """Outcome of :func:`classify` for one submission.

    ``to_drop`` lists ids whose net proposal is a no-op against the baseline.
    ``to_merge`` maps ids to full-field patches (baseline fields overlaid by
    the proposal, transient flags removed).
    """

    to_drop: list[str] = field(default_factory=list)
    to_merge: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.to_drop and not self.to_merge


def classify(
    updates: Iterable[Mapping[str, Any]],
    snapshot: Iterable[Mapping[str, Any]],
    pending: Mapping[str, Mapping[str, Any]] | None = None,
) -> Classification:
    """Split *updates* into no-ops and real changes against *snapshot*.

    *snapshot* is the baseline at call time: committed entities with any
    in-flight batch values applied, but without the pending set.  An update
    for an id that already has a pending patch is layered on top of that
    patch before comparing, so edits to different fields accumulate while an
    edit back to the baseline value cancels the pending patch.

    Raises :class:`~optibatch.exceptions.InvalidIdentifier` or
    :class:`~optibatch.exceptions.UnknownEntityError` without partial effects.
    """
    lookup: dict[str, Mapping[str, Any]] = {require_identifier(entity): entity for entity in snapshot}
    working: dict[str, dict[str, Any]] = {key: dict(value) for key, value in (pending or {}).items()}
    result = Classification()

    for update in updates:
        entity_id = require_identifier(update)
        original = lookup.get(entity_id)
        if original is None:
            raise UnknownEntityError(entity_id)

        proposal = {**working.get(entity_id, {}), **strip_transient(update)}
        if not is_change_meaningful(original, proposal):
            working.pop(entity_id, None)
            result.to_merge.pop(entity_id, None)
            if entity_id not in result.to_drop:
                result.to_drop.append(entity_id)
            continue

        merged = copy.deepcopy(strip_transient({**original, **proposal}))
        working[entity_id] = merged
        result.to_merge[entity_id] = merged
        if entity_id in result.to_drop:
            result.to_drop.remove(entity_id)

    return result


def merge_pending(
    pending: Mapping[str, Mapping[str, Any]],
    classification: Classification,
) -> dict[str, dict[str, Any]]:
    """Return a new pending set with *classification* applied.

    Dropped ids are removed, merged ids overwrite or insert.  The input is
    not mutated, so the caller can swap the result in with one assignment.
    """
    result = {key: dict(value) for key, value in pending.items() if key not in classification.to_drop}
    for entity_id, patch in classification.to_merge.items():
        result[entity_id] = dict(patch)
    return result
