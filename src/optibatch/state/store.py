"""Deterministic in-memory entity store.

This is the only component allowed to mutate entities, the pending set and
the in-flight batches.  Everything the caller sees is projected from those
three sources on demand.
"""

from __future__ import annotations

import copy
import itertools
import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from optibatch.exceptions import DuplicateEntityError
from optibatch.models.batch import Batch
from optibatch.state.coalesce import classify, merge_pending
from optibatch.state.policy import ID_KEY, LOCKED_KEY, is_change_meaningful, require_identifier, strip_transient

_logger = logging.getLogger(__name__)

Entity = dict[str, Any]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _merge_patch(target: dict[str, Any], patch: Mapping[str, Any]) -> None:
    """Apply a full-field patch: keys in the patch overwrite."""
    if not patch:
        return
    target.update(copy.deepcopy(dict(patch)))


class EntityStore:
    """In-memory store for committed entities and their optimistic overlays.

    Layering, lowest first:

    1. committed entities (initial snapshot plus every successful batch)
    2. in-flight batches, oldest first (these entities are locked)
    3. the pending set (accepted, not yet dispatched)

    Layers 1+2 form the *baseline* that new submissions are compared to.
    """

    def __init__(
        self,
        entities: Iterable[Mapping[str, Any]],
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._clock = clock
        self._committed: dict[str, Entity] = {}
        for entity in entities:
            entity_id = require_identifier(entity)
            if entity_id in self._committed:
                raise DuplicateEntityError(entity_id)
            self._committed[entity_id] = copy.deepcopy(strip_transient(entity))
        self._pending: dict[str, Entity] = {}
        self._in_flight: dict[int, Batch] = {}
        self._seq = itertools.count(1)

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    def _baseline_entity(self, entity_id: str) -> Entity:
        result = copy.deepcopy(self._committed[entity_id])
        for batch in self._in_flight.values():
            patch = batch.patch_for(entity_id)
            if patch is not None:
                _merge_patch(result, patch)
        return result

    def baseline(self) -> list[Entity]:
        """Committed entities with in-flight batch values applied (no flags)."""
        return [self._baseline_entity(entity_id) for entity_id in self._committed]

    def locked_ids(self) -> set[str]:
        locked: set[str] = set()
        for batch in self._in_flight.values():
            locked.update(batch.ids)
        return locked

    def current_view(self) -> list[Entity]:
        """Baseline overlaid by pending updates, with ``locked`` flags set."""
        locked = self.locked_ids()
        view: list[Entity] = []
        for entity_id in self._committed:
            entity = self._baseline_entity(entity_id)
            pending = self._pending.get(entity_id)
            if pending is not None:
                _merge_patch(entity, pending)
            entity[LOCKED_KEY] = entity_id in locked
            view.append(entity)
        return view

    @property
    def pending(self) -> dict[str, Entity]:
        return copy.deepcopy(self._pending)

    @property
    def in_flight(self) -> tuple[Batch, ...]:
        return tuple(self._in_flight.values())

    def committed(self, entity_id: str) -> Entity:
        return copy.deepcopy(self._committed[entity_id])

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def submit(self, updates: Iterable[Mapping[str, Any]]) -> list[str]:
        """Coalesce *updates* into the pending set.

        The classification is computed in full before the pending set is
        replaced, so a rejected submission leaves no trace.  Returns the ids
        whose pending patch was added, changed or cancelled.
        """
        classification = classify(updates, self.baseline(), self._pending)
        before = self._pending
        self._pending = merge_pending(before, classification)
        changed = [entity_id for entity_id, patch in classification.to_merge.items() if before.get(entity_id) != patch]
        changed.extend(entity_id for entity_id in classification.to_drop if entity_id in before)
        _logger.debug(
            "Submission coalesced merge=%s drop=%s changed=%s",
            list(classification.to_merge),
            classification.to_drop,
            changed,
        )
        return changed

    def drain(self) -> Batch | None:
        """Move pending patches into a new in-flight batch.

        Patches for ids that are still locked stay pending: an id belongs to
        at most one in-flight batch, so they wait for the next cycle.
        """
        locked = self.locked_ids()
        ready = {entity_id: patch for entity_id, patch in self._pending.items() if entity_id not in locked}
        if not ready:
            if self._pending:
                _logger.debug("Holding pending ids=%s until their batch resolves", list(self._pending))
            return None
        previous = {entity_id: self._baseline_entity(entity_id) for entity_id in ready}
        batch = Batch(
            seq=next(self._seq),
            updates=tuple(ready.values()),
            previous=previous,
            dispatched_at=self._clock(),
        )
        self._pending = {entity_id: patch for entity_id, patch in self._pending.items() if entity_id in locked}
        self._in_flight[batch.seq] = batch
        return batch

    def resolve_success(self, seq: int) -> Batch:
        """Fold a batch into the committed state."""
        batch = self._in_flight.pop(seq)
        for update in batch.updates:
            _merge_patch(self._committed[update[ID_KEY]], strip_transient(update))
        self._prune_pending()
        return batch

    def resolve_failure(self, seq: int) -> Batch:
        """Discard a batch overlay, restoring its entities' pre-batch state.

        Pending patches built on top of the failed values are rebased onto
        the restored baseline so the failed values are not resubmitted.
        """
        batch = self._in_flight.pop(seq)
        for update in batch.updates:
            entity_id = update[ID_KEY]
            pending = self._pending.get(entity_id)
            if pending is None:
                continue
            restored = self._baseline_entity(entity_id)
            for key, failed_value in update.items():
                if key in pending and key in restored and pending[key] == failed_value:
                    pending[key] = copy.deepcopy(restored[key])
        self._prune_pending()
        return batch

    def _prune_pending(self) -> list[str]:
        """Drop pending patches that became no-ops after the baseline moved."""
        dropped = [
            entity_id
            for entity_id, patch in self._pending.items()
            if not is_change_meaningful(self._baseline_entity(entity_id), patch)
        ]
        if dropped:
            self._pending = {key: value for key, value in self._pending.items() if key not in dropped}
            _logger.debug("Pruned pending no-ops after batch resolution ids=%s", dropped)
        return dropped
