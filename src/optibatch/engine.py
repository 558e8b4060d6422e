"""Optimistic batch update engine."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from optibatch._redact import redact_for_log
from optibatch.config import BatchConfig
from optibatch.exceptions import CommitFailure, EngineClosedError
from optibatch.models.batch import Batch
from optibatch.scheduler import DebouncedScheduler
from optibatch.state.events import ChangeEvent, ChangeReason
from optibatch.state.store import Entity, EntityStore

_logger = logging.getLogger(__name__)

CommitFunction = Callable[[list[dict[str, Any]]], Awaitable[Any] | Any]
ChangeListener = Callable[[ChangeEvent], None]


class OptimisticBatchEngine:
    """Apply updates optimistically and commit them in debounced batches.

    Usage::

        async def commit(batch: list[dict]) -> None:
            await api.save_many(batch)

        async with OptimisticBatchEngine(photos, commit) as engine:
            engine.submit_update([{"id": "1", "liked": True}])
            engine.current_view()  # photo 1 liked, not locked yet

    All methods must be called from the event loop thread.
    """

    def __init__(
        self,
        entities: Iterable[Mapping[str, Any]],
        commit: CommitFunction,
        *,
        config: BatchConfig | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or BatchConfig()
        self._commit_fn = commit
        self._store = EntityStore(entities) if clock is None else EntityStore(entities, clock=clock)
        self._loop = loop
        self._scheduler = DebouncedScheduler(
            self._commit,
            quiet_period=self._config.quiet_period,
            max_wait=self._config.max_wait,
            loop=loop,
        )
        self._tasks: set[asyncio.Task[None]] = set()
        self._listeners: list[ChangeListener] = []
        self._closed = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> OptimisticBatchEngine:
        self._require_loop()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Commit outstanding pending updates and wait for every batch.

        Later calls to :meth:`submit_update` raise
        :class:`~optibatch.exceptions.EngineClosedError`.
        """
        if self._closed:
            return
        self._closed = True
        # Patches held back behind a locked id only drain once that batch resolves.
        while True:
            self._scheduler.cancel()
            if self._store.pending:
                self._commit()
            if not self._tasks:
                break
            await self.wait_idle()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def config(self) -> BatchConfig:
        return self._config

    @property
    def closed(self) -> bool:
        return self._closed

    def submit_update(self, updates: Mapping[str, Any] | Iterable[Mapping[str, Any]]) -> None:
        """Accept updates, show them immediately, and schedule a commit.

        Raises
        ------
        InvalidIdentifier
            An update (or the entity it names) has a missing, empty or
            non-string id.  Nothing from this call is applied.
        UnknownEntityError
            An update names an id the engine does not hold.
        EngineClosedError
            The engine was closed.
        """
        if self._closed:
            raise EngineClosedError("Engine is closed")
        self._require_loop()
        batch_updates = [updates] if isinstance(updates, Mapping) else list(updates)

        changed = self._store.submit(batch_updates)
        if not changed:
            return
        self._scheduler.arm()
        self._notify(ChangeEvent(reason=ChangeReason.SUBMITTED, ids=tuple(changed)))

    def current_view(self) -> list[Entity]:
        """Entities as the user should see them right now."""
        return self._store.current_view()

    @property
    def pending_updates(self) -> dict[str, Entity]:
        """Copy of the pending set (accepted, not yet dispatched)."""
        return self._store.pending

    @property
    def in_flight(self) -> tuple[Batch, ...]:
        return self._store.in_flight

    @property
    def locked_ids(self) -> set[str]:
        return self._store.locked_ids()

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register *listener* for change events; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def flush(self) -> None:
        """Dispatch the pending set now instead of waiting for the timer."""
        self._require_loop()
        self._scheduler.fire_now()

    async def wait_idle(self) -> None:
        """Wait until no batch is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _notify(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                _logger.debug("Change listener failed for %s", event.reason, exc_info=True)

    def _commit(self) -> None:
        """Drain the pending set into a batch and start its commit."""
        batch = self._store.drain()
        if batch is None:
            _logger.debug("Nothing pending at commit time")
            return
        _logger.debug(
            "Dispatching batch seq=%d ids=%s payload=%s",
            batch.seq,
            list(batch.ids),
            redact_for_log(batch.to_payload()),
        )
        self._notify(ChangeEvent(reason=ChangeReason.DISPATCHED, ids=batch.ids, batch_seq=batch.seq))
        task = self._require_loop().create_task(self._run_commit(batch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_commit(self, batch: Batch) -> None:
        try:
            result = self._commit_fn(batch.to_payload())
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            failure = CommitFailure(
                f"Commit of batch {batch.seq} failed: {exc!r}",
                batch_seq=batch.seq,
                ids=batch.ids,
            )
            failure.__cause__ = exc
            _logger.warning(
                "Batch seq=%d failed; reverting ids=%s",
                batch.seq,
                list(batch.ids),
                exc_info=failure,
            )
            self._store.resolve_failure(batch.seq)
            _logger.debug("Batch seq=%d restored to %s", batch.seq, redact_for_log(batch.previous))
            self._rearm_held_back()
            self._notify(
                ChangeEvent(
                    reason=ChangeReason.REVERTED,
                    ids=batch.ids,
                    batch_seq=batch.seq,
                    error=str(failure),
                )
            )
            return

        self._store.resolve_success(batch.seq)
        _logger.debug("Batch seq=%d committed ids=%s", batch.seq, list(batch.ids))
        self._rearm_held_back()
        self._notify(ChangeEvent(reason=ChangeReason.COMMITTED, ids=batch.ids, batch_seq=batch.seq))

    def _rearm_held_back(self) -> None:
        """Start a cycle for patches that waited on a batch that just resolved."""
        if self._closed or self._scheduler.armed or not self._store.pending:
            return
        _logger.debug("Re-arming for held-back ids=%s", list(self._store.pending))
        self._scheduler.arm()
