from __future__ import annotations

import asyncio
from typing import Any

import pytest

from optibatch import (
    BatchConfig,
    ChangeEvent,
    ChangeReason,
    DuplicateEntityError,
    EngineClosedError,
    InvalidIdentifier,
    OptimisticBatchEngine,
    UnknownEntityError,
)

# Scaled-down periods keep the suite fast while leaving room for scheduling jitter.
FAST = BatchConfig(quiet_period_ms=100, max_wait_ms=1000)
WITHIN_QUIET = 0.03
PAST_QUIET = 0.15


def _photos(with_title: bool = True) -> list[dict[str, Any]]:
    if with_title:
        return [{"id": str(i), "title": f"Photo #{i}", "liked": False} for i in range(1, 6)]
    return [{"id": str(i), "liked": False} for i in range(1, 6)]


class ControlledCommit:
    """Commit function whose calls stay pending until the test settles them."""

    def __init__(self) -> None:
        self.calls: list[list[dict[str, Any]]] = []
        self._futures: list[asyncio.Future[None]] = []

    async def __call__(self, batch: list[dict[str, Any]]) -> None:
        self.calls.append(batch)
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._futures.append(future)
        await future

    def resolve(self, index: int = 0) -> None:
        self._futures[index].set_result(None)

    def reject(self, index: int = 0, exc: Exception | None = None) -> None:
        self._futures[index].set_exception(exc or RuntimeError("backend unavailable"))

    def resolve_all(self) -> None:
        for future in self._futures:
            if not future.done():
                future.set_result(None)


async def _settle() -> None:
    await asyncio.sleep(0.01)


def _liked(engine: OptimisticBatchEngine) -> set[str]:
    return {photo["id"] for photo in engine.current_view() if photo["liked"]}


def _like(engine: OptimisticBatchEngine, *ids: str, liked: bool = True) -> None:
    engine.submit_update([{"id": photo_id, "liked": liked} for photo_id in ids])


@pytest.mark.asyncio
async def test_like_scenario_with_default_config() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine(_photos(with_title=False), commit)

    _like(engine, "1", "3")

    view = {photo["id"]: photo for photo in engine.current_view()}
    assert view["1"] == {"id": "1", "liked": True, "locked": False}
    assert view["3"] == {"id": "3", "liked": True, "locked": False}
    assert view["2"] == {"id": "2", "liked": False, "locked": False}
    assert commit.calls == []

    await asyncio.sleep(0.6)

    assert engine.locked_ids == {"1", "3"}
    assert _liked(engine) == {"1", "3"}

    commit.resolve()
    await engine.wait_idle()

    assert engine.locked_ids == set()
    assert _liked(engine) == {"1", "3"}
    assert commit.calls == [[{"id": "1", "liked": True}, {"id": "3", "liked": True}]]


@pytest.mark.asyncio
async def test_failed_commit_reverts_entities() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine(_photos(with_title=False), commit, config=FAST)
    events: list[ChangeEvent] = []
    engine.subscribe(events.append)

    _like(engine, "1", "3")
    await asyncio.sleep(PAST_QUIET)
    assert engine.locked_ids == {"1", "3"}

    commit.reject()
    await engine.wait_idle()

    assert engine.current_view() == [{"id": str(i), "liked": False, "locked": False} for i in range(1, 6)]
    reverted = [event for event in events if event.reason == ChangeReason.REVERTED]
    assert len(reverted) == 1
    assert reverted[0].ids == ("1", "3")
    assert reverted[0].error is not None
    assert "backend unavailable" in reverted[0].error


@pytest.mark.asyncio
async def test_optimistic_update_is_visible_immediately() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine(_photos(), commit, config=FAST)

    _like(engine, "2")

    photo = engine.current_view()[1]
    assert photo == {"id": "2", "title": "Photo #2", "liked": True, "locked": False}
    assert engine.pending_updates == {"2": {"id": "2", "title": "Photo #2", "liked": True}}


@pytest.mark.asyncio
async def test_like_then_unlike_within_window_never_commits() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine(_photos(), commit, config=FAST)

    _like(engine, "1", "2")
    assert _liked(engine) == {"1", "2"}

    await asyncio.sleep(WITHIN_QUIET)
    _like(engine, "1", "2", liked=False)

    assert _liked(engine) == set()
    assert engine.pending_updates == {}

    await asyncio.sleep(PAST_QUIET)

    assert commit.calls == []
    assert engine.locked_ids == set()


@pytest.mark.asyncio
async def test_rapid_submissions_produce_one_commit() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine(_photos(), commit, config=FAST)

    _like(engine, "1", "2")
    await asyncio.sleep(WITHIN_QUIET)
    _like(engine, "3", "4")
    await asyncio.sleep(WITHIN_QUIET)
    engine.submit_update({"id": "1", "title": "Sunset"})

    assert _liked(engine) == {"1", "2", "3", "4"}
    assert engine.locked_ids == set()

    await asyncio.sleep(PAST_QUIET)
    commit.resolve()
    await engine.wait_idle()

    assert commit.calls == [
        [
            {"id": "1", "title": "Sunset", "liked": True},
            {"id": "2", "title": "Photo #2", "liked": True},
            {"id": "3", "title": "Photo #3", "liked": True},
            {"id": "4", "title": "Photo #4", "liked": True},
        ]
    ]
    assert engine.locked_ids == set()


@pytest.mark.asyncio
async def test_ceiling_forces_commit_during_steady_stream() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine(_photos(), commit, config=BatchConfig(quiet_period_ms=100, max_wait_ms=250))

    for photo_id in ("1", "2", "3", "4", "5"):
        _like(engine, photo_id)
        await asyncio.sleep(0.07)

    assert len(commit.calls) >= 1
    assert commit.calls[0][0]["id"] == "1"

    engine.flush()
    await _settle()
    commit.resolve_all()
    await engine.wait_idle()
    assert _liked(engine) == {"1", "2", "3", "4", "5"}


@pytest.mark.asyncio
async def test_two_batches_in_flight_resolve_independently() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine(_photos(), commit, config=FAST)

    _like(engine, "1", "2")
    await asyncio.sleep(PAST_QUIET)
    assert engine.locked_ids == {"1", "2"}
    assert len(commit.calls) == 1

    _like(engine, "3", "4")
    await asyncio.sleep(PAST_QUIET)
    assert engine.locked_ids == {"1", "2", "3", "4"}
    assert len(commit.calls) == 2

    commit.resolve(1)
    await _settle()
    assert engine.locked_ids == {"1", "2"}
    assert _liked(engine) == {"1", "2", "3", "4"}

    commit.reject(0)
    await engine.wait_idle()
    assert engine.locked_ids == set()
    assert _liked(engine) == {"3", "4"}
    assert len(commit.calls) == 2


def _assert_one_batch_per_id(engine: OptimisticBatchEngine) -> None:
    ids = [entity_id for batch in engine.in_flight for entity_id in batch.ids]
    assert len(ids) == len(set(ids)), ids


@pytest.mark.asyncio
async def test_submission_for_locked_entity_waits_for_its_batch() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine(_photos(), commit, config=FAST)

    _like(engine, "1")
    await asyncio.sleep(PAST_QUIET)
    assert [batch.ids for batch in engine.in_flight] == [("1",)]

    _like(engine, "1", liked=False)

    photo = engine.current_view()[0]
    assert photo["liked"] is False
    assert photo["locked"] is True
    assert engine.in_flight[0].updates[0]["liked"] is True

    await asyncio.sleep(PAST_QUIET)
    assert [batch.ids for batch in engine.in_flight] == [("1",)]
    assert len(commit.calls) == 1
    assert engine.pending_updates == {"1": {"id": "1", "title": "Photo #1", "liked": False}}

    commit.resolve(0)
    await _settle()
    assert engine.current_view()[0] == {"id": "1", "title": "Photo #1", "liked": False, "locked": False}
    assert "1" in engine.pending_updates

    await asyncio.sleep(PAST_QUIET)
    assert commit.calls[1] == [{"id": "1", "title": "Photo #1", "liked": False}]
    assert engine.locked_ids == {"1"}

    commit.resolve(1)
    await engine.wait_idle()
    assert engine.current_view()[0] == {"id": "1", "title": "Photo #1", "liked": False, "locked": False}
    assert engine.pending_updates == {}


@pytest.mark.asyncio
async def test_toggling_a_locked_entity_keeps_last_local_value() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine([{"id": "1", "liked": False}], commit, config=FAST)

    _like(engine, "1")
    await asyncio.sleep(PAST_QUIET)
    _assert_one_batch_per_id(engine)

    _like(engine, "1", liked=False)
    await asyncio.sleep(PAST_QUIET)
    _assert_one_batch_per_id(engine)
    assert len(commit.calls) == 1

    _like(engine, "1")
    assert engine.pending_updates == {}
    _like(engine, "1", liked=False)
    await asyncio.sleep(PAST_QUIET)
    _assert_one_batch_per_id(engine)

    resolved = 0
    while resolved < len(commit.calls):
        commit.resolve(resolved)
        resolved += 1
        await _settle()
        _assert_one_batch_per_id(engine)
        await asyncio.sleep(PAST_QUIET)
        _assert_one_batch_per_id(engine)
    await engine.wait_idle()

    assert commit.calls == [[{"id": "1", "liked": True}], [{"id": "1", "liked": False}]]
    assert engine.current_view() == [{"id": "1", "liked": False, "locked": False}]


@pytest.mark.asyncio
async def test_close_drains_updates_held_behind_a_locked_entity() -> None:
    calls: list[list[dict[str, Any]]] = []

    async def commit(batch: list[dict[str, Any]]) -> None:
        calls.append(batch)
        await asyncio.sleep(0.02)

    engine = OptimisticBatchEngine(_photos(with_title=False), commit, config=FAST)
    _like(engine, "1")
    engine.flush()
    _like(engine, "1", liked=False)
    _like(engine, "2")

    await engine.aclose()

    assert calls == [
        [{"id": "1", "liked": True}],
        [{"id": "2", "liked": True}],
        [{"id": "1", "liked": False}],
    ]
    assert engine.pending_updates == {}
    assert engine.locked_ids == set()
    assert _liked(engine) == {"2"}


@pytest.mark.asyncio
async def test_no_op_submission_neither_notifies_nor_schedules() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine(_photos(), commit, config=FAST)
    events: list[ChangeEvent] = []
    engine.subscribe(events.append)

    _like(engine, "1", liked=False)
    engine.submit_update({"id": "2", "title": "Photo #2"})

    assert events == []
    assert engine.pending_updates == {}
    await asyncio.sleep(PAST_QUIET)
    assert commit.calls == []

    _like(engine, "1")
    _like(engine, "1")
    assert [event.reason for event in events] == [ChangeReason.SUBMITTED]
    assert events[0].ids == ("1",)


@pytest.mark.asyncio
async def test_revert_rebases_pending_patch_for_same_entity() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine(_photos(), commit, config=FAST)

    engine.submit_update({"id": "1", "title": "Sunset"})
    await asyncio.sleep(PAST_QUIET)
    _like(engine, "1")
    assert engine.pending_updates["1"] == {"id": "1", "title": "Sunset", "liked": True}

    commit.reject(0)
    await _settle()

    assert engine.pending_updates["1"] == {"id": "1", "title": "Photo #1", "liked": True}
    assert engine.current_view()[0] == {"id": "1", "title": "Photo #1", "liked": True, "locked": False}


@pytest.mark.asyncio
async def test_revert_prunes_pending_patch_that_became_no_op() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine(_photos(), commit, config=FAST)

    _like(engine, "1")
    await asyncio.sleep(PAST_QUIET)
    _like(engine, "1", liked=False)
    assert "1" in engine.pending_updates

    commit.reject(0)
    await _settle()

    assert engine.pending_updates == {}
    await asyncio.sleep(PAST_QUIET)
    assert len(commit.calls) == 1


@pytest.mark.asyncio
async def test_invalid_identifier_leaves_pending_set_untouched() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine(_photos(), commit, config=FAST)
    _like(engine, "1")

    with pytest.raises(InvalidIdentifier):
        engine.submit_update([{"id": "2", "liked": True}, {"id": 3, "liked": True}])

    assert list(engine.pending_updates) == ["1"]
    assert _liked(engine) == {"1"}


@pytest.mark.asyncio
async def test_unknown_entity_is_rejected() -> None:
    engine = OptimisticBatchEngine(_photos(), ControlledCommit(), config=FAST)

    with pytest.raises(UnknownEntityError):
        engine.submit_update({"id": "42", "liked": True})

    assert engine.pending_updates == {}


def test_initial_entities_are_validated() -> None:
    with pytest.raises(DuplicateEntityError):
        OptimisticBatchEngine([{"id": "1"}, {"id": "1"}], ControlledCommit())
    with pytest.raises(InvalidIdentifier):
        OptimisticBatchEngine([{"id": 1}], ControlledCommit())


def test_submit_outside_event_loop_fails_before_mutation() -> None:
    engine = OptimisticBatchEngine(_photos(), ControlledCommit(), config=FAST)

    with pytest.raises(RuntimeError):
        _like(engine, "1")

    assert engine.pending_updates == {}


@pytest.mark.asyncio
async def test_synchronous_commit_function_is_supported() -> None:
    calls: list[list[dict[str, Any]]] = []

    def commit(batch: list[dict[str, Any]]) -> bool:
        calls.append(batch)
        return True

    engine = OptimisticBatchEngine(_photos(), commit, config=FAST)
    _like(engine, "5")
    engine.flush()
    await engine.wait_idle()

    assert calls == [[{"id": "5", "title": "Photo #5", "liked": True}]]
    assert engine.current_view()[4]["locked"] is False


@pytest.mark.asyncio
async def test_flush_dispatches_without_waiting() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine(_photos(), commit, config=FAST)

    _like(engine, "2")
    engine.flush()

    assert engine.locked_ids == {"2"}
    assert engine.pending_updates == {}
    await _settle()
    assert len(commit.calls) == 1
    commit.resolve()
    await engine.wait_idle()


@pytest.mark.asyncio
async def test_context_manager_commits_on_exit_and_refuses_new_work() -> None:
    calls: list[list[dict[str, Any]]] = []

    async def commit(batch: list[dict[str, Any]]) -> None:
        await asyncio.sleep(0.01)
        calls.append(batch)

    async with OptimisticBatchEngine(_photos(), commit, config=FAST) as engine:
        _like(engine, "1", "4")

    assert len(calls) == 1
    assert engine.closed
    assert engine.locked_ids == set()
    with pytest.raises(EngineClosedError):
        _like(engine, "2")


@pytest.mark.asyncio
async def test_listeners_receive_lifecycle_events() -> None:
    commit = ControlledCommit()
    engine = OptimisticBatchEngine(_photos(), commit, config=FAST)
    reasons: list[ChangeReason] = []

    def broken(_event: ChangeEvent) -> None:
        raise RuntimeError("listener bug")

    engine.subscribe(broken)
    unsubscribe = engine.subscribe(lambda event: reasons.append(event.reason))

    _like(engine, "1")
    await asyncio.sleep(PAST_QUIET)
    commit.resolve()
    await engine.wait_idle()

    assert reasons == [ChangeReason.SUBMITTED, ChangeReason.DISPATCHED, ChangeReason.COMMITTED]

    unsubscribe()
    unsubscribe()
    _like(engine, "2")
    assert len(reasons) == 3


@pytest.mark.asyncio
async def test_current_view_returns_copies() -> None:
    engine = OptimisticBatchEngine(_photos(), ControlledCommit(), config=FAST)

    view = engine.current_view()
    view[0]["liked"] = True

    assert engine.current_view()[0]["liked"] is False
