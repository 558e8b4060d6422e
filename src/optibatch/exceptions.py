"""Custom exception hierarchy for optibatch."""

from __future__ import annotations

from collections.abc import Sequence


class OptibatchError(Exception):
    """Base exception for all optibatch errors."""


class BatchConfigError(OptibatchError):
    """Invalid or missing configuration."""


class InvalidIdentifier(OptibatchError):
    """An entity or update id is missing, empty, not a string, or mismatched.

    This is a contract violation by the caller.  It propagates out of
    :meth:`~optibatch.engine.OptimisticBatchEngine.submit_update` and the
    submission that triggered it is discarded.
    """

    def __init__(self, message: str, *, value: object = None) -> None:
        self.value = value
        super().__init__(message)


class UnknownEntityError(OptibatchError):
    """An update targets an id that the store does not hold."""

    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id
        super().__init__(f"No entity with id {entity_id!r}")


class DuplicateEntityError(OptibatchError):
    """The initial entity list contains the same id more than once."""

    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id
        super().__init__(f"Duplicate entity id {entity_id!r}")


class CommitFailure(OptibatchError):
    """The external commit function failed for a whole batch.

    Never raised to callers of the engine.  The committer builds one of these
    around the original exception (chained as ``__cause__``), logs it and
    hands its text to change listeners before reverting the batch.
    """

    def __init__(self, message: str, *, batch_seq: int, ids: Sequence[str] = ()) -> None:
        self.batch_seq = batch_seq
        self.ids = tuple(ids)
        super().__init__(message)


class EngineClosedError(OptibatchError):
    """Submission attempted after the engine was closed."""
