"""optibatch - Optimistic, debounced batch updates for asyncio applications."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("optibatch")
except PackageNotFoundError:
    __version__ = "0+local"
from optibatch.config import BatchConfig
from optibatch.engine import ChangeListener, CommitFunction, OptimisticBatchEngine
from optibatch.exceptions import (
    BatchConfigError,
    CommitFailure,
    DuplicateEntityError,
    EngineClosedError,
    InvalidIdentifier,
    OptibatchError,
    UnknownEntityError,
)
from optibatch.models import Batch
from optibatch.scheduler import DebouncedScheduler
from optibatch.state.coalesce import Classification, classify, merge_pending
from optibatch.state.events import ChangeEvent, ChangeReason
from optibatch.state.policy import is_change_meaningful
from optibatch.state.store import EntityStore

__all__ = [
    "__version__",
    "Batch",
    "BatchConfig",
    "BatchConfigError",
    "ChangeEvent",
    "ChangeListener",
    "ChangeReason",
    "Classification",
    "CommitFailure",
    "CommitFunction",
    "DebouncedScheduler",
    "DuplicateEntityError",
    "EngineClosedError",
    "EntityStore",
    "InvalidIdentifier",
    "OptibatchError",
    "OptimisticBatchEngine",
    "UnknownEntityError",
    "classify",
    "is_change_meaningful",
    "merge_pending",
]
