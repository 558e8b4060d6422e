"""Public record models."""

from optibatch.models._base import OptibatchBaseModel
from optibatch.models.batch import Batch

__all__ = [
    "Batch",
    "OptibatchBaseModel",
]
