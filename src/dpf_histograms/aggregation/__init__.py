"""Evaluation work for one level of a hierarchical query.

Includes:
- InProcessWorker: evaluates the key shares in this process.
- SubprocessWorker: delegates to an external aggregation binary.
"""

from .reports import pack_blobs, unpack_blobs
from .worker import AggregationWorker, InProcessWorker, SubprocessWorker

__all__ = [
    "AggregationWorker",
    "InProcessWorker",
    "SubprocessWorker",
    "pack_blobs",
    "unpack_blobs",
]
