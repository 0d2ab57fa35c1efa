"""Merge engine — adapters that carry out an approved merge."""

from refgate.engines.merge.executor import HttpMergeExecutor, MergeExecutor, MergeOutcome

__all__ = [
    "HttpMergeExecutor",
    "MergeExecutor",
    "MergeOutcome",
]
