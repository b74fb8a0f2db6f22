"""Scheduling of tool-call batches and chains."""

from .chain import ChainStep, ToolChain
from .parallel import ExecutionResult, ParallelToolExecutor, ToolCall, ToolCapability, classify

__all__ = [
    "ChainStep",
    "ExecutionResult",
    "ParallelToolExecutor",
    "ToolCall",
    "ToolCapability",
    "ToolChain",
    "classify",
]
