"""Trace reconstructor module."""

from .reconstructor import PLACEHOLDER_PREFIX, ITraceReconstructor, TraceReconstructor

__all__ = ["ITraceReconstructor", "TraceReconstructor", "PLACEHOLDER_PREFIX"]
