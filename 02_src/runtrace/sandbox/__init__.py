"""Sandbox executor module."""

from .channel import Channel, ChannelWriter
from .executor import ISandboxExecutor, MessageHandler, SandboxExecutor
from .runtime import (
    Activation,
    Delegation,
    ExecutionContext,
    MonotonicClock,
    callback_name,
)

__all__ = [
    "Activation",
    "Delegation",
    "Channel",
    "ChannelWriter",
    "ExecutionContext",
    "ISandboxExecutor",
    "MessageHandler",
    "MonotonicClock",
    "SandboxExecutor",
    "callback_name",
]
