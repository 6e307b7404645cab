"""Message channel envelope models."""

from dataclasses import dataclass
from enum import Enum

from .events import LifecycleEvent

SOURCE_TAG = "runtrace-sandbox"
PROTOCOL_VERSION = 1


class MessageType(str, Enum):
    """Channel message types. Also used as EventBus topics."""

    PROCESS_EVENT = "process-event"
    LOG = "log"
    DONE = "done"


@dataclass
class ChannelMessage:
    """One message crossing the sandbox/host boundary."""

    run_id: str
    type: MessageType
    payload: LifecycleEvent | str | None = None
    source: str = SOURCE_TAG
    version: int = PROTOCOL_VERSION

    @property
    def event(self) -> LifecycleEvent | None:
        """The lifecycle event carried by a process-event message."""
        return self.payload if isinstance(self.payload, LifecycleEvent) else None

    @property
    def text(self) -> str | None:
        """The text carried by a log message."""
        return self.payload if isinstance(self.payload, str) else None
