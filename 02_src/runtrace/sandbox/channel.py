"""Sandbox side of the message channel."""

import io
import threading

from ..models import ChannelMessage, LifecycleEvent, MessageType
from ..protocol import encode_message


class Channel:
    """Sends encoded messages for one run over a multiprocessing connection."""

    def __init__(self, conn, run_id: str):
        self._conn = conn
        self._run_id = run_id
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, message_type: MessageType, payload: LifecycleEvent | str | None = None) -> None:
        raw = encode_message(
            ChannelMessage(run_id=self._run_id, type=message_type, payload=payload)
        ).encode("utf-8")
        with self._lock:
            if self._closed:
                return
            try:
                self._conn.send_bytes(raw)
            except (BrokenPipeError, EOFError, OSError):
                # host went away; it will kill this process
                self._closed = True

    def event(self, event: LifecycleEvent) -> None:
        self.send(MessageType.PROCESS_EVENT, event)

    def log(self, text: str) -> None:
        self.send(MessageType.LOG, text)

    def done(self) -> None:
        self.send(MessageType.DONE)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._conn.close()


class ChannelWriter(io.TextIOBase):
    """Text stream that forwards each complete line as a ``log`` message."""

    def __init__(self, channel: Channel):
        super().__init__()
        self._channel = channel
        self._buffer = ""
        self._lock = threading.Lock()

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        if not isinstance(text, str):
            raise TypeError(f"write() argument must be str, not {type(text).__name__}")
        with self._lock:
            self._buffer += text
            *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            self._channel.log(line)
        return len(text)

    def drain(self) -> None:
        """Forward a trailing partial line, if any."""
        with self._lock:
            rest, self._buffer = self._buffer, ""
        if rest:
            self._channel.log(rest)
