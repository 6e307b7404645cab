"""Wire codec for sandbox/host channel messages.

The protocol has no acknowledgement, retry or ordering guarantee. Decoding
is total: anything that is not a well-formed message of the current
protocol version comes back as ``None`` and the caller drops it.
"""

import json
from typing import Any

from ..logging_config import get_logger
from ..models import (
    PROTOCOL_VERSION,
    SOURCE_TAG,
    ChannelMessage,
    LifecycleEvent,
    MessageType,
)

logger = get_logger(__name__)


def message_to_dict(message: ChannelMessage) -> dict:
    """Envelope dict in wire form."""
    payload: Any = message.payload
    if isinstance(payload, LifecycleEvent):
        payload = payload.to_wire()
    return {
        "source": message.source,
        "version": message.version,
        "runId": message.run_id,
        "type": message.type.value,
        "payload": payload,
    }


def encode_message(message: ChannelMessage) -> str:
    """Serialize a ChannelMessage to its JSON wire form."""
    return json.dumps(message_to_dict(message), ensure_ascii=False)


def decode_message(raw: str | bytes | dict) -> ChannelMessage | None:
    """Parse a wire message. Returns None for malformed or foreign input."""
    data: Any = raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            data = raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("Dropping message: not utf-8")
            return None
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except (ValueError, RecursionError):
            logger.debug("Dropping message: invalid JSON")
            return None

    if not isinstance(data, dict):
        logger.debug("Dropping message: envelope is not an object")
        return None
    if data.get("source") != SOURCE_TAG:
        logger.debug("Dropping message: foreign source %r", data.get("source"))
        return None
    version = data.get("version")
    if isinstance(version, bool) or version != PROTOCOL_VERSION:
        logger.debug("Dropping message: unsupported version %r", version)
        return None

    run_id = data.get("runId")
    if not isinstance(run_id, str) or not run_id:
        logger.debug("Dropping message: missing runId")
        return None

    try:
        message_type = MessageType(data.get("type"))
    except ValueError:
        logger.debug("Dropping message: unknown type %r", data.get("type"))
        return None

    payload = data.get("payload")
    if message_type is MessageType.PROCESS_EVENT:
        if not isinstance(payload, dict):
            logger.debug("Dropping process-event: payload is not an object")
            return None
        try:
            payload = LifecycleEvent.from_wire(payload)
        except (KeyError, TypeError, ValueError) as e:
            logger.debug("Dropping process-event: %s", e)
            return None
    elif message_type is MessageType.LOG:
        if not isinstance(payload, str):
            logger.debug("Dropping log: payload is not a string")
            return None
    else:
        payload = None

    return ChannelMessage(run_id=run_id, type=message_type, payload=payload)


def belongs_to_run(message: ChannelMessage, run_id: str | None) -> bool:
    """True when the message is tagged with the given (current) run id."""
    return run_id is not None and message.run_id == run_id
