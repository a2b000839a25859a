"""
Signaling codec.

Encodes control messages for the relay and decodes whatever the relay
hands back. Decoding never raises: a relay that lags, replays or sends
garbage must not take the session down, so bad input is logged and
dropped.
"""

import json
import logging
from typing import Any

from pydantic import BaseModel, TypeAdapter, ValidationError

from signaling.messages import MESSAGE_TYPES, SignalMessage

logger = logging.getLogger(__name__)

_adapter: TypeAdapter = TypeAdapter(SignalMessage)


def encode(message: BaseModel) -> str:
    """Serialize a control message to compact JSON."""
    return message.model_dump_json(exclude_none=True)


def decode(raw: str | bytes | dict[str, Any]) -> SignalMessage | None:
    """Parse a relay message. Returns None for anything malformed."""
    if isinstance(raw, dict):
        payload = raw
    else:
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            payload = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Dropping unparseable relay message: {e}")
            return None

    if not isinstance(payload, dict):
        logger.warning(f"Dropping relay message that is not an object: {payload!r}")
        return None

    msg_type = payload.get("type")
    if msg_type is None:
        logger.warning("Dropping relay message without 'type'")
        return None
    if msg_type not in MESSAGE_TYPES:
        logger.warning(f"Dropping relay message of unknown type {msg_type!r}")
        return None

    try:
        return _adapter.validate_python(payload)
    except ValidationError as e:
        logger.warning(f"Dropping invalid '{msg_type}' message: {e.error_count()} error(s)")
        logger.debug(f"Validation detail: {e}")
        return None
