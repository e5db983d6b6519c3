from __future__ import annotations

from typing import Any

from pydantic import TypeAdapter

GENERIC_MESSAGE_SERIALIZER: TypeAdapter[Any] = TypeAdapter(Any)


def serialize_message(message: Any) -> bytes:
    """Turn an outgoing message body into bytes, in preparation for publishing it on a broker.

    Text is encoded as UTF-8 and raw bytes are sent unchanged; everything else becomes compact JSON.
    The JSON encoding is deterministic for a given value (dict keys keep their insertion order).
    """
    if isinstance(message, str):
        return message.encode('utf-8')
    if isinstance(message, (bytes, bytearray, memoryview)):
        return bytes(message)
    return GENERIC_MESSAGE_SERIALIZER.dump_json(message, warnings=False)
