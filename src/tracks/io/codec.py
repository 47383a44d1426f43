"""
Envelope serialization.

Encodes envelopes as compact JSON objects, one per datagram:

    {"timestamp": 1.2345, "event": "beat", "data": {"confidence": 0.91}}

"event" is the dotted category name and "data" holds the fields of that
category's payload.
"""

import dataclasses
import json
from typing import Any, Callable, Union

import numpy as np

from tracks.events import event_from_name
from tracks.exceptions import CodecError
from tracks.payloads import Envelope, payload_type


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# Wire shape accepted for each payload field annotation.
_FIELD_CHECKS: dict[Any, Callable[[Any], bool]] = {
    float: _is_number,
    float | None: lambda v: v is None or _is_number(v),
    int: lambda v: isinstance(v, int) and not isinstance(v, bool),
    str: lambda v: isinstance(v, str),
    tuple[float, ...]: lambda v: isinstance(v, list) and all(_is_number(x) for x in v),
}


class EnvelopeCodec:
    """Converts envelopes to and from their JSON wire form."""

    def __init__(self, precision: int = 6):
        """
        Initialize the codec.

        Args:
            precision: Decimal places for floating point values.
        """
        self.precision = precision

    def _round(self, value: float) -> float:
        """Round to configured precision."""
        return round(float(value), self.precision)

    def _plain(self, value: Any) -> Any:
        """Convert a payload field to a JSON-compatible value."""
        if value is None or isinstance(value, (bool, str)):
            return value
        if isinstance(value, (int, np.integer)):
            return int(value)
        if isinstance(value, (float, np.floating)):
            return self._round(value)
        if isinstance(value, (tuple, list, np.ndarray)):
            return [self._plain(v) for v in value]
        raise CodecError(f"cannot encode value of type {type(value).__name__}")

    def to_dict(self, envelope: Envelope) -> dict[str, Any]:
        """Build the wire dictionary for one envelope."""
        return {
            "timestamp": self._round(envelope.timestamp),
            "event": envelope.category.value,
            "data": {k: self._plain(v) for k, v in envelope.payload.to_dict().items()},
        }

    def encode(self, envelope: Envelope) -> bytes:
        """Serialize one envelope to UTF-8 JSON bytes."""
        return json.dumps(self.to_dict(envelope), separators=(",", ":")).encode("utf-8")

    def _field_value(self, name: str, key: str, kind: Any, value: Any) -> Any:
        """Check one decoded field against its annotation and normalize it."""
        check = _FIELD_CHECKS.get(kind)
        if check is not None and not check(value):
            raise CodecError(f"bad value for {name}.{key}: {value!r}")
        if kind == tuple[float, ...]:
            return tuple(float(v) for v in value)
        if kind is float:
            return float(value)
        return value

    def from_dict(self, message: Any) -> Envelope:
        """
        Rebuild an envelope from its wire dictionary.

        Raises:
            CodecError: On missing keys, unknown event names or fields
                        that do not match the payload.
        """
        if not isinstance(message, dict):
            raise CodecError("message is not an object")
        try:
            timestamp = float(message["timestamp"])
            name = message["event"]
        except (KeyError, TypeError, ValueError) as e:
            raise CodecError(f"malformed envelope: {e}") from e

        category = event_from_name(name) if isinstance(name, str) else None
        if category is None:
            raise CodecError(f"unknown event: {name!r}")

        data = message.get("data") or {}
        if not isinstance(data, dict):
            raise CodecError("envelope data is not an object")

        cls = payload_type(category)
        declared = {f.name: f.type for f in dataclasses.fields(cls)}
        values = {}
        for key, value in data.items():
            if key not in declared:
                raise CodecError(f"unexpected field {key!r} for {name}")
            values[key] = self._field_value(name, key, declared[key], value)
        try:
            payload = cls(**values)
        except TypeError as e:
            raise CodecError(f"bad fields for {name}: {e}") from e
        return Envelope(timestamp, payload)

    def decode(self, datagram: Union[bytes, str]) -> Envelope:
        """
        Parse one datagram into an envelope.

        Raises:
            CodecError: If the datagram is not a valid envelope.
        """
        try:
            message = json.loads(datagram)
        except (UnicodeDecodeError, ValueError) as e:
            raise CodecError(f"invalid JSON: {e}") from e
        return self.from_dict(message)
