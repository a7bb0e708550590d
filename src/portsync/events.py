"""Event models and the newline-delimited JSON wire codec.

Both sides of the transport share these definitions: the monitor encodes
one event per line, the forwarding session decodes them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .common.exceptions import EventDecodeError, UnknownEventTypeError
from .common.utils import utc_now


class Protocol(str, Enum):
    """Transport protocol of a listening socket."""

    TCP = "tcp"
    UDP = "udp"


class PortAction(str, Enum):
    """Lifecycle transition reported for a port."""

    BOUND = "bound"
    UNBOUND = "unbound"


class PortKey(BaseModel):
    """Identity of a tracked port: ``protocol:port``."""

    model_config = ConfigDict(frozen=True)

    protocol: Protocol
    port: int = Field(ge=0, le=65535)

    def __str__(self) -> str:
        return f"{self.protocol.value}:{self.port}"

    @classmethod
    def parse(cls, value: str) -> "PortKey":
        """Parse a ``protocol:port`` string.

        Raises:
            ValueError: If the string is not a valid key
        """
        protocol, sep, port = value.partition(":")
        if not sep or not port.isdigit():
            raise ValueError(f"Invalid port key: {value!r}")
        return cls(protocol=Protocol(protocol.lower()), port=int(port))


class ListeningSocket(BaseModel):
    """One listening socket observed by a sampler."""

    model_config = ConfigDict(frozen=True)

    protocol: Protocol
    port: int = Field(ge=1, le=65535)

    @property
    def key(self) -> PortKey:
        return PortKey(protocol=self.protocol, port=self.port)


class PortEvent(BaseModel):
    """A port became bound or unbound on the sampled host."""

    model_config = ConfigDict(frozen=True)

    type: Literal["port"] = "port"
    action: PortAction
    port: int = Field(ge=0, le=65535)
    protocol: Protocol
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def key(self) -> PortKey:
        return PortKey(protocol=self.protocol, port=self.port)

    @classmethod
    def for_key(cls, action: PortAction, key: PortKey) -> "PortEvent":
        return cls(action=action, port=key.port, protocol=key.protocol)


class ErrorEvent(BaseModel):
    """A non-fatal error or informational message from the monitor."""

    model_config = ConfigDict(frozen=True)

    type: Literal["error"] = "error"
    message: str
    timestamp: datetime = Field(default_factory=utc_now)


MonitorEvent = Annotated[PortEvent | ErrorEvent, Field(discriminator="type")]

KNOWN_EVENT_TYPES = ("port", "error")

_event_adapter: TypeAdapter[PortEvent | ErrorEvent] = TypeAdapter(MonitorEvent)


def encode_event(event: PortEvent | ErrorEvent) -> str:
    """Encode an event as one compact JSON line (without the newline)."""
    return event.model_dump_json()


def decode_event(line: str) -> PortEvent | ErrorEvent:
    """Decode one transport line into an event.

    Args:
        line: A single record, with or without its line terminator

    Returns:
        The decoded event

    Raises:
        UnknownEventTypeError: If the record has an unrecognized ``type``
        EventDecodeError: If the record is not a well-formed event
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise EventDecodeError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise EventDecodeError("Event must be a JSON object")

    event_type = data.get("type")
    if event_type not in KNOWN_EVENT_TYPES:
        raise UnknownEventTypeError(event_type)

    try:
        return _event_adapter.validate_python(data)
    except ValidationError as e:
        raise EventDecodeError(f"Invalid {event_type} event: {e}") from e
