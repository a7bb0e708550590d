"""Tests for event models and the wire codec."""

import json

import pytest

from portsync.common.exceptions import EventDecodeError, UnknownEventTypeError
from portsync.events import (
    ErrorEvent,
    ListeningSocket,
    PortAction,
    PortEvent,
    PortKey,
    Protocol,
    decode_event,
    encode_event,
)


class TestPortKey:
    """Test PortKey identity."""

    def test_str_renders_protocol_and_port(self):
        assert str(PortKey(protocol="tcp", port=3000)) == "tcp:3000"

    def test_parse_round_trips(self):
        key = PortKey.parse("udp:5353")
        assert key.protocol == Protocol.UDP
        assert key.port == 5353

    def test_parse_is_case_insensitive_on_protocol(self):
        assert PortKey.parse("TCP:8080") == PortKey(protocol="tcp", port=8080)

    @pytest.mark.parametrize("value", ["3000", "tcp:", "tcp:abc", "sctp:3000"])
    def test_parse_rejects_invalid(self, value):
        with pytest.raises(ValueError):
            PortKey.parse(value)

    def test_same_port_different_protocol_is_distinct(self):
        keys = {PortKey(protocol="tcp", port=53), PortKey(protocol="udp", port=53)}
        assert len(keys) == 2

    def test_listening_socket_key(self):
        socket = ListeningSocket(protocol="tcp", port=3000)
        assert socket.key == PortKey(protocol="tcp", port=3000)


class TestEncodeEvent:
    """Test event encoding."""

    def test_port_event_field_order_and_values(self):
        event = PortEvent(action=PortAction.BOUND, port=3000, protocol=Protocol.TCP)
        line = encode_event(event)

        data = json.loads(line)
        assert list(data) == ["type", "action", "port", "protocol", "timestamp"]
        assert data["type"] == "port"
        assert data["action"] == "bound"
        assert data["port"] == 3000
        assert data["protocol"] == "tcp"

    def test_encoded_event_is_a_single_line(self):
        event = ErrorEvent(message="first\nsecond")
        line = encode_event(event)

        assert "\n" not in line
        assert json.loads(line)["message"] == "first\nsecond"

    def test_timestamp_is_iso8601_utc(self):
        data = json.loads(encode_event(ErrorEvent(message="hello")))
        assert data["timestamp"].endswith("Z") or data["timestamp"].endswith("+00:00")


class TestDecodeEvent:
    """Test event decoding."""

    def test_decode_port_event_with_millisecond_timestamp(self):
        line = (
            '{"type":"port","action":"unbound","port":8080,"protocol":"tcp",'
            '"timestamp":"2024-05-01T12:00:00.000Z"}'
        )
        event = decode_event(line)

        assert isinstance(event, PortEvent)
        assert event.action == PortAction.UNBOUND
        assert str(event.key) == "tcp:8080"
        assert event.timestamp.year == 2024

    def test_decode_error_event(self):
        event = decode_event(
            '{"type":"error","message":"Port monitor starting...",'
            '"timestamp":"2024-05-01T12:00:00Z"}'
        )
        assert isinstance(event, ErrorEvent)
        assert event.message == "Port monitor starting..."

    def test_decode_encoded_event(self):
        original = PortEvent(action=PortAction.BOUND, port=5173, protocol=Protocol.UDP)
        assert decode_event(encode_event(original)) == original

    def test_unknown_type_raises_unknown_event_type(self):
        with pytest.raises(UnknownEventTypeError) as exc_info:
            decode_event('{"type":"status","message":"hi"}')
        assert exc_info.value.event_type == "status"

    def test_unknown_type_is_a_decode_error(self):
        assert issubclass(UnknownEventTypeError, EventDecodeError)

    @pytest.mark.parametrize(
        "line",
        [
            "not json",
            "[1, 2, 3]",
            '{"type":"port","action":"bound","protocol":"tcp","timestamp":"2024-01-01T00:00:00Z"}',
            '{"type":"port","action":"opened","port":1,"protocol":"tcp","timestamp":"2024-01-01T00:00:00Z"}',
            '{"type":"port","action":"bound","port":70000,"protocol":"tcp","timestamp":"2024-01-01T00:00:00Z"}',
            '{"type":"error","timestamp":"2024-01-01T00:00:00Z"}',
        ],
    )
    def test_malformed_lines_raise_decode_error(self, line):
        with pytest.raises(EventDecodeError):
            decode_event(line)
