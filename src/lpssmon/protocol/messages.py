"""
LPSS discovery message codec.

RNDP (node discovery) announcements carry a node's GUID, display name and
the locators where it accepts unicast discovery traffic. REDP (endpoint
discovery) announcements carry one publisher/subscriber relationship.

Wire layout (big-endian):

  RNDP: 'N' | guid[16] | name_len u8 | name | n_locators u8 | (port u16, ip[4])*
  REDP: 'E' | guid[16] | type u8 | topic_len u8 | topic | msg_type_len u8 | msg_type

Decoders never raise; a packet that cannot be decoded yields None.
"""

import enum
import struct
from dataclasses import dataclass, field
from typing import Optional

NODE_TAG = b"N"
ENDPOINT_TAG = b"E"

# Smallest datagram worth handing to a decoder
MIN_PACKET_SIZE = 14

PREFIX_MASK = 0xFFFFFFFFFFFF  # low 48 bits

_U8 = struct.Struct("!B")
_LOCATOR = struct.Struct("!H4s")

# Strings carry a one-byte length prefix
MAX_STRING_BYTES = 255


def get_prefix(guid: int) -> int:
    """Aggregation key of a node: the low 48 bits of its GUID."""
    return guid & PREFIX_MASK


def encode_string(value: str, field_name: str = "string") -> bytes:
    """UTF-8 encode with a u8 length prefix; ValueError if it does not fit."""
    raw = value.encode("utf-8")
    if len(raw) > MAX_STRING_BYTES:
        raise ValueError(
            f"{field_name} is {len(raw)} bytes, at most {MAX_STRING_BYTES} allowed"
        )
    return _U8.pack(len(raw)) + raw


class EndpointType(enum.IntEnum):
    WRITER = 0
    READER = 1


@dataclass(frozen=True)
class Locator:
    """Where a node can be reached for unicast discovery traffic."""
    port: int
    ip: bytes = b"\x00\x00\x00\x00"

    @property
    def address(self) -> str:
        return ".".join(str(b) for b in self.ip)


@dataclass
class NodeAnnouncement:
    """A decoded RNDP message."""
    guid: int
    name: str
    locators: list[Locator] = field(default_factory=list)

    @property
    def prefix(self) -> int:
        return get_prefix(self.guid)

    def encode(self) -> bytes:
        parts = [NODE_TAG, self.guid.to_bytes(16, "big")]
        parts.append(encode_string(self.name, "name"))
        if len(self.locators) > 255:
            raise ValueError(f"{len(self.locators)} locators, at most 255 allowed")
        parts.append(_U8.pack(len(self.locators)))
        for loc in self.locators:
            parts.append(_LOCATOR.pack(loc.port, loc.ip))
        return b"".join(parts)


@dataclass
class EndpointAnnouncement:
    """A decoded REDP message."""
    endpoint_guid: int
    topic: str
    type: EndpointType = EndpointType.WRITER
    msg_type: str = ""

    @property
    def prefix(self) -> int:
        return get_prefix(self.endpoint_guid)

    def encode(self) -> bytes:
        return b"".join([
            ENDPOINT_TAG,
            self.endpoint_guid.to_bytes(16, "big"),
            _U8.pack(int(self.type)),
            encode_string(self.topic, "topic"),
            encode_string(self.msg_type, "message type"),
        ])


def is_node_announcement(data: bytes) -> bool:
    return len(data) >= MIN_PACKET_SIZE and data[:1] == NODE_TAG


def is_endpoint_announcement(data: bytes) -> bool:
    return len(data) >= MIN_PACKET_SIZE and data[:1] == ENDPOINT_TAG


class _Reader:
    """Cursor over a datagram; raises ValueError on truncation."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def take(self, n: int) -> bytes:
        end = self.offset + n
        if end > len(self.data):
            raise ValueError("truncated packet")
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def string(self) -> str:
        return self.take(self.u8()).decode("utf-8")

    def guid(self) -> int:
        return int.from_bytes(self.take(16), "big")


def decode_node_announcement(data: bytes) -> Optional[NodeAnnouncement]:
    """Decode an RNDP datagram, or return None if it is not one."""
    if data[:1] != NODE_TAG:
        return None
    r = _Reader(data)
    try:
        r.take(1)
        guid = r.guid()
        name = r.string()
        locators = []
        for _ in range(r.u8()):
            port, ip = _LOCATOR.unpack(r.take(_LOCATOR.size))
            locators.append(Locator(port, ip))
    except (ValueError, struct.error):
        # UnicodeDecodeError is a ValueError
        return None
    return NodeAnnouncement(guid=guid, name=name, locators=locators)


def decode_endpoint_announcement(data: bytes) -> Optional[EndpointAnnouncement]:
    """Decode a REDP datagram, or return None if it is not one."""
    if data[:1] != ENDPOINT_TAG:
        return None
    r = _Reader(data)
    try:
        r.take(1)
        guid = r.guid()
        raw_type = r.u8()
        topic = r.string()
        msg_type = r.string()
    except ValueError:
        return None
    etype = EndpointType.WRITER if raw_type == EndpointType.WRITER else EndpointType.READER
    return EndpointAnnouncement(
        endpoint_guid=guid, topic=topic, type=etype, msg_type=msg_type,
    )
