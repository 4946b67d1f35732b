"""Binary frame codec for the Bilibili live websocket."""

from __future__ import annotations

import json
import logging
import struct
import zlib
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

HEADER = struct.Struct(">IHHII")
HEADER_LEN = HEADER.size

OP_HEARTBEAT = 2
OP_HEARTBEAT_REPLY = 3
OP_SEND_EVENT = 5
OP_AUTH = 7
OP_AUTH_REPLY = 8

VERSION_PLAIN = 1
VERSION_ZLIB = 2


class PacketError(ValueError):
    """Raised when a frame cannot be decoded."""


@dataclass(frozen=True)
class Packet:
    operation: int
    body: bytes
    version: int = VERSION_PLAIN
    sequence: int = 1

    def messages(self) -> list[dict[str, Any]]:
        """
        Split an event body into its JSON messages.

        Bodies may hold several NUL separated documents; blank chunks and
        chunks that are not JSON objects are skipped.
        """
        out: list[dict[str, Any]] = []
        for chunk in self.body.split(b"\x00"):
            chunk = chunk.strip()
            if not chunk:
                continue
            try:
                payload = json.loads(chunk)
            except (UnicodeDecodeError, json.JSONDecodeError):
                logger.debug("Skipping undecodable live message chunk (%d bytes)", len(chunk))
                continue
            if isinstance(payload, dict):
                out.append(payload)
        return out


def encode_packet(operation: int, body: bytes = b"") -> bytes:
    return HEADER.pack(HEADER_LEN + len(body), HEADER_LEN, VERSION_PLAIN, operation, 1) + body


def decode_packets(data: bytes) -> list[Packet]:
    """Decode every complete frame in ``data``; zlib frames are expanded recursively."""
    packets: list[Packet] = []
    offset = 0
    while offset + HEADER_LEN <= len(data):
        packet_len, header_len, version, operation, sequence = HEADER.unpack_from(data, offset)
        if packet_len == 0 or offset + packet_len > len(data):
            break
        if header_len < HEADER_LEN or header_len > packet_len:
            raise PacketError(f"invalid header length {header_len} for packet of {packet_len}")
        body = data[offset + header_len : offset + packet_len]
        if version == VERSION_ZLIB:
            try:
                inflated = zlib.decompress(body)
            except zlib.error as exc:
                raise PacketError("failed to inflate compressed packet") from exc
            packets.extend(decode_packets(inflated))
        else:
            packets.append(
                Packet(operation=operation, body=body, version=version, sequence=sequence)
            )
        offset += packet_len
    return packets


__all__ = [
    "HEADER_LEN",
    "OP_AUTH",
    "OP_AUTH_REPLY",
    "OP_HEARTBEAT",
    "OP_HEARTBEAT_REPLY",
    "OP_SEND_EVENT",
    "Packet",
    "PacketError",
    "decode_packets",
    "encode_packet",
]
