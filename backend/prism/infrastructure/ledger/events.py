"""
Identity program events.

Each successful instruction emits one event as a runtime log line:

    Program data: base64( sha256("event:<Name>")[:8] ‖ fields )

Fields are packed little-endian in declaration order, addresses as their
32 raw bytes.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import struct
from dataclasses import dataclass, fields
from typing import Dict, Iterable, List, Tuple, Type

from solders.pubkey import Pubkey

EVENT_LOG_PREFIX = "Program data: "
DISCRIMINATOR_LENGTH = 8


def event_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"event:{name}".encode("utf-8")).digest()[:DISCRIMINATOR_LENGTH]


@dataclass(frozen=True)
class RootIdentityCreated:
    owner: Pubkey
    privacy_level: int
    timestamp: int


@dataclass(frozen=True)
class ContextCreated:
    root_identity: Pubkey
    context_identity: Pubkey
    context_type: int
    max_per_transaction: int
    context_index: int
    timestamp: int


@dataclass(frozen=True)
class ContextRevoked:
    root_identity: Pubkey
    context_identity: Pubkey
    context_type: int
    total_spent: int
    timestamp: int


@dataclass(frozen=True)
class SpendingRecorded:
    context_identity: Pubkey
    amount: int
    total_spent: int
    timestamp: int


@dataclass(frozen=True)
class PrivacyLevelUpdated:
    root_identity: Pubkey
    old_level: int
    new_level: int
    timestamp: int


_LAYOUTS: Dict[Type, struct.Struct] = {
    RootIdentityCreated: struct.Struct("<32sBq"),
    ContextCreated: struct.Struct("<32s32sBQHq"),
    ContextRevoked: struct.Struct("<32s32sBQq"),
    SpendingRecorded: struct.Struct("<32sQQq"),
    PrivacyLevelUpdated: struct.Struct("<32sBBq"),
}
_BY_DISCRIMINATOR: Dict[bytes, Tuple[Type, struct.Struct]] = {
    event_discriminator(cls.__name__): (cls, layout) for cls, layout in _LAYOUTS.items()
}


def encode_event(event) -> str:
    """Render an event as the log line the runtime records for it."""
    layout = _LAYOUTS[type(event)]
    values = [
        bytes(value) if isinstance(value, Pubkey) else value
        for value in (getattr(event, f.name) for f in fields(event))
    ]
    payload = event_discriminator(type(event).__name__) + layout.pack(*values)
    return EVENT_LOG_PREFIX + base64.b64encode(payload).decode("ascii")


def decode_event(line: str):
    """Inverse of ``encode_event``; None for lines that are not known events."""
    if not line.startswith(EVENT_LOG_PREFIX):
        return None
    try:
        payload = base64.b64decode(line[len(EVENT_LOG_PREFIX):], validate=True)
    except binascii.Error:
        return None
    entry = _BY_DISCRIMINATOR.get(payload[:DISCRIMINATOR_LENGTH])
    if entry is None:
        return None
    cls, layout = entry
    body = payload[DISCRIMINATOR_LENGTH:]
    if len(body) != layout.size:
        return None
    values = [
        Pubkey(value) if isinstance(value, bytes) else value
        for value in layout.unpack(body)
    ]
    return cls(*values)


def parse_events(logs: Iterable[str]) -> List[object]:
    events = []
    for line in logs:
        event = decode_event(line)
        if event is not None:
            events.append(event)
    return events
