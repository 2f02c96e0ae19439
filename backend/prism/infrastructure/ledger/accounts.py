"""
Identity account records and their on-ledger binary layout.

Each account body starts with an 8-byte discriminator,
``sha256("account:<Name>")[:8]``, followed by little-endian packed fields:

    RootIdentity     owner(32) created_at(i64) privacy_level(u8)
                     context_count(u16) nonce(u8)                     = 52
    ContextIdentity  root_identity(32) context_type(u8) created_at(i64)
                     max_per_transaction(u64) total_spent(u64)
                     revoked(bool) context_index(u16) nonce(u8)       = 69
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field, replace
from typing import Optional

from prism.core.crypto.keys import Pubkey
from prism.core.types import ContextType, PrivacyLevel

DISCRIMINATOR_LENGTH = 8


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode("utf-8")).digest()[:DISCRIMINATOR_LENGTH]


class AccountDecodeError(ValueError):
    """Account data is not a record of the expected type."""


_ROOT_LAYOUT = struct.Struct("<32sqBHB")
_CONTEXT_LAYOUT = struct.Struct("<32sBqQQ?HB")


@dataclass(frozen=True)
class RootIdentity:
    owner: Pubkey
    created_at: int
    privacy_level: PrivacyLevel
    context_count: int
    nonce: int
    address: Optional[Pubkey] = field(default=None, compare=False)

    DISCRIMINATOR = account_discriminator("RootIdentity")
    SIZE = DISCRIMINATOR_LENGTH + _ROOT_LAYOUT.size

    def encode(self) -> bytes:
        return self.DISCRIMINATOR + _ROOT_LAYOUT.pack(
            bytes(self.owner),
            self.created_at,
            int(self.privacy_level),
            self.context_count,
            self.nonce,
        )

    @classmethod
    def decode(cls, data: bytes, address: Optional[Pubkey] = None) -> "RootIdentity":
        body = _strip_discriminator(data, cls.DISCRIMINATOR, cls.SIZE, "RootIdentity")
        owner, created_at, privacy_level, context_count, nonce = _ROOT_LAYOUT.unpack(body)
        return cls(
            owner=Pubkey(owner),
            created_at=created_at,
            privacy_level=_enum_or_raw(PrivacyLevel, privacy_level),
            context_count=context_count,
            nonce=nonce,
            address=address,
        )

    def with_address(self, address: Pubkey) -> "RootIdentity":
        return replace(self, address=address)


@dataclass(frozen=True)
class ContextIdentity:
    root_identity: Pubkey
    context_type: ContextType
    created_at: int
    max_per_transaction: int
    total_spent: int
    revoked: bool
    context_index: int
    nonce: int
    address: Optional[Pubkey] = field(default=None, compare=False)

    DISCRIMINATOR = account_discriminator("ContextIdentity")
    SIZE = DISCRIMINATOR_LENGTH + _CONTEXT_LAYOUT.size

    @property
    def is_active(self) -> bool:
        return not self.revoked

    def encode(self) -> bytes:
        return self.DISCRIMINATOR + _CONTEXT_LAYOUT.pack(
            bytes(self.root_identity),
            int(self.context_type),
            self.created_at,
            self.max_per_transaction,
            self.total_spent,
            self.revoked,
            self.context_index,
            self.nonce,
        )

    @classmethod
    def decode(cls, data: bytes, address: Optional[Pubkey] = None) -> "ContextIdentity":
        body = _strip_discriminator(data, cls.DISCRIMINATOR, cls.SIZE, "ContextIdentity")
        (root, context_type, created_at, max_per_tx,
         total_spent, revoked, context_index, nonce) = _CONTEXT_LAYOUT.unpack(body)
        return cls(
            root_identity=Pubkey(root),
            context_type=_enum_or_raw(ContextType, context_type),
            created_at=created_at,
            max_per_transaction=max_per_tx,
            total_spent=total_spent,
            revoked=revoked,
            context_index=context_index,
            nonce=nonce,
            address=address,
        )

    def with_address(self, address: Pubkey) -> "ContextIdentity":
        return replace(self, address=address)


def _strip_discriminator(data: bytes, discriminator: bytes, size: int, name: str) -> bytes:
    if len(data) < size:
        raise AccountDecodeError(f"{name} account too short: {len(data)} < {size} bytes")
    if data[:DISCRIMINATOR_LENGTH] != discriminator:
        raise AccountDecodeError(f"Account is not a {name} (discriminator mismatch)")
    # Trailing bytes beyond the declared size are allowed (account realloc padding).
    return data[DISCRIMINATOR_LENGTH:size]


def _enum_or_raw(enum_cls, value: int):
    try:
        return enum_cls(value)
    except ValueError:
        return value
