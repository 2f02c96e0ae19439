"""
Ledger key primitives, backed by ``solders``.

Addresses are solders ``Pubkey`` values: either ed25519 public keys
(something can sign for them) or program-derived addresses that sit off
the curve, so no private key can exist for them. Signers follow the
solders signer protocol: ``pubkey()`` and ``sign_message(bytes)``.

This module only adds what the SDK leaves to the application: loading a
wallet from configuration and deterministic keypairs for fixtures.
"""

from __future__ import annotations

import hashlib
import json
from typing import Sequence, Union

import base58
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID

PUBKEY_LENGTH = 32
SEED_LENGTH = 32
SECRET_KEY_LENGTH = 64

SecretLike = Union[str, bytes, Sequence[int]]

__all__ = [
    "Hash",
    "Keypair",
    "Pubkey",
    "Signature",
    "SYSTEM_PROGRAM_ID",
    "PUBKEY_LENGTH",
    "keypair_from_label",
    "load_keypair",
]


def _secret_bytes(secret: SecretLike) -> bytes:
    if isinstance(secret, str):
        text = secret.strip()
        # solana-keygen writes keypair files as a JSON byte array
        if text.startswith("["):
            try:
                return bytes(json.loads(text))
            except (json.JSONDecodeError, TypeError, ValueError) as exc:
                raise ValueError(f"secret key is not a JSON byte array: {exc}") from None
        return base58.b58decode(text)
    return bytes(secret)


def load_keypair(secret: SecretLike) -> Keypair:
    """
    Load a signer from a 32-byte seed or a 64-byte ``seed ‖ pubkey`` secret.

    Accepts raw bytes, base58 text, or the JSON array format of keypair
    files. The public half of a 64-byte secret must match its seed.
    """
    raw = _secret_bytes(secret)
    if len(raw) == SEED_LENGTH:
        return Keypair.from_seed(raw)
    if len(raw) == SECRET_KEY_LENGTH:
        keypair = Keypair.from_seed(raw[:SEED_LENGTH])
        if bytes(keypair.pubkey()) != raw[SEED_LENGTH:]:
            raise ValueError("secret key public half does not match its seed")
        return keypair
    raise ValueError(f"secret key must be {SEED_LENGTH} or {SECRET_KEY_LENGTH} bytes, got {len(raw)}")


def keypair_from_label(label: str) -> Keypair:
    """Deterministic keypair for fixtures and demos. Never use for funds."""
    return Keypair.from_seed(hashlib.sha256(label.encode("utf-8")).digest())
