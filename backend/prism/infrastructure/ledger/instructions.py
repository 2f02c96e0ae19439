"""
Identity program instructions.

Instruction data is ``sha256("global:<name>")[:8]`` followed by the
little-endian packed arguments. Account lists follow the program's
account contexts in order. Builders return solders ``Instruction`` values.
"""

from __future__ import annotations

import hashlib
import struct
from typing import Any, Dict, NamedTuple, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

CREATE_ROOT_IDENTITY = "create_root_identity"
CREATE_CONTEXT = "create_context"
REVOKE_CONTEXT = "revoke_context"
RECORD_SPENDING = "record_spending"
UPDATE_PRIVACY_LEVEL = "update_privacy_level"


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


# name -> (arg names, struct layout)
_ARGS: Dict[str, Tuple[Tuple[str, ...], struct.Struct]] = {
    CREATE_ROOT_IDENTITY: (("privacy_level",), struct.Struct("<B")),
    CREATE_CONTEXT: (("context_type", "max_per_transaction"), struct.Struct("<BQ")),
    REVOKE_CONTEXT: ((), struct.Struct("<")),
    RECORD_SPENDING: (("amount",), struct.Struct("<Q")),
    UPDATE_PRIVACY_LEVEL: (("new_privacy_level",), struct.Struct("<B")),
}
_BY_DISCRIMINATOR = {instruction_discriminator(name): name for name in _ARGS}


class DecodedInstruction(NamedTuple):
    name: str
    args: Dict[str, Any]


def _encode(name: str, *values: int) -> bytes:
    _, layout = _ARGS[name]
    return instruction_discriminator(name) + layout.pack(*values)


def decode_instruction(data: bytes) -> DecodedInstruction:
    """Inverse of the builders below. Raises ValueError for unknown data."""
    name = _BY_DISCRIMINATOR.get(bytes(data[:8]))
    if name is None:
        raise ValueError("Unknown instruction discriminator")
    fields, layout = _ARGS[name]
    body = bytes(data[8:])
    if len(body) != layout.size:
        raise ValueError(f"{name}: expected {layout.size} argument bytes, got {len(body)}")
    return DecodedInstruction(name, dict(zip(fields, layout.unpack(body))))


# ── Builders ──

def create_root_identity(
    program_id: Pubkey, user: Pubkey, root: Pubkey, privacy_level: int,
) -> Instruction:
    return Instruction(
        program_id=program_id,
        accounts=[
            AccountMeta(user, is_signer=True, is_writable=True),
            AccountMeta(root, is_signer=False, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
        data=_encode(CREATE_ROOT_IDENTITY, privacy_level),
    )


def create_context(
    program_id: Pubkey,
    user: Pubkey,
    root: Pubkey,
    context: Pubkey,
    context_type: int,
    max_per_transaction: int,
) -> Instruction:
    return Instruction(
        program_id=program_id,
        accounts=[
            AccountMeta(user, is_signer=True, is_writable=True),
            AccountMeta(root, is_signer=False, is_writable=True),
            AccountMeta(context, is_signer=False, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
        data=_encode(CREATE_CONTEXT, context_type, max_per_transaction),
    )


def revoke_context(program_id: Pubkey, user: Pubkey, root: Pubkey, context: Pubkey) -> Instruction:
    return Instruction(
        program_id=program_id,
        accounts=[
            AccountMeta(user, is_signer=True, is_writable=True),
            AccountMeta(root, is_signer=False, is_writable=False),
            AccountMeta(context, is_signer=False, is_writable=True),
        ],
        data=_encode(REVOKE_CONTEXT),
    )


def record_spending(
    program_id: Pubkey, user: Pubkey, root: Pubkey, context: Pubkey, amount: int,
) -> Instruction:
    return Instruction(
        program_id=program_id,
        accounts=[
            AccountMeta(user, is_signer=True, is_writable=True),
            AccountMeta(root, is_signer=False, is_writable=False),
            AccountMeta(context, is_signer=False, is_writable=True),
        ],
        data=_encode(RECORD_SPENDING, amount),
    )


def update_privacy_level(
    program_id: Pubkey, user: Pubkey, root: Pubkey, new_privacy_level: int,
) -> Instruction:
    return Instruction(
        program_id=program_id,
        accounts=[
            AccountMeta(user, is_signer=True, is_writable=True),
            AccountMeta(root, is_signer=False, is_writable=True),
        ],
        data=_encode(UPDATE_PRIVACY_LEVEL, new_privacy_level),
    )
