"""
AddressDeriver — deterministic, signer-free identity addresses.

    root:     seeds ["root", owner]
    context:  seeds ["context", root, u16_le(index)]

Addresses are program-derived: ``Pubkey.find_program_address`` hashes the
seeds with a nonce, the program id and the derivation marker, walking the
nonce down from 255 until the candidate is NOT an ed25519 curve point.
No private key can ever sign for the result, and anyone holding the
public inputs reproduces the same (address, nonce) pair.
"""

from __future__ import annotations

import struct
from typing import NamedTuple, Sequence

from solders.pubkey import Pubkey

from prism.core.errors import AddressDerivationError
from prism.core.validation import validate_context_index

MAX_SEED_LENGTH = 32
# One slot is reserved for the nonce appended during the search.
MAX_SEEDS = 15

ROOT_SEED = b"root"
CONTEXT_SEED = b"context"


class DerivedAddress(NamedTuple):
    address: Pubkey
    nonce: int


def _check_seeds(seeds: Sequence[bytes], program_id: Pubkey) -> None:
    if len(seeds) > MAX_SEEDS:
        raise AddressDerivationError(
            f"At most {MAX_SEEDS} seeds can be derived from",
            "INVALID_SEEDS",
            context={"program_id": str(program_id), "seed_count": len(seeds)},
        )
    for seed in seeds:
        if len(seed) > MAX_SEED_LENGTH:
            raise AddressDerivationError(
                f"Seed longer than {MAX_SEED_LENGTH} bytes",
                "INVALID_SEEDS",
                context={"program_id": str(program_id), "seed_length": len(seed)},
            )


def find_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> DerivedAddress:
    """Highest nonce in 255 → 1 whose address is off the curve."""
    _check_seeds(seeds, program_id)
    address, nonce = Pubkey.find_program_address(list(seeds), program_id)
    return DerivedAddress(address, nonce)


class AddressDeriver:
    """
    Pure mapping from identity key fields to derived addresses.

    Stateless apart from the program id that namespaces every address.

    Usage:
        deriver = AddressDeriver(program_id)
        root, root_nonce = deriver.derive_root(owner)
        ctx, ctx_nonce = deriver.derive_context(root, 0)
    """

    def __init__(self, program_id: Pubkey) -> None:
        self.program_id = program_id

    def derive_root(self, owner: Pubkey) -> DerivedAddress:
        return find_program_address([ROOT_SEED, bytes(owner)], self.program_id)

    def derive_context(self, root_address: Pubkey, context_index: int) -> DerivedAddress:
        index = validate_context_index(context_index)
        return find_program_address(
            [CONTEXT_SEED, bytes(root_address), struct.pack("<H", index)],
            self.program_id,
        )
