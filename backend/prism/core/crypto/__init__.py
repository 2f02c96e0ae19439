"""
PRISM cryptographic primitives.

Public API:
    - Pubkey, Keypair:        solders ledger addresses and ed25519 signers.
    - load_keypair:           Wallet loading from configuration.
    - AddressDeriver:         Deterministic off-curve identity addresses.
    - SolvencyProofEngine:    balance ≥ threshold proofs, cryptographic or simulated.
    - ProvingBackend:         Opaque execute/prove/verify capability.
"""

from prism.core.crypto.keys import Keypair, Pubkey, keypair_from_label, load_keypair
from prism.core.crypto.derivation import AddressDeriver, DerivedAddress, find_program_address
from prism.core.crypto.backends import CircuitArtifact, NoirCliBackend, ProvingBackend
from prism.core.crypto.solvency_prover import (
    EngineState,
    ProverMode,
    PublicInputs,
    SolvencyProof,
    SolvencyProofEngine,
)

__all__ = [
    "Pubkey",
    "Keypair",
    "load_keypair",
    "keypair_from_label",
    "AddressDeriver",
    "DerivedAddress",
    "find_program_address",
    "CircuitArtifact",
    "ProvingBackend",
    "NoirCliBackend",
    "SolvencyProofEngine",
    "SolvencyProof",
    "PublicInputs",
    "ProverMode",
    "EngineState",
]
