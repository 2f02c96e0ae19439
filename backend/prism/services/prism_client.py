"""
PrismClient — one object for identity lifecycle and solvency proofs.

The two subsystems share no state; the client only wires them to the same
settings and logger and adds the combined dark-pool access flow.

Usage:
    client = PrismClient.from_settings()
    await client.initialize()
    root = await client.identity.ensure_root()
    access = await client.quick_dark_pool_access(balance=500_000, threshold=10_000)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from prism.core.config import Settings, settings as default_settings
from prism.core.crypto.keys import load_keypair
from prism.core.crypto.solvency_prover import SolvencyProof, SolvencyProofEngine
from prism.core.errors import ProofWouldFailError
from prism.core.types import ContextType
from prism.core.validation import validate_amount
from prism.infrastructure.ledger.accounts import ContextIdentity
from prism.infrastructure.ledger.client import LedgerClient, RpcLedgerClient
from prism.infrastructure.ledger.program import InMemoryLedger
from prism.services.identity_service import IdentityLifecycle

VERSION = "0.1.0"


@dataclass(frozen=True)
class DarkPoolAccess:
    context: ContextIdentity
    proof: SolvencyProof
    access_granted: bool


class PrismClient:
    def __init__(
        self,
        ledger: LedgerClient,
        wallet=None,
        prover: Optional[SolvencyProofEngine] = None,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
        **lifecycle_options: Any,
    ) -> None:
        self._settings = settings or default_settings
        self._logger = logger or logging.getLogger(__name__)
        self.ledger = ledger
        self.identity = IdentityLifecycle(
            ledger, wallet=wallet, settings=self._settings, logger=self._logger, **lifecycle_options,
        )
        self.prover = prover or SolvencyProofEngine(settings=self._settings, logger=self._logger)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> "PrismClient":
        """RPC-backed client; the wallet comes from ``WALLET_SECRET_KEY`` when set."""
        settings = settings or default_settings
        wallet = load_keypair(settings.WALLET_SECRET_KEY) if settings.WALLET_SECRET_KEY else None
        return cls(RpcLedgerClient(settings=settings, logger=logger), wallet=wallet, settings=settings, logger=logger)

    async def initialize(self) -> None:
        mode = await self.prover.initialize()
        self._logger.info(
            f"[PRISM] Client ready: wallet={self.identity.owner or 'none'} prover={mode.value}"
        )

    # ── Proofs ──

    async def generate_solvency_proof(self, actual_balance: int, threshold: int) -> SolvencyProof:
        return await self.prover.generate_proof(actual_balance, threshold)

    async def verify_solvency_proof(self, proof: SolvencyProof) -> bool:
        return await self.prover.verify_proof(proof)

    async def quick_dark_pool_access(self, balance: int, threshold: int) -> DarkPoolAccess:
        """
        Open a DeFi context capped at ``balance`` and prove solvency for it.

        The solvency statement is checked before the context is created, so
        an unprovable request leaves no ledger state behind.
        """
        balance = validate_amount(balance, "balance")
        threshold = validate_amount(threshold, "threshold")
        if balance < threshold:
            raise ProofWouldFailError(
                "Insufficient balance: actual balance is below threshold",
                context={"threshold": threshold},
            )

        context = await self.identity.create_context(ContextType.DEFI, balance)
        self._logger.info(f"[PRISM] Dark pool context #{context.context_index} at {context.address}")
        proof = await self.generate_solvency_proof(balance, threshold)
        granted = await self.verify_solvency_proof(proof)
        return DarkPoolAccess(context=context, proof=proof, access_granted=granted)

    # ── Info ──

    def get_info(self) -> Dict[str, Any]:
        return {
            "version": VERSION,
            "program_id": str(self.identity.program_id),
            "network": self._network(),
            "wallet": str(self.identity.owner) if self.identity.owner else None,
            "prover_mode": self.prover.mode.value if self.prover.mode else None,
        }

    def _network(self) -> str:
        if isinstance(self.ledger, InMemoryLedger):
            return "in-memory"
        url = getattr(self.ledger, "rpc_url", "")
        if "devnet" in url:
            return "devnet"
        if "testnet" in url:
            return "testnet"
        if "127.0.0.1" in url or "localhost" in url:
            return "localnet"
        return "mainnet"

    async def aclose(self) -> None:
        try:
            await self.prover.aclose()
        finally:
            await self.ledger.aclose()
