"""
PRISM Demo — end-to-end identity and solvency walkthrough.

Runs the full flow against the in-memory ledger by default: root identity,
two contexts, a revocation, a spend against a cap, and a dark-pool access
with a solvency proof. Pass --rpc to run against the configured RPC_URL
with WALLET_SECRET_KEY as signer instead.

Usage:
    python scripts/prism_demo.py
    python scripts/prism_demo.py --balance 500000 --threshold 10000
    python scripts/prism_demo.py --rpc
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "backend"))

from prism.core.config import settings
from prism.core.crypto.keys import Keypair
from prism.core.errors import AlreadyRevokedError, PrismError, ProgramRejectedError
from prism.core.types import LAMPORTS_PER_UNIT, ContextType, PrivacyLevel
from prism.infrastructure.ledger.program import InMemoryLedger
from prism.services.prism_client import PrismClient


def _build_client(use_rpc: bool) -> PrismClient:
    if use_rpc:
        return PrismClient.from_settings(settings)
    wallet = Keypair()
    ledger = InMemoryLedger(settings=settings)
    ledger.airdrop(wallet.pubkey(), 10 * LAMPORTS_PER_UNIT)
    return PrismClient(ledger, wallet=wallet, settings=settings)


def _section(title: str) -> None:
    print(f"\n{'═' * 72}\n  {title}\n{'═' * 72}")


async def run(args: argparse.Namespace) -> int:
    client = _build_client(args.rpc)
    await client.initialize()
    identity = client.identity

    try:
        _section("CLIENT")
        print(json.dumps(client.get_info(), indent=2))

        _section("ROOT IDENTITY")
        root = await identity.ensure_root(PrivacyLevel.HIGH)
        print(f"  address        {root.address}")
        print(f"  privacy level  {PrivacyLevel(root.privacy_level).name}")
        print(f"  contexts       {root.context_count}")

        _section("CONTEXTS")
        defi = await identity.create_context(ContextType.DEFI, 5 * LAMPORTS_PER_UNIT)
        social = await identity.create_context(ContextType.SOCIAL, LAMPORTS_PER_UNIT)
        for ctx in (defi, social):
            print(f"  #{ctx.context_index}  {ContextType(ctx.context_type).name:<8} {ctx.address}")

        await identity.revoke_context(defi.context_index)
        print(f"  revoked #{defi.context_index}")
        try:
            await identity.revoke_context(defi.context_index)
        except AlreadyRevokedError as exc:
            print(f"  second revocation rejected: {exc.code}")

        _section("SPENDING")
        spent = await identity.record_spending(social.context_index, LAMPORTS_PER_UNIT // 2)
        print(f"  total spent on #{spent.context_index}: {spent.total_spent}")
        try:
            await identity.record_spending(social.context_index, 2 * LAMPORTS_PER_UNIT)
        except ProgramRejectedError as exc:
            print(f"  over-cap spend rejected: {exc.program_error_name}")

        _section("DARK POOL ACCESS")
        access = await client.quick_dark_pool_access(args.balance, args.threshold)
        print(f"  context        #{access.context.context_index}")
        print(f"  proof mode     {access.proof.mode.value}")
        print(f"  access         {'GRANTED' if access.access_granted else 'DENIED'}")
        if access.proof.is_simulated:
            print("  WARNING: simulated proof, no cryptographic assurance")

        contexts = await identity.list_contexts()
        print(f"\n  {len(contexts)} contexts, {sum(1 for c in contexts if c.revoked)} revoked")
    except PrismError as exc:
        print(f"\n  FAILED: {exc.code}: {exc.message}")
        return 1
    finally:
        await client.aclose()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="PRISM end-to-end demo")
    parser.add_argument("--balance", type=int, default=500_000, help="Private balance to prove against")
    parser.add_argument("--threshold", type=int, default=10_000, help="Public solvency threshold")
    parser.add_argument("--rpc", action="store_true", help="Use RPC_URL / WALLET_SECRET_KEY from settings")
    parser.add_argument("--verbose", action="store_true", help="Show component logs")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
