import asyncio
import hashlib
import json
from typing import Dict, List, Sequence

import pytest

from prism.core.config import Settings
from prism.core.crypto.backends import CircuitArtifact, ProvingBackend
from prism.core.crypto.keys import keypair_from_label
from prism.core.types import LAMPORTS_PER_UNIT
from prism.infrastructure.ledger.program import InMemoryLedger
from prism.services.identity_service import IdentityLifecycle


class SleepRecorder:
    """Stands in for asyncio.sleep: records delays, yields once, never waits."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeBackend(ProvingBackend):
    """Deterministic stand-in for the Noir toolchain."""

    name = "fake"

    def __init__(self, fail_prove: bool = False, fail_verify: bool = False):
        self.fail_prove = fail_prove
        self.fail_verify = fail_verify
        self.calls: List[tuple] = []
        self.closed = False

    async def execute(self, inputs: Dict[str, str]) -> bytes:
        self.calls.append(("execute", dict(inputs)))
        return json.dumps(inputs, sort_keys=True).encode()

    async def prove(self, witness: bytes) -> bytes:
        self.calls.append(("prove", witness))
        if self.fail_prove:
            raise RuntimeError("bb prove crashed")
        return b"PROOF" + hashlib.sha256(witness).digest()

    async def verify(self, proof: bytes, public_inputs: Sequence[str]) -> bool:
        self.calls.append(("verify", list(public_inputs)))
        if self.fail_verify:
            raise RuntimeError("bb verify crashed")
        return proof.startswith(b"PROOF")

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def artifact_path(tmp_path):
    path = tmp_path / "solvency_proof.json"
    path.write_text(json.dumps({
        "name": "solvency_proof",
        "noir_version": "1.0.0-beta.3",
        "bytecode": "H4sIAAAAAAAA/+1ZS2/TQBCeTdI2pS1NH0AF",
        "abi": {"parameters": [{"name": "actual_balance"}, {"name": "threshold"}]},
    }))
    return path


@pytest.fixture
def settings(tmp_path):
    return Settings(
        CONFIRMATION_INITIAL_DELAY=0.01,
        CONFIRMATION_BACKOFF=2.0,
        CONFIRMATION_MAX_DELAY=0.05,
        CONFIRMATION_TIMEOUT=0.5,
        CONTEXT_INDEX_RETRIES=3,
        CIRCUIT_ARTIFACT_PATH=str(tmp_path / "missing" / "solvency_proof.json"),
        WALLET_SECRET_KEY="",
    )


@pytest.fixture
def fast_sleep():
    return SleepRecorder()


@pytest.fixture
def wallet():
    return keypair_from_label("owner-O")


@pytest.fixture
def ledger(settings, wallet):
    ledger = InMemoryLedger(settings=settings, clock=lambda: 1_700_000_000.0)
    ledger.airdrop(wallet.pubkey(), 100 * LAMPORTS_PER_UNIT)
    return ledger


@pytest.fixture
def lifecycle(ledger, wallet, settings, fast_sleep):
    return IdentityLifecycle(ledger, wallet=wallet, settings=settings, sleep=fast_sleep)


@pytest.fixture
def make_lifecycle(ledger, settings, fast_sleep):
    def _make(wallet=None, target_ledger=None):
        return IdentityLifecycle(
            target_ledger or ledger, wallet=wallet, settings=settings, sleep=fast_sleep,
        )
    return _make
