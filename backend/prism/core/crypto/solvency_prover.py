"""
SolvencyProofEngine — prove ``balance ≥ threshold`` without revealing balance.

The engine runs in exactly one of two modes, chosen once by ``initialize()``:

    CRYPTOGRAPHIC  artifact loaded and proving backend constructed
    SIMULATED      either step failed; placeholder proofs, no soundness

Demotion to SIMULATED at initialization is permanent for the lifetime of
the instance. A backend failure *during* a single proof can additionally
degrade that one call to a simulated proof (``fallback_on_backend_error``),
or be raised as ProofBackendError when the switch is off. Every returned
SolvencyProof carries the mode that actually produced it.

KNOWN LIMITATION: in SIMULATED mode ``verify_proof`` just reads back the
embedded ``is_solvent`` flag. Anyone can hand-construct a simulated proof
claiming solvency for any threshold and it will verify. Callers that need
cryptographic assurance must check ``proof.mode`` (or ``is_mock_mode()``).

Usage:
    engine = SolvencyProofEngine()
    await engine.initialize()
    proof = await engine.generate_proof(actual_balance=500_000, threshold=10_000)
    assert await engine.verify_proof(proof)
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from prism.core.config import Settings, settings as default_settings
from prism.core.crypto.backends import (
    CIRCUIT_NAME,
    CircuitArtifact,
    NoirCliBackend,
    ProvingBackend,
)
from prism.core.errors import (
    PrismValidationError,
    ProofBackendError,
    ProofWouldFailError,
)
from prism.core.validation import validate_amount

BackendFactory = Callable[[CircuitArtifact], ProvingBackend]

SIMULATED_PROOF_PREFIX = b"MOCK_PROOF_"


class ProverMode(str, Enum):
    CRYPTOGRAPHIC = "cryptographic"
    SIMULATED = "simulated"


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


# ═══════════════════════════════════════════════════════════════════════════════
# PROOF OBJECT
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PublicInputs:
    threshold: int
    is_solvent: bool


@dataclass(frozen=True)
class SolvencyProof:
    """
    Transmittable solvency proof.

    This whole structure (not the raw backend bytes) is what must survive
    storage or transmission for later verification, because the verifier
    needs the public threshold alongside the proof.
    """

    proof: bytes
    public_inputs: PublicInputs
    timestamp: int  # unix ms
    mode: ProverMode = ProverMode.CRYPTOGRAPHIC

    @property
    def is_simulated(self) -> bool:
        return self.mode is ProverMode.SIMULATED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proof": base64.b64encode(self.proof).decode("ascii"),
            "publicInputs": {
                "threshold": self.public_inputs.threshold,
                "isSolvent": self.public_inputs.is_solvent,
            },
            "timestamp": self.timestamp,
            "mode": self.mode.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SolvencyProof":
        try:
            public = data["publicInputs"]
            proof_bytes = base64.b64decode(data["proof"], validate=True)
            threshold = validate_amount(public["threshold"], "threshold")
            is_solvent = public["isSolvent"]
            timestamp = validate_amount(data["timestamp"], "timestamp")
            mode = ProverMode(data.get("mode", ProverMode.CRYPTOGRAPHIC.value))
        except (KeyError, TypeError, ValueError) as exc:
            raise PrismValidationError(
                f"Malformed solvency proof: {exc}", "INVALID_PROOF_FORMAT", field="proof",
            ) from exc
        if not isinstance(is_solvent, bool):
            raise PrismValidationError(
                "isSolvent must be a boolean", "INVALID_PROOF_FORMAT",
                field="publicInputs.isSolvent", value=is_solvent,
            )
        return cls(
            proof=proof_bytes,
            public_inputs=PublicInputs(threshold=threshold, is_solvent=is_solvent),
            timestamp=timestamp,
            mode=mode,
        )


@dataclass(frozen=True)
class CircuitInfo:
    name: str
    inputs: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    mode: Optional[ProverMode] = None
    backend: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════════

class SolvencyProofEngine:
    """
    Dual-mode solvency prover.

    The selected mode is explicit state, set by ``initialize()``, not
    inferred from later exceptions. ``backend_factory`` builds the proving
    capability from a loaded artifact; the default drives the Noir CLI.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        backend_factory: Optional[BackendFactory] = None,
        artifact_path: Optional[str] = None,
        fallback_on_backend_error: Optional[bool] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or default_settings
        self._backend_factory = backend_factory or self._default_backend_factory
        self._artifact_path = artifact_path or self._settings.CIRCUIT_ARTIFACT_PATH
        self._fallback = (
            self._settings.PROOF_FALLBACK_ON_BACKEND_ERROR
            if fallback_on_backend_error is None
            else fallback_on_backend_error
        )
        self._logger = logger or logging.getLogger(__name__)
        self._clock = clock

        self._state = EngineState.UNINITIALIZED
        self._mode: Optional[ProverMode] = None
        self._backend: Optional[ProvingBackend] = None
        self._artifact: Optional[CircuitArtifact] = None
        self.degraded_calls = 0

    # ── State ──

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def mode(self) -> Optional[ProverMode]:
        return self._mode

    @property
    def is_initialized(self) -> bool:
        return self._state is EngineState.READY

    def is_mock_mode(self) -> bool:
        """True once the engine has settled into SIMULATED mode."""
        return self._mode is ProverMode.SIMULATED

    # ── Lifecycle ──

    async def initialize(self) -> ProverMode:
        """
        Load the circuit artifact and construct the backend.

        Idempotent. Any failure in either step demotes the engine to
        SIMULATED for the rest of its lifetime instead of propagating.
        """
        if self._state is EngineState.READY:
            return self._mode  # type: ignore[return-value]

        self._state = EngineState.INITIALIZING
        try:
            artifact = CircuitArtifact.discover(self._artifact_path)
            backend = self._backend_factory(artifact)
        except Exception as exc:
            self._logger.warning(
                f"[SOLVENCY] Proving backend unavailable ({type(exc).__name__}: {exc}). "
                f"Running in SIMULATED mode: proofs carry NO cryptographic guarantee."
            )
            self._mode = ProverMode.SIMULATED
        else:
            self._artifact = artifact
            self._backend = backend
            self._mode = ProverMode.CRYPTOGRAPHIC
            self._logger.info(
                f"[SOLVENCY] Circuit '{artifact.name}' loaded, backend={backend.name}, "
                f"mode={self._mode.value}"
            )
        self._state = EngineState.READY
        return self._mode

    def _default_backend_factory(self, artifact: CircuitArtifact) -> ProvingBackend:
        return NoirCliBackend(
            artifact,
            project_dir=self._settings.CIRCUIT_PROJECT_DIR,
            nargo_binary=self._settings.NARGO_BINARY,
            bb_binary=self._settings.BB_BINARY,
        )

    async def aclose(self) -> None:
        """Release the backend's scratch state. Call once, at shutdown."""
        if self._backend is not None:
            await self._backend.aclose()

    # ── Proving ──

    async def generate_proof(self, actual_balance: int, threshold: int) -> SolvencyProof:
        """
        Prove ``actual_balance >= threshold``.

        Inputs are validated and the statement is checked before any backend
        interaction: a false statement raises ProofWouldFailError and never
        reaches the prover.
        """
        balance = validate_amount(actual_balance, "actual_balance")
        threshold = validate_amount(threshold, "threshold")
        if balance < threshold:
            raise ProofWouldFailError(
                "Insufficient balance: actual balance is below threshold",
                context={"threshold": threshold},
            )

        if not self.is_initialized:
            await self.initialize()

        self._logger.info(f"[SOLVENCY] Generating proof: balance=[HIDDEN] threshold={threshold}")

        if self._mode is ProverMode.SIMULATED:
            return self._simulated_proof(balance, threshold)

        assert self._backend is not None
        try:
            witness = await self._backend.execute(
                {"actual_balance": str(balance), "threshold": str(threshold)}
            )
            proof_bytes = await self._backend.prove(witness)
        except Exception as exc:
            if not self._fallback:
                raise ProofBackendError(
                    f"Proof generation failed: {exc}",
                    context={"backend": self._backend.name, "threshold": threshold},
                ) from exc
            self.degraded_calls += 1
            self._logger.warning(
                f"[SOLVENCY] Backend failed during proving ({type(exc).__name__}: {exc}). "
                f"Returning a SIMULATED proof for this call."
            )
            return self._simulated_proof(balance, threshold)

        self._logger.info(f"[SOLVENCY] Proof generated ({len(proof_bytes)} bytes)")
        return SolvencyProof(
            proof=proof_bytes,
            public_inputs=PublicInputs(threshold=threshold, is_solvent=True),
            timestamp=self._now_ms(),
            mode=ProverMode.CRYPTOGRAPHIC,
        )

    def _simulated_proof(self, balance: int, threshold: int) -> SolvencyProof:
        timestamp = self._now_ms()
        return SolvencyProof(
            proof=SIMULATED_PROOF_PREFIX + f"{threshold}_{timestamp}".encode("ascii"),
            public_inputs=PublicInputs(threshold=threshold, is_solvent=balance >= threshold),
            timestamp=timestamp,
            mode=ProverMode.SIMULATED,
        )

    # ── Verification ──

    async def verify_proof(self, proof: SolvencyProof) -> bool:
        """
        Verify a solvency proof.

        SIMULATED engine: returns ``proof.public_inputs.is_solvent`` as-is.
        CRYPTOGRAPHIC engine: simulated proofs are rejected; real proofs go
        to the backend with the public threshold. Backend errors verify False.
        """
        if not self.is_initialized:
            await self.initialize()

        if self._mode is ProverMode.SIMULATED:
            return proof.public_inputs.is_solvent

        if proof.is_simulated:
            self._logger.warning(
                "[SOLVENCY] Rejecting simulated proof: engine is in cryptographic mode"
            )
            return False

        assert self._backend is not None
        try:
            ok = await self._backend.verify(proof.proof, [str(proof.public_inputs.threshold)])
        except Exception as exc:
            self._logger.error(f"[SOLVENCY] Verification failed: {exc}")
            return False
        return bool(ok) and proof.public_inputs.is_solvent

    # ── Info ──

    def get_circuit_info(self) -> CircuitInfo:
        return CircuitInfo(
            name=self._artifact.name if self._artifact else CIRCUIT_NAME,
            inputs=["actual_balance (private)", "threshold (public)"],
            outputs=["is_solvent (bool)"],
            mode=self._mode,
            backend=self._backend.name if self._backend else None,
        )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)
