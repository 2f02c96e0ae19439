"""
Proofs API — solvency proof generation and verification.

Every proof response carries ``mode``. A ``simulated`` proof has no
cryptographic meaning, and a server running a simulated engine will
verify any simulated proof that claims solvency.
"""

import logging

from fastapi import APIRouter, Depends

from prism.api.deps import get_prism_client
from prism.core.crypto.solvency_prover import SolvencyProof
from prism.schemas.proof import (
    CircuitInfoOut,
    SolvencyProofPayload,
    SolvencyProofRequest,
    VerifyResponse,
)
from prism.services.prism_client import PrismClient

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/proofs", tags=["Proofs"])

SIMULATED_WARNING = "Simulated verification: no cryptographic assurance."


@router.post("/solvency", response_model=SolvencyProofPayload)
async def generate_solvency_proof(req: SolvencyProofRequest, client: PrismClient = Depends(get_prism_client)):
    proof = await client.generate_solvency_proof(req.actual_balance, req.threshold)
    return proof.to_dict()


@router.post("/solvency/verify", response_model=VerifyResponse)
async def verify_solvency_proof(payload: SolvencyProofPayload, client: PrismClient = Depends(get_prism_client)):
    proof = SolvencyProof.from_dict(payload.model_dump())
    valid = await client.verify_solvency_proof(proof)
    engine_mode = client.prover.mode.value if client.prover.mode else None
    simulated = proof.is_simulated or client.prover.is_mock_mode()
    return VerifyResponse(
        valid=valid,
        proof_mode=proof.mode.value,
        engine_mode=engine_mode,
        warning=SIMULATED_WARNING if simulated else None,
    )


@router.get("/circuit", response_model=CircuitInfoOut)
async def circuit_info(client: PrismClient = Depends(get_prism_client)):
    info = client.prover.get_circuit_info()
    return CircuitInfoOut(
        name=info.name,
        inputs=info.inputs,
        outputs=info.outputs,
        mode=info.mode.value if info.mode else None,
        backend=info.backend,
    )
