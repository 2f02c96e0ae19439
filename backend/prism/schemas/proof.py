from typing import List, Optional

from pydantic import BaseModel, Field

from prism.core.types import U64_MAX


class SolvencyProofRequest(BaseModel):
    """The balance is private to the prover and never echoed back."""
    actual_balance: int = Field(..., ge=0, le=U64_MAX)
    threshold: int = Field(..., ge=0, le=U64_MAX)


class PublicInputs(BaseModel):
    threshold: int
    isSolvent: bool


class SolvencyProofPayload(BaseModel):
    proof: str = Field(..., description="Base64-encoded proof bytes.")
    publicInputs: PublicInputs
    timestamp: int
    mode: str = "cryptographic"


class VerifyResponse(BaseModel):
    valid: bool
    proof_mode: str
    engine_mode: Optional[str] = None
    warning: Optional[str] = None


class CircuitInfoOut(BaseModel):
    name: str
    inputs: List[str]
    outputs: List[str]
    mode: Optional[str] = None
    backend: Optional[str] = None
