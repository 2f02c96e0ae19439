from typing import Literal, Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "PRISM"
    API_V1_STR: str = "/api/v1"

    # Deployment
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Ledger RPC
    RPC_URL: str = "http://127.0.0.1:8899"
    RPC_TIMEOUT_SECONDS: float = 30.0
    COMMITMENT: Literal["processed", "confirmed", "finalized"] = "confirmed"
    PROGRAM_ID: str = "DkD3vtS6K8dJFnGmm9X9CphNDU5LYTYyP8Ve5EEVENdu"

    # Signer (base58 32-byte seed or 64-byte secret key). Empty = read-only client.
    WALLET_SECRET_KEY: str = ""

    # Confirmation polling (exponential backoff)
    CONFIRMATION_INITIAL_DELAY: float = 0.25
    CONFIRMATION_BACKOFF: float = 2.0
    CONFIRMATION_MAX_DELAY: float = 4.0
    CONFIRMATION_TIMEOUT: float = 30.0

    # Identity lifecycle
    CONTEXT_INDEX_RETRIES: int = 3
    DEFAULT_MAX_PER_TRANSACTION: int = 1_000_000_000
    DEFAULT_PRIVACY_LEVEL: int = 1

    # Solvency proving toolchain
    CIRCUIT_ARTIFACT_PATH: Optional[str] = None
    CIRCUIT_PROJECT_DIR: Optional[str] = None
    NARGO_BINARY: str = "nargo"
    BB_BINARY: str = "bb"
    PROOF_FALLBACK_ON_BACKEND_ERROR: bool = True

    class Config:
        case_sensitive = True
        env_file = ".env"

settings = Settings()
