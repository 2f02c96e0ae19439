"""
PRISM — privacy-preserving identity contexts and solvency proofs.

    from prism import PrismClient, InMemoryLedger, Keypair

    wallet = Keypair()
    ledger = InMemoryLedger()
    ledger.airdrop(wallet.pubkey(), 10 * LAMPORTS_PER_UNIT)
    client = PrismClient(ledger, wallet=wallet)
"""

from prism.core.config import Settings, settings
from prism.core.crypto.keys import Keypair, Pubkey, load_keypair
from prism.core.crypto.derivation import AddressDeriver
from prism.core.crypto.solvency_prover import ProverMode, SolvencyProof, SolvencyProofEngine
from prism.core.errors import (
    AddressDerivationError,
    AlreadyExistsError,
    AlreadyRevokedError,
    ConfirmationTimeoutError,
    IndexConflictError,
    InsufficientFundsError,
    LifecycleError,
    MutationInFlightError,
    NotFoundError,
    PrismError,
    PrismNetworkError,
    PrismValidationError,
    ProgramRejectedError,
    ProofBackendError,
    ProofError,
    ProofWouldFailError,
    WalletNotReadyError,
)
from prism.core.types import LAMPORTS_PER_UNIT, ContextType, PrivacyLevel
from prism.infrastructure.ledger import (
    ContextIdentity,
    InMemoryLedger,
    LedgerClient,
    RootIdentity,
    RpcLedgerClient,
)
from prism.services.identity_service import IdentityLifecycle
from prism.services.prism_client import VERSION as __version__, DarkPoolAccess, PrismClient
