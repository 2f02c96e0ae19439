"""
Ledger access for the identity program.

    - RootIdentity / ContextIdentity:  account records + binary codec
    - Transaction:                     legacy message compilation and signing
    - LedgerClient:                    submit/fetch capability
    - RpcLedgerClient:                 JSON-RPC implementation (httpx)
    - InMemoryLedger:                  in-process program emulation
"""

from prism.infrastructure.ledger.accounts import ContextIdentity, RootIdentity
from prism.infrastructure.ledger.transaction import Transaction
from prism.infrastructure.ledger.client import (
    LedgerClient,
    RpcLedgerClient,
    classify_submission_error,
)
from prism.infrastructure.ledger.program import InMemoryLedger

__all__ = [
    "RootIdentity",
    "ContextIdentity",
    "Transaction",
    "LedgerClient",
    "RpcLedgerClient",
    "InMemoryLedger",
    "classify_submission_error",
]
