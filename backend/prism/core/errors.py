"""
PRISM error taxonomy.

Every failure surfaced by the SDK is a PrismError carrying a stable
machine-readable ``code`` plus a ``context`` dict, so callers can decide
between re-fetching, retrying, or giving up without parsing messages.

    PrismError
    ├── PrismValidationError      bad input, raised before any I/O
    ├── AddressDerivationError    seeds cannot form a program address (configuration error)
    ├── LifecycleError            identity state conflicts
    ├── PrismNetworkError         ledger submission / query failures
    └── ProofError                solvency proof failures
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional


class PrismError(Exception):
    """Base class for all PRISM errors."""

    default_code = "PRISM_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context = context or {}
        self.timestamp = int(time.time() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging and HTTP error bodies."""
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
            "timestamp": self.timestamp,
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return str(value)


# ── Validation ──

class PrismValidationError(PrismError):
    """Raised when an input is malformed or out of range."""

    default_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        field: Optional[str] = None,
        value: Any = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        ctx = dict(context or {})
        if field is not None:
            ctx.setdefault("field", field)
            ctx.setdefault("value", value)
        super().__init__(message, code, ctx)
        self.field = field
        self.value = value


class AddressDerivationError(PrismError):
    """Seeds exceed the runtime's derivation limits. Never caused by user input."""

    default_code = "ADDRESS_DERIVATION_FAILED"


# ── Lifecycle ──

class LifecycleError(PrismError):
    default_code = "LIFECYCLE_ERROR"


class AlreadyExistsError(LifecycleError):
    """The root or context account is already initialized. Re-fetch it."""

    default_code = "ALREADY_EXISTS"


class NotFoundError(LifecycleError):
    default_code = "NOT_FOUND"


class AlreadyRevokedError(LifecycleError):
    """Revocation is one-way and deliberately not idempotent."""

    default_code = "ALREADY_REVOKED"


class IndexConflictError(LifecycleError):
    """The candidate context index was taken by a concurrent creation."""

    default_code = "INDEX_CONFLICT"


class MutationInFlightError(LifecycleError):
    """This client instance already has a mutation outstanding."""

    default_code = "MUTATION_IN_FLIGHT"


# ── Network ──

class PrismNetworkError(PrismError):
    """
    Ledger submission or query failure.

    ``reason`` holds a sub-reason parsed from the ledger's diagnostic logs
    when one could be extracted; ``logs`` keeps the raw lines.
    """

    default_code = "NETWORK_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        reason: Optional[str] = None,
        logs: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code, context)
        self.reason = reason
        self.logs = list(logs or [])

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["reason"] = self.reason
        out["logs"] = self.logs
        return out


class WalletNotReadyError(PrismNetworkError):
    """No signing capability is configured. Raised before any network call."""

    default_code = "WALLET_NOT_READY"


class InsufficientFundsError(PrismNetworkError):
    default_code = "INSUFFICIENT_FUNDS"


class ProgramRejectedError(PrismNetworkError):
    """Any other ledger-side rejection, with the program's diagnostic."""

    default_code = "PROGRAM_REJECTED"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        reason: Optional[str] = None,
        logs: Optional[List[str]] = None,
        program_error_code: Optional[int] = None,
        program_error_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code, reason, logs, context)
        self.program_error_code = program_error_code
        self.program_error_name = program_error_name

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["program_error_code"] = self.program_error_code
        out["program_error_name"] = self.program_error_name
        return out


class ConfirmationTimeoutError(PrismNetworkError):
    """
    The submission was accepted but commitment was not observed in time.

    The outcome is inconclusive: re-query ledger state before assuming
    the mutation failed.
    """

    default_code = "CONFIRMATION_TIMEOUT"

    def __init__(
        self,
        message: str,
        signature: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        ctx = dict(context or {})
        if signature:
            ctx.setdefault("signature", signature)
        super().__init__(message, context=ctx)
        self.signature = signature


# ── Proofs ──

class ProofError(PrismError):
    default_code = "PROOF_ERROR"


class ProofWouldFailError(ProofError):
    """The solvency statement is false, so no proof can exist."""

    default_code = "PROOF_WOULD_FAIL"


class ProofBackendError(ProofError):
    """Backend failure surfaced because per-call fallback is disabled."""

    default_code = "PROOF_BACKEND_FAILURE"
