"""
Ledger boundary: submit transactions, read accounts, query commitment.

``LedgerClient`` is the capability the identity lifecycle depends on.
``RpcLedgerClient`` speaks JSON-RPC over httpx; ``InMemoryLedger`` (see
program.py) emulates the identity program in-process. Both report
ledger-side rejections through ``classify_submission_error`` so callers
see the same error taxonomy regardless of backend.
"""

from __future__ import annotations

import base64
import itertools
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from prism.core.config import Settings, settings as default_settings
from prism.core.crypto.keys import Pubkey
from prism.core.errors import (
    AlreadyExistsError,
    AlreadyRevokedError,
    IndexConflictError,
    InsufficientFundsError,
    NotFoundError,
    PrismError,
    PrismNetworkError,
    ProgramRejectedError,
)
from prism.infrastructure.ledger.transaction import Transaction
from prism.infrastructure.retry import retry

# ═══════════════════════════════════════════════════════════════════════════════
# PROGRAM ERROR CODES
# ═══════════════════════════════════════════════════════════════════════════════

PROGRAM_ERRORS: Dict[int, tuple] = {
    6000: ("Unauthorized", "Unauthorized: You don't own this identity"),
    6001: ("ContextMismatch", "Context mismatch: Context doesn't belong to this root"),
    6002: ("ContextAlreadyRevoked", "Context already revoked"),
    6003: ("ContextRevoked", "Context is revoked and cannot be used"),
    6004: ("ExceedsTransactionLimit", "Amount exceeds transaction limit for this context"),
    6005: ("SpendingOverflow", "Spending overflow: Total spent would exceed u64 max"),
    6006: ("InvalidPrivacyLevel", "Invalid privacy level: Must be 0-4"),
    6007: ("InvalidContextType", "Invalid context type: Must be 0-5"),
}
PROGRAM_ERROR_NUMBERS = {name: number for number, (name, _) in PROGRAM_ERRORS.items()}

# Framework-level constraint failures the lifecycle cares about.
CONSTRAINT_SEEDS = 2006
ACCOUNT_NOT_INITIALIZED = 3012
FRAMEWORK_ERRORS: Dict[int, tuple] = {
    CONSTRAINT_SEEDS: ("ConstraintSeeds", "A seeds constraint was violated"),
    ACCOUNT_NOT_INITIALIZED: (
        "AccountNotInitialized",
        "The program expected this account to be already initialized",
    ),
}

# System program custom errors
SYSTEM_ACCOUNT_ALREADY_IN_USE = 0
SYSTEM_INSUFFICIENT_FUNDS = 1

_ANCHOR_LOG = re.compile(
    r"Error Code: (?P<name>\w+)\. Error Number: (?P<number>\d+)\. Error Message: (?P<message>.*?)\.?$"
)
_CUSTOM_ERROR = re.compile(r"custom program error: 0x(?P<hex>[0-9a-fA-F]+)")
_INSUFFICIENT_MARKERS = (
    "insufficient lamports",
    "insufficient funds",
    "no record of a prior credit",
)


def classify_submission_error(
    message: str,
    logs: Optional[List[str]] = None,
    context: Optional[Dict[str, Any]] = None,
) -> PrismError:
    """
    Map a ledger rejection (message + runtime logs) to the error taxonomy.

    Returns the error; the caller raises it.
    """
    logs = list(logs or [])
    ctx = dict(context or {})
    haystack = "\n".join([message, *logs])
    lowered = haystack.lower()

    if "already in use" in lowered:
        return AlreadyExistsError(
            "Account already exists; re-fetch it", context={**ctx, "logs": logs},
        )
    if any(marker in lowered for marker in _INSUFFICIENT_MARKERS):
        return InsufficientFundsError(
            "Insufficient balance to pay fees and rent", reason="InsufficientFunds", logs=logs, context=ctx,
        )

    name = detail = None
    number: Optional[int] = None
    for line in logs:
        match = _ANCHOR_LOG.search(line)
        if match:
            name, number, detail = match["name"], int(match["number"]), match["message"]
            break
    if number is None:
        match = _CUSTOM_ERROR.search(haystack)
        if match:
            number = int(match["hex"], 16)
            name, detail = PROGRAM_ERRORS.get(number) or FRAMEWORK_ERRORS.get(number) or (None, None)

    if number == SYSTEM_ACCOUNT_ALREADY_IN_USE:
        return AlreadyExistsError("Account already exists; re-fetch it", context={**ctx, "logs": logs})
    if number == SYSTEM_INSUFFICIENT_FUNDS and name is None:
        return InsufficientFundsError(
            "Insufficient balance to pay fees and rent", reason="InsufficientFunds", logs=logs, context=ctx,
        )
    if number == PROGRAM_ERROR_NUMBERS["ContextAlreadyRevoked"]:
        return AlreadyRevokedError("Context already revoked", context=ctx)
    if number == CONSTRAINT_SEEDS:
        return IndexConflictError(
            "Context index no longer matches the root's counter; re-read and retry", context=ctx,
        )
    if number == ACCOUNT_NOT_INITIALIZED:
        return NotFoundError(detail or "Account not initialized", context=ctx)
    if number is not None:
        return ProgramRejectedError(
            f"Program rejected transaction: {detail or message}",
            reason=name,
            logs=logs,
            program_error_code=number,
            program_error_name=name,
            context=ctx,
        )
    return PrismNetworkError(f"Transaction failed: {message}", logs=logs, context=ctx)


def describe_transaction_error(err: Any) -> str:
    """Render a structured runtime error (e.g. ``{"InstructionError": [0, {"Custom": 6002}]}``)."""
    if isinstance(err, dict) and "InstructionError" in err:
        index, inner = err["InstructionError"]
        if isinstance(inner, dict) and "Custom" in inner:
            return f"Error processing Instruction {index}: custom program error: {inner['Custom']:#x}"
        return f"Error processing Instruction {index}: {inner}"
    return str(err)


# ═══════════════════════════════════════════════════════════════════════════════
# CAPABILITY
# ═══════════════════════════════════════════════════════════════════════════════

class LedgerClient(ABC):
    """Submit/fetch boundary to the ledger. The only source of persisted state."""

    @abstractmethod
    async def get_latest_blockhash(self) -> str:
        ...

    @abstractmethod
    async def submit(self, transaction: Transaction) -> str:
        """Send a signed transaction; returns its signature or raises a classified error."""
        ...

    @abstractmethod
    async def fetch_account(self, address: Pubkey) -> Optional[bytes]:
        """Raw data of a program-owned account; None when absent or not owned by the program."""
        ...

    @abstractmethod
    async def get_signature_status(self, signature: str) -> Optional[str]:
        """'processed' | 'confirmed' | 'finalized', or None if not yet seen."""
        ...

    @abstractmethod
    async def get_balance(self, address: Pubkey) -> int:
        ...

    async def aclose(self) -> None:
        return None


# ═══════════════════════════════════════════════════════════════════════════════
# JSON-RPC CLIENT
# ═══════════════════════════════════════════════════════════════════════════════

class RpcLedgerClient(LedgerClient):
    """
    JSON-RPC ledger client over ``httpx.AsyncClient``.

    Transport failures are retried with backoff; RPC-level errors are not
    (a rejected transaction stays rejected).
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        commitment: Optional[str] = None,
        program_id: Optional[Pubkey] = None,
        timeout: Optional[float] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        transport_retries: int = 2,
        retry_delay: float = 0.5,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        settings = settings or default_settings
        self.rpc_url = rpc_url or settings.RPC_URL
        self.commitment = commitment or settings.COMMITMENT
        self.program_id = program_id or Pubkey.from_string(settings.PROGRAM_ID)
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.RPC_TIMEOUT_SECONDS, transport=transport,
        )
        self._transport_retries = transport_retries
        self._retry_delay = retry_delay
        self._logger = logger or logging.getLogger(__name__)
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: List[Any]) -> Dict[str, Any]:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}

        async def send() -> Dict[str, Any]:
            response = await self._client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            return response.json()

        try:
            body = await retry(
                send,
                retries=self._transport_retries,
                initial_delay=self._retry_delay,
                retry_on=(httpx.TransportError,),
                log=self._logger,
            )
        except httpx.HTTPError as exc:
            self._logger.error(f"[RPC] {method} failed: {exc}")
            raise PrismNetworkError(
                f"RPC {method} failed: {exc}", "RPC_UNAVAILABLE", context={"method": method},
            ) from exc
        except ValueError as exc:
            raise PrismNetworkError(
                f"RPC {method} returned invalid JSON", "RPC_BAD_RESPONSE", context={"method": method},
            ) from exc
        return body

    async def _result(self, method: str, params: List[Any]) -> Any:
        body = await self._call(method, params)
        if "error" in body:
            error = body["error"]
            raise PrismNetworkError(
                f"RPC {method} error: {error.get('message', error)}",
                "RPC_ERROR",
                context={"method": method, "rpc_code": error.get("code")},
            )
        return body.get("result")

    async def get_latest_blockhash(self) -> str:
        result = await self._result("getLatestBlockhash", [{"commitment": self.commitment}])
        return result["value"]["blockhash"]

    async def submit(self, transaction: Transaction) -> str:
        encoded = base64.b64encode(bytes(transaction)).decode("ascii")
        body = await self._call(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}],
        )
        if "error" in body:
            error = body["error"]
            data = error.get("data") or {}
            logs = data.get("logs") or []
            message = error.get("message", "")
            if data.get("err") is not None:
                message = f"{message} ({describe_transaction_error(data['err'])})"
            self._logger.warning(f"[RPC] sendTransaction rejected: {message}")
            raise classify_submission_error(message, logs)
        signature = body["result"]
        self._logger.debug(f"[RPC] submitted {signature}")
        return signature

    async def fetch_account(self, address: Pubkey) -> Optional[bytes]:
        """
        Data of a program-owned account. An address that only holds lamports
        (someone transferred to it before the program initialized it) is
        reported as absent, like an address that does not exist at all.
        """
        result = await self._result(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self.commitment}],
        )
        value = result.get("value") if result else None
        if value is None:
            return None
        if value.get("owner") != str(self.program_id):
            self._logger.debug(f"[RPC] {address} exists but is owned by {value.get('owner')}; treating as absent")
            return None
        data, _encoding = value["data"]
        raw = base64.b64decode(data)
        return raw or None

    async def get_signature_status(self, signature: str) -> Optional[str]:
        result = await self._result(
            "getSignatureStatuses", [[signature], {"searchTransactionHistory": True}],
        )
        status = (result or {}).get("value", [None])[0]
        if status is None:
            return None
        if status.get("err") is not None:
            raise classify_submission_error(
                describe_transaction_error(status["err"]), context={"signature": signature},
            )
        return status.get("confirmationStatus") or "processed"

    async def get_balance(self, address: Pubkey) -> int:
        result = await self._result("getBalance", [str(address), {"commitment": self.commitment}])
        return int(result["value"])

    async def request_airdrop(self, address: Pubkey, lamports: int) -> str:
        return await self._result("requestAirdrop", [str(address), lamports])

    async def aclose(self) -> None:
        await self._client.aclose()
