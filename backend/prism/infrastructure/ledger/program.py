"""
InMemoryLedger — the identity program's rules, executed in-process.

A drop-in LedgerClient for tests, demos and local development. It runs the
same checks the deployed program and runtime enforce, in the same order:

    runtime   signatures valid · blockhash known · not a replay · fee payable
    accounts  root/context addresses match their seeds · owner authorized ·
              referenced accounts initialized · new accounts not in use
    handler   privacy_level ≤ 4 · context_type ≤ 5 · not already revoked ·
              amount ≤ max_per_transaction · total_spent fits in u64

Every transaction executes against a copy of the account map and is
committed only if all instructions succeed, so a rejected transaction
leaves no partial state. Committed transactions keep their runtime logs,
including one ``Program data:`` event line per instruction (see events.py).
Rejections are rendered as runtime logs and classified through
``classify_submission_error``, exactly like RPC errors.

Usage:
    ledger = InMemoryLedger()
    ledger.airdrop(wallet.pubkey(), 10 * LAMPORTS_PER_UNIT)
    lifecycle = IdentityLifecycle(ledger, wallet=wallet)
"""

from __future__ import annotations

import hashlib
import itertools
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from prism.core.config import Settings, settings as default_settings
from prism.core.crypto.derivation import AddressDeriver
from prism.core.crypto.keys import SYSTEM_PROGRAM_ID, Hash, Pubkey, Signature
from prism.core.errors import PrismNetworkError
from prism.core.types import U16_MAX, U64_MAX, ContextType, PrivacyLevel
from prism.infrastructure.ledger import events, instructions as ix
from prism.infrastructure.ledger.accounts import AccountDecodeError, ContextIdentity, RootIdentity
from prism.infrastructure.ledger.client import (
    ACCOUNT_NOT_INITIALIZED,
    CONSTRAINT_SEEDS,
    FRAMEWORK_ERRORS,
    PROGRAM_ERROR_NUMBERS,
    PROGRAM_ERRORS,
    SYSTEM_ACCOUNT_ALREADY_IN_USE,
    SYSTEM_INSUFFICIENT_FUNDS,
    LedgerClient,
    classify_submission_error,
)
from prism.infrastructure.ledger.transaction import (
    Transaction,
    decompile,
    transaction_id,
    verify_signatures,
)

FEE_PER_SIGNATURE = 5_000
RENT_LAMPORTS_PER_BYTE = 6_960  # per byte, two years of rent
ACCOUNT_STORAGE_OVERHEAD = 128
RECENT_BLOCKHASHES = 150


def rent_exempt_minimum(data_len: int) -> int:
    return (ACCOUNT_STORAGE_OVERHEAD + data_len) * RENT_LAMPORTS_PER_BYTE


@dataclass(frozen=True)
class AccountState:
    lamports: int
    data: bytes = b""
    owner: Pubkey = SYSTEM_PROGRAM_ID


class ProgramRevert(Exception):
    """
    A failed instruction. Equivalent to an on-chain revert: the transaction
    is discarded and ``logs`` carry the runtime diagnostic.
    """

    def __init__(self, error_number: int, logs: List[str]) -> None:
        self.error_number = error_number
        self.logs = logs
        super().__init__(f"custom program error: {error_number:#x}")


class InMemoryLedger(LedgerClient):
    """
    Args:
        program_id: Identity program address; defaults to settings.PROGRAM_ID.
        confirmation_lag: Status polls that report 'processed' before a
            transaction reports 'confirmed'.
        stall_confirmations: Never report beyond 'processed'. Lets callers
            exercise the confirmation-timeout path.
    """

    def __init__(
        self,
        program_id: Optional[Pubkey] = None,
        settings: Optional[Settings] = None,
        confirmation_lag: int = 0,
        stall_confirmations: bool = False,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        settings = settings or default_settings
        self.program_id = program_id or Pubkey.from_string(settings.PROGRAM_ID)
        self.deriver = AddressDeriver(self.program_id)
        self.confirmation_lag = confirmation_lag
        self.stall_confirmations = stall_confirmations
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

        self._accounts: Dict[Pubkey, AccountState] = {}
        self._statuses: Dict[str, int] = {}  # signature -> status polls served
        self._logs: Dict[str, List[str]] = {}
        self._blockhashes: List[str] = []
        self._slot = itertools.count(1)
        self.submissions: List[Transaction] = []

    # ── Test / local helpers ──

    def airdrop(self, address: Pubkey, lamports: int) -> None:
        current = self._accounts.get(address, AccountState(0))
        self._accounts[address] = replace(current, lamports=current.lamports + lamports)
        self._logger.info(f"[LEDGER] Airdropped {lamports} lamports to {address}")

    async def request_airdrop(self, address: Pubkey, lamports: int) -> str:
        self.airdrop(address, lamports)
        signature = str(Signature(hashlib.sha512(f"airdrop:{address}:{next(self._slot)}".encode()).digest()))
        self._statuses[signature] = 0
        return signature

    @property
    def transaction_count(self) -> int:
        return len(self._statuses)

    def get_transaction_logs(self, signature: str) -> Optional[List[str]]:
        """Runtime logs of a committed transaction, or None if it never landed."""
        logs = self._logs.get(signature)
        return list(logs) if logs is not None else None

    # ── LedgerClient ──

    async def get_latest_blockhash(self) -> str:
        blockhash = str(Hash(hashlib.sha256(f"blockhash:{next(self._slot)}".encode()).digest()))
        self._blockhashes.append(blockhash)
        del self._blockhashes[:-RECENT_BLOCKHASHES]
        return blockhash

    async def fetch_account(self, address: Pubkey) -> Optional[bytes]:
        account = self._accounts.get(address)
        if account is None or account.owner != self.program_id:
            return None
        return account.data

    async def get_balance(self, address: Pubkey) -> int:
        account = self._accounts.get(address)
        return account.lamports if account else 0

    async def get_signature_status(self, signature: str) -> Optional[str]:
        if signature not in self._statuses:
            return None
        polls = self._statuses[signature] = self._statuses[signature] + 1
        if self.stall_confirmations or polls <= self.confirmation_lag:
            return "processed"
        return "confirmed"

    async def submit(self, transaction: Transaction) -> str:
        if not verify_signatures(transaction):
            raise PrismNetworkError(
                "Transaction signature verification failure", "SIGNATURE_VERIFICATION_FAILED",
            )
        if str(transaction.message.recent_blockhash) not in self._blockhashes:
            raise PrismNetworkError("Blockhash not found", "BLOCKHASH_NOT_FOUND")
        signature = transaction_id(transaction)
        fee_payer = transaction.message.account_keys[0]
        if signature in self._statuses:
            raise PrismNetworkError(
                "This transaction has already been processed", "DUPLICATE_TRANSACTION",
                context={"signature": signature},
            )

        state = dict(self._accounts)
        logs: List[str] = []
        fee = FEE_PER_SIGNATURE * len(transaction.signatures)
        payer = state.get(fee_payer, AccountState(0))
        if payer.lamports < fee:
            raise classify_submission_error(
                "Transaction simulation failed: Attempt to debit an account but found no "
                "record of a prior credit.",
                logs,
            )
        state[fee_payer] = replace(payer, lamports=payer.lamports - fee)

        for index, instruction in enumerate(decompile(transaction.message)):
            try:
                self._execute(state, instruction, logs)
            except ProgramRevert as revert:
                logs.append(f"Program {instruction.program_id} failed: {revert}")
                self._logger.info(f"[LEDGER] Rejected {signature[:12]}…: {revert}")
                raise classify_submission_error(
                    f"Transaction simulation failed: Error processing Instruction {index}: {revert}",
                    logs,
                    context={"instruction": index},
                ) from None

        self._accounts = state
        self._statuses[signature] = 0
        self._logs[signature] = logs
        self.submissions.append(transaction)
        self._logger.info(f"[LEDGER] Committed {signature[:12]}… ({len(logs)} log lines)")
        return signature

    # ═══════════════════════════════════════════════════════════════════════════
    # PROGRAM
    # ═══════════════════════════════════════════════════════════════════════════

    def _execute(self, state: Dict[Pubkey, AccountState], instruction: ix.Instruction, logs: List[str]) -> None:
        if instruction.program_id != self.program_id:
            raise PrismNetworkError(
                f"Unsupported program {instruction.program_id}", "UNSUPPORTED_PROGRAM",
            )
        logs.append(f"Program {self.program_id} invoke [1]")
        try:
            decoded = ix.decode_instruction(instruction.data)
        except ValueError:
            logs.append("Program log: Fallback functions are not supported")
            raise ProgramRevert(101, logs) from None

        logs.append(f"Program log: Instruction: {_title(decoded.name)}")
        handler = getattr(self, f"_ix_{decoded.name}")
        handler(state, instruction.accounts, logs, **decoded.args)
        logs.append(f"Program {self.program_id} success")

    # ── Handlers ──

    def _ix_create_root_identity(self, state, accounts, logs, privacy_level: int) -> None:
        user, root_meta = self._signer(accounts[0], logs), accounts[1]
        expected, nonce = self.deriver.derive_root(user)
        if root_meta.pubkey != expected:
            raise self._anchor(CONSTRAINT_SEEDS, "root_identity", logs)
        self._ensure_unused(state, expected, logs)
        if privacy_level > max(PrivacyLevel):
            raise self._anchor(PROGRAM_ERROR_NUMBERS["InvalidPrivacyLevel"], None, logs)

        record = RootIdentity(
            owner=user,
            created_at=int(self._clock()),
            privacy_level=PrivacyLevel(privacy_level),
            context_count=0,
            nonce=nonce,
        )
        self._create(state, user, expected, record.encode(), logs)
        logs.append(events.encode_event(events.RootIdentityCreated(
            owner=user, privacy_level=privacy_level, timestamp=record.created_at,
        )))

    def _ix_create_context(self, state, accounts, logs, context_type: int, max_per_transaction: int) -> None:
        user = self._signer(accounts[0], logs)
        root_address, root = self._load_root(state, user, accounts[1].pubkey, logs)
        context_meta = accounts[2]

        expected, nonce = self.deriver.derive_context(root_address, root.context_count)
        if context_meta.pubkey != expected:
            raise self._anchor(CONSTRAINT_SEEDS, "context_identity", logs)
        self._ensure_unused(state, expected, logs)
        if context_type > max(ContextType):
            raise self._anchor(PROGRAM_ERROR_NUMBERS["InvalidContextType"], None, logs)
        if root.context_count >= U16_MAX:
            logs.append("Program log: panicked at 'called `Option::unwrap()` on a `None` value'")
            raise ProgramRevert(0x4000, logs)

        record = ContextIdentity(
            root_identity=root_address,
            context_type=ContextType(context_type),
            created_at=int(self._clock()),
            max_per_transaction=max_per_transaction,
            total_spent=0,
            revoked=False,
            context_index=root.context_count,
            nonce=nonce,
        )
        self._create(state, user, expected, record.encode(), logs)
        self._store(state, root_address, replace(root, context_count=root.context_count + 1).encode())
        logs.append(events.encode_event(events.ContextCreated(
            root_identity=root_address,
            context_identity=expected,
            context_type=context_type,
            max_per_transaction=max_per_transaction,
            context_index=record.context_index,
            timestamp=record.created_at,
        )))

    def _ix_revoke_context(self, state, accounts, logs) -> None:
        user = self._signer(accounts[0], logs)
        root_address, _ = self._load_root(state, user, accounts[1].pubkey, logs)
        context_address, context = self._load_context(state, root_address, accounts[2].pubkey, logs)
        if context.revoked:
            raise self._anchor(PROGRAM_ERROR_NUMBERS["ContextAlreadyRevoked"], None, logs)
        self._store(state, context_address, replace(context, revoked=True).encode())
        logs.append(events.encode_event(events.ContextRevoked(
            root_identity=context.root_identity,
            context_identity=context_address,
            context_type=int(context.context_type),
            total_spent=context.total_spent,
            timestamp=int(self._clock()),
        )))

    def _ix_record_spending(self, state, accounts, logs, amount: int) -> None:
        user = self._signer(accounts[0], logs)
        root_address, _ = self._load_root(state, user, accounts[1].pubkey, logs)
        context_address, context = self._load_context(state, root_address, accounts[2].pubkey, logs)
        if context.revoked:
            raise self._anchor(PROGRAM_ERROR_NUMBERS["ContextRevoked"], None, logs)
        if amount > context.max_per_transaction:
            raise self._anchor(PROGRAM_ERROR_NUMBERS["ExceedsTransactionLimit"], None, logs)
        if context.total_spent + amount > U64_MAX:
            raise self._anchor(PROGRAM_ERROR_NUMBERS["SpendingOverflow"], None, logs)
        total_spent = context.total_spent + amount
        self._store(state, context_address, replace(context, total_spent=total_spent).encode())
        logs.append(events.encode_event(events.SpendingRecorded(
            context_identity=context_address, amount=amount, total_spent=total_spent, timestamp=int(self._clock()),
        )))

    def _ix_update_privacy_level(self, state, accounts, logs, new_privacy_level: int) -> None:
        user = self._signer(accounts[0], logs)
        root_address, root = self._load_root(state, user, accounts[1].pubkey, logs)
        if new_privacy_level > max(PrivacyLevel):
            raise self._anchor(PROGRAM_ERROR_NUMBERS["InvalidPrivacyLevel"], None, logs)
        self._store(state, root_address, replace(root, privacy_level=PrivacyLevel(new_privacy_level)).encode())
        logs.append(events.encode_event(events.PrivacyLevelUpdated(
            root_identity=root_address,
            old_level=int(root.privacy_level),
            new_level=new_privacy_level,
            timestamp=int(self._clock()),
        )))

    # ── Account constraints ──

    def _signer(self, meta: ix.AccountMeta, logs: List[str]) -> Pubkey:
        if not meta.is_signer:
            raise self._anchor(3010, "user", logs, "The given account did not sign")
        return meta.pubkey

    def _load_root(self, state, user: Pubkey, address: Pubkey, logs: List[str]):
        account = state.get(address)
        if account is None or account.owner != self.program_id:
            raise self._anchor(ACCOUNT_NOT_INITIALIZED, "root_identity", logs)
        try:
            root = RootIdentity.decode(account.data)
        except AccountDecodeError:
            raise self._anchor(3002, "root_identity", logs, "Account discriminator did not match") from None
        if address != self.deriver.derive_root(user).address:
            raise self._anchor(CONSTRAINT_SEEDS, "root_identity", logs)
        if root.owner != user:
            raise self._anchor(PROGRAM_ERROR_NUMBERS["Unauthorized"], "root_identity", logs)
        return address, root

    def _load_context(self, state, root_address: Pubkey, address: Pubkey, logs: List[str]):
        account = state.get(address)
        if account is None or account.owner != self.program_id:
            raise self._anchor(ACCOUNT_NOT_INITIALIZED, "context_identity", logs)
        try:
            context = ContextIdentity.decode(account.data)
        except AccountDecodeError:
            raise self._anchor(3002, "context_identity", logs, "Account discriminator did not match") from None
        if address != self.deriver.derive_context(context.root_identity, context.context_index).address:
            raise self._anchor(CONSTRAINT_SEEDS, "context_identity", logs)
        if context.root_identity != root_address:
            raise self._anchor(PROGRAM_ERROR_NUMBERS["ContextMismatch"], "context_identity", logs)
        return address, context

    def _ensure_unused(self, state, address: Pubkey, logs: List[str]) -> None:
        existing = state.get(address)
        if existing is not None and (existing.data or existing.owner != SYSTEM_PROGRAM_ID):
            logs.append(f"Allocate: account Address {{ address: {address}, base: None }} already in use")
            raise ProgramRevert(SYSTEM_ACCOUNT_ALREADY_IN_USE, logs)

    def _create(self, state, payer: Pubkey, address: Pubkey, data: bytes, logs: List[str]) -> None:
        rent = rent_exempt_minimum(len(data))
        funder = state.get(payer, AccountState(0))
        if funder.lamports < rent:
            logs.append(f"Transfer: insufficient lamports {funder.lamports}, need {rent}")
            raise ProgramRevert(SYSTEM_INSUFFICIENT_FUNDS, logs)
        state[payer] = replace(funder, lamports=funder.lamports - rent)
        prior = state.get(address, AccountState(0))
        state[address] = AccountState(lamports=prior.lamports + rent, data=data, owner=self.program_id)

    def _store(self, state, address: Pubkey, data: bytes) -> None:
        state[address] = replace(state[address], data=data)

    def _anchor(self, number: int, account: Optional[str], logs: List[str], message: str = None) -> ProgramRevert:
        name, default_message = PROGRAM_ERRORS.get(number) or FRAMEWORK_ERRORS.get(number) or ("Unknown", "")
        if number == 3010:
            name = "AccountNotSigner"
        elif number == 3002:
            name = "AccountDiscriminatorMismatch"
        caused_by = f"AnchorError caused by account: {account}. " if account else "AnchorError occurred. "
        logs.append(
            f"Program log: {caused_by}Error Code: {name}. Error Number: {number}. "
            f"Error Message: {message or default_message}."
        )
        return ProgramRevert(number, logs)


def _title(name: str) -> str:
    return "".join(part.capitalize() for part in name.split("_"))
