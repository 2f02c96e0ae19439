"""
IdentityLifecycle — root and context identity provisioning on the ledger.

    per owner:    NoRoot ──ensure_root──▶ RootActive
    per context:  Unprovisioned ──create_context──▶ Active ──revoke_context──▶ Revoked

Mutations are signed by the configured wallet, so the owner of every
mutation is the wallet's public key. Reads accept any owner.

Concurrency: one mutation at a time per instance (MutationInFlightError
otherwise). That flag only prevents self-collision. Two instances racing
on the same root can pick the same candidate context index; the ledger
rejects the loser, and ``create_context`` re-reads ``context_count`` and
retries up to ``CONTEXT_INDEX_RETRIES`` times before raising
IndexConflictError.

After each submission the lifecycle waits for the configured commitment
with exponential backoff and then re-reads state until the mutation is
visible. Both waits are bounded; exhausting either raises
ConfirmationTimeoutError, which is inconclusive: re-query before retrying.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence, Union

from prism.core.config import Settings, settings as default_settings
from prism.core.crypto.derivation import AddressDeriver
from prism.core.crypto.keys import Pubkey
from prism.core.errors import (
    AlreadyExistsError,
    AlreadyRevokedError,
    ConfirmationTimeoutError,
    IndexConflictError,
    MutationInFlightError,
    NotFoundError,
    PrismNetworkError,
    PrismValidationError,
    WalletNotReadyError,
)
from prism.core.types import U16_MAX, ContextType, PrivacyLevel
from prism.core.validation import (
    validate_amount,
    validate_context_index,
    validate_context_type,
    validate_privacy_level,
    validate_pubkey,
)
from prism.infrastructure.ledger import instructions as ix
from prism.infrastructure.ledger.accounts import AccountDecodeError, ContextIdentity, RootIdentity
from prism.infrastructure.ledger.client import LedgerClient
from prism.infrastructure.ledger.transaction import build_transaction, sign_transaction
from prism.infrastructure.retry import BackoffPolicy, poll, wait_for_commitment

OwnerLike = Union[str, Pubkey, None]


class IdentityLifecycle:
    """
    Orchestrates identity creation and revocation over a LedgerClient.

    Args:
        ledger: Submit/fetch capability (RPC or in-memory).
        wallet: Signer with ``pubkey()`` and ``sign_message`` (a solders
            ``Keypair`` or anything following its signer protocol). Without
            one the instance is read-only and mutations raise
            WalletNotReadyError before touching the network.
        program_id: Identity program; defaults to ``settings.PROGRAM_ID``.
        policy: Confirmation backoff; defaults from settings.
        sleep: Injected for tests.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        wallet=None,
        program_id: Optional[Pubkey] = None,
        settings: Optional[Settings] = None,
        policy: Optional[BackoffPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._settings = settings or default_settings
        self.ledger = ledger
        self.wallet = wallet
        self.program_id = program_id or Pubkey.from_string(self._settings.PROGRAM_ID)
        self.deriver = AddressDeriver(self.program_id)
        self.policy = policy or BackoffPolicy.from_settings(self._settings)
        self.commitment = self._settings.COMMITMENT
        self.index_retries = self._settings.CONTEXT_INDEX_RETRIES
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)
        self._in_flight: Optional[str] = None

    # ── Wallet / owner ──

    @property
    def wallet_ready(self) -> bool:
        return self.wallet is not None and callable(getattr(self.wallet, "pubkey", None))

    @property
    def owner(self) -> Optional[Pubkey]:
        return self.wallet.pubkey() if self.wallet_ready else None

    def _require_wallet(self) -> Pubkey:
        if not self.wallet_ready:
            raise WalletNotReadyError("Wallet not connected: a signer is required for this operation")
        return self.wallet.pubkey()

    def _resolve_owner(self, owner: OwnerLike) -> Pubkey:
        if owner is not None:
            return validate_pubkey(owner, "owner")
        if not self.wallet_ready:
            raise PrismValidationError(
                "owner is required when no wallet is configured", "OWNER_REQUIRED", field="owner",
            )
        return self.wallet.pubkey()

    @asynccontextmanager
    async def _exclusive(self, operation: str) -> AsyncIterator[None]:
        if self._in_flight is not None:
            raise MutationInFlightError(
                f"Cannot {operation}: '{self._in_flight}' is still in flight on this client",
                context={"in_flight": self._in_flight, "requested": operation},
            )
        self._in_flight = operation
        try:
            yield
        finally:
            self._in_flight = None

    # ═══════════════════════════════════════════════════════════════════════════
    # READS
    # ═══════════════════════════════════════════════════════════════════════════

    async def fetch_root(self, owner: OwnerLike = None) -> Optional[RootIdentity]:
        """The owner's root identity, or None if it has not been provisioned."""
        address = self.deriver.derive_root(self._resolve_owner(owner)).address
        data = await self.ledger.fetch_account(address)
        return _decode(RootIdentity, data, address)

    async def fetch_context(self, context_index: int, owner: OwnerLike = None) -> Optional[ContextIdentity]:
        index = validate_context_index(context_index)
        root_address = self.deriver.derive_root(self._resolve_owner(owner)).address
        return await self._fetch_context_at(root_address, index)

    async def _fetch_context_at(self, root_address: Pubkey, index: int) -> Optional[ContextIdentity]:
        address = self.deriver.derive_context(root_address, index).address
        data = await self.ledger.fetch_account(address)
        return _decode(ContextIdentity, data, address)

    async def has_root(self, owner: OwnerLike = None) -> bool:
        return await self.fetch_root(owner) is not None

    async def list_contexts(self, owner: OwnerLike = None) -> List[ContextIdentity]:
        """All contexts under the owner's root, in index order. Revoked ones included."""
        root = await self.fetch_root(owner)
        if root is None:
            return []
        contexts = []
        for index in range(root.context_count):
            context = await self._fetch_context_at(root.address, index)
            if context is not None:
                contexts.append(context)
        return contexts

    async def check_spending_limit(self, context_index: int, amount: int, owner: OwnerLike = None) -> bool:
        """Read-only: would ``amount`` be accepted by this context right now?"""
        amount = validate_amount(amount)
        context = await self.fetch_context(context_index, owner)
        if context is None:
            raise NotFoundError(
                f"Context {context_index} does not exist", context={"context_index": context_index},
            )
        return not context.revoked and amount <= context.max_per_transaction

    # ═══════════════════════════════════════════════════════════════════════════
    # MUTATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    async def ensure_root(self, privacy_level: Optional[int] = None) -> RootIdentity:
        """
        Return the wallet's root identity, creating it if absent.

        Idempotent: an existing root is returned unchanged. A concurrent
        creation that wins the race surfaces here as AlreadyExists, which
        is absorbed by re-fetching.
        """
        level = validate_privacy_level(
            self._settings.DEFAULT_PRIVACY_LEVEL if privacy_level is None else privacy_level
        )
        self._require_wallet()
        async with self._exclusive("ensure_root"):
            return await self._ensure_root(level)

    async def _ensure_root(self, level: PrivacyLevel) -> RootIdentity:
        owner = self.wallet.pubkey()
        existing = await self.fetch_root()
        if existing is not None:
            self._logger.debug(f"[IDENTITY] Root identity exists for {owner}")
            return existing

        root_address = self.deriver.derive_root(owner).address
        self._logger.info(f"[IDENTITY] Creating root identity {root_address} (privacy={level.name})")
        try:
            await self._submit([ix.create_root_identity(self.program_id, owner, root_address, int(level))])
        except AlreadyExistsError:
            self._logger.info("[IDENTITY] Root created concurrently; re-fetching")

        return await self._await_visible(
            self.fetch_root, lambda root: root is not None, "root identity", root_address,
        )

    async def create_context(
        self,
        context_type: int = ContextType.DEFI,
        max_per_transaction: Optional[int] = None,
    ) -> ContextIdentity:
        """
        Create the next context under the wallet's root, provisioning the
        root first if needed.
        """
        ctx_type = validate_context_type(context_type)
        cap = validate_amount(
            self._settings.DEFAULT_MAX_PER_TRANSACTION if max_per_transaction is None else max_per_transaction,
            "max_per_transaction",
        )
        owner = self._require_wallet()

        async with self._exclusive("create_context"):
            root = await self._ensure_root(PrivacyLevel(self._settings.DEFAULT_PRIVACY_LEVEL))

            for attempt in range(self.index_retries + 1):
                index = root.context_count
                if index >= U16_MAX:
                    raise PrismValidationError(
                        "Root has exhausted its context indices",
                        "CONTEXT_LIMIT_REACHED",
                        field="context_index",
                        value=index,
                    )
                context_address = self.deriver.derive_context(root.address, index).address
                self._logger.info(
                    f"[IDENTITY] Creating context #{index} type={ctx_type.name} cap={cap} "
                    f"(attempt {attempt + 1})"
                )
                try:
                    await self._submit([
                        ix.create_context(
                            self.program_id, owner, root.address, context_address, int(ctx_type), cap,
                        )
                    ])
                except (AlreadyExistsError, IndexConflictError) as exc:
                    self._logger.warning(
                        f"[IDENTITY] Context index {index} taken ({exc.code}); re-reading root"
                    )
                    root = await self._require_root()
                    continue

                return await self._await_visible(
                    lambda: self._fetch_context_at(root.address, index),
                    lambda ctx: ctx is not None,
                    f"context #{index}",
                    context_address,
                )

        raise IndexConflictError(
            f"Could not claim a context index after {self.index_retries} retries",
            context={"root": str(root.address), "last_candidate": root.context_count},
        )

    async def revoke_context(self, context_index: int) -> ContextIdentity:
        """
        Permanently revoke an active context.

        Not idempotent: revoking an already revoked context raises
        AlreadyRevokedError.
        """
        index = validate_context_index(context_index)
        owner = self._require_wallet()
        async with self._exclusive("revoke_context"):
            root = await self._require_root()
            context = await self._require_context(root, index)
            if context.revoked:
                raise AlreadyRevokedError(
                    f"Context {index} is already revoked", context={"context_index": index},
                )

            self._logger.info(f"[IDENTITY] Revoking context #{index}")
            await self._submit([ix.revoke_context(self.program_id, owner, root.address, context.address)])
            return await self._await_visible(
                lambda: self._fetch_context_at(root.address, index),
                lambda ctx: ctx is not None and ctx.revoked,
                f"revocation of context #{index}",
                context.address,
            )

    async def record_spending(self, context_index: int, amount: int) -> ContextIdentity:
        """Add ``amount`` to a context's total. The ledger enforces the cap and revocation."""
        index = validate_context_index(context_index)
        amount = validate_amount(amount)
        owner = self._require_wallet()
        async with self._exclusive("record_spending"):
            root = await self._require_root()
            context = await self._require_context(root, index)
            expected = context.total_spent + amount

            await self._submit([
                ix.record_spending(self.program_id, owner, root.address, context.address, amount)
            ])
            return await self._await_visible(
                lambda: self._fetch_context_at(root.address, index),
                lambda ctx: ctx is not None and ctx.total_spent >= expected,
                f"spending on context #{index}",
                context.address,
            )

    async def update_privacy_level(self, privacy_level: int) -> RootIdentity:
        level = validate_privacy_level(privacy_level)
        owner = self._require_wallet()
        async with self._exclusive("update_privacy_level"):
            root = await self._require_root()
            if root.privacy_level == level:
                return root
            await self._submit([
                ix.update_privacy_level(self.program_id, owner, root.address, int(level))
            ])
            return await self._await_visible(
                self.fetch_root,
                lambda r: r is not None and r.privacy_level == level,
                "privacy level update",
                root.address,
            )

    # ── Helpers ──

    async def _require_root(self) -> RootIdentity:
        root = await self.fetch_root()
        if root is None:
            raise NotFoundError(
                "Root identity not found. Create one first.", context={"owner": str(self.owner)},
            )
        return root

    async def _require_context(self, root: RootIdentity, index: int) -> ContextIdentity:
        context = await self._fetch_context_at(root.address, index)
        if context is None:
            raise NotFoundError(
                f"Context {index} does not exist", context={"context_index": index},
            )
        return context

    async def _submit(self, instructions: Sequence[ix.Instruction]) -> str:
        blockhash = await self.ledger.get_latest_blockhash()
        transaction = sign_transaction(
            build_transaction(instructions, self.wallet.pubkey(), blockhash), self.wallet,
        )
        signature = await self.ledger.submit(transaction)
        self._logger.info(f"[IDENTITY] Submitted {signature}")
        await wait_for_commitment(self.ledger, signature, self.commitment, self.policy, self._sleep)
        return signature

    async def _await_visible(self, fetch, ready, what: str, address: Pubkey):
        visible, value = await poll(fetch, ready, self.policy, self._sleep)
        if not visible:
            raise ConfirmationTimeoutError(
                f"{what} not visible after confirmation; re-query before retrying",
                context={"address": str(address)},
            )
        return value


def _decode(record_cls, data: Optional[bytes], address: Pubkey):
    if data is None:
        return None
    try:
        return record_cls.decode(data, address)
    except AccountDecodeError as exc:
        raise PrismNetworkError(
            f"Program account {address} is not a valid {record_cls.__name__}: {exc}",
            "ACCOUNT_DECODE_FAILED",
            context={"address": str(address)},
        ) from exc
