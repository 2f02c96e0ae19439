import asyncio

import pytest

from prism.core.crypto.keys import keypair_from_label
from prism.core.errors import (
    AlreadyRevokedError,
    ConfirmationTimeoutError,
    IndexConflictError,
    InsufficientFundsError,
    MutationInFlightError,
    NotFoundError,
    PrismValidationError,
    ProgramRejectedError,
    WalletNotReadyError,
)
from prism.core.types import LAMPORTS_PER_UNIT, ContextType, PrivacyLevel
from prism.infrastructure.ledger import events
from prism.infrastructure.ledger.accounts import ContextIdentity, RootIdentity
from prism.infrastructure.ledger.instructions import instruction_discriminator
from prism.infrastructure.ledger.program import (
    FEE_PER_SIGNATURE,
    InMemoryLedger,
    rent_exempt_minimum,
)
from prism.infrastructure.ledger.transaction import transaction_id

UNIT = LAMPORTS_PER_UNIT


class RacingLedger(InMemoryLedger):
    """Runs ``interloper`` just before the first matching submission lands."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.interloper = None
        self.target = None
        self.persistent = False
        self._racing = False

    async def submit(self, transaction):
        data = transaction.message.instructions[0].data
        if (
            self.interloper is not None
            and not self._racing
            and data[:8] == instruction_discriminator(self.target)
        ):
            interloper = self.interloper
            if not self.persistent:
                self.interloper = None
            self._racing = True
            try:
                await interloper()
            finally:
                self._racing = False
        return await super().submit(transaction)


class CountingLedger(InMemoryLedger):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = 0

    async def fetch_account(self, address):
        self.calls += 1
        return await super().fetch_account(address)

    async def get_latest_blockhash(self):
        self.calls += 1
        return await super().get_latest_blockhash()


# ═══════════════════════════════════════════════════════════════════════════════
# SCENARIO
# ═══════════════════════════════════════════════════════════════════════════════

def test_full_lifecycle_scenario(lifecycle):
    async def scenario():
        root = await lifecycle.ensure_root(PrivacyLevel.HIGH)
        assert root.context_count == 0
        assert root.privacy_level == PrivacyLevel.HIGH
        assert root.owner == lifecycle.owner

        first = await lifecycle.create_context(ContextType.DEFI, 50 * UNIT)
        assert first.context_index == 0
        assert first.max_per_transaction == 50 * UNIT
        assert (await lifecycle.fetch_root()).context_count == 1

        second = await lifecycle.create_context(ContextType.SOCIAL, 10 * UNIT)
        assert second.context_index == 1
        assert second.context_type == ContextType.SOCIAL
        assert (await lifecycle.fetch_root()).context_count == 2

        revoked = await lifecycle.revoke_context(0)
        assert revoked.revoked is True
        assert (await lifecycle.fetch_context(0)).revoked is True
        assert (await lifecycle.fetch_context(1)).revoked is False

    asyncio.run(scenario())



def test_each_mutation_emits_its_program_event(lifecycle, ledger):
    async def scenario():
        root = await lifecycle.ensure_root(PrivacyLevel.HIGH)
        context = await lifecycle.create_context(ContextType.DEFI, 50 * UNIT)
        await lifecycle.record_spending(0, 3 * UNIT)
        await lifecycle.record_spending(0, 2 * UNIT)
        await lifecycle.update_privacy_level(PrivacyLevel.MAXIMUM)
        await lifecycle.revoke_context(0)
        return root, context

    root, context = asyncio.run(scenario())
    emitted = []
    for transaction in ledger.submissions:
        logs = ledger.get_transaction_logs(transaction_id(transaction))
        assert logs[-1] == f"Program {ledger.program_id} success"
        emitted.append(events.parse_events(logs))

    assert [[type(event) for event in batch] for batch in emitted] == [
        [events.RootIdentityCreated],
        [events.ContextCreated],
        [events.SpendingRecorded],
        [events.SpendingRecorded],
        [events.PrivacyLevelUpdated],
        [events.ContextRevoked],
    ]
    created, opened, first, second, updated, revoked = (batch[0] for batch in emitted)
    assert created.owner == lifecycle.owner
    assert created.privacy_level == PrivacyLevel.HIGH
    assert created.timestamp == root.created_at
    assert (opened.root_identity, opened.context_identity) == (root.address, context.address)
    assert (opened.context_type, opened.max_per_transaction, opened.context_index) == (
        ContextType.DEFI, 50 * UNIT, 0,
    )
    assert (first.amount, first.total_spent) == (3 * UNIT, 3 * UNIT)
    assert (second.amount, second.total_spent) == (2 * UNIT, 5 * UNIT)
    assert (updated.old_level, updated.new_level) == (PrivacyLevel.HIGH, PrivacyLevel.MAXIMUM)
    assert revoked.context_identity == context.address
    assert revoked.total_spent == 5 * UNIT


def test_prefunded_root_address_still_provisions(lifecycle, ledger):
    root_address = lifecycle.deriver.derive_root(lifecycle.owner).address
    ledger.airdrop(root_address, 1_000_000)

    async def scenario():
        assert await lifecycle.fetch_root() is None
        return await lifecycle.ensure_root()

    root = asyncio.run(scenario())
    assert root.address == root_address
    assert len(ledger.submissions) == 1
    balance = asyncio.run(ledger.get_balance(root_address))
    assert balance == 1_000_000 + rent_exempt_minimum(RootIdentity.SIZE)


# ═══════════════════════════════════════════════════════════════════════════════
# PROPERTIES
# ═══════════════════════════════════════════════════════════════════════════════

def test_fetch_helpers_return_none_when_absent(lifecycle):
    async def scenario():
        assert await lifecycle.fetch_root() is None
        assert await lifecycle.fetch_context(0) is None
        assert await lifecycle.has_root() is False
        assert await lifecycle.list_contexts() == []

    asyncio.run(scenario())


def test_ensure_root_is_idempotent(lifecycle, ledger):
    async def scenario():
        first = await lifecycle.ensure_root(PrivacyLevel.HIGH)
        await lifecycle.create_context(ContextType.GAMING, UNIT)
        submitted = len(ledger.submissions)

        again = await lifecycle.ensure_root(PrivacyLevel.PUBLIC)
        assert len(ledger.submissions) == submitted
        assert again.address == first.address
        assert again.nonce == first.nonce
        assert again.context_count == 1
        assert again.privacy_level == PrivacyLevel.HIGH

    asyncio.run(scenario())


def test_sequential_indices_are_dense(lifecycle):
    async def scenario():
        contexts = [await lifecycle.create_context(ContextType.TEMPORARY, UNIT) for _ in range(4)]
        assert [c.context_index for c in contexts] == [0, 1, 2, 3]
        assert (await lifecycle.fetch_root()).context_count == 4
        listed = await lifecycle.list_contexts()
        assert [c.context_index for c in listed] == [0, 1, 2, 3]
        assert len({c.address for c in listed}) == 4

    asyncio.run(scenario())


def test_create_context_provisions_root_lazily(lifecycle, settings):
    async def scenario():
        assert not await lifecycle.has_root()
        ctx = await lifecycle.create_context()
        root = await lifecycle.fetch_root()
        assert root is not None
        assert root.privacy_level == settings.DEFAULT_PRIVACY_LEVEL
        assert ctx.root_identity == root.address
        assert ctx.max_per_transaction == settings.DEFAULT_MAX_PER_TRANSACTION

    asyncio.run(scenario())


def test_revocation_is_one_way(lifecycle):
    async def scenario():
        await lifecycle.create_context(ContextType.DEFI, UNIT)
        await lifecycle.revoke_context(0)
        with pytest.raises(AlreadyRevokedError):
            await lifecycle.revoke_context(0)
        assert (await lifecycle.fetch_context(0)).revoked is True

    asyncio.run(scenario())


def test_ledger_rejects_double_revocation_without_client_precheck(lifecycle, ledger, wallet):
    # Bypass the lifecycle's own check to prove the ledger enforces it too.
    from prism.infrastructure.ledger import instructions as ix
    from prism.infrastructure.ledger.transaction import build_transaction, sign_transaction

    async def scenario():
        ctx = await lifecycle.create_context(ContextType.DEFI, UNIT)
        await lifecycle.revoke_context(0)
        blockhash = await ledger.get_latest_blockhash()
        tx = sign_transaction(
            build_transaction(
                [ix.revoke_context(ledger.program_id, wallet.pubkey(), ctx.root_identity, ctx.address)],
                wallet.pubkey(),
                blockhash,
            ),
            wallet,
        )
        with pytest.raises(AlreadyRevokedError):
            await ledger.submit(tx)

    asyncio.run(scenario())


def test_revoke_missing_context(lifecycle):
    async def scenario():
        with pytest.raises(NotFoundError):
            await lifecycle.revoke_context(0)
        await lifecycle.ensure_root()
        with pytest.raises(NotFoundError):
            await lifecycle.revoke_context(3)

    asyncio.run(scenario())


def test_reads_for_other_owner(lifecycle, make_lifecycle):
    async def scenario():
        await lifecycle.create_context(ContextType.PROFESSIONAL, UNIT)
        reader = make_lifecycle(wallet=None)
        owner = str(lifecycle.owner)
        assert await reader.has_root(owner)
        contexts = await reader.list_contexts(owner)
        assert [c.context_type for c in contexts] == [ContextType.PROFESSIONAL]
        with pytest.raises(PrismValidationError):
            await reader.fetch_root()

    asyncio.run(scenario())


# ═══════════════════════════════════════════════════════════════════════════════
# FAILURE MODES
# ═══════════════════════════════════════════════════════════════════════════════

def test_wallet_not_ready_fails_before_io(settings, fast_sleep):
    from prism.services.identity_service import IdentityLifecycle

    ledger = CountingLedger(settings=settings)
    lifecycle = IdentityLifecycle(ledger, wallet=None, settings=settings, sleep=fast_sleep)

    async def scenario():
        for call in (
            lifecycle.ensure_root(),
            lifecycle.create_context(),
            lifecycle.revoke_context(0),
            lifecycle.record_spending(0, 1),
            lifecycle.update_privacy_level(2),
        ):
            with pytest.raises(WalletNotReadyError):
                await call

    asyncio.run(scenario())
    assert ledger.calls == 0


@pytest.mark.parametrize("call", [
    lambda lc: lc.ensure_root(5),
    lambda lc: lc.create_context(6, 1),
    lambda lc: lc.create_context(ContextType.DEFI, -1),
    lambda lc: lc.create_context(ContextType.DEFI, 2**64),
    lambda lc: lc.revoke_context(70000),
    lambda lc: lc.record_spending(0, True),
    lambda lc: lc.update_privacy_level(-1),
])
def test_validation_errors_abort_before_io(settings, fast_sleep, wallet, call):
    from prism.services.identity_service import IdentityLifecycle

    ledger = CountingLedger(settings=settings)
    lifecycle = IdentityLifecycle(ledger, wallet=wallet, settings=settings, sleep=fast_sleep)

    async def scenario():
        with pytest.raises(PrismValidationError):
            await call(lifecycle)

    asyncio.run(scenario())
    assert ledger.calls == 0


def test_insufficient_funds_leaves_no_state(settings, fast_sleep):
    from prism.services.identity_service import IdentityLifecycle

    wallet = keypair_from_label("poor")
    ledger = InMemoryLedger(settings=settings)
    ledger.airdrop(wallet.pubkey(), 10_000)
    lifecycle = IdentityLifecycle(ledger, wallet=wallet, settings=settings, sleep=fast_sleep)

    async def scenario():
        with pytest.raises(InsufficientFundsError):
            await lifecycle.ensure_root()
        assert await lifecycle.fetch_root() is None
        assert await ledger.get_balance(wallet.pubkey()) == 10_000

    asyncio.run(scenario())


def test_unfunded_wallet_cannot_pay_fee(settings, fast_sleep):
    from prism.services.identity_service import IdentityLifecycle

    wallet = keypair_from_label("unfunded")
    lifecycle = IdentityLifecycle(InMemoryLedger(settings=settings), wallet=wallet, settings=settings, sleep=fast_sleep)

    with pytest.raises(InsufficientFundsError):
        asyncio.run(lifecycle.ensure_root())


def test_failed_context_creation_does_not_increment_count(settings, fast_sleep):
    from prism.services.identity_service import IdentityLifecycle

    wallet = keypair_from_label("almost-broke")
    ledger = InMemoryLedger(settings=settings)
    ledger.airdrop(
        wallet.pubkey(),
        FEE_PER_SIGNATURE + rent_exempt_minimum(RootIdentity.SIZE) + FEE_PER_SIGNATURE + 1_000,
    )
    lifecycle = IdentityLifecycle(ledger, wallet=wallet, settings=settings, sleep=fast_sleep)

    async def scenario():
        await lifecycle.ensure_root()
        with pytest.raises(InsufficientFundsError):
            await lifecycle.create_context(ContextType.DEFI, UNIT)
        root = await lifecycle.fetch_root()
        assert root.context_count == 0
        assert await lifecycle.fetch_context(0) is None
        assert rent_exempt_minimum(ContextIdentity.SIZE) > await ledger.get_balance(wallet.pubkey())

    asyncio.run(scenario())


def test_confirmation_timeout_is_inconclusive(settings, fast_sleep, wallet):
    from prism.services.identity_service import IdentityLifecycle

    ledger = InMemoryLedger(settings=settings, stall_confirmations=True)
    ledger.airdrop(wallet.pubkey(), 10 * UNIT)
    lifecycle = IdentityLifecycle(ledger, wallet=wallet, settings=settings, sleep=fast_sleep)

    async def scenario():
        with pytest.raises(ConfirmationTimeoutError) as info:
            await lifecycle.ensure_root()
        assert info.value.signature
        # The submission did land; re-querying reveals it.
        assert await lifecycle.has_root()

    asyncio.run(scenario())
    assert sum(fast_sleep.delays) <= settings.CONFIRMATION_TIMEOUT + 1e-9
    assert max(fast_sleep.delays) <= settings.CONFIRMATION_MAX_DELAY


def test_confirmation_waits_with_backoff(settings, fast_sleep, wallet):
    from prism.services.identity_service import IdentityLifecycle

    ledger = InMemoryLedger(settings=settings, confirmation_lag=3)
    ledger.airdrop(wallet.pubkey(), 10 * UNIT)
    lifecycle = IdentityLifecycle(ledger, wallet=wallet, settings=settings, sleep=fast_sleep)

    asyncio.run(lifecycle.ensure_root())
    assert fast_sleep.delays == [0.01, 0.02, 0.04]


def test_mutation_in_flight_flag(settings, fast_sleep, wallet):
    from prism.services.identity_service import IdentityLifecycle

    ledger = InMemoryLedger(settings=settings, confirmation_lag=2)
    ledger.airdrop(wallet.pubkey(), 10 * UNIT)
    lifecycle = IdentityLifecycle(ledger, wallet=wallet, settings=settings, sleep=fast_sleep)

    async def scenario():
        pending = asyncio.create_task(lifecycle.create_context(ContextType.DEFI, UNIT))
        await asyncio.sleep(0)
        with pytest.raises(MutationInFlightError):
            await lifecycle.revoke_context(0)
        ctx = await pending
        assert ctx.context_index == 0
        # flag released afterwards
        assert (await lifecycle.revoke_context(0)).revoked

    asyncio.run(scenario())


def test_flag_released_after_failure(lifecycle):
    async def scenario():
        with pytest.raises(NotFoundError):
            await lifecycle.revoke_context(0)
        root = await lifecycle.ensure_root()
        assert root.context_count == 0

    asyncio.run(scenario())


# ═══════════════════════════════════════════════════════════════════════════════
# RACES BETWEEN INSTANCES
# ═══════════════════════════════════════════════════════════════════════════════

def test_concurrent_root_creation_is_absorbed(settings, fast_sleep, wallet):
    from prism.services.identity_service import IdentityLifecycle

    ledger = RacingLedger(settings=settings)
    ledger.airdrop(wallet.pubkey(), 10 * UNIT)
    ours = IdentityLifecycle(ledger, wallet=wallet, settings=settings, sleep=fast_sleep)
    theirs = IdentityLifecycle(ledger, wallet=wallet, settings=settings, sleep=fast_sleep)
    ledger.target = "create_root_identity"
    ledger.interloper = lambda: theirs.ensure_root(PrivacyLevel.LOW)

    async def scenario():
        root = await ours.ensure_root(PrivacyLevel.HIGH)
        # the other instance won; we observe its record instead of failing
        assert root.privacy_level == PrivacyLevel.LOW
        assert root.context_count == 0

    asyncio.run(scenario())
    assert len(ledger.submissions) == 1


def test_index_conflict_is_retried_with_fresh_count(settings, fast_sleep, wallet):
    from prism.services.identity_service import IdentityLifecycle

    ledger = RacingLedger(settings=settings)
    ledger.airdrop(wallet.pubkey(), 10 * UNIT)
    ours = IdentityLifecycle(ledger, wallet=wallet, settings=settings, sleep=fast_sleep)
    theirs = IdentityLifecycle(ledger, wallet=wallet, settings=settings, sleep=fast_sleep)

    async def scenario():
        await ours.ensure_root()
        ledger.target = "create_context"
        ledger.interloper = lambda: theirs.create_context(ContextType.SOCIAL, UNIT)

        mine = await ours.create_context(ContextType.DEFI, 2 * UNIT)
        assert mine.context_index == 1
        contexts = await ours.list_contexts()
        assert [(c.context_index, c.context_type) for c in contexts] == [
            (0, ContextType.SOCIAL),
            (1, ContextType.DEFI),
        ]
        assert (await ours.fetch_root()).context_count == 2

    asyncio.run(scenario())


def test_index_conflict_exhausts_retries(settings, fast_sleep, wallet):
    from prism.services.identity_service import IdentityLifecycle

    ledger = RacingLedger(settings=settings)
    ledger.airdrop(wallet.pubkey(), 10 * UNIT)
    ours = IdentityLifecycle(ledger, wallet=wallet, settings=settings, sleep=fast_sleep)
    theirs = IdentityLifecycle(ledger, wallet=wallet, settings=settings, sleep=fast_sleep)

    async def scenario():
        await ours.ensure_root()
        ledger.target = "create_context"
        ledger.persistent = True
        ledger.interloper = lambda: theirs.create_context(ContextType.SOCIAL, UNIT)

        with pytest.raises(IndexConflictError):
            await ours.create_context(ContextType.DEFI, UNIT)

        attempts = settings.CONTEXT_INDEX_RETRIES + 1
        root = await ours.fetch_root()
        assert root.context_count == attempts
        contexts = await ours.list_contexts()
        assert all(c.context_type == ContextType.SOCIAL for c in contexts)
        assert [c.context_index for c in contexts] == list(range(attempts))

    asyncio.run(scenario())


# ═══════════════════════════════════════════════════════════════════════════════
# SPENDING / PRIVACY
# ═══════════════════════════════════════════════════════════════════════════════

def test_spending_limits(lifecycle):
    async def scenario():
        await lifecycle.create_context(ContextType.DEFI, 10 * UNIT)
        assert await lifecycle.check_spending_limit(0, 10 * UNIT)
        assert not await lifecycle.check_spending_limit(0, 10 * UNIT + 1)

        ctx = await lifecycle.record_spending(0, 4 * UNIT)
        ctx = await lifecycle.record_spending(0, 6 * UNIT)
        assert ctx.total_spent == 10 * UNIT

        with pytest.raises(ProgramRejectedError) as info:
            await lifecycle.record_spending(0, 11 * UNIT)
        assert info.value.program_error_name == "ExceedsTransactionLimit"
        assert info.value.program_error_code == 6004
        assert any("ExceedsTransactionLimit" in line for line in info.value.logs)
        assert (await lifecycle.fetch_context(0)).total_spent == 10 * UNIT

    asyncio.run(scenario())


def test_revoked_context_cannot_spend(lifecycle):
    async def scenario():
        await lifecycle.create_context(ContextType.DEFI, UNIT)
        await lifecycle.revoke_context(0)
        assert not await lifecycle.check_spending_limit(0, 1)
        with pytest.raises(ProgramRejectedError) as info:
            await lifecycle.record_spending(0, 1)
        assert info.value.program_error_name == "ContextRevoked"

    asyncio.run(scenario())


def test_check_spending_limit_missing_context(lifecycle):
    async def scenario():
        await lifecycle.ensure_root()
        with pytest.raises(NotFoundError):
            await lifecycle.check_spending_limit(0, 1)

    asyncio.run(scenario())


def test_update_privacy_level(lifecycle):
    async def scenario():
        await lifecycle.ensure_root(PrivacyLevel.MAXIMUM)
        root = await lifecycle.update_privacy_level(PrivacyLevel.LOW)
        assert root.privacy_level == PrivacyLevel.LOW
        assert (await lifecycle.fetch_root()).privacy_level == PrivacyLevel.LOW

    asyncio.run(scenario())


def test_update_privacy_level_requires_root(lifecycle):
    with pytest.raises(NotFoundError):
        asyncio.run(lifecycle.update_privacy_level(2))


def test_rent_and_fees_are_charged(lifecycle, ledger, wallet):
    async def scenario():
        before = await ledger.get_balance(wallet.pubkey())
        await lifecycle.create_context(ContextType.DEFI, UNIT)
        after = await ledger.get_balance(wallet.pubkey())
        expected = (
            2 * FEE_PER_SIGNATURE
            + rent_exempt_minimum(RootIdentity.SIZE)
            + rent_exempt_minimum(ContextIdentity.SIZE)
        )
        assert before - after == expected

    asyncio.run(scenario())
