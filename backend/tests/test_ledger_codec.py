import base64
import hashlib

import pytest
from solders.hash import Hash
from solders.transaction import Transaction

from prism.core.crypto.keys import SYSTEM_PROGRAM_ID, keypair_from_label
from prism.core.types import ContextType, PrivacyLevel
from prism.infrastructure.ledger import events
from prism.infrastructure.ledger import instructions as ix
from prism.infrastructure.ledger.accounts import (
    AccountDecodeError,
    ContextIdentity,
    RootIdentity,
)
from prism.infrastructure.ledger.transaction import (
    build_transaction,
    decompile,
    sign_transaction,
    signer_keys,
    transaction_id,
    verify_signatures,
)

OWNER = keypair_from_label("owner-O")
PROGRAM = keypair_from_label("program").pubkey()
ROOT = keypair_from_label("root").pubkey()
CONTEXT = keypair_from_label("context").pubkey()
BLOCKHASH = str(Hash(hashlib.sha256(b"blockhash").digest()))


# ═══════════════════════════════════════════════════════════════════════════════
# ACCOUNTS
# ═══════════════════════════════════════════════════════════════════════════════

def test_account_sizes():
    assert RootIdentity.SIZE == 52
    assert ContextIdentity.SIZE == 69


def test_discriminators():
    assert RootIdentity.DISCRIMINATOR == hashlib.sha256(b"account:RootIdentity").digest()[:8]
    assert ContextIdentity.DISCRIMINATOR == hashlib.sha256(b"account:ContextIdentity").digest()[:8]


def test_root_identity_layout():
    root = RootIdentity(
        owner=OWNER.pubkey(),
        created_at=1_700_000_000,
        privacy_level=PrivacyLevel.HIGH,
        context_count=258,
        nonce=254,
    )
    data = root.encode()
    assert len(data) == 52
    assert data[8:40] == bytes(OWNER.pubkey())
    assert data[40:48] == (1_700_000_000).to_bytes(8, "little")
    assert data[48] == 1
    assert data[49:51] == b"\x02\x01"
    assert data[51] == 254
    assert RootIdentity.decode(data) == root


def test_context_identity_layout():
    ctx = ContextIdentity(
        root_identity=ROOT,
        context_type=ContextType.SOCIAL,
        created_at=-5,
        max_per_transaction=2**64 - 1,
        total_spent=7,
        revoked=True,
        context_index=3,
        nonce=250,
    )
    data = ctx.encode()
    assert len(data) == 69
    assert data[40] == 1                       # context_type
    assert data[41:49] == (-5).to_bytes(8, "little", signed=True)
    assert data[49:57] == b"\xff" * 8          # max_per_transaction
    assert data[65] == 1                       # revoked
    assert data[66:68] == b"\x03\x00"
    decoded = ContextIdentity.decode(data)
    assert decoded == ctx
    assert not decoded.is_active


def test_decode_attaches_address_without_affecting_equality():
    root = RootIdentity(OWNER.pubkey(), 0, PrivacyLevel.MAXIMUM, 0, 255)
    decoded = RootIdentity.decode(root.encode(), ROOT)
    assert decoded.address == ROOT
    assert decoded == root


def test_decode_rejects_wrong_discriminator():
    root = RootIdentity(OWNER.pubkey(), 0, PrivacyLevel.MAXIMUM, 0, 255)
    with pytest.raises(AccountDecodeError):
        ContextIdentity.decode(root.encode() + bytes(17))


def test_decode_rejects_short_data():
    with pytest.raises(AccountDecodeError):
        RootIdentity.decode(RootIdentity.DISCRIMINATOR + bytes(10))


def test_decode_keeps_unknown_enum_values():
    raw = bytearray(RootIdentity(OWNER.pubkey(), 0, PrivacyLevel.LOW, 0, 255).encode())
    raw[48] = 9
    assert RootIdentity.decode(bytes(raw)).privacy_level == 9


# ═══════════════════════════════════════════════════════════════════════════════
# INSTRUCTIONS
# ═══════════════════════════════════════════════════════════════════════════════

def test_instruction_data_layout():
    instruction = ix.create_context(PROGRAM, OWNER.pubkey(), ROOT, CONTEXT, 0, 50_000_000_000)
    assert instruction.data[:8] == hashlib.sha256(b"global:create_context").digest()[:8]
    assert instruction.data[8] == 0
    assert instruction.data[9:] == (50_000_000_000).to_bytes(8, "little")


def test_decode_instruction():
    data = ix.record_spending(PROGRAM, OWNER.pubkey(), ROOT, CONTEXT, 1234).data
    decoded = ix.decode_instruction(data)
    assert decoded.name == "record_spending"
    assert decoded.args == {"amount": 1234}

    revoke = ix.decode_instruction(ix.revoke_context(PROGRAM, OWNER.pubkey(), ROOT, CONTEXT).data)
    assert revoke == ("revoke_context", {})


def test_decode_instruction_rejects_unknown():
    with pytest.raises(ValueError):
        ix.decode_instruction(b"\x00" * 9)


# ═══════════════════════════════════════════════════════════════════════════════
# TRANSACTIONS
# ═══════════════════════════════════════════════════════════════════════════════

def test_message_account_ordering():
    instruction = ix.create_context(PROGRAM, OWNER.pubkey(), ROOT, CONTEXT, 0, 1)
    message = build_transaction([instruction], OWNER.pubkey(), BLOCKHASH).message

    assert message.account_keys[0] == OWNER.pubkey()
    assert set(message.account_keys[1:3]) == {ROOT, CONTEXT}
    assert set(message.account_keys[3:]) == {SYSTEM_PROGRAM_ID, PROGRAM}
    header = message.header
    assert (header.num_required_signatures, header.num_readonly_signed_accounts,
            header.num_readonly_unsigned_accounts) == (1, 0, 2)
    assert str(message.recent_blockhash) == BLOCKHASH


def test_transaction_sign_serialize_round_trip():
    instruction = ix.create_root_identity(PROGRAM, OWNER.pubkey(), ROOT, 1)
    tx = sign_transaction(build_transaction([instruction], OWNER.pubkey(), BLOCKHASH), OWNER)
    assert verify_signatures(tx)
    assert signer_keys(tx) == [OWNER.pubkey()]

    restored = Transaction.from_bytes(bytes(tx))
    assert transaction_id(restored) == transaction_id(tx)
    assert str(restored.message.recent_blockhash) == BLOCKHASH
    assert verify_signatures(restored)

    decompiled = decompile(restored.message)[0]
    assert decompiled.program_id == PROGRAM
    assert decompiled.data == instruction.data
    assert [m.pubkey for m in decompiled.accounts] == [OWNER.pubkey(), ROOT, SYSTEM_PROGRAM_ID]
    assert [(m.is_signer, m.is_writable) for m in decompiled.accounts] == [
        (True, True), (False, True), (False, False),
    ]


def test_signing_matches_solders_keypair_signing():
    instruction = ix.update_privacy_level(PROGRAM, OWNER.pubkey(), ROOT, 2)
    unsigned = build_transaction([instruction], OWNER.pubkey(), BLOCKHASH)
    ours = sign_transaction(unsigned, OWNER)
    theirs = Transaction([OWNER], unsigned.message, Hash.from_string(BLOCKHASH))
    assert bytes(ours) == bytes(theirs)


def test_tampered_transaction_fails_verification():
    instruction = ix.update_privacy_level(PROGRAM, OWNER.pubkey(), ROOT, 2)
    tx = sign_transaction(build_transaction([instruction], OWNER.pubkey(), BLOCKHASH), OWNER)
    raw = bytearray(bytes(tx))
    raw[-1] ^= 0x01  # flip the privacy level argument
    assert not verify_signatures(Transaction.from_bytes(bytes(raw)))


def test_unsigned_transaction_does_not_verify():
    instruction = ix.update_privacy_level(PROGRAM, OWNER.pubkey(), ROOT, 2)
    assert not verify_signatures(build_transaction([instruction], OWNER.pubkey(), BLOCKHASH))


def test_sign_rejects_foreign_signer():
    instruction = ix.update_privacy_level(PROGRAM, OWNER.pubkey(), ROOT, 2)
    tx = build_transaction([instruction], OWNER.pubkey(), BLOCKHASH)
    with pytest.raises(ValueError):
        sign_transaction(tx, keypair_from_label("mallory"))


def test_build_rejects_malformed_blockhash():
    instruction = ix.update_privacy_level(PROGRAM, OWNER.pubkey(), ROOT, 2)
    with pytest.raises(ValueError):
        build_transaction([instruction], OWNER.pubkey(), "not-a-blockhash")


# ═══════════════════════════════════════════════════════════════════════════════
# EVENTS
# ═══════════════════════════════════════════════════════════════════════════════

def test_event_log_line_layout():
    event = events.SpendingRecorded(context_identity=CONTEXT, amount=5, total_spent=12, timestamp=1_700_000_000)
    line = events.encode_event(event)
    assert line.startswith("Program data: ")

    payload = base64.b64decode(line[len("Program data: "):])
    assert payload[:8] == hashlib.sha256(b"event:SpendingRecorded").digest()[:8]
    assert payload[8:40] == bytes(CONTEXT)
    assert payload[40:48] == (5).to_bytes(8, "little")
    assert len(payload) == 8 + 32 + 8 + 8 + 8
    assert events.decode_event(line) == event


def test_parse_events_skips_other_log_lines():
    created = events.ContextCreated(ROOT, CONTEXT, 1, 10, 258, -1)
    updated = events.PrivacyLevelUpdated(ROOT, 1, 4, 0)
    logs = [
        "Program log: Instruction: CreateContext",
        events.encode_event(created),
        "Program data: bm90IGFuIGV2ZW50",
        "Program data: !!!",
        events.encode_event(updated),
    ]
    assert events.parse_events(logs) == [created, updated]
