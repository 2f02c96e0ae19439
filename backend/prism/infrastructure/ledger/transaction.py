"""
Transaction assembly over solders: build, sign, verify, decompile.

Message compilation, the legacy wire format and ed25519 signatures are
solders' job. What lives here is the glue the lifecycle and the in-memory
ledger share: signing with any signer that exposes ``pubkey()`` and
``sign_message(bytes)`` (a solders ``Keypair``, ``Presigner`` or an
external wallet adapter), and reading instructions back out of a message
with their signer/writable flags.
"""

from __future__ import annotations

from typing import List, Sequence

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

__all__ = [
    "Transaction",
    "build_transaction",
    "sign_transaction",
    "verify_signatures",
    "signer_keys",
    "decompile",
    "transaction_id",
]


def build_transaction(
    instructions: Sequence[Instruction],
    fee_payer: Pubkey,
    recent_blockhash: str,
) -> Transaction:
    """Unsigned transaction; the fee payer is always account 0."""
    message = Message.new_with_blockhash(
        list(instructions), fee_payer, Hash.from_string(recent_blockhash),
    )
    return Transaction.new_unsigned(message)


def signer_keys(transaction: Transaction) -> List[Pubkey]:
    message = transaction.message
    return list(message.account_keys[: message.header.num_required_signatures])


def sign_transaction(transaction: Transaction, *signers) -> Transaction:
    """Fill the signature slot of each signer; returns the signed transaction."""
    message = transaction.message
    payload = bytes(message)
    slots = {key: i for i, key in enumerate(signer_keys(transaction))}
    signatures = list(transaction.signatures)
    for signer in signers:
        key = signer.pubkey()
        if key not in slots:
            raise ValueError(f"{key} is not a required signer")
        signatures[slots[key]] = signer.sign_message(payload)
    return Transaction.populate(message, signatures)


def verify_signatures(transaction: Transaction) -> bool:
    payload = bytes(transaction.message)
    keys = signer_keys(transaction)
    signatures = transaction.signatures
    return len(signatures) == len(keys) and all(
        signature.verify(key, payload) for key, signature in zip(keys, signatures)
    )


def transaction_id(transaction: Transaction) -> str:
    return str(transaction.signatures[0])


def _is_signer(message: Message, index: int) -> bool:
    return index < message.header.num_required_signatures


def _is_writable(message: Message, index: int) -> bool:
    header = message.header
    if index < header.num_required_signatures:
        return index < header.num_required_signatures - header.num_readonly_signed_accounts
    return index < len(message.account_keys) - header.num_readonly_unsigned_accounts


def decompile(message: Message) -> List[Instruction]:
    keys = message.account_keys
    return [
        Instruction(
            program_id=keys[compiled.program_id_index],
            data=bytes(compiled.data),
            accounts=[
                AccountMeta(keys[i], is_signer=_is_signer(message, i), is_writable=_is_writable(message, i))
                for i in compiled.accounts
            ],
        )
        for compiled in message.instructions
    ]
