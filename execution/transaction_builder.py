"""execution/transaction_builder.py

Pure logic for building the keeper-crank transaction.
No network calls: the validity anchor is fetched by the caller.
"""

from __future__ import annotations

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from ingestion.rpc.ledger import BlockhashAnchor


# Anchor sighash for `global:keeper_crank`
KEEPER_CRANK_DISCRIMINATOR = bytes.fromhex("a2c16d5ba4c3d806")


def build_crank_instruction(
    program_id: Pubkey,
    signer: Pubkey,
    slab: Pubkey,
    oracle: Pubkey,
) -> Instruction:
    """Build the keeper_crank instruction.

    Account order is fixed by the program:
    0. signer (signer, writable)
    1. slab (writable)
    2. oracle (read-only)
    """
    accounts = [
        AccountMeta(pubkey=signer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=slab, is_signer=False, is_writable=True),
        AccountMeta(pubkey=oracle, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id, KEEPER_CRANK_DISCRIMINATOR, accounts)


def build_crank_message(
    program_id: Pubkey,
    signer: Pubkey,
    slab: Pubkey,
    oracle: Pubkey,
    anchor: BlockhashAnchor,
) -> Message:
    """Compile the crank instruction into a message paid by `signer`."""
    ix = build_crank_instruction(program_id, signer, slab, oracle)
    return Message.new_with_blockhash([ix], signer, anchor.blockhash)


def sign_crank_transaction(
    message: Message,
    keypair: Keypair,
    anchor: BlockhashAnchor,
) -> Transaction:
    """Sign a compiled crank message with the keeper wallet."""
    return Transaction([keypair], message, anchor.blockhash)
