"""
Instruction helpers: structural equality, deduplication and merging of
instruction batches into one ordered transaction body.
"""
import base64
import binascii
import logging
from typing import Iterable, List, Sequence

from solders import compute_budget
from solders.instruction import Instruction, AccountMeta
from solders.pubkey import Pubkey

from .jupiter_client import SwapInstruction

logger = logging.getLogger(__name__)

COMPUTE_BUDGET_PROGRAM_ID: Pubkey = compute_budget.ID


def _account_meta_equals(a: AccountMeta, b: AccountMeta) -> bool:
    return (
        a.pubkey == b.pubkey
        and a.is_signer == b.is_signer
        and a.is_writable == b.is_writable
    )


def instruction_equals(ix1: Instruction, ix2: Instruction) -> bool:
    """
    Structural equality of two instructions.

    Equal iff program ids match, account lists have the same length and are
    pairwise equal (pubkey, signer flag, writable flag, in order), and the
    data bytes are identical.
    """
    if ix1.program_id != ix2.program_id:
        return False

    accounts1 = ix1.accounts
    accounts2 = ix2.accounts
    if len(accounts1) != len(accounts2):
        return False
    if not all(_account_meta_equals(a, b) for a, b in zip(accounts1, accounts2)):
        return False

    return bytes(ix1.data) == bytes(ix2.data)


def is_compute_budget_instruction(instruction: Instruction) -> bool:
    """True for compute unit limit / priority fee directives."""
    return instruction.program_id == COMPUTE_BUDGET_PROGRAM_ID


def dedupe_instructions(instructions: Iterable[Instruction]) -> List[Instruction]:
    """
    Drop structural duplicates, keeping the first occurrence and the original order.
    """
    unique: List[Instruction] = []
    for instr in instructions:
        if not any(instruction_equals(instr, seen) for seen in unique):
            unique.append(instr)
    return unique


def merge_instruction_batches(batches: Sequence[Sequence[Instruction]]) -> List[Instruction]:
    """
    Merge instruction batches into one transaction body.

    Compute budget directives from every batch are hoisted to the front;
    all other instructions keep their relative order across batches. Each
    group is deduplicated on its own.

    Args:
        batches: Ordered batches, e.g. [[setup, borrow], leg1, leg2, [repay]]

    Returns:
        Compute budget instructions followed by business instructions
    """
    compute_ixs: List[Instruction] = []
    ixs: List[Instruction] = []

    for batch in batches:
        for instr in batch:
            if is_compute_budget_instruction(instr):
                compute_ixs.append(instr)
            else:
                ixs.append(instr)

    unique_compute_ixs = dedupe_instructions(compute_ixs)
    unique_ixs = dedupe_instructions(ixs)

    dropped = len(compute_ixs) + len(ixs) - len(unique_compute_ixs) - len(unique_ixs)
    if dropped:
        logger.debug(f"Dropped {dropped} duplicate instruction(s) while merging")

    return unique_compute_ixs + unique_ixs


def to_solders_instruction(swap_instr: SwapInstruction) -> Instruction:
    """
    Convert a Jupiter API instruction into a solders Instruction.

    Raises:
        ValueError: If the program id, an account key or the base64 data is invalid
    """
    program_id = Pubkey.from_string(swap_instr.program_id)

    accounts = [
        AccountMeta(
            pubkey=Pubkey.from_string(account_meta.pubkey),
            is_signer=account_meta.is_signer,
            is_writable=account_meta.is_writable
        )
        for account_meta in swap_instr.accounts
    ]

    try:
        data = base64.b64decode(swap_instr.data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Failed to decode instruction data from base64: {e}") from e

    return Instruction(
        program_id=program_id,
        data=data,
        accounts=accounts
    )
