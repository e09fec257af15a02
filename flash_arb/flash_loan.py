"""
Flash loan instructions for the Flash Loan Mastery lending program.

A plan holds everything the transaction needs from the lender: an optional
setup instruction (borrower token account creation), the borrow and repay
instructions, and the exact amount that must be repaid.
"""
import hashlib
import logging
import struct
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Union

from solders.instruction import Instruction, AccountMeta
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .solana_client import SolanaClient
from .utils import get_terminal_colors, to_minor_units

colors = get_terminal_colors()
logger = logging.getLogger(__name__)

FLASH_LOAN_PROGRAM_ID = Pubkey.from_string("1oanfPPN8r1i4UbugXHDxWMbWVJ5qLSN5qzNFZkz6Fg")
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
INSTRUCTIONS_SYSVAR_ID = Pubkey.from_string("Sysvar1nstructions1111111111111111111111111")

LENDING_POOL_SEED = b"flash_loan"
DEFAULT_FEE_BPS = 9


@dataclass(frozen=True)
class FlashLoanPlan:
    """Lender instructions and repayment obligation for one iteration."""
    setup_instruction: Optional[Instruction]
    borrow_instruction: Instruction
    repay_instruction: Instruction
    amount: int  # Borrowed, minor units
    repayment_amount: int  # Owed, minor units

    @property
    def fee(self) -> int:
        return self.repayment_amount - self.amount


def get_associated_token_address(wallet: Pubkey, mint: Pubkey) -> Pubkey:
    """Derive the associated token address (ATA) for a wallet + mint."""
    ata, _ = Pubkey.find_program_address(
        [bytes(wallet), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return ata


def get_lending_pool_address(mint: Pubkey, program_id: Pubkey = FLASH_LOAN_PROGRAM_ID) -> Pubkey:
    pool, _ = Pubkey.find_program_address([LENDING_POOL_SEED, bytes(mint)], program_id)
    return pool


def anchor_discriminator(name: str) -> bytes:
    """First 8 bytes of sha256("global:<name>"), Anchor's instruction selector."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def compute_repayment_amount(amount: int, fee_bps: int = DEFAULT_FEE_BPS) -> int:
    """Borrowed amount plus the lender fee, rounded up."""
    fee = -(-amount * fee_bps // 10_000)
    return amount + fee


def create_associated_token_account_idempotent(payer: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    return Instruction(
        program_id=ASSOCIATED_TOKEN_PROGRAM_ID,
        data=bytes([1]),  # CreateIdempotent
        accounts=[
            AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
            AccountMeta(pubkey=get_associated_token_address(owner, mint), is_signer=False, is_writable=True),
            AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
            AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
    )


class FlashLoanClient:
    """Builds flash loan plans against a Flash Loan Mastery lending pool."""

    def __init__(
        self,
        solana_client: SolanaClient,
        wallet: Keypair,
        program_id: Union[str, Pubkey] = FLASH_LOAN_PROGRAM_ID,
        fee_bps: int = DEFAULT_FEE_BPS
    ):
        self.solana = solana_client
        self.wallet = wallet
        self.program_id = program_id if isinstance(program_id, Pubkey) else Pubkey.from_string(program_id)
        self.fee_bps = fee_bps
        self._decimals: Dict[Pubkey, int] = {}

    async def _get_decimals(self, mint: Pubkey) -> int:
        if mint not in self._decimals:
            self._decimals[mint] = await self.solana.get_mint_decimals(mint)
        return self._decimals[mint]

    def _borrow_instruction(self, mint: Pubkey, amount: int) -> Instruction:
        borrower = self.wallet.pubkey()
        pool = get_lending_pool_address(mint, self.program_id)
        return Instruction(
            program_id=self.program_id,
            data=anchor_discriminator("borrow") + struct.pack("<Q", amount),
            accounts=[
                AccountMeta(pubkey=borrower, is_signer=True, is_writable=False),
                AccountMeta(pubkey=pool, is_signer=False, is_writable=False),
                AccountMeta(pubkey=get_associated_token_address(pool, mint), is_signer=False, is_writable=True),
                AccountMeta(pubkey=get_associated_token_address(borrower, mint), is_signer=False, is_writable=True),
                AccountMeta(pubkey=INSTRUCTIONS_SYSVAR_ID, is_signer=False, is_writable=False),
                AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            ]
        )

    def _repay_instruction(self, mint: Pubkey, amount: int) -> Instruction:
        repayer = self.wallet.pubkey()
        pool = get_lending_pool_address(mint, self.program_id)
        return Instruction(
            program_id=self.program_id,
            data=anchor_discriminator("repay") + struct.pack("<Q", amount),
            accounts=[
                AccountMeta(pubkey=repayer, is_signer=True, is_writable=False),
                AccountMeta(pubkey=pool, is_signer=False, is_writable=False),
                AccountMeta(pubkey=get_associated_token_address(repayer, mint), is_signer=False, is_writable=True),
                AccountMeta(pubkey=get_associated_token_address(pool, mint), is_signer=False, is_writable=True),
                AccountMeta(pubkey=INSTRUCTIONS_SYSVAR_ID, is_signer=False, is_writable=False),
                AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            ]
        )

    async def plan_flash_loan(
        self,
        mint: Pubkey,
        amount: Union[int, str, Decimal],
        decimals: Optional[int] = None
    ) -> FlashLoanPlan:
        """
        Build the flash loan plan for borrowing a human-scale `amount` of `mint`.

        Args:
            mint: Mint to borrow
            amount: Human-scale amount
            decimals: Mint decimals when already known (skips the mint lookup)

        Raises:
            MintNotFoundError: If the mint cannot be read
        """
        if decimals is None:
            decimals = await self._get_decimals(mint)
        else:
            self._decimals.setdefault(mint, decimals)
        minor_amount = to_minor_units(amount, decimals)

        borrower = self.wallet.pubkey()
        borrower_ata = get_associated_token_address(borrower, mint)
        setup_instruction = None
        if not await self.solana.account_exists(borrower_ata):
            logger.info(f"Borrower token account {colors['CYAN']}{borrower_ata}{colors['RESET']} missing, adding setup instruction")
            setup_instruction = create_associated_token_account_idempotent(borrower, borrower, mint)

        repayment_amount = compute_repayment_amount(minor_amount, self.fee_bps)

        return FlashLoanPlan(
            setup_instruction=setup_instruction,
            borrow_instruction=self._borrow_instruction(mint, minor_amount),
            # Repay instruction carries the borrowed amount; the program adds its fee on-chain
            repay_instruction=self._repay_instruction(mint, minor_amount),
            amount=minor_amount,
            repayment_amount=repayment_amount
        )
