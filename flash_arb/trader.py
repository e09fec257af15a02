"""
Flash loan arbitrage transaction assembly and submission.
"""
import logging
from typing import Optional, List

from solders.keypair import Keypair
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.transaction import VersionedTransaction
from solders.address_lookup_table_account import AddressLookupTableAccount

from .arbitrage_finder import RoundTrip
from .flash_loan import FlashLoanPlan
from .instructions import merge_instruction_batches, to_solders_instruction
from .jupiter_client import JupiterClient, JupiterQuote, JupiterSwapInstructionsResponse
from .lookup_tables import resolve_lookup_tables
from .solana_client import SolanaClient
from .utils import get_terminal_colors

# Get terminal colors (empty if output is redirected)
colors = get_terminal_colors()

logger = logging.getLogger(__name__)

# Solana packet data limit for a serialized transaction
MAX_TRANSACTION_SIZE = 1232


class Trader:
    """Assembles, signs and sends one flash loan + two swap transaction."""

    def __init__(
        self,
        jupiter_client: JupiterClient,
        solana_client: SolanaClient,
        wallet: Keypair,
        compute_unit_price_micro_lamports: Optional[int] = None,
        confirm_transactions: bool = False,
        skip_preflight: bool = False
    ):
        self.jupiter = jupiter_client
        self.solana = solana_client
        self.wallet = wallet
        self.compute_unit_price = compute_unit_price_micro_lamports
        self.confirm_transactions = confirm_transactions
        self.skip_preflight = skip_preflight

    async def _get_leg_instructions(self, quote: JupiterQuote, leg: int) -> Optional[JupiterSwapInstructionsResponse]:
        instructions_resp = await self.jupiter.get_swap_instructions(
            quote=quote,
            user_public_key=str(self.wallet.pubkey()),
            compute_unit_price_micro_lamports=self.compute_unit_price
        )
        if instructions_resp is None:
            logger.warning(f"{colors['RED']}Swap instructions unavailable for leg {leg}{colors['RESET']}")
            return None

        logger.debug(
            f"Leg {leg}: {len(instructions_resp.instructions())} instructions, "
            f"{len(instructions_resp.address_lookup_tables)} ALTs"
        )
        return instructions_resp

    def build_instructions(
        self,
        plan: FlashLoanPlan,
        leg_instructions: List[JupiterSwapInstructionsResponse]
    ) -> List[Instruction]:
        """
        Order: compute budget (deduplicated), then setup?, borrow, leg swaps, repay.
        """
        loan_batch = []
        if plan.setup_instruction is not None:
            loan_batch.append(plan.setup_instruction)
        loan_batch.append(plan.borrow_instruction)

        batches = [loan_batch]
        for leg_resp in leg_instructions:
            batches.append([to_solders_instruction(instr) for instr in leg_resp.instructions()])
        batches.append([plan.repay_instruction])

        return merge_instruction_batches(batches)

    async def build_transaction(
        self,
        plan: FlashLoanPlan,
        leg_instructions: List[JupiterSwapInstructionsResponse],
        cached_table: Optional[AddressLookupTableAccount] = None
    ) -> Optional[VersionedTransaction]:
        """
        Build and sign the v0 transaction.

        Returns:
            Signed VersionedTransaction, or None if it cannot be built this iteration
        """
        try:
            instructions = self.build_instructions(plan, leg_instructions)
        except ValueError as e:
            logger.warning(f"{colors['RED']}Invalid swap instruction from Jupiter: {e}{colors['RESET']}")
            return None

        swap_table_addresses: List[str] = []
        for leg_resp in leg_instructions:
            swap_table_addresses.extend(leg_resp.address_lookup_tables)

        try:
            swap_tables = await self.solana.get_address_lookup_table_accounts(swap_table_addresses)
        except ValueError as e:
            logger.warning(f"{colors['RED']}Failed to load swap lookup tables: {e}{colors['RESET']}")
            return None

        lookup_tables = resolve_lookup_tables(swap_tables, cached_table)

        # Blockhash fetched right before compiling to minimize expiry risk
        recent_blockhash = await self.solana.get_recent_blockhash()
        if not recent_blockhash:
            logger.warning(f"{colors['RED']}Failed to get recent blockhash{colors['RESET']}")
            return None

        try:
            message_v0 = MessageV0.try_compile(
                payer=self.wallet.pubkey(),
                instructions=instructions,
                address_lookup_table_accounts=lookup_tables,
                recent_blockhash=recent_blockhash
            )
            versioned_tx = VersionedTransaction(message_v0, [self.wallet])
        except Exception as e:
            logger.warning(
                f"{colors['RED']}Failed to compile transaction{colors['RESET']} "
                f"({len(instructions)} instructions, {len(lookup_tables)} ALTs): {e}"
            )
            return None

        raw_len = len(bytes(versioned_tx))
        if raw_len > MAX_TRANSACTION_SIZE:
            logger.warning(
                f"Transaction too large: raw={colors['YELLOW']}{raw_len}{colors['RESET']} bytes "
                f"(max {MAX_TRANSACTION_SIZE}), instr={colors['GREEN']}{len(instructions)}{colors['RESET']}, "
                f"ALTs={colors['GREEN']}{len(lookup_tables)}{colors['RESET']}: skipping"
            )
            return None

        logger.debug(
            f"Transaction built (v0): {len(instructions)} instructions, "
            f"{len(lookup_tables)} ALTs, size={raw_len}/{MAX_TRANSACTION_SIZE} bytes"
        )
        return versioned_tx

    async def submit(self, tx: VersionedTransaction) -> Optional[str]:
        """
        Broadcast a signed transaction.

        Send failures are logged and swallowed; the next iteration re-evaluates.
        """
        try:
            tx_sig = await self.solana.send_versioned_transaction(tx, skip_preflight=self.skip_preflight)
        except Exception as e:
            logger.warning(f"{colors['RED']}Transaction failed:{colors['RESET']} {e}")
            return None

        logger.info(f"Transaction signature {colors['CYAN']}{tx_sig}{colors['RESET']}")

        if self.confirm_transactions:
            if await self.solana.confirm_transaction(tx_sig):
                logger.info(f"{colors['GREEN']}Transaction confirmed: {colors['CYAN']}{tx_sig}{colors['RESET']}")
            else:
                logger.warning(f"{colors['RED']}Transaction not confirmed: {colors['CYAN']}{tx_sig}{colors['RESET']}")

        return tx_sig

    async def execute(
        self,
        plan: FlashLoanPlan,
        round_trip: RoundTrip,
        cached_table: Optional[AddressLookupTableAccount] = None
    ) -> Optional[str]:
        """
        Execute a profitable round trip: swap instructions, assembly, send.

        Returns:
            Transaction signature, or None if nothing was sent
        """
        if not round_trip.profitable or round_trip.leg1 is None or round_trip.leg2 is None:
            logger.error("Refusing execution: round trip is not profitable")
            return None

        leg_instructions = []
        for leg, quote in enumerate((round_trip.leg1, round_trip.leg2), 1):
            instructions_resp = await self._get_leg_instructions(quote, leg)
            if instructions_resp is None:
                return None
            leg_instructions.append(instructions_resp)

        tx = await self.build_transaction(plan, leg_instructions, cached_table)
        if tx is None:
            return None

        return await self.submit(tx)
