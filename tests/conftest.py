"""
Pytest configuration and fixtures for the flash loan arbitrage tests.
"""
import base64
from decimal import Decimal

import pytest
from unittest.mock import AsyncMock
from solders.instruction import Instruction, AccountMeta
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from flash_arb.arbitrage_finder import Opportunity
from flash_arb.flash_loan import FlashLoanPlan
from flash_arb.jupiter_client import (
    JupiterQuote,
    JupiterSwapInstructionsResponse,
    SwapAccountMeta,
    SwapInstruction,
)

JUPITER_PROGRAM_ID = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"
COMPUTE_BUDGET_ID = "ComputeBudget111111111111111111111111111111"


@pytest.fixture
def keypair():
    """Wallet keypair for testing."""
    return Keypair()


@pytest.fixture
def mock_jupiter_client():
    """Create a mock JupiterClient for testing."""
    return AsyncMock()


@pytest.fixture
def mock_solana_client():
    """Create a mock SolanaClient for testing."""
    client = AsyncMock()
    client.get_mint_decimals.return_value = 6
    client.get_address_lookup_table_accounts.return_value = []
    return client


@pytest.fixture
def sol_mint():
    """SOL mint address."""
    return "So11111111111111111111111111111111111111112"


@pytest.fixture
def usdc_mint():
    """USDC mint address."""
    return "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


@pytest.fixture
def opportunity(usdc_mint, sol_mint):
    """Borrow 100 USDC, round trip through SOL."""
    return Opportunity(
        borrow_mint=Pubkey.from_string(usdc_mint),
        intermediate_mint=Pubkey.from_string(sol_mint),
        amount=Decimal("100"),
        slippage_bps=50
    )


@pytest.fixture
def make_instruction():
    """Factory for solders instructions with fresh accounts unless given."""
    def _make(program_id=None, accounts=None, data=b"\x01"):
        return Instruction(
            program_id=program_id or Pubkey.new_unique(),
            data=data,
            accounts=accounts if accounts is not None else [
                AccountMeta(pubkey=Pubkey.new_unique(), is_signer=False, is_writable=True)
            ]
        )
    return _make


@pytest.fixture
def flash_loan_plan(make_instruction):
    """Flash loan plan: 100 USDC borrowed, 100.05 owed."""
    return FlashLoanPlan(
        setup_instruction=None,
        borrow_instruction=make_instruction(data=b"borrow"),
        repay_instruction=make_instruction(data=b"repay"),
        amount=100_000_000,
        repayment_amount=100_050_000
    )


def _quote(input_mint, output_mint, in_amount, out_amount):
    return JupiterQuote(
        input_mint=input_mint,
        output_mint=output_mint,
        in_amount=in_amount,
        out_amount=out_amount,
        price_impact_pct=0.01,
        route_plan=[],
        raw={"inputMint": input_mint, "outputMint": output_mint,
             "inAmount": str(in_amount), "outAmount": str(out_amount)}
    )


def _swap_instruction(program_id, data: bytes, writable_account=None):
    return SwapInstruction(
        program_id=program_id,
        accounts=[
            SwapAccountMeta(
                pubkey=writable_account or str(Pubkey.new_unique()),
                is_signer=False,
                is_writable=True
            )
        ],
        data=base64.b64encode(data).decode()
    )


def _leg_instructions(swap_data: bytes, compute_unit_price_data: bytes = b"\x03\x10\x27\x00\x00\x00\x00\x00\x00"):
    """Leg with one compute budget directive and one swap instruction."""
    return JupiterSwapInstructionsResponse(
        compute_budget_instructions=[
            SwapInstruction(program_id=COMPUTE_BUDGET_ID, accounts=[],
                            data=base64.b64encode(compute_unit_price_data).decode())
        ],
        setup_instructions=[],
        swap_instruction=_swap_instruction(JUPITER_PROGRAM_ID, swap_data),
        cleanup_instruction=None,
        other_instructions=[],
        address_lookup_tables=[],
        last_valid_block_height=1000
    )


@pytest.fixture
def make_quote():
    """Factory for Jupiter quotes."""
    return _quote


@pytest.fixture
def make_leg_instructions():
    """Factory for one leg's swap instructions."""
    return _leg_instructions
