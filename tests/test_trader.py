"""
Tests for trader.py
"""
import logging
from unittest.mock import patch

import pytest
from solders.compute_budget import set_compute_unit_price
from solders.hash import Hash
from solders.transaction import VersionedTransaction

from flash_arb.arbitrage_finder import RoundTrip
from flash_arb.flash_loan import FlashLoanPlan
from flash_arb.instructions import COMPUTE_BUDGET_PROGRAM_ID, to_solders_instruction
from flash_arb.trader import MAX_TRANSACTION_SIZE, Trader


@pytest.fixture
def trader(mock_jupiter_client, mock_solana_client, keypair):
    mock_solana_client.get_recent_blockhash.return_value = Hash.default()
    mock_solana_client.send_versioned_transaction.return_value = "5igSig"
    return Trader(mock_jupiter_client, mock_solana_client, keypair)


@pytest.fixture
def legs(make_leg_instructions):
    return [make_leg_instructions(b"swap-leg-1"), make_leg_instructions(b"swap-leg-2")]


@pytest.fixture
def round_trip(make_quote, usdc_mint, sol_mint):
    return RoundTrip(
        leg1=make_quote(usdc_mint, sol_mint, 100_000_000, 50_000_000),
        leg2=make_quote(sol_mint, usdc_mint, 50_000_000, 100_500_000),
        amount_in=100_000_000,
        leg1_out=50_000_000,
        leg2_out=100_500_000,
        repayment_amount=100_050_000,
        profitable=True
    )


class TestBuildInstructions:
    """Tests for instruction assembly order."""

    def test_order_and_compute_budget_dedup(self, trader, flash_loan_plan, legs):
        instructions = trader.build_instructions(flash_loan_plan, legs)

        assert len(instructions) == 5
        assert instructions[0].program_id == COMPUTE_BUDGET_PROGRAM_ID
        assert instructions[1] == flash_loan_plan.borrow_instruction
        assert instructions[2] == to_solders_instruction(legs[0].swap_instruction)
        assert instructions[3] == to_solders_instruction(legs[1].swap_instruction)
        assert instructions[4] == flash_loan_plan.repay_instruction

    def test_setup_instruction_precedes_borrow(self, trader, flash_loan_plan, legs, make_instruction):
        setup = make_instruction(data=b"\x01")
        plan = FlashLoanPlan(
            setup_instruction=setup,
            borrow_instruction=flash_loan_plan.borrow_instruction,
            repay_instruction=flash_loan_plan.repay_instruction,
            amount=flash_loan_plan.amount,
            repayment_amount=flash_loan_plan.repayment_amount
        )

        instructions = trader.build_instructions(plan, legs)

        assert instructions[1] == setup
        assert instructions[2] == plan.borrow_instruction

    def test_distinct_compute_directives_both_kept(self, trader, flash_loan_plan, make_leg_instructions):
        legs = [
            make_leg_instructions(b"swap-leg-1", bytes(set_compute_unit_price(1_000).data)),
            make_leg_instructions(b"swap-leg-2", bytes(set_compute_unit_price(2_000).data)),
        ]

        instructions = trader.build_instructions(flash_loan_plan, legs)

        assert [ix.program_id for ix in instructions[:2]] == [COMPUTE_BUDGET_PROGRAM_ID] * 2
        assert instructions[2] == flash_loan_plan.borrow_instruction


class TestBuildTransaction:
    """Tests for transaction compilation."""

    @pytest.mark.asyncio
    async def test_builds_signed_v0_transaction(self, trader, flash_loan_plan, legs, keypair):
        tx = await trader.build_transaction(flash_loan_plan, legs)

        assert isinstance(tx, VersionedTransaction)
        assert tx.message.account_keys[0] == keypair.pubkey()
        assert len(tx.message.instructions) == 5
        assert len(bytes(tx)) <= MAX_TRANSACTION_SIZE

    @pytest.mark.asyncio
    async def test_loads_swap_lookup_tables_in_leg_order(self, trader, mock_solana_client, flash_loan_plan, legs):
        legs[0].address_lookup_tables = ["ALT1"]
        legs[1].address_lookup_tables = ["ALT2", "ALT3"]

        await trader.build_transaction(flash_loan_plan, legs)

        mock_solana_client.get_address_lookup_table_accounts.assert_called_once_with(["ALT1", "ALT2", "ALT3"])

    @pytest.mark.asyncio
    async def test_lookup_table_failure(self, trader, mock_solana_client, flash_loan_plan, legs):
        mock_solana_client.get_address_lookup_table_accounts.side_effect = ValueError("ALT account not found")

        assert await trader.build_transaction(flash_loan_plan, legs) is None

    @pytest.mark.asyncio
    async def test_no_blockhash(self, trader, mock_solana_client, flash_loan_plan, legs):
        mock_solana_client.get_recent_blockhash.return_value = None

        assert await trader.build_transaction(flash_loan_plan, legs) is None

    @pytest.mark.asyncio
    async def test_invalid_swap_instruction(self, trader, flash_loan_plan, legs):
        legs[0].swap_instruction.data = "%%%"

        assert await trader.build_transaction(flash_loan_plan, legs) is None

    @pytest.mark.asyncio
    async def test_oversized_transaction_skipped(self, trader, flash_loan_plan, legs):
        with patch('flash_arb.trader.MAX_TRANSACTION_SIZE', 100):
            assert await trader.build_transaction(flash_loan_plan, legs) is None


class TestSubmit:
    """Tests for broadcasting."""

    @pytest.mark.asyncio
    async def test_success(self, trader, caplog):
        with caplog.at_level(logging.INFO, logger='flash_arb.trader'):
            sig = await trader.submit(object())

        assert sig == "5igSig"
        assert "Transaction signature" in caplog.text

    @pytest.mark.asyncio
    async def test_broadcast_failure_is_absorbed(self, trader, mock_solana_client, caplog):
        mock_solana_client.send_versioned_transaction.side_effect = Exception("Blockhash not found")

        with caplog.at_level(logging.WARNING, logger='flash_arb.trader'):
            sig = await trader.submit(object())

        assert sig is None
        assert "Transaction failed" in caplog.text
        assert "Blockhash not found" in caplog.text

    @pytest.mark.asyncio
    async def test_confirmation_when_enabled(self, trader, mock_solana_client):
        trader.confirm_transactions = True
        mock_solana_client.confirm_transaction.return_value = True

        assert await trader.submit(object()) == "5igSig"
        mock_solana_client.confirm_transaction.assert_called_once_with("5igSig")

    @pytest.mark.asyncio
    async def test_no_confirmation_by_default(self, trader, mock_solana_client):
        await trader.submit(object())
        mock_solana_client.confirm_transaction.assert_not_called()


class TestExecute:
    """Tests for Trader.execute."""

    @pytest.mark.asyncio
    async def test_execute(self, trader, mock_jupiter_client, mock_solana_client, flash_loan_plan, legs, round_trip, keypair):
        trader.compute_unit_price = 10_000
        mock_jupiter_client.get_swap_instructions.side_effect = legs

        sig = await trader.execute(flash_loan_plan, round_trip)

        assert sig == "5igSig"
        calls = mock_jupiter_client.get_swap_instructions.call_args_list
        assert [c.kwargs["quote"] for c in calls] == [round_trip.leg1, round_trip.leg2]
        assert all(c.kwargs["user_public_key"] == str(keypair.pubkey()) for c in calls)
        assert all(c.kwargs["compute_unit_price_micro_lamports"] == 10_000 for c in calls)
        sent_tx = mock_solana_client.send_versioned_transaction.call_args.args[0]
        assert isinstance(sent_tx, VersionedTransaction)

    @pytest.mark.asyncio
    async def test_refuses_unprofitable(self, trader, mock_jupiter_client, flash_loan_plan, round_trip):
        unprofitable = RoundTrip(
            leg1=round_trip.leg1,
            leg2=round_trip.leg2,
            amount_in=round_trip.amount_in,
            leg1_out=round_trip.leg1_out,
            leg2_out=100_050_000,
            repayment_amount=100_050_000,
            profitable=False
        )

        assert await trader.execute(flash_loan_plan, unprofitable) is None
        mock_jupiter_client.get_swap_instructions.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_swap_instructions(self, trader, mock_jupiter_client, mock_solana_client, flash_loan_plan, legs, round_trip):
        mock_jupiter_client.get_swap_instructions.side_effect = [legs[0], None]

        assert await trader.execute(flash_loan_plan, round_trip) is None
        mock_solana_client.send_versioned_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_cached_table_passed_through(self, trader, mock_jupiter_client, flash_loan_plan, legs, round_trip):
        mock_jupiter_client.get_swap_instructions.side_effect = legs
        cached = object()

        with patch('flash_arb.trader.resolve_lookup_tables', return_value=[]) as mock_resolve:
            await trader.execute(flash_loan_plan, round_trip, cached_table=cached)

        mock_resolve.assert_called_once_with([], cached)
