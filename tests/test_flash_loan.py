"""
Tests for flash_loan.py
"""
import hashlib
import struct
from decimal import Decimal

import pytest
from solders.pubkey import Pubkey

from flash_arb.errors import MintNotFoundError
from flash_arb.flash_loan import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    FLASH_LOAN_PROGRAM_ID,
    FlashLoanClient,
    anchor_discriminator,
    compute_repayment_amount,
    get_associated_token_address,
    get_lending_pool_address,
)


class TestRepaymentAmount:

    @pytest.mark.parametrize("amount,fee_bps,expected", [
        (100_000_000, 5, 100_050_000),
        (100_000_000, 9, 100_090_000),
        (1, 9, 2),  # fee rounds up
        (10_000, 9, 10_009),
        (1_000_000, 0, 1_000_000),
    ])
    def test_repayment(self, amount, fee_bps, expected):
        assert compute_repayment_amount(amount, fee_bps) == expected


class TestAddresses:

    def test_anchor_discriminator(self):
        assert anchor_discriminator("borrow") == hashlib.sha256(b"global:borrow").digest()[:8]
        assert anchor_discriminator("borrow") != anchor_discriminator("repay")

    def test_lending_pool_address_is_deterministic(self, usdc_mint):
        mint = Pubkey.from_string(usdc_mint)
        assert get_lending_pool_address(mint) == get_lending_pool_address(mint)
        assert get_lending_pool_address(mint) != get_lending_pool_address(Pubkey.new_unique())

    def test_associated_token_address_off_curve_owner(self, usdc_mint):
        pool = get_lending_pool_address(Pubkey.from_string(usdc_mint))
        ata = get_associated_token_address(pool, Pubkey.from_string(usdc_mint))
        assert isinstance(ata, Pubkey)


class TestFlashLoanClient:
    """Tests for FlashLoanClient."""

    @pytest.fixture
    def flash_loan(self, mock_solana_client, keypair):
        mock_solana_client.account_exists.return_value = True
        return FlashLoanClient(mock_solana_client, keypair, fee_bps=5)

    @pytest.mark.asyncio
    async def test_plan(self, flash_loan, usdc_mint, keypair):
        mint = Pubkey.from_string(usdc_mint)

        plan = await flash_loan.plan_flash_loan(mint, Decimal("100"))

        assert plan.amount == 100_000_000
        assert plan.repayment_amount == 100_050_000
        assert plan.fee == 50_000
        assert plan.setup_instruction is None

        borrow = plan.borrow_instruction
        assert borrow.program_id == FLASH_LOAN_PROGRAM_ID
        assert bytes(borrow.data) == anchor_discriminator("borrow") + struct.pack("<Q", 100_000_000)
        assert borrow.accounts[0].pubkey == keypair.pubkey()
        assert borrow.accounts[0].is_signer
        assert borrow.accounts[3].pubkey == get_associated_token_address(keypair.pubkey(), mint)

        repay = plan.repay_instruction
        assert bytes(repay.data)[:8] == anchor_discriminator("repay")

    @pytest.mark.asyncio
    async def test_setup_instruction_when_token_account_missing(
        self, flash_loan, mock_solana_client, usdc_mint, keypair
    ):
        mint = Pubkey.from_string(usdc_mint)
        mock_solana_client.account_exists.return_value = False

        plan = await flash_loan.plan_flash_loan(mint, Decimal("1"))

        setup = plan.setup_instruction
        assert setup is not None
        assert setup.program_id == ASSOCIATED_TOKEN_PROGRAM_ID
        assert bytes(setup.data) == b"\x01"
        assert setup.accounts[1].pubkey == get_associated_token_address(keypair.pubkey(), mint)

    @pytest.mark.asyncio
    async def test_decimals_cached_per_mint(self, flash_loan, mock_solana_client, usdc_mint):
        mint = Pubkey.from_string(usdc_mint)

        await flash_loan.plan_flash_loan(mint, Decimal("1"))
        await flash_loan.plan_flash_loan(mint, Decimal("2"))

        assert mock_solana_client.get_mint_decimals.call_count == 1

    @pytest.mark.asyncio
    async def test_known_decimals_skip_mint_lookup(self, flash_loan, mock_solana_client, usdc_mint):
        mint = Pubkey.from_string(usdc_mint)

        plan = await flash_loan.plan_flash_loan(mint, Decimal("100"), decimals=6)
        await flash_loan.plan_flash_loan(mint, Decimal("1"))

        assert plan.amount == 100_000_000
        mock_solana_client.get_mint_decimals.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [100, "100", "100.0", Decimal("100")])
    async def test_amount_types(self, flash_loan, usdc_mint, amount):
        plan = await flash_loan.plan_flash_loan(Pubkey.from_string(usdc_mint), amount)
        assert plan.amount == 100_000_000

    @pytest.mark.asyncio
    async def test_missing_mint_propagates(self, flash_loan, mock_solana_client):
        mock_solana_client.get_mint_decimals.side_effect = MintNotFoundError("gone")

        with pytest.raises(MintNotFoundError):
            await flash_loan.plan_flash_loan(Pubkey.new_unique(), Decimal("1"))

    def test_program_id_from_string(self, mock_solana_client, keypair):
        program = Pubkey.new_unique()
        client = FlashLoanClient(mock_solana_client, keypair, program_id=str(program))
        assert client.program_id == program
