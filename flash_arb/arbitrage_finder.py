"""
Round-trip route evaluation.

Quotes borrowed token -> intermediate token -> borrowed token through Jupiter
and checks whether the proceeds clear the flash loan repayment.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from solders.pubkey import Pubkey

from .jupiter_client import JupiterClient, JupiterQuote
from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


class EvaluatorState(Enum):
    IDLE = "idle"
    QUOTING_LEG1 = "quoting_leg1"
    QUOTING_LEG2 = "quoting_leg2"
    EVALUATING = "evaluating"
    SUBMITTING = "submitting"


@dataclass(frozen=True)
class Opportunity:
    """Arbitrage parameters, fixed for one command invocation."""
    borrow_mint: Pubkey
    intermediate_mint: Pubkey
    amount: Decimal  # Human scale
    slippage_bps: int = 50
    compute_unit_price_micro_lamports: Optional[int] = None
    min_profit: Optional[Decimal] = None  # Human scale, borrowed token

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError(f"amount must be positive, got {self.amount}")
        if self.slippage_bps < 0:
            raise ValueError(f"slippage_bps must be >= 0, got {self.slippage_bps}")
        if self.borrow_mint == self.intermediate_mint:
            raise ValueError("borrow and intermediate mints must differ")
        if self.min_profit is not None and self.min_profit < 0:
            raise ValueError(f"min_profit must be >= 0, got {self.min_profit}")


@dataclass(frozen=True)
class RoundTrip:
    """Result of quoting both legs against a repayment amount."""
    leg1: Optional[JupiterQuote]
    leg2: Optional[JupiterQuote]
    amount_in: int
    leg1_out: int
    leg2_out: int
    repayment_amount: int
    profitable: bool

    @property
    def profit(self) -> int:
        return self.leg2_out - self.repayment_amount


def is_profitable(out_amount: int, repayment_amount: int, min_profit: Optional[int] = None) -> bool:
    """
    Exact integer profitability gate.

    out_amount must strictly exceed repayment_amount, and when a floor is set
    the surplus must reach it.
    """
    if out_amount <= repayment_amount:
        return False
    if min_profit is not None and out_amount - repayment_amount < min_profit:
        return False
    return True


class ArbitrageFinder:
    """Quotes two-leg round trips through Jupiter."""

    def __init__(self, jupiter_client: JupiterClient):
        self.jupiter = jupiter_client
        self.state = EvaluatorState.IDLE

    async def evaluate(
        self,
        opportunity: Opportunity,
        amount: int,
        repayment_amount: int,
        min_profit: Optional[int] = None
    ) -> RoundTrip:
        """
        Quote both legs and apply the profitability gate.

        Args:
            opportunity: Mints and slippage
            amount: Borrowed amount in minor units
            repayment_amount: Flash loan repayment in minor units
            min_profit: Optional profit floor in minor units

        Returns:
            RoundTrip; profitable is False when either leg has no route
        """
        borrow_mint = str(opportunity.borrow_mint)
        intermediate_mint = str(opportunity.intermediate_mint)

        self.state = EvaluatorState.QUOTING_LEG1
        leg1 = await self.jupiter.get_quote(
            borrow_mint,
            intermediate_mint,
            amount,
            slippage_bps=opportunity.slippage_bps,
            force_live=True
        )
        leg1_out = leg1.out_amount if leg1 else 0

        self.state = EvaluatorState.QUOTING_LEG2
        leg2 = await self.jupiter.get_quote(
            intermediate_mint,
            borrow_mint,
            leg1_out,
            slippage_bps=opportunity.slippage_bps,
            force_live=True
        )
        leg2_out = leg2.out_amount if leg2 else 0

        self.state = EvaluatorState.EVALUATING
        viable = leg1 is not None and leg2 is not None and leg1_out > 0 and leg2_out > 0
        profitable = viable and is_profitable(leg2_out, repayment_amount, min_profit)

        round_trip = RoundTrip(
            leg1=leg1,
            leg2=leg2,
            amount_in=amount,
            leg1_out=leg1_out,
            leg2_out=leg2_out,
            repayment_amount=repayment_amount,
            profitable=profitable
        )

        if not viable:
            logger.debug(
                f"No viable route: leg1_out={leg1_out} leg2_out={leg2_out} "
                f"({borrow_mint[:8]}... -> {intermediate_mint[:8]}... -> {borrow_mint[:8]}...)"
            )
        else:
            profit_color = colors['GREEN'] if profitable else colors['RED']
            logger.info(
                f"Round trip {colors['GREEN']}{amount}{colors['RESET']} -> "
                f"{colors['GREEN']}{leg1_out}{colors['RESET']} -> "
                f"{colors['GREEN']}{leg2_out}{colors['RESET']} | "
                f"repay {colors['YELLOW']}{repayment_amount}{colors['RESET']} | "
                f"profit {profit_color}{round_trip.profit}{colors['RESET']}"
            )

        self.state = EvaluatorState.SUBMITTING if profitable else EvaluatorState.IDLE
        return round_trip
