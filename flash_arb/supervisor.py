"""
Polling loop and command-level retry supervisor.

Per-iteration failures (no route, unprofitable, failed broadcast) are absorbed
by the loop. Anything escaping the loop is retried at the command level with
a fixed backoff; configuration errors are never retried.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from solders.address_lookup_table_account import AddressLookupTableAccount

from .arbitrage_finder import ArbitrageFinder, EvaluatorState, Opportunity
from .errors import ConfigurationError
from .flash_loan import FlashLoanClient
from .lookup_tables import LookupTableKeysCache, load_cached_lookup_table, network_name
from .solana_client import SolanaClient
from .trader import Trader
from .utils import format_minor_units, get_terminal_colors, to_minor_units

colors = get_terminal_colors()
logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class ArbitrageLoop:
    """Quote, gate and submit, forever."""

    def __init__(
        self,
        opportunity: Opportunity,
        finder: ArbitrageFinder,
        trader: Trader,
        flash_loan: FlashLoanClient,
        solana_client: SolanaClient,
        keys_cache: Optional[LookupTableKeysCache] = None,
        rpc_url: str = "",
        sleep_seconds: float = 1.0,
        sleep: Sleep = asyncio.sleep
    ):
        self.opportunity = opportunity
        self.finder = finder
        self.trader = trader
        self.flash_loan = flash_loan
        self.solana = solana_client
        self.keys_cache = keys_cache
        self.rpc_url = rpc_url
        self.sleep_seconds = sleep_seconds
        self._sleep = sleep

        self.decimals: Optional[int] = None
        self.amount: Optional[int] = None
        self.min_profit: Optional[int] = None
        self.cached_table: Optional[AddressLookupTableAccount] = None
        self.iterations = 0
        self.submissions = 0

    async def prepare(self):
        """
        Resolve decimals, minor-unit amounts and the cached lookup table.

        Raises:
            ConfigurationError: Missing mint or unresolvable cached table
        """
        decimals = await self.solana.get_mint_decimals(self.opportunity.borrow_mint)
        self.decimals = decimals
        self.amount = to_minor_units(self.opportunity.amount, decimals)
        if self.opportunity.min_profit is not None:
            self.min_profit = to_minor_units(self.opportunity.min_profit, decimals)

        if self.keys_cache is not None:
            address = self.keys_cache.load(
                network_name(self.rpc_url),
                str(self.opportunity.borrow_mint),
                str(self.opportunity.intermediate_mint)
            )
            self.cached_table = await load_cached_lookup_table(self.solana, address)

        logger.info(
            f"Borrowing {colors['GREEN']}{self.opportunity.amount}{colors['RESET']} "
            f"({colors['GREEN']}{self.amount}{colors['RESET']} minor units, decimals={decimals}) of "
            f"{colors['CYAN']}{self.opportunity.borrow_mint}{colors['RESET']} via "
            f"{colors['CYAN']}{self.opportunity.intermediate_mint}{colors['RESET']}, "
            f"slippage {colors['YELLOW']}{self.opportunity.slippage_bps}{colors['RESET']} bps"
        )

    async def run_iteration(self) -> Optional[str]:
        """
        One evaluation and, when profitable, one submission.

        Returns:
            Transaction signature if a transaction was sent
        """
        if self.amount is None:
            await self.prepare()

        self.iterations += 1
        try:
            plan = await self.flash_loan.plan_flash_loan(
                self.opportunity.borrow_mint,
                self.opportunity.amount,
                decimals=self.decimals
            )
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(f"{colors['RED']}Flash loan plan failed:{colors['RESET']} {e}")
            return None

        round_trip = await self.finder.evaluate(
            self.opportunity,
            self.amount,
            plan.repayment_amount,
            min_profit=self.min_profit
        )
        if not round_trip.profitable:
            return None

        logger.info(
            f"{colors['GREEN']}Profitable round trip:{colors['RESET']} "
            f"out {colors['GREEN']}{round_trip.leg2_out}{colors['RESET']} > "
            f"repay {colors['YELLOW']}{plan.repayment_amount}{colors['RESET']}"
            f" (profit {colors['GREEN']}{format_minor_units(round_trip.profit, self.decimals)}{colors['RESET']})"
        )
        try:
            tx_sig = await self.trader.execute(plan, round_trip, self.cached_table)
        finally:
            self.finder.state = EvaluatorState.IDLE

        if tx_sig:
            self.submissions += 1
        return tx_sig

    async def run(self, max_iterations: Optional[int] = None):
        """
        Run iterations with a fixed delay after each one.

        Args:
            max_iterations: Stop after this many iterations (None = forever)
        """
        await self.prepare()
        while max_iterations is None or self.iterations < max_iterations:
            await self.run_iteration()
            await self._sleep(self.sleep_seconds)


class RetrySupervisor:
    """Re-runs a whole command when it fails, up to max_retries attempts."""

    def __init__(
        self,
        max_retries: int = 5,
        backoff_seconds: float = 10.0,
        sleep: Sleep = asyncio.sleep
    ):
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self.attempts = 0

    async def run(self, command: Callable[[], Awaitable[None]], name: str = "command"):
        """
        Await command() until it returns, retrying on failure.

        Raises:
            ConfigurationError: Immediately, without retry
            Exception: The last error once max_retries attempts have failed
        """
        self.attempts = 0
        while True:
            self.attempts += 1
            try:
                return await command()
            except ConfigurationError:
                raise
            except Exception as e:
                logger.error(
                    f"{colors['RED']}retry {name}{colors['RESET']} "
                    f"(attempt {self.attempts}/{self.max_retries}): {e}",
                    exc_info=logger.isEnabledFor(logging.DEBUG)
                )
                if self.attempts >= self.max_retries:
                    raise
                await self._sleep(self.backoff_seconds)
