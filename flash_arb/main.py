"""
Main entry point for the flash-loan Jupiter arbitrage command.
"""
import json
import logging
import os
import sys
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional

import base58
import dotenv
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .arbitrage_finder import ArbitrageFinder, Opportunity
from .errors import ConfigurationError
from .flash_loan import FlashLoanClient, FLASH_LOAN_PROGRAM_ID, DEFAULT_FEE_BPS
from .jupiter_client import JupiterClient
from .lookup_tables import LookupTableKeysCache
from .solana_client import SolanaClient
from .supervisor import ArbitrageLoop, RetrySupervisor
from .trader import Trader

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent


def setup_logging(level: str = "INFO", log_file: Optional[str] = "arbitrage_bot.log"):
    """Configure root logging: stdout plus an optional log file."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def load_config(root: Path = PROJECT_ROOT) -> dict:
    """Load configuration from .env and config.json."""
    env_path = root / '.env'
    if env_path.exists():
        dotenv.load_dotenv(env_path)
    else:
        logger.debug(f".env file not found at {env_path}")

    config_path = root / 'config.json'
    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid config.json at {config_path}: {e}") from e
    else:
        logger.debug(f"config.json not found at {config_path}")
        config = {}

    return config


def _setting(name: str, arbitrage_config: Dict[str, Any], key: str, default: Any) -> Any:
    """Environment first, then config.json 'arbitrage' section, then default."""
    value = os.getenv(name)
    if value is not None and value.strip():
        return value
    return arbitrage_config.get(key, default)


@dataclass
class BotSettings:
    """Runtime settings shared by every command."""
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    fallback_rpc_url: Optional[str] = None
    jupiter_api_url: Optional[str] = None
    jupiter_api_key: Optional[str] = None
    commitment: str = "confirmed"
    confirm_timeout_sec: float = 60.0
    confirm_transactions: bool = False
    default_slippage_bps: int = 50
    sleep_time_sec: float = 1.0
    max_die_retries: int = 5
    die_sleep_time_sec: float = 2.0
    keys_cache_dir: str = ".cache"
    flash_loan_program_id: str = str(FLASH_LOAN_PROGRAM_ID)
    flash_loan_fee_bps: int = DEFAULT_FEE_BPS
    log_level: str = "INFO"
    log_file: Optional[str] = "arbitrage_bot.log"

    @property
    def die_backoff_sec(self) -> float:
        return self.die_sleep_time_sec * self.max_die_retries

    @classmethod
    def from_env(cls, config: Optional[dict] = None) -> "BotSettings":
        """
        Build settings from environment variables and config.json.

        Raises:
            ConfigurationError: If a numeric setting cannot be parsed
        """
        arb = (config or {}).get('arbitrage', {})
        try:
            return cls(
                rpc_url=_setting('RPC_URL', arb, 'rpc_url', cls.rpc_url),
                fallback_rpc_url=_setting('FALLBACK_RPC_URL', arb, 'fallback_rpc_url', None),
                jupiter_api_url=_setting('JUPITER_API_URL', arb, 'jupiter_api_url', None),
                jupiter_api_key=os.getenv('JUPITER_API_KEY') or None,
                commitment=_setting('COMMITMENT', arb, 'commitment', cls.commitment),
                confirm_timeout_sec=float(_setting('CONFIRM_TIMEOUT_SEC', arb, 'confirm_timeout_sec', cls.confirm_timeout_sec)),
                confirm_transactions=str(_setting('CONFIRM_TRANSACTIONS', arb, 'confirm_transactions', False)).lower() == 'true',
                default_slippage_bps=int(_setting('DEFAULT_SLIPPAGE_BPS', arb, 'default_slippage_bps', cls.default_slippage_bps)),
                sleep_time_sec=float(_setting('SLEEP_TIME_SEC', arb, 'sleep_time_sec', cls.sleep_time_sec)),
                max_die_retries=int(_setting('MAX_DIE_RETRIES', arb, 'max_die_retries', cls.max_die_retries)),
                die_sleep_time_sec=float(_setting('DIE_SLEEP_TIME_SEC', arb, 'die_sleep_time_sec', cls.die_sleep_time_sec)),
                keys_cache_dir=_setting('KEYS_CACHE_DIR', arb, 'keys_cache_dir', cls.keys_cache_dir),
                flash_loan_program_id=_setting('FLASH_LOAN_PROGRAM_ID', arb, 'flash_loan_program_id', cls.flash_loan_program_id),
                flash_loan_fee_bps=int(_setting('FLASH_LOAN_FEE_BPS', arb, 'flash_loan_fee_bps', cls.flash_loan_fee_bps)),
                log_level=os.getenv('LOG_LEVEL', cls.log_level),
                log_file=os.getenv('LOG_FILE', cls.log_file) or None,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid setting: {e}") from e


def load_keypair(keypair: str) -> Keypair:
    """
    Load a keypair from a Solana CLI JSON file or a base58 secret key.

    Raises:
        ConfigurationError: If the keypair cannot be loaded
    """
    path = Path(keypair).expanduser()
    try:
        if path.is_file():
            with open(path, 'r') as f:
                secret = json.load(f)
            return Keypair.from_bytes(bytes(secret))
        return Keypair.from_bytes(base58.b58decode(keypair))
    except (OSError, ValueError, TypeError) as e:
        raise ConfigurationError(f"Cannot load keypair from {keypair!r}: {e}") from e


def parse_pubkey(value: str, name: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid {name}: {value!r}") from e


def parse_decimal(value, name: str) -> Decimal:
    try:
        parsed = Decimal(str(value))
    except InvalidOperation as e:
        raise ConfigurationError(f"Invalid {name}: {value!r}") from e
    if not parsed.is_finite():
        raise ConfigurationError(f"Invalid {name}: {value!r}")
    return parsed


def build_opportunity(
    token_mint1: str,
    token_mint2: str,
    amount,
    slippage_bps: Optional[int],
    compute_unit_price: Optional[int],
    min_profit,
    settings: BotSettings
) -> Opportunity:
    """
    Validate command inputs into an Opportunity.

    Raises:
        ConfigurationError: On any invalid input
    """
    try:
        return Opportunity(
            borrow_mint=parse_pubkey(token_mint1, "token mint 1"),
            intermediate_mint=parse_pubkey(token_mint2, "token mint 2"),
            amount=parse_decimal(amount, "amount"),
            slippage_bps=settings.default_slippage_bps if slippage_bps is None else int(slippage_bps),
            compute_unit_price_micro_lamports=None if compute_unit_price is None else int(compute_unit_price),
            min_profit=None if min_profit is None else parse_decimal(min_profit, "min profit")
        )
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


async def simple_jupiter_arb(
    keypair: str,
    token_mint1: str,
    token_mint2: str,
    amount,
    slippage_bps: Optional[int] = None,
    compute_unit_price: Optional[int] = None,
    min_profit=None,
    settings: Optional[BotSettings] = None
):
    """
    Run the flash loan arbitrage loop under the retry supervisor.

    Only returns by raising (retry budget exhausted or configuration error).
    """
    settings = settings or BotSettings.from_env(load_config())
    wallet = load_keypair(keypair)
    opportunity = build_opportunity(
        token_mint1, token_mint2, amount, slippage_bps, compute_unit_price, min_profit, settings
    )

    logger.info("Starting flash loan Jupiter arbitrage")
    logger.info(f"Wallet: {wallet.pubkey()}")

    async def command():
        jupiter = JupiterClient(settings.jupiter_api_url, api_key=settings.jupiter_api_key)
        solana = SolanaClient(
            settings.rpc_url,
            wallet,
            fallback_rpc_url=settings.fallback_rpc_url,
            commitment=settings.commitment,
            confirm_timeout=settings.confirm_timeout_sec
        )
        try:
            loop = ArbitrageLoop(
                opportunity,
                ArbitrageFinder(jupiter),
                Trader(
                    jupiter,
                    solana,
                    wallet,
                    compute_unit_price_micro_lamports=opportunity.compute_unit_price_micro_lamports,
                    confirm_transactions=settings.confirm_transactions
                ),
                FlashLoanClient(
                    solana,
                    wallet,
                    program_id=settings.flash_loan_program_id,
                    fee_bps=settings.flash_loan_fee_bps
                ),
                solana,
                keys_cache=LookupTableKeysCache(settings.keys_cache_dir),
                rpc_url=settings.rpc_url,
                sleep_seconds=settings.sleep_time_sec
            )
            await loop.run()
        finally:
            await jupiter.close()
            await solana.close()

    supervisor = RetrySupervisor(
        max_retries=settings.max_die_retries,
        backoff_seconds=settings.die_backoff_sec
    )
    await supervisor.run(command, name="simple-jupiter-arb")
