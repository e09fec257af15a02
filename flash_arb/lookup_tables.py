"""
Address lookup table resolution.

Seeded lookup tables are cached on disk per (network, mint pair) by the
setup tooling; the arbitrage command only reads that cache.
"""
import json
import logging
from pathlib import Path
from typing import List, Optional, Union

from solders.address_lookup_table_account import AddressLookupTableAccount

from .errors import ConfigurationError, LookupTableNotFoundError
from .solana_client import SolanaClient
from .utils import get_terminal_colors

colors = get_terminal_colors()
logger = logging.getLogger(__name__)

DEVNET = "devnet"
MAINNET = "mainnet"


def network_name(rpc_url: str) -> str:
    """Network label used in cache file names."""
    return DEVNET if DEVNET in rpc_url else MAINNET


class LookupTableKeysCache:
    """Reads `{network}-jupKeyCache-{mint1}-{mint2}.json` files from a cache directory."""

    def __init__(self, cache_dir: Union[str, Path] = ".cache"):
        self.cache_dir = Path(cache_dir)

    @staticmethod
    def cache_name(network: str, mint1: str, mint2: str) -> str:
        return f"{network}-jupKeyCache-{mint1}-{mint2}.json"

    def path_for(self, network: str, mint1: str, mint2: str) -> Path:
        return self.cache_dir / self.cache_name(network, mint1, mint2)

    def load(self, network: str, mint1: str, mint2: str) -> Optional[str]:
        """
        Get the cached lookup table address for a mint pair.

        Returns:
            Lookup table address, or None if nothing was seeded for the pair

        Raises:
            ConfigurationError: If the cache file exists but cannot be read
        """
        path = self.path_for(network, mint1, mint2)
        if not path.exists():
            logger.debug(f"No lookup table cache at {path}")
            return None

        try:
            with open(path, 'r') as f:
                cached = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read lookup table cache {path}: {e}") from e

        if not isinstance(cached, dict):
            raise ConfigurationError(f"Lookup table cache {path} must contain a JSON object")

        return cached.get("addressLookupTable") or None


async def load_cached_lookup_table(
    solana: SolanaClient,
    address: Optional[str]
) -> Optional[AddressLookupTableAccount]:
    """
    Fetch the cached lookup table account.

    Raises:
        LookupTableNotFoundError: If the table is not on-chain or cannot be parsed
    """
    if not address:
        return None

    try:
        table = await solana.get_address_lookup_table(address)
    except (ValueError, TypeError) as e:
        raise LookupTableNotFoundError(f"Cannot load cached lookup table {address}: {e}") from e

    if table is None:
        raise LookupTableNotFoundError(f"Cached lookup table {address} not found")

    logger.info(
        f"Using cached lookup table {colors['CYAN']}{address}{colors['RESET']} "
        f"({colors['GREEN']}{len(table.addresses)}{colors['RESET']} addresses)"
    )
    return table


def resolve_lookup_tables(
    swap_tables: List[AddressLookupTableAccount],
    cached_table: Optional[AddressLookupTableAccount] = None
) -> List[AddressLookupTableAccount]:
    """
    Lookup tables for the final transaction: the swap tables, then the cached table.

    Duplicates are kept; message compilation tolerates redundant tables.
    """
    tables = list(swap_tables)
    if cached_table is not None:
        tables.append(cached_table)
    return tables
