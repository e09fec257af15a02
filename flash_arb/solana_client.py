"""
Solana RPC client for mint metadata, lookup tables and transaction sending.
"""
import asyncio
import base64
import logging
from typing import Optional, List, Union

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.hash import Hash
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from solders.address_lookup_table_account import AddressLookupTableAccount, AddressLookupTable
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.types import TxOpts

from .errors import MintNotFoundError

logger = logging.getLogger(__name__)

# SPL token mint layout: COption<Pubkey> mint_authority (36) + u64 supply (8) + u8 decimals
MINT_ACCOUNT_SIZE = 82
MINT_DECIMALS_OFFSET = 44


def _as_pubkey(value: Union[str, Pubkey]) -> Pubkey:
    return value if isinstance(value, Pubkey) else Pubkey.from_string(value)


def _account_data_bytes(raw) -> bytes:
    """
    Normalize account data to bytes.

    solana-py may return data as bytes, a base64 string, or a list
    ["<base64>", "<encoding>"] depending on version and encoding.
    """
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw)
    if isinstance(raw, str):
        return base64.b64decode(raw)
    if isinstance(raw, list) and raw and isinstance(raw[0], str):
        return base64.b64decode(raw[0])
    raise TypeError(f"Unexpected account data type: {type(raw)} (expected bytes, str, or list)")


class SolanaClient:
    """Client for Solana RPC operations with failover support."""

    def __init__(
        self,
        rpc_url: str,
        wallet_keypair: Optional[Keypair] = None,
        fallback_rpc_url: Optional[str] = None,
        commitment: str = "confirmed",
        confirm_timeout: float = 60.0
    ):
        self.rpc_url_primary = rpc_url
        self.rpc_url_fallback = fallback_rpc_url
        self._active_rpc_url = rpc_url
        self._failover_used = False
        self.commitment = Commitment(commitment)
        self.confirm_timeout = confirm_timeout
        self.client = AsyncClient(rpc_url, commitment=self.commitment)
        self.wallet = wallet_keypair

    async def _switch_to_fallback(self, reason: str) -> bool:
        """
        Switch to fallback RPC if available.

        Returns:
            True if switched to fallback, False if no fallback available
        """
        if self.rpc_url_fallback and self._active_rpc_url == self.rpc_url_primary:
            if not self._failover_used:
                # Log domains only, RPC URLs often embed API keys
                primary_domain = self.rpc_url_primary.split('//')[-1].split('/')[0]
                fallback_domain = self.rpc_url_fallback.split('//')[-1].split('/')[0]
                logger.warning(
                    f"RPC failover: PRIMARY ({primary_domain}) -> FALLBACK ({fallback_domain}), reason: {reason}"
                )
                self._failover_used = True

            try:
                await self.client.close()
            except Exception as e:
                logger.debug(f"Error closing primary RPC client: {e}")

            self._active_rpc_url = self.rpc_url_fallback
            self.client = AsyncClient(self.rpc_url_fallback, commitment=self.commitment)
            return True
        return False

    def _is_failover_error(self, error: Exception) -> bool:
        """Rate limit, timeout and connection errors trigger failover."""
        error_str = str(error).lower()
        error_type = type(error).__name__

        if '429' in error_str or 'rate limit' in error_str or 'quota' in error_str:
            return True
        if 'timeout' in error_str or 'timed out' in error_str:
            return True
        if error_type in ('ConnectError', 'ConnectTimeout', 'NetworkError', 'TimeoutError', 'ReadTimeout'):
            return True
        if 'connection' in error_str or 'network' in error_str:
            return True
        return False

    async def _with_failover(self, coro_func, *args, **kwargs):
        """
        Execute coroutine with failover support.

        Raises:
            Exception: If both primary and fallback fail
        """
        try:
            return await coro_func(*args, **kwargs)
        except Exception as e:
            if self._is_failover_error(e) and await self._switch_to_fallback(str(e)):
                try:
                    return await coro_func(*args, **kwargs)
                except Exception as e2:
                    logger.error(f"Both primary and fallback RPC failed. Last error: {e2}")
                    raise e2 from e
            raise

    async def _get_account_data(self, pubkey: Pubkey) -> Optional[bytes]:
        async def _fetch():
            return await self.client.get_account_info(pubkey, commitment=self.commitment, encoding="base64")

        account_info = await self._with_failover(_fetch)
        if account_info.value is None:
            return None
        return _account_data_bytes(account_info.value.data)

    async def account_exists(self, address: Union[str, Pubkey]) -> bool:
        """Check whether an account exists on-chain."""
        data = await self._get_account_data(_as_pubkey(address))
        return data is not None

    async def get_mint_decimals(self, mint: Union[str, Pubkey]) -> int:
        """
        Get decimal precision of an SPL token mint.

        Raises:
            MintNotFoundError: If the mint account is missing or is not a mint
        """
        mint_pubkey = _as_pubkey(mint)
        try:
            data = await self._get_account_data(mint_pubkey)
        except TypeError as e:
            raise MintNotFoundError(f"Could not parse mint account {mint_pubkey}: {e}") from e

        if data is None:
            raise MintNotFoundError(f"Could not find mint account {mint_pubkey}")
        if len(data) < MINT_ACCOUNT_SIZE:
            raise MintNotFoundError(
                f"Account {mint_pubkey} is not a token mint ({len(data)} bytes, expected {MINT_ACCOUNT_SIZE})"
            )

        decimals = data[MINT_DECIMALS_OFFSET]
        logger.debug(f"Mint {mint_pubkey} decimals: {decimals}")
        return decimals

    async def get_address_lookup_table(self, address: Union[str, Pubkey]) -> Optional[AddressLookupTableAccount]:
        """
        Get a single Address Lookup Table account.

        Returns:
            AddressLookupTableAccount, or None if the account does not exist
        """
        pubkey = _as_pubkey(address)
        data = await self._get_account_data(pubkey)
        if data is None:
            return None
        table = AddressLookupTable.deserialize(data)
        alt_account = AddressLookupTableAccount(pubkey, list(table.addresses))
        logger.debug(f"Loaded ALT account: {pubkey} with {len(alt_account.addresses)} addresses")
        return alt_account

    async def get_address_lookup_table_accounts(
        self,
        addresses: List[str]
    ) -> List[AddressLookupTableAccount]:
        """
        Get Address Lookup Table (ALT) accounts, in the order given.

        Raises:
            ValueError: If any ALT account cannot be loaded
        """
        alt_accounts = []
        for alt_address in addresses:
            try:
                alt_account = await self.get_address_lookup_table(alt_address)
            except Exception as e:
                logger.error(f"Failed to load ALT account {alt_address}: {e}")
                raise ValueError(f"Cannot load ALT account {alt_address}: {e}") from e
            if alt_account is None:
                raise ValueError(f"ALT account {alt_address} not found")
            alt_accounts.append(alt_account)
        return alt_accounts

    async def get_recent_blockhash(self) -> Optional[Hash]:
        """
        Get recent blockhash for transaction building.

        Returns:
            Recent blockhash as Hash object, or None if failed
        """
        try:
            result = await self._with_failover(self.client.get_latest_blockhash, commitment=self.commitment)
            if result.value:
                return result.value.blockhash
            return None
        except Exception as e:
            logger.error(f"Error getting recent blockhash: {e}")
            return None

    async def send_versioned_transaction(
        self,
        tx: VersionedTransaction,
        skip_preflight: bool = False,
        max_retries: int = 3
    ) -> str:
        """
        Send a signed VersionedTransaction.

        Returns:
            Transaction signature (base58 string)

        Raises:
            Exception: The last send error once all attempts failed
        """
        async def _send():
            opts = TxOpts(
                skip_preflight=skip_preflight,
                preflight_commitment=self.commitment,
                max_retries=0  # We handle retries ourselves
            )
            for attempt in range(max_retries):
                try:
                    result = await self.client.send_transaction(tx, opts=opts)
                    if result.value:
                        sig = str(result.value)
                        logger.debug(f"Transaction sent: {sig}")
                        return sig
                    logger.warning(f"Transaction send returned no signature (attempt {attempt + 1})")
                except Exception as e:
                    logger.warning(f"Transaction send attempt {attempt + 1} failed: {e}")
                    if attempt >= max_retries - 1:
                        raise
                    await asyncio.sleep(0.5)
            raise RuntimeError(f"Transaction send returned no signature after {max_retries} attempts")

        return await self._with_failover(_send)

    async def confirm_transaction(self, signature: str) -> bool:
        """
        Wait for confirmation, bounded by the configured confirmation timeout.

        Returns:
            True if confirmed, False on error or timeout
        """
        try:
            result = await asyncio.wait_for(
                self.client.confirm_transaction(
                    Signature.from_string(signature),
                    commitment=self.commitment
                ),
                timeout=self.confirm_timeout
            )
            status = result.value[0] if result.value else None
            return status is not None and status.err is None
        except asyncio.TimeoutError:
            logger.warning(f"Transaction {signature} not confirmed within {self.confirm_timeout:.0f}s")
            return False
        except Exception as e:
            logger.error(f"Error confirming transaction: {e}")
            return False

    async def close(self):
        """Close RPC client."""
        await self.client.close()
