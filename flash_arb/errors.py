"""
Error types for the flash-loan arbitrage executor.

Configuration errors are fatal: the command is invalid as invoked and is never
retried. Everything else that escapes the polling loop is handled by the
retry supervisor.
"""


class ArbitrageError(Exception):
    """Base class for executor errors."""


class ConfigurationError(ArbitrageError):
    """Invalid invocation (bad mint, bad keypair, corrupt cache)."""


class MintNotFoundError(ConfigurationError):
    """Mint account is missing or cannot be parsed."""


class LookupTableNotFoundError(ConfigurationError):
    """Cached address lookup table could not be resolved on-chain."""
