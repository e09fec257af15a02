"""
Utility functions for the flash-loan arbitrage executor.
"""
import sys
from decimal import Decimal, InvalidOperation
from typing import Dict, Union


def get_terminal_colors() -> Dict[str, str]:
    """
    Get ANSI color codes for terminal output.

    Returns empty strings if output is not a TTY (e.g., redirected to file).
    This keeps log files free of ANSI escape codes.

    Returns:
        Dictionary with color codes: GREEN, CYAN, YELLOW, RED, DIM, RESET
    """
    use_color = sys.stdout.isatty()
    return {
        'GREEN': '\033[92m' if use_color else '',   # Amounts and counts
        'CYAN': '\033[96m' if use_color else '',    # Mints, signatures, stages
        'YELLOW': '\033[93m' if use_color else '',  # Profit, repayment, thresholds
        'RED': '\033[91m' if use_color else '',     # Failures
        'DIM': '\033[90m' if use_color else '',     # Service messages
        'RESET': '\033[0m' if use_color else ''
    }


def to_minor_units(amount: Union[int, str, float, Decimal], decimals: int) -> int:
    """
    Convert a human-scale token amount to minor units (amount * 10^decimals).

    The result is rounded toward zero. Floats are converted through their
    string representation so that 0.1 stays 0.1.

    Args:
        amount: Human-scale amount (e.g. 1.5 for 1.5 USDC)
        decimals: Mint decimal precision

    Returns:
        Integer amount in minor units

    Raises:
        ValueError: If decimals is negative or amount is not a number
    """
    if decimals < 0:
        raise ValueError(f"decimals must be >= 0, got {decimals}")

    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e

    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")

    # Integer arithmetic on the decimal digits; Decimal context precision
    # (28 digits) would otherwise round large minor-unit amounts.
    sign, digits, exponent = value.as_tuple()
    coefficient = int(''.join(str(d) for d in digits)) if digits else 0
    exponent += decimals
    if exponent >= 0:
        minor = coefficient * 10 ** exponent
    else:
        minor = coefficient // 10 ** (-exponent)
    return -minor if sign else minor


def format_minor_units(amount: int, decimals: int) -> str:
    """Render a minor-unit amount as a human-scale string (for logs)."""
    return str(Decimal(amount).scaleb(-decimals))
