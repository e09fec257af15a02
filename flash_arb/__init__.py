"""
Flash-loan Jupiter arbitrage executor for Solana.
"""
__version__ = "0.1.0"
