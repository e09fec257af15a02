#!/usr/bin/env python3
"""
Launcher for the flash loan arbitrage command.

    python run.py simple-jupiter-arb -k wallet.json -m1 <MINT> -m2 <MINT> -a 100
"""
import argparse
import asyncio
import sys

from flash_arb.main import BotSettings, load_config, setup_logging, simple_jupiter_arb


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Solana flash loan arbitrage via Jupiter')
    subparsers = parser.add_subparsers(dest='command', required=True)

    arb = subparsers.add_parser(
        'simple-jupiter-arb',
        help='Borrow, swap there and back through Jupiter, and repay in one transaction'
    )
    arb.add_argument('-k', '--keypair', required=True, help='Keypair JSON file or base58 secret key')
    arb.add_argument('-m1', '--token-mint1', required=True, help='Mint to borrow')
    arb.add_argument('-m2', '--token-mint2', required=True, help='Intermediate mint')
    arb.add_argument('-a', '--amount', required=True, help='Amount to borrow (human scale)')
    arb.add_argument('-s', '--slippage-bps', type=int, default=None, help='Max slippage in bps')
    arb.add_argument(
        '-c', '--compute-unit-price',
        type=int,
        default=None,
        help='Compute unit price in micro-lamports'
    )
    arb.add_argument('-p', '--min-profit', default=None, help='Minimum profit (human scale, borrowed token)')
    arb.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = BotSettings.from_env(load_config())
        setup_logging('DEBUG' if args.verbose else settings.log_level, settings.log_file)
        asyncio.run(simple_jupiter_arb(
            keypair=args.keypair,
            token_mint1=args.token_mint1,
            token_mint2=args.token_mint2,
            amount=args.amount,
            slippage_bps=args.slippage_bps,
            compute_unit_price=args.compute_unit_price,
            min_profit=args.min_profit,
            settings=settings
        ))
    except KeyboardInterrupt:
        print("\nBot stopped by user")
        return 0
    except Exception as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
