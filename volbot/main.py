#!/usr/bin/env python
"""
Command line entry point for the volume bot.
"""

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from typing import List, Optional

from loguru import logger
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed

from volbot.api.jito_relay import JitoRelayClient
from volbot.api.jupiter_client import JupiterClient
from volbot.api.price_oracle import PriceOracle
from volbot.api.pump_portal import PumpPortalClient
from volbot.api.solscan_client import SolscanClient
from volbot.config import DEFAULT_SOL_PER_WALLET, LOG_DIR, LOG_LEVEL, Settings
from volbot.events.event_system import (
    BotStatusEvent,
    EventSystem,
    TransactionFailedEvent,
    TransactionRetryEvent,
)
from volbot.scripts.venues import JupiterVenue, PumpPortalVenue, TradeVenue
from volbot.scripts.volume_bot import VolumeBot
from volbot.solana.blockhash_tracker import BlockhashTracker
from volbot.solana.confirmation import ConfirmationPoller
from volbot.solana.errors import FundingError, PreconditionError
from volbot.solana.funding import FundingService
from volbot.solana.models import RetryPolicy
from volbot.solana.tx_executor import TxExecutor
from volbot.solana.tx_submitter import TxSubmitter
from volbot.solana.wallet_manager import WalletManager


def setup_logging(level: str = LOG_LEVEL, log_dir: str = LOG_DIR):
    """Configure structured logging with loguru."""
    logger.remove()  # Remove default handler
    logger.add(
        os.path.join(log_dir, "volbot_{time}.log"),
        rotation="1 day",
        retention="14 days",
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message} | {extra}",
        serialize=True,  # JSON formatting for structured logs
    )

    # Also send logs to stderr
    logger.add(
        sys.stderr,
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}"
    )

    # Redirect aiohttp and httpx loggers to loguru
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


class InterceptHandler(logging.Handler):
    """Intercept standard logging and redirect to loguru."""
    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


@dataclass
class Components:
    """Everything one run needs, wired explicitly."""
    settings: Settings
    client: AsyncClient
    event_system: EventSystem
    relay: JitoRelayClient
    solscan: SolscanClient
    pump_portal: PumpPortalClient
    jupiter: JupiterClient
    price_oracle: PriceOracle
    tracker: BlockhashTracker
    submitter: TxSubmitter
    poller: ConfirmationPoller
    executor: TxExecutor
    funding: FundingService
    wallets: WalletManager

    async def close(self):
        await self.event_system.stop()
        for http_client in (self.relay, self.solscan, self.pump_portal, self.jupiter, self.price_oracle):
            await http_client.close()
        await self.client.close()


def build_components(settings: Settings, policy: Optional[RetryPolicy] = None) -> Components:
    """Create one RPC connection, HTTP clients and event bus for this run."""
    policy = policy or RetryPolicy()
    client = AsyncClient(settings.rpc_url, commitment=Confirmed)
    event_system = EventSystem()

    relay = JitoRelayClient(settings.jito_url, timeout=settings.http_timeout)
    solscan = SolscanClient(settings.solscan_url, api_token=settings.solscan_token, timeout=settings.http_timeout)
    pump_portal = PumpPortalClient(settings.pumpportal_url, timeout=settings.http_timeout)
    jupiter = JupiterClient(settings.jupiter_url, timeout=settings.http_timeout)
    price_oracle = PriceOracle(
        settings.coingecko_url, fallback_price=settings.fallback_sol_price, timeout=settings.http_timeout
    )

    tracker = BlockhashTracker(client, commitment=settings.commitment)
    submitter = TxSubmitter(client, relay=relay)
    poller = ConfirmationPoller(client, tracker, relay=relay, secondary=solscan, policy=policy)
    executor = TxExecutor(tracker, submitter, poller, event_system=event_system, policy=policy)
    funding = FundingService(client, executor, event_system=event_system)

    return Components(
        settings=settings,
        client=client,
        event_system=event_system,
        relay=relay,
        solscan=solscan,
        pump_portal=pump_portal,
        jupiter=jupiter,
        price_oracle=price_oracle,
        tracker=tracker,
        submitter=submitter,
        poller=poller,
        executor=executor,
        funding=funding,
        wallets=WalletManager(settings.wallet_dir),
    )


def build_venue(components: Components, venue: str, mint: str, bundle: bool = False) -> TradeVenue:
    settings = components.settings
    if venue == "pumpportal":
        return PumpPortalVenue(
            components.pump_portal,
            mint,
            slippage_percent=settings.slippage_percent,
            priority_fee_sol=settings.priority_fee_sol,
            bundle=bundle,
        )
    if venue == "jupiter":
        return JupiterVenue(
            components.jupiter,
            mint,
            slippage_bps=settings.slippage_bps,
            priority_fee_sol=settings.priority_fee_sol,
            jito_tip_lamports=settings.jito_tip_lamports,
            bundle=bundle,
        )
    raise ValueError(f"Unknown venue: {venue}")


async def _log_event(event):
    logger.info(f"{event.event_type}: {event.to_dict()}")


async def cmd_create_wallets(settings: Settings, args) -> int:
    manager = WalletManager(settings.wallet_dir)
    wallets = manager.create_trader_wallets(args.count)
    for wallet in wallets:
        print(f"{wallet.label}: {wallet.address}")
    return 0


async def cmd_balances(settings: Settings, args) -> int:
    components = build_components(settings)
    try:
        addresses: List[str] = list(args.addresses) or [w.address for w in components.wallets.load_all()]
        for address in addresses:
            sol = await components.funding.get_balance(address)
            line = f"{address}: {sol:.9f} SOL"
            if args.token:
                tokens = await components.funding.get_token_balance(address, args.token)
                line += f", {tokens} tokens"
            print(line)
    finally:
        await components.close()
    return 0


async def cmd_fund(settings: Settings, args) -> int:
    main_wallet = WalletManager.import_wallet(settings.require_main_wallet())
    main_keypair = WalletManager.get_keypair(main_wallet)
    components = build_components(settings)
    try:
        await components.event_system.subscribe(TransactionRetryEvent, _log_event)
        await components.event_system.start()
        traders = components.wallets.load_all("trader")
        if not traders:
            logger.error(f"No trader wallets found in {settings.wallet_dir}")
            return 1
        logger.info(f"Funding {len(traders)} trader wallet(s) from {main_wallet.address}")
        results = await components.funding.initialize_trader_wallets(main_keypair, traders, args.sol_per_wallet)
        print(f"Funded {len(results)} wallet(s)")
    except FundingError as e:
        logger.bind(identifier=e.identifier).error(f"Funding failed: {str(e)}")
        return 1
    finally:
        await components.close()
    return 0


async def cmd_run(settings: Settings, args) -> int:
    overrides = {"sell_fraction": args.sell_fraction, "trade_amount_usd": args.trade_usd}
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides:
        settings = Settings.model_validate({**settings.model_dump(), **overrides})

    components = build_components(settings)
    try:
        await components.event_system.subscribe(BotStatusEvent, _log_event)
        await components.event_system.subscribe(TransactionFailedEvent, _log_event)
        await components.event_system.start()

        traders = components.wallets.load_all("trader")
        venue = build_venue(components, args.venue, args.mint, bundle=args.bundle)
        bot = VolumeBot(
            components.executor,
            components.funding,
            venue,
            components.price_oracle,
            settings,
            event_system=components.event_system,
        )
        stats = await bot.run(traders, duration=args.minutes * 60, max_cycles=args.cycles)
        print(
            f"Trades: {stats.successful_trades}/{stats.total_trades} succeeded "
            f"({stats.success_rate:.1f}%), {stats.skipped_trades} skipped, {stats.cycles} cycles"
        )
    finally:
        await components.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Solana volume bot")
    parser.add_argument("--log-level", type=str, default=LOG_LEVEL, help="Log level")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-wallets", help="Create trader wallets")
    create.add_argument("count", type=int, help="Number of wallets to create")
    create.set_defaults(handler=cmd_create_wallets)

    balances = sub.add_parser("balances", help="Show wallet balances")
    balances.add_argument("addresses", nargs="*", help="Addresses to check (default: all trader wallets)")
    balances.add_argument("--token", type=str, default=None, help="Token mint address (optional)")
    balances.set_defaults(handler=cmd_balances)

    fund = sub.add_parser("fund", help="Top up trader wallets from the main wallet")
    fund.add_argument("--sol-per-wallet", type=float, default=DEFAULT_SOL_PER_WALLET, help="Target SOL per wallet")
    fund.set_defaults(handler=cmd_fund)

    run = sub.add_parser("run", help="Run buy/sell cycles")
    run.add_argument("mint", type=str, help="Token mint address")
    run.add_argument("--venue", type=str, default="pumpportal", choices=["pumpportal", "jupiter"], help="Venue")
    run.add_argument("--bundle", action="store_true", help="Send each group's trades as a Jito bundle")
    run.add_argument("--minutes", type=float, default=10, help="Run time in minutes")
    run.add_argument("--cycles", type=int, default=None, help="Stop after this many cycles")
    run.add_argument("--trade-usd", type=float, default=None, help="USD value of each buy")
    run.add_argument("--sell-fraction", type=float, default=None, help="Fraction of the token balance sold, in (0, 1]")
    run.set_defaults(handler=cmd_run)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    settings = Settings.from_env()

    try:
        return asyncio.run(args.handler(settings, args))
    except (PreconditionError, ValueError) as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == '__main__':
    sys.exit(main())
