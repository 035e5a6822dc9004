"""
Volume bot orchestration.

Runs buy/sell cycles for disjoint groups of trader wallets concurrently. Each
group buys, pauses, then sells a fraction of the tokens it holds.
"""

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from loguru import logger

from volbot.api.price_oracle import PriceOracle
from volbot.config import Settings
from volbot.events.event_system import BotStatusEvent, EventSystem
from volbot.scripts.venues import TradeAction, TradeOrder, TradeVenue
from volbot.solana.funding import FundingService
from volbot.solana.models import ConfirmationResult, SendOptions, WalletInfo
from volbot.solana.tx_executor import TxExecutor
from volbot.solana.wallet_manager import WalletManager


@dataclass
class TradeResult:
    """Outcome of one wallet's trade."""
    wallet: str
    action: TradeAction
    result: Optional[ConfirmationResult] = None
    error: Optional[str] = None
    skipped: bool = False

    @property
    def is_successful(self) -> bool:
        return self.result is not None and self.result.success


@dataclass
class BotStats:
    """Running totals for a bot run."""
    start_time: float
    end_time: Optional[float] = None
    cycles: int = 0
    total_trades: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    skipped_trades: int = 0
    identifiers: List[str] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Calculate success rate as percentage."""
        if self.total_trades == 0:
            return 0.0
        return (self.successful_trades / self.total_trades) * 100

    def record(self, results: List[TradeResult]):
        for r in results:
            if r.skipped:
                self.skipped_trades += 1
                continue
            self.total_trades += 1
            if r.is_successful:
                self.successful_trades += 1
            else:
                self.failed_trades += 1
            # Orders of one bundle share an identifier
            if r.result is not None and r.result.identifier and r.result.identifier not in self.identifiers:
                self.identifiers.append(r.result.identifier)


class VolumeBot:
    """
    Drives trading cycles over a pool of funded trader wallets.

    The venue decides how orders become transactions; the executor owns
    submission, confirmation and retries.
    """

    # Stagger between individual trades of one group, in seconds
    TRADE_STAGGER = 1.0

    def __init__(
        self,
        executor: TxExecutor,
        funding: FundingService,
        venue: TradeVenue,
        price_oracle: PriceOracle,
        settings: Settings,
        event_system: Optional[EventSystem] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.executor = executor
        self.funding = funding
        self.venue = venue
        self.price_oracle = price_oracle
        self.settings = settings
        self.event_system = event_system
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()
        self._running = False
        self.stats = BotStats(start_time=time.time())

    @property
    def running(self) -> bool:
        return self._running

    def stop(self):
        """Finish the current cycle and stop."""
        self._running = False

    async def run(self, wallets: List[WalletInfo], duration: float, max_cycles: Optional[int] = None) -> BotStats:
        """
        Trade until ``duration`` seconds have passed or ``max_cycles`` cycles ran.

        Args:
            wallets: Funded trader wallets
            duration: Run time in seconds
            max_cycles: Optional cap on the number of cycles

        Returns:
            BotStats for the run
        """
        groups = list(WalletManager.partition(wallets))
        if not groups:
            raise ValueError("No trader wallets to trade with")

        logger.bind(venue=self.venue.name, mint=self.venue.mint, bundle=self.venue.bundle).info(
            f"Starting volume bot on {self.venue.name} for {self.venue.mint}: "
            f"{len(wallets)} wallets in {len(groups)} groups, ${self.settings.trade_amount_usd} per trade, "
            f"sell fraction {self.settings.sell_fraction}"
        )

        self._running = True
        self.stats = BotStats(start_time=time.time())
        end = self._clock() + duration

        while self._running and self._clock() < end:
            await asyncio.gather(*(self.run_group_cycle(i, group) for i, group in enumerate(groups)))
            self.stats.cycles += 1

            if max_cycles is not None and self.stats.cycles >= max_cycles:
                break
            if not self._running or self._clock() >= end:
                break

            delay = self._rng.uniform(self.settings.min_trade_interval, self.settings.max_trade_interval)
            logger.info(f"Next cycle in {delay:.1f}s")
            await self._sleep(delay)

        self._running = False
        self.stats.end_time = time.time()
        logger.info(
            f"Volume bot finished: {self.stats.successful_trades}/{self.stats.total_trades} trades succeeded "
            f"({self.stats.success_rate:.1f}%) over {self.stats.cycles} cycles"
        )
        return self.stats

    async def run_group_cycle(self, index: int, group: List[WalletInfo]) -> List[TradeResult]:
        """Buy with every wallet of the group, pause, then sell."""
        sol_amount = await self.price_oracle.usd_to_sol(self.settings.trade_amount_usd)

        logger.info(f"Group {index}: buying with {len(group)} wallets")
        buys = await self._trade(group, TradeAction.BUY, sol_amount=sol_amount)

        await self._sleep(self.settings.buy_sell_pause)

        logger.info(f"Group {index}: selling with {len(group)} wallets")
        sells = await self._trade(group, TradeAction.SELL)

        results = buys + sells
        self.stats.record(results)

        if self.event_system is not None:
            await self.event_system.publish(BotStatusEvent(
                group=index,
                cycle=self.stats.cycles + 1,
                buys=sum(1 for r in buys if r.is_successful),
                sells=sum(1 for r in sells if r.is_successful),
                failures=sum(1 for r in results if not r.skipped and not r.is_successful),
                message=f"{self.stats.successful_trades}/{self.stats.total_trades} trades succeeded",
            ))
        return results

    async def _orders(self, group: List[WalletInfo], action: TradeAction, sol_amount: Optional[float]):
        orders, unplaced = [], []
        for wallet in group:
            if action == TradeAction.BUY:
                orders.append(TradeOrder(wallet=wallet, action=action, sol_amount=sol_amount))
                continue

            try:
                balance = await self.funding.get_token_balance(wallet.address, self.venue.mint)
            except Exception as e:
                logger.error(f"Token balance check failed for wallet {wallet.address}: {str(e)}")
                unplaced.append(TradeResult(wallet=wallet.address, action=action, error=str(e)))
                continue
            amount = int(balance * self.settings.sell_fraction)
            if amount <= 0:
                logger.warning(f"No token balance for wallet {wallet.address}")
                unplaced.append(TradeResult(wallet=wallet.address, action=action, skipped=True))
                continue
            orders.append(TradeOrder(
                wallet=wallet, action=action, token_amount=amount, sell_fraction=self.settings.sell_fraction
            ))
        return orders, unplaced

    async def _trade(self, group: List[WalletInfo], action: TradeAction, sol_amount: Optional[float] = None):
        orders, unplaced = await self._orders(group, action, sol_amount)
        if not orders:
            return unplaced

        if self.venue.bundle:
            return unplaced + await self._execute_bundle(orders)

        async def staggered(i: int, order: TradeOrder) -> TradeResult:
            if i:
                await self._sleep(self.TRADE_STAGGER * i)
            return await self._execute_single(order)

        return unplaced + list(await asyncio.gather(*(staggered(i, o) for i, o in enumerate(orders))))

    async def _execute_single(self, order: TradeOrder) -> TradeResult:
        label = f"{order.action.value} {order.wallet.label}"
        try:
            result = await self.executor.execute(
                lambda lease: self.venue.build([order], lease, label=label),
                options=SendOptions(),
                label=label,
            )
        except Exception as e:
            logger.error(f"{order.action.value.upper()} failed for wallet {order.wallet.address}: {str(e)}")
            return TradeResult(wallet=order.wallet.address, action=order.action, error=str(e))
        return TradeResult(wallet=order.wallet.address, action=order.action, result=result, error=result.error_detail)

    async def _execute_bundle(self, orders: List[TradeOrder]) -> List[TradeResult]:
        action = orders[0].action
        label = f"{action.value} bundle of {len(orders)}"
        try:
            result = await self.executor.execute(
                lambda lease: self.venue.build(orders, lease, label=label),
                label=label,
            )
        except Exception as e:
            logger.error(f"{action.value.upper()} bundle failed: {str(e)}")
            return [TradeResult(wallet=o.wallet.address, action=action, error=str(e)) for o in orders]
        # A bundle lands atomically, so every order shares its outcome
        return [
            TradeResult(wallet=o.wallet.address, action=action, result=result, error=result.error_detail)
            for o in orders
        ]
