"""
Tests for the volume bot orchestration.
"""

import random
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from solders.keypair import Keypair

from volbot.api.http_client import ApiClientError
from volbot.config import Settings
from volbot.events.event_system import BotStatusEvent, EventSystem
from volbot.scripts.venues import TradeAction
from volbot.scripts.volume_bot import BotStats, TradeResult, VolumeBot
from volbot.solana.models import ConfirmationResult, TxStatus, WalletInfo
from tests.conftest import make_lease

MINT = str(Keypair().pubkey())


def wallets(count: int):
    return [
        WalletInfo(label=f"trader_{i}", address=str(Keypair().pubkey()), secret_key="unused")
        for i in range(1, count + 1)
    ]


def confirmed(identifier: str) -> ConfirmationResult:
    return ConfirmationResult(success=True, identifier=identifier, final_status=TxStatus.CONFIRMED)


@pytest.fixture
def settings():
    return Settings(
        trade_amount_usd=1.0,
        min_trade_interval=10,
        max_trade_interval=10,
        buy_sell_pause=5,
        sell_fraction=0.5,
        main_wallet_private_key=None,
    )


@pytest.fixture
def venue():
    return SimpleNamespace(name="fake", mint=MINT, bundle=False, build=AsyncMock(return_value="request"))


@pytest.fixture
def executor():
    """Executor fake that builds once against a lease and confirms."""
    fake = AsyncMock()
    counter = {"n": 0}

    async def execute(build, options=None, policy=None, label=""):
        await build(make_lease())
        counter["n"] += 1
        return confirmed(f"sig-{counter['n']}")

    fake.execute = AsyncMock(side_effect=execute)
    return fake


@pytest.fixture
def funding():
    fake = AsyncMock()
    fake.get_token_balance = AsyncMock(return_value=1001)
    return fake


@pytest.fixture
def oracle():
    fake = AsyncMock()
    fake.usd_to_sol = AsyncMock(return_value=0.005)
    return fake


@pytest.fixture
def bot(executor, funding, venue, oracle, settings, clock):
    return VolumeBot(executor, funding, venue, oracle, settings, sleep=clock.sleep, clock=clock, rng=random.Random(7))


def built_orders(venue, action):
    orders = []
    for call in venue.build.call_args_list:
        orders.extend(o for o in call.args[0] if o.action == action)
    return orders


class TestVolumeBot:
    """Cycles over wallet groups."""

    @pytest.mark.asyncio
    async def test_one_cycle_trades_every_wallet(self, bot, executor, venue):
        pool = wallets(7)

        stats = await bot.run(pool, duration=3600, max_cycles=1)

        assert stats.cycles == 1
        assert executor.execute.await_count == 14
        assert stats.total_trades == stats.successful_trades == 14
        assert stats.success_rate == 100.0
        assert len(stats.identifiers) == 14
        buys = built_orders(venue, TradeAction.BUY)
        assert sorted(o.wallet.address for o in buys) == sorted(w.address for w in pool)
        assert all(o.sol_amount == 0.005 for o in buys)

    @pytest.mark.asyncio
    async def test_sell_applies_fraction(self, bot, venue):
        await bot.run(wallets(2), duration=3600, max_cycles=1)

        sells = built_orders(venue, TradeAction.SELL)
        assert [o.token_amount for o in sells] == [500, 500]
        assert all(o.sell_fraction == 0.5 for o in sells)

    @pytest.mark.asyncio
    async def test_empty_wallet_skipped(self, bot, funding, executor):
        pool = wallets(2)
        funding.get_token_balance.side_effect = lambda owner, mint: 0 if owner == pool[0].address else 10

        stats = await bot.run(pool, duration=3600, max_cycles=1)

        assert stats.skipped_trades == 1
        assert stats.total_trades == 3
        assert executor.execute.await_count == 3

    @pytest.mark.asyncio
    async def test_balance_error_counts_as_failed_sell(self, bot, funding, executor):
        pool = wallets(2)

        async def balance(owner, mint):
            if owner == pool[0].address:
                raise ApiClientError("Request failed: connection reset")
            return 10

        funding.get_token_balance.side_effect = balance

        stats = await bot.run(pool, duration=3600, max_cycles=1)

        assert stats.cycles == 1
        assert stats.total_trades == 4
        assert stats.failed_trades == 1
        assert stats.successful_trades == 3
        assert executor.execute.await_count == 3

    @pytest.mark.asyncio
    async def test_bundle_mode_one_execution_per_side(self, bot, venue, executor):
        venue.bundle = True

        stats = await bot.run(wallets(7), duration=3600, max_cycles=1)

        assert executor.execute.await_count == 4
        group_sizes = sorted(len(call.args[0]) for call in venue.build.call_args_list)
        assert group_sizes == [2, 2, 5, 5]
        assert stats.total_trades == 14
        assert len(stats.identifiers) == 4

    @pytest.mark.asyncio
    async def test_executor_error_counts_as_failure(self, bot, executor):
        executor.execute.side_effect = RuntimeError("rpc down")

        stats = await bot.run(wallets(1), duration=3600, max_cycles=1)

        assert stats.failed_trades == 2
        assert stats.successful_trades == 0

    @pytest.mark.asyncio
    async def test_publishes_status_per_group(self, executor, funding, venue, oracle, settings, clock):
        events = EventSystem()
        statuses = []

        async def record(event):
            statuses.append(event)

        await events.subscribe(BotStatusEvent, record)
        bot = VolumeBot(executor, funding, venue, oracle, settings, event_system=events, sleep=clock.sleep, clock=clock)

        await bot.run(wallets(6), duration=3600, max_cycles=1)

        assert sorted(s.group for s in statuses) == [0, 1]
        assert sum(s.buys for s in statuses) == 6
        assert all(s.failures == 0 for s in statuses)

    @pytest.mark.asyncio
    async def test_runs_until_duration(self, bot, clock):
        # Each cycle takes the 5s buy/sell pause, followed by a 10s interval
        stats = await bot.run(wallets(1), duration=30)

        assert stats.cycles == 2
        assert clock.sleeps == [5, 10, 5, 10]

    @pytest.mark.asyncio
    async def test_stop_ends_after_cycle(self, bot, executor):
        async def execute(build, options=None, policy=None, label=""):
            bot.stop()
            return confirmed("sig")

        executor.execute.side_effect = execute

        stats = await bot.run(wallets(1), duration=3600)

        assert stats.cycles == 1
        assert not bot.running

    @pytest.mark.asyncio
    async def test_no_wallets(self, bot):
        with pytest.raises(ValueError):
            await bot.run([], duration=60)


class TestBotStats:
    def test_skipped_not_counted_as_trades(self):
        stats = BotStats(start_time=0)
        stats.record([
            TradeResult(wallet="a", action=TradeAction.BUY, result=confirmed("s1")),
            TradeResult(wallet="b", action=TradeAction.SELL, skipped=True),
            TradeResult(wallet="c", action=TradeAction.SELL, error="boom"),
        ])

        assert stats.total_trades == 2
        assert stats.failed_trades == 1
        assert stats.skipped_trades == 1
        assert stats.success_rate == 50.0
