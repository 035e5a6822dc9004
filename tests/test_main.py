"""
Tests for settings and the command line wiring.
"""

import pytest
from pydantic import ValidationError
from solders.keypair import Keypair

from volbot.config import Settings
from volbot.main import build_components, build_parser, build_venue, cmd_create_wallets, cmd_fund, main
from volbot.scripts.venues import JupiterVenue, PumpPortalVenue
from volbot.solana.transactions import keypair_to_base58


@pytest.fixture
def settings(tmp_path):
    return Settings(
        rpc_url="http://localhost:8899",
        wallet_dir=str(tmp_path / "wallets"),
        main_wallet_private_key=None,
    )


class TestSettings:
    def test_sell_fraction_bounds(self):
        assert Settings(sell_fraction=0.25).sell_fraction == 0.25
        with pytest.raises(ValidationError):
            Settings(sell_fraction=0)
        with pytest.raises(ValidationError):
            Settings(sell_fraction=1.5)

    def test_main_wallet_required(self, settings):
        with pytest.raises(ValueError, match="MAIN_WALLET_PRIVATE_KEY"):
            settings.require_main_wallet()


class TestParser:
    def test_run_arguments(self):
        args = build_parser().parse_args(
            ["run", "Mint111", "--venue", "jupiter", "--bundle", "--cycles", "3", "--sell-fraction", "0.5"]
        )

        assert args.mint == "Mint111"
        assert args.venue == "jupiter"
        assert args.bundle is True
        assert args.cycles == 3
        assert args.sell_fraction == 0.5
        assert args.trade_usd is None

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_unknown_venue(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["run", "Mint111", "--venue", "raydium"])


class TestWiring:
    @pytest.mark.asyncio
    async def test_components_share_clients(self, settings):
        components = build_components(settings)
        try:
            assert components.executor.submitter is components.submitter
            assert components.executor.poller is components.poller
            assert components.poller.secondary is components.solscan
            assert components.submitter.relay is components.relay
            assert components.funding.executor is components.executor
        finally:
            await components.close()

    @pytest.mark.asyncio
    async def test_build_venue(self, settings):
        components = build_components(settings)
        try:
            pump = build_venue(components, "pumpportal", "Mint111", bundle=True)
            jupiter = build_venue(components, "jupiter", "Mint111")

            assert isinstance(pump, PumpPortalVenue) and pump.bundle
            assert isinstance(jupiter, JupiterVenue) and not jupiter.bundle
            with pytest.raises(ValueError):
                build_venue(components, "raydium", "Mint111")
        finally:
            await components.close()

    @pytest.mark.asyncio
    async def test_create_wallets_command(self, settings, capsys):
        args = build_parser().parse_args(["create-wallets", "2"])

        assert await cmd_create_wallets(settings, args) == 0
        assert "trader_2" in capsys.readouterr().out


class TestMain:
    def test_fund_without_main_wallet(self, monkeypatch, tmp_path):
        monkeypatch.setattr(Settings, "from_env", classmethod(lambda cls: cls(main_wallet_private_key=None)))
        monkeypatch.setattr("volbot.main.setup_logging", lambda *a, **k: None)

        assert main(["fund"]) == 1

    def test_fund_with_malformed_main_wallet(self, monkeypatch):
        monkeypatch.setattr(Settings, "from_env", classmethod(lambda cls: cls(main_wallet_private_key="not-a-key")))
        monkeypatch.setattr("volbot.main.setup_logging", lambda *a, **k: None)

        assert main(["fund"]) == 1

    @pytest.mark.asyncio
    async def test_fund_without_trader_wallets(self, settings):
        settings = settings.model_copy(update={"main_wallet_private_key": keypair_to_base58(Keypair())})
        args = build_parser().parse_args(["fund"])

        assert await cmd_fund(settings, args) == 1
