"""
Trade venues for the volume bot.

A venue turns trade orders into a signed TransactionRequest against a given
blockhash lease. Venues only build transactions; submission and
confirmation stay in the executor.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from loguru import logger

from volbot.api.jupiter_client import JupiterClient
from volbot.api.pump_portal import PumpPortalClient
from volbot.config import JITO_TIP_LAMPORTS, LAMPORTS_PER_SOL, PRIORITY_FEE_SOL, SLIPPAGE_BPS, SLIPPAGE_PERCENT, SOL_MINT
from volbot.solana.errors import InvalidBundleError, PreconditionError
from volbot.solana.models import BlockhashLease, SubmissionMode, TransactionRequest, WalletInfo
from volbot.solana.transactions import make_request, sign_serialized
from volbot.solana.wallet_manager import WalletManager


class TradeAction(str, Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass
class TradeOrder:
    """One wallet's side of a trade."""
    wallet: WalletInfo
    action: TradeAction
    sol_amount: Optional[float] = None
    token_amount: Optional[int] = None
    sell_fraction: float = 1.0

    def validate(self):
        if self.action == TradeAction.BUY and not (self.sol_amount and self.sol_amount > 0):
            raise PreconditionError(f"Buy for {self.wallet.label} needs a positive SOL amount")
        if self.action == TradeAction.SELL and not (self.token_amount and self.token_amount > 0):
            raise PreconditionError(f"Sell for {self.wallet.label} needs a positive token amount")


class TradeVenue(ABC):
    """
    Base class for a liquidity venue.

    With ``bundle`` set, all orders of a call are signed into one Jito bundle
    and the first transaction carries the tip.
    """

    name = "venue"

    def __init__(self, mint: str, bundle: bool = False):
        self.mint = mint
        self.bundle = bundle

    @abstractmethod
    async def unsigned_transaction(self, order: TradeOrder, tip: bool = False) -> bytes:
        """Fetch the unsigned serialized transaction for one order."""

    async def unsigned_bundle(self, orders: List[TradeOrder]) -> List[bytes]:
        return list(await asyncio.gather(
            *(self.unsigned_transaction(order, tip=(i == 0)) for i, order in enumerate(orders))
        ))

    async def build(self, orders: List[TradeOrder], lease: BlockhashLease, label: str = "") -> TransactionRequest:
        """
        Build and sign a request for ``orders`` against ``lease``.

        Args:
            orders: One order per wallet; exactly one unless bundling
            lease: Blockhash lease every transaction is bound to
            label: Label for logs and events

        Returns:
            Signed TransactionRequest
        """
        if not orders:
            raise InvalidBundleError("No trade orders to build")
        if not self.bundle and len(orders) != 1:
            raise InvalidBundleError(f"{self.name} builds one order at a time without bundling, got {len(orders)}")

        for order in orders:
            order.validate()
        keypairs = [WalletManager.get_keypair(order.wallet) for order in orders]

        if self.bundle:
            raws = await self.unsigned_bundle(orders)
            mode = SubmissionMode.BUNDLE
        else:
            raws = [await self.unsigned_transaction(orders[0])]
            mode = SubmissionMode.SINGLE

        payloads = [sign_serialized(raw, [keypair], lease) for raw, keypair in zip(raws, keypairs)]
        return make_request(payloads, keypairs, mode=mode, label=label or f"{self.name} {orders[0].action.value}")


class PumpPortalVenue(TradeVenue):
    """Bonding-curve trades built by PumpPortal's local trade API."""

    name = "pumpportal"

    def __init__(
        self,
        client: PumpPortalClient,
        mint: str,
        slippage_percent: float = SLIPPAGE_PERCENT,
        priority_fee_sol: float = PRIORITY_FEE_SOL,
        pool: str = "pump",
        bundle: bool = False,
    ):
        super().__init__(mint, bundle=bundle)
        self.client = client
        self.slippage_percent = slippage_percent
        self.priority_fee_sol = priority_fee_sol
        self.pool = pool

    def _params(self, order: TradeOrder):
        if order.action == TradeAction.BUY:
            amount, in_sol = float(order.sol_amount), True
        else:
            # PumpPortal sells a percentage of the wallet's current token balance
            amount, in_sol = f"{order.sell_fraction * 100:g}%", False
        return self.client.trade_params(
            public_key=order.wallet.address,
            action=order.action.value,
            mint=self.mint,
            amount=amount,
            denominated_in_sol=in_sol,
            slippage=self.slippage_percent,
            priority_fee=self.priority_fee_sol,
            pool=self.pool,
        )

    async def unsigned_transaction(self, order: TradeOrder, tip: bool = False) -> bytes:
        return await self.client.trade_local(self._params(order))

    async def unsigned_bundle(self, orders: List[TradeOrder]) -> List[bytes]:
        # The first transaction's priority fee is paid as the Jito tip
        return await self.client.trade_local_bundle([self._params(order) for order in orders])


class JupiterVenue(TradeVenue):
    """Aggregator swaps routed by Jupiter."""

    name = "jupiter"

    def __init__(
        self,
        client: JupiterClient,
        mint: str,
        slippage_bps: int = SLIPPAGE_BPS,
        priority_fee_sol: float = PRIORITY_FEE_SOL,
        jito_tip_lamports: int = JITO_TIP_LAMPORTS,
        bundle: bool = False,
    ):
        super().__init__(mint, bundle=bundle)
        self.client = client
        self.slippage_bps = slippage_bps
        self.priority_fee_lamports = int(priority_fee_sol * LAMPORTS_PER_SOL)
        self.jito_tip_lamports = jito_tip_lamports

    async def unsigned_transaction(self, order: TradeOrder, tip: bool = False) -> bytes:
        if order.action == TradeAction.BUY:
            quote = await self.client.get_quote(
                SOL_MINT, self.mint, int(order.sol_amount * LAMPORTS_PER_SOL), self.slippage_bps
            )
        else:
            quote = await self.client.get_quote(self.mint, SOL_MINT, int(order.token_amount), self.slippage_bps)

        raw, last_valid = await self.client.get_swap_transaction(
            quote,
            order.wallet.address,
            priority_fee_lamports=self.priority_fee_lamports,
            jito_tip_lamports=self.jito_tip_lamports if tip else None,
        )
        logger.bind(wallet=order.wallet.address, last_valid_block_height=last_valid).debug(
            f"Jupiter {order.action.value} for {order.wallet.label}, venue blockhash valid until {last_valid}"
        )
        return raw
