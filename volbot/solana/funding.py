"""
Balance checks and wallet funding.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional

from loguru import logger
from solana.rpc.async_api import AsyncClient
from solana.rpc.types import TokenAccountOpts
from solders.keypair import Keypair

from volbot.config import LAMPORTS_PER_SOL, MIN_FUNDING_SOL
from volbot.events.event_system import BalanceChangeEvent, EventSystem
from volbot.solana.errors import FundingError, InsufficientBalanceError, PreconditionError
from volbot.solana.models import FUNDING_POLICY, BlockhashLease, ConfirmationResult, RetryPolicy, WalletInfo
from volbot.solana.transactions import build_transfer, make_request, parse_pubkey
from volbot.solana.tx_executor import TxExecutor
from volbot.utils.rate_limit_utils import call_with_rate_limit_backoff

# Leaves room for the transfer fee when checking the main wallet
FEE_RESERVE_SOL = 0.000005


class FundingService:
    """
    Transfers SOL between wallets and reads balances.

    Transfers go through the same executor as trades, with a policy that
    resubmits when confirmation times out.
    """

    def __init__(
        self,
        client: AsyncClient,
        executor: TxExecutor,
        event_system: Optional[EventSystem] = None,
        policy: RetryPolicy = FUNDING_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.executor = executor
        self.event_system = event_system
        self.policy = policy
        self._sleep = sleep

    async def get_balance(self, address: str) -> float:
        """
        Get SOL balance of a wallet.

        Args:
            address: Wallet address

        Returns:
            Balance in SOL
        """
        pubkey = parse_pubkey(address)
        resp = await self._read(lambda: self.client.get_balance(pubkey), f"get_balance {address[:8]}")
        return resp.value / LAMPORTS_PER_SOL

    async def get_token_balance(self, owner: str, mint: str) -> int:
        """
        Get the raw token balance of a wallet.

        Args:
            owner: Wallet address
            mint: Token mint address

        Returns:
            Balance in the token's smallest unit, 0 when the wallet holds no token account
        """
        owner_key = parse_pubkey(owner)
        opts = TokenAccountOpts(mint=parse_pubkey(mint))
        resp = await self._read(
            lambda: self.client.get_token_accounts_by_owner(owner_key, opts), f"token accounts {owner[:8]}"
        )
        if not resp.value:
            logger.debug(f"No token account found for {owner} and mint {mint}")
            return 0

        account = resp.value[0].pubkey
        balance = await self._read(
            lambda: self.client.get_token_account_balance(account), f"token balance {owner[:8]}"
        )
        return int(balance.value.amount)

    async def _read(self, operation, name: str):
        return await call_with_rate_limit_backoff(
            operation,
            max_retries=self.policy.rate_limit_max_retries,
            base_delay=self.policy.rate_limit_base_delay,
            operation_name=name,
            sleep=self._sleep,
        )

    async def fund_wallet(self, source: Keypair, destination: str, amount_sol: float) -> ConfirmationResult:
        """
        Transfer SOL and wait for confirmation.

        Args:
            source: Paying keypair
            destination: Recipient address
            amount_sol: Amount in SOL

        Returns:
            ConfirmationResult of the transfer

        Raises:
            PreconditionError: Invalid destination or amount
        """
        recipient = parse_pubkey(destination)
        if amount_sol < MIN_FUNDING_SOL:
            raise PreconditionError(f"Invalid funding amount {amount_sol}. Must be at least {MIN_FUNDING_SOL} SOL")

        lamports = int(round(amount_sol * LAMPORTS_PER_SOL))
        label = f"fund {destination[:8]}"

        def build(lease: BlockhashLease):
            payload = build_transfer(source, recipient, lamports, lease)
            return make_request([payload], [source], label=label)

        logger.bind(source=str(source.pubkey()), destination=destination, amount=amount_sol).info(
            f"Funding {destination} with {amount_sol} SOL"
        )
        return await self.executor.execute(build, policy=self.policy, label=label)

    async def initialize_trader_wallets(
        self,
        main: Keypair,
        traders: List[WalletInfo],
        sol_per_wallet: float,
        pause: float = 1.0,
    ) -> List[ConfirmationResult]:
        """
        Top up every trader wallet to ``sol_per_wallet``.

        Args:
            main: Main wallet paying for the transfers
            traders: Trader wallets to fund
            sol_per_wallet: Target balance per trader wallet, in SOL
            pause: Pause between transfers, in seconds

        Returns:
            Results of the transfers that were made

        Raises:
            InsufficientBalanceError: The main wallet cannot cover the top-ups
            FundingError: A transfer ended without confirmation
        """
        if sol_per_wallet < MIN_FUNDING_SOL:
            raise PreconditionError(f"Invalid funding amount {sol_per_wallet}. Must be at least {MIN_FUNDING_SOL} SOL")

        top_ups = []
        for wallet in traders:
            balance = await self.get_balance(wallet.address)
            if balance < sol_per_wallet:
                top_ups.append((wallet, max(sol_per_wallet - balance, MIN_FUNDING_SOL), balance))
            else:
                logger.info(f"{wallet.label} already holds {balance:.4f} SOL")

        if not top_ups:
            logger.info("All trader wallets are funded")
            return []

        main_address = str(main.pubkey())
        required = sum(amount for _, amount, _ in top_ups) + FEE_RESERVE_SOL * len(top_ups)
        available = await self.get_balance(main_address)
        if available < required:
            raise InsufficientBalanceError(
                f"Main wallet {main_address} holds {available:.4f} SOL, {required:.4f} SOL required"
            )

        results = []
        for index, (wallet, amount, previous) in enumerate(top_ups):
            result = await self.fund_wallet(main, wallet.address, amount)
            results.append(result)
            if not result.success:
                raise FundingError(
                    f"Funding {wallet.label} ended {result.final_status.value}: {result.error_detail}",
                    result=result,
                )

            logger.info(f"Funded {wallet.label} with {amount:.4f} SOL ({result.explorer_url})")
            if self.event_system is not None:
                await self.event_system.publish(BalanceChangeEvent(
                    wallet_address=wallet.address,
                    token_address="SOL",
                    previous_balance=previous,
                    new_balance=previous + amount,
                ))
            if index < len(top_ups) - 1:
                await self._sleep(pause)

        return results
