"""
PumpPortal local trade API client.
"""

from typing import Any, Dict, List, Optional

import aiohttp
import base58
from loguru import logger

from volbot.api.http_client import ApiBadResponseError, AsyncApiClient
from volbot.config import HTTP_TIMEOUT, PUMPPORTAL_API_URL


class PumpPortalClient(AsyncApiClient):
    """Builds unsigned bonding-curve trades through ``/trade-local``."""

    def __init__(
        self,
        base_url: str = PUMPPORTAL_API_URL,
        timeout: float = HTTP_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(base_url, timeout=timeout, session=session)

    @staticmethod
    def trade_params(
        public_key: str,
        action: str,
        mint: str,
        amount: Any,
        denominated_in_sol: bool,
        slippage: float,
        priority_fee: float,
        pool: str = "pump",
    ) -> Dict[str, Any]:
        """
        Request body for one trade.

        Args:
            public_key: Trading wallet
            action: ``buy`` or ``sell``
            mint: Token mint
            amount: SOL amount when ``denominated_in_sol``, raw token amount otherwise
            denominated_in_sol: Whether ``amount`` is in SOL
            slippage: Slippage tolerance in percent
            priority_fee: Priority fee in SOL (the Jito tip for the first bundle transaction)
            pool: Liquidity pool
        """
        if action not in ("buy", "sell"):
            raise ValueError(f"Unsupported trade action: {action}")
        return {
            "publicKey": public_key,
            "action": action,
            "mint": mint,
            "amount": f"{amount:.9f}" if isinstance(amount, float) else amount,
            "denominatedInSol": "true" if denominated_in_sol else "false",
            "slippage": slippage,
            "priorityFee": priority_fee,
            "pool": pool,
        }

    async def trade_local(self, params: Dict[str, Any]) -> bytes:
        """
        Get one unsigned serialized transaction.

        Args:
            params: Body built by ``trade_params``

        Returns:
            Serialized unsigned transaction
        """
        body = await self._make_request("post", "/trade-local", raw=True, json=params)
        if not body:
            raise ApiBadResponseError("trade-local returned an empty transaction")
        logger.debug(f"Received {params.get('action')} transaction for {params.get('publicKey')}")
        return body

    async def trade_local_bundle(self, params_list: List[Dict[str, Any]]) -> List[bytes]:
        """
        Get unsigned transactions for a bundle, in request order.

        Returns:
            One serialized unsigned transaction per entry of ``params_list``
        """
        response = await self._make_request("post", "/trade-local", json=params_list)
        if not isinstance(response, list) or len(response) != len(params_list):
            raise ApiBadResponseError(
                f"Expected {len(params_list)} transactions from trade-local, got {response!r}"
            )
        return [base58.b58decode(encoded) for encoded in response]
