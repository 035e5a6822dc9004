"""
Jupiter aggregator client (v6 quote and swap).
"""

import base64
from typing import Any, Dict, Optional, Tuple

import aiohttp
from loguru import logger

from volbot.api.http_client import ApiBadResponseError, AsyncApiClient
from volbot.config import HTTP_TIMEOUT, JUPITER_API_URL


class JupiterClient(AsyncApiClient):
    """Fetches quotes and unsigned swap transactions from Jupiter."""

    def __init__(
        self,
        base_url: str = JUPITER_API_URL,
        timeout: float = HTTP_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(base_url, timeout=timeout, session=session)

    async def get_quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> Dict[str, Any]:
        """
        Get the best route for a swap.

        Args:
            input_mint: Mint sold
            output_mint: Mint bought
            amount: Input amount in the input mint's smallest unit
            slippage_bps: Slippage tolerance in basis points

        Returns:
            The quote response, passed back unchanged to ``get_swap_transaction``
        """
        if amount <= 0:
            raise ValueError("Quote amount must be positive")

        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
            "restrictIntermediateTokens": "true",
        }
        quote = await self._make_request("get", "/quote", params=params)
        if not isinstance(quote, dict) or "outAmount" not in quote:
            raise ApiBadResponseError(f"Unexpected quote response: {quote!r}")

        logger.bind(in_amount=amount, out_amount=quote["outAmount"]).debug(
            f"Jupiter quote {input_mint} -> {output_mint}: {amount} -> {quote['outAmount']}"
        )
        return quote

    async def get_swap_transaction(
        self,
        quote: Dict[str, Any],
        user_public_key: str,
        priority_fee_lamports: Optional[int] = None,
        jito_tip_lamports: Optional[int] = None,
    ) -> Tuple[bytes, Optional[int]]:
        """
        Get the unsigned swap transaction for a quote.

        Args:
            quote: Response of ``get_quote``
            user_public_key: Wallet that signs the swap
            priority_fee_lamports: Priority fee, ignored when a Jito tip is given
            jito_tip_lamports: Jito tip added to the swap transaction

        Returns:
            Tuple of serialized unsigned transaction and its last valid block height
        """
        body: Dict[str, Any] = {
            "quoteResponse": quote,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
        }
        if jito_tip_lamports:
            body["prioritizationFeeLamports"] = {"jitoTipLamports": jito_tip_lamports}
        elif priority_fee_lamports:
            body["prioritizationFeeLamports"] = priority_fee_lamports

        response = await self._make_request("post", "/swap", json=body)
        if not isinstance(response, dict) or not response.get("swapTransaction"):
            raise ApiBadResponseError(f"Unexpected swap response: {response!r}")

        return base64.b64decode(response["swapTransaction"]), response.get("lastValidBlockHeight")
