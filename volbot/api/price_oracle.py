from typing import Optional

import aiohttp
from loguru import logger

from volbot.api.http_client import ApiClientError, AsyncApiClient
from volbot.config import COINGECKO_API_URL, FALLBACK_SOL_PRICE_USD, HTTP_TIMEOUT


class PriceOracle(AsyncApiClient):
    """SOL/USD price from CoinGecko, used only to size trades."""

    def __init__(
        self,
        base_url: str = COINGECKO_API_URL,
        fallback_price: float = FALLBACK_SOL_PRICE_USD,
        timeout: float = HTTP_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(base_url, timeout=timeout, session=session)
        self.fallback_price = fallback_price

    async def get_sol_price(self) -> float:
        """Current SOL price in USD, or the fallback price when the lookup fails."""
        try:
            data = await self._make_request("get", "/simple/price", params={"ids": "solana", "vs_currencies": "usd"})
            price = float(data["solana"]["usd"])
            if price <= 0:
                raise ValueError(f"non-positive price {price}")
            return price
        except (ApiClientError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"SOL price lookup failed, using fallback ${self.fallback_price}: {str(e)}")
            return self.fallback_price

    async def usd_to_sol(self, amount_usd: float) -> float:
        return amount_usd / await self.get_sol_price()
