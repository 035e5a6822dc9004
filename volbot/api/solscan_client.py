"""
Solscan client, used as the secondary transaction status source.
"""

from typing import Any, Dict, Optional, Tuple

import aiohttp
from loguru import logger

from volbot.api.http_client import AsyncApiClient
from volbot.config import HTTP_TIMEOUT, SOLSCAN_API_TOKEN, SOLSCAN_API_URL
from volbot.solana.models import TxStatus


class SolscanClient(AsyncApiClient):
    """Looks up transaction details on the Solscan pro API."""

    def __init__(
        self,
        base_url: str = SOLSCAN_API_URL,
        api_token: Optional[str] = SOLSCAN_API_TOKEN,
        timeout: float = HTTP_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        headers = {"token": api_token} if api_token else {}
        super().__init__(base_url, timeout=timeout, session=session, headers=headers)

    async def get_transaction_detail(self, signature: str) -> Dict[str, Any]:
        response = await self._make_request("get", "/transaction/detail", params={"tx": signature})
        if isinstance(response, dict) and isinstance(response.get("data"), dict):
            return response["data"]
        return response if isinstance(response, dict) else {}

    async def get_transaction_status(self, signature: str) -> Tuple[TxStatus, Optional[str]]:
        """
        Translate Solscan's view of a transaction into a TxStatus.

        Args:
            signature: Transaction signature

        Returns:
            Tuple of status and an error description (None when there is none)
        """
        detail = await self.get_transaction_detail(signature)
        if not detail:
            return TxStatus.UNKNOWN, "transaction not found on Solscan"

        status = detail.get("status")
        if status in (0, "0", False) or str(status).lower() in ("fail", "failed"):
            error = detail.get("err") or detail.get("error") or "transaction failed"
            return TxStatus.FAILED, str(error)

        if status in (1, "1", True) or str(status).lower() == "success":
            tx_status = str(detail.get("tx_status") or detail.get("txStatus") or "confirmed").lower()
            if tx_status == "finalized":
                return TxStatus.FINALIZED, None
            if tx_status == "confirmed":
                return TxStatus.CONFIRMED, None
            return TxStatus.PENDING, None

        logger.debug(f"Unrecognised Solscan status {status!r} for {signature}")
        return TxStatus.UNKNOWN, f"unrecognised Solscan status: {status!r}"
