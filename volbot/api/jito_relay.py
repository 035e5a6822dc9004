"""
Client for the Jito block engine bundle relay.
"""

from typing import Any, Dict, Optional, Sequence

import aiohttp
import base58
from loguru import logger

from volbot.api.http_client import ApiBadResponseError, AsyncApiClient
from volbot.config import HTTP_TIMEOUT, JITO_BLOCK_ENGINE_URL

# Jito accepts at most five transactions per bundle
MAX_BUNDLE_SIZE = 5


class JitoRelayClient(AsyncApiClient):
    """JSON-RPC client for ``/bundles`` on the block engine."""

    def __init__(
        self,
        base_url: str = JITO_BLOCK_ENGINE_URL,
        timeout: float = HTTP_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(base_url, timeout=timeout, session=session)

    async def send_bundle(self, payloads: Sequence[bytes]) -> str:
        """
        Submit signed transactions as one atomic bundle.

        Args:
            payloads: Serialized signed transactions, in execution order

        Returns:
            The bundle id assigned by the relay
        """
        if not 1 <= len(payloads) <= MAX_BUNDLE_SIZE:
            raise ValueError(f"A bundle holds 1 to {MAX_BUNDLE_SIZE} transactions, got {len(payloads)}")

        encoded = [base58.b58encode(bytes(p)).decode("utf-8") for p in payloads]
        bundle_id = await self._rpc_call("/bundles", "sendBundle", [encoded])
        if not isinstance(bundle_id, str) or not bundle_id:
            raise ApiBadResponseError(f"sendBundle returned no bundle id: {bundle_id!r}")

        logger.bind(bundle_id=bundle_id, size=len(payloads)).info(f"Bundle submitted: {bundle_id}")
        return bundle_id

    async def get_bundle_status(self, bundle_id: str) -> Optional[Dict[str, Any]]:
        """
        Status of a landed bundle.

        Returns:
            The status entry (``confirmation_status``, ``err``, ``slot``,
            ``transactions``) or None while the relay does not know it yet
        """
        result = await self._rpc_call("/bundles", "getBundleStatuses", [[bundle_id]])
        values = (result or {}).get("value") or []
        return values[0] if values and values[0] else None

    async def get_inflight_bundle_status(self, bundle_id: str) -> Optional[Dict[str, Any]]:
        """
        Status of a bundle that has not landed yet.

        Returns:
            The status entry whose ``status`` is one of ``Invalid``,
            ``Pending``, ``Failed`` or ``Landed``, or None
        """
        result = await self._rpc_call("/bundles", "getInflightBundleStatuses", [[bundle_id]])
        values = (result or {}).get("value") or []
        return values[0] if values and values[0] else None
