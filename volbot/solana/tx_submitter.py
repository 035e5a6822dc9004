"""
Sends signed transactions to the RPC node or to the bundle relay.
"""

import asyncio
from typing import Optional

from loguru import logger
from solana.rpc.async_api import AsyncClient
from solana.rpc.types import TxOpts

from volbot.api.http_client import ApiClientError
from volbot.api.jito_relay import MAX_BUNDLE_SIZE, JitoRelayClient
from volbot.solana.errors import (
    BundleSubmissionError,
    InvalidBundleError,
    RateLimitError,
    SubmissionTimeoutError,
    TransactionSendError,
)
from volbot.solana.models import SendOptions, SubmissionMode, TransactionRequest
from volbot.utils.rate_limit_utils import is_rate_limit_error, is_timeout_error


class TxSubmitter:
    """
    Submits a TransactionRequest and returns the identifier the network assigned.

    Single transactions go through ``sendTransaction``; bundles go to the Jito
    relay. Nothing here tracks confirmation.
    """

    # Pause between local retries of a failed send, in seconds
    SEND_RETRY_DELAY = 0.5

    def __init__(self, client: AsyncClient, relay: Optional[JitoRelayClient] = None, sleep=asyncio.sleep):
        """
        Initialize the submitter.

        Args:
            client: Solana RPC client
            relay: Jito relay client, required for bundle mode
            sleep: Awaitable sleep, replaceable in tests
        """
        self.client = client
        self.relay = relay
        self._sleep = sleep

    async def submit(self, request: TransactionRequest, options: Optional[SendOptions] = None) -> str:
        """
        Submit a request once.

        Args:
            request: Signed payload(s) to send
            options: Send options; defaults apply when omitted

        Returns:
            Signature (single mode) or bundle id (bundle mode)

        Raises:
            RateLimitError: The node or relay answered 429
            SubmissionTimeoutError: The last send timed out and may still land
            BundleSubmissionError: The relay rejected the bundle
            TransactionSendError: The node rejected the transaction after all local retries
        """
        options = options or SendOptions()
        if request.mode == SubmissionMode.BUNDLE:
            return await self._submit_bundle(request)
        return await self._submit_single(request, options)

    async def resend(self, request: TransactionRequest) -> str:
        """Re-broadcast the same signed bytes without validation or local retries."""
        return await self.submit(request, SendOptions(skip_validation=True, send_retries=0))

    async def _submit_single(self, request: TransactionRequest, options: SendOptions) -> str:
        if len(request.payloads) != 1:
            raise InvalidBundleError(
                f"Single submission takes exactly one transaction, got {len(request.payloads)}"
            )

        opts = TxOpts(skip_preflight=options.skip_validation, max_retries=0)
        payload = request.payloads[0]
        last_error = None

        for attempt in range(options.send_retries + 1):
            try:
                resp = await self.client.send_raw_transaction(payload, opts=opts)
                signature = str(resp.value)
                logger.bind(signature=signature, label=request.label, skip_preflight=options.skip_validation).debug(
                    f"Transaction sent: {signature}"
                )
                return signature
            except Exception as e:
                if is_rate_limit_error(e):
                    raise RateLimitError(f"sendTransaction rate limited: {str(e)}", source="rpc") from e
                last_error = e
                if attempt < options.send_retries:
                    logger.bind(label=request.label, error=str(e)).warning(
                        f"sendTransaction failed, retrying ({attempt + 1}/{options.send_retries}): {str(e)}"
                    )
                    await self._sleep(self.SEND_RETRY_DELAY)

        if is_timeout_error(last_error):
            raise SubmissionTimeoutError(f"sendTransaction timed out: {str(last_error)}") from last_error
        raise TransactionSendError(f"sendTransaction failed: {str(last_error)}") from last_error

    async def _submit_bundle(self, request: TransactionRequest) -> str:
        if self.relay is None:
            raise BundleSubmissionError("No bundle relay configured")
        if not 1 <= len(request.payloads) <= MAX_BUNDLE_SIZE:
            raise InvalidBundleError(
                f"A bundle holds 1 to {MAX_BUNDLE_SIZE} transactions, got {len(request.payloads)}"
            )

        try:
            return await self.relay.send_bundle(request.payloads)
        except ApiClientError as e:
            if is_rate_limit_error(e):
                raise RateLimitError(f"sendBundle rate limited: {str(e)}", source="relay") from e
            if is_timeout_error(e):
                raise SubmissionTimeoutError(f"sendBundle timed out: {str(e)}") from e
            logger.bind(label=request.label).error(f"Bundle submission failed: {str(e)}")
            raise BundleSubmissionError(f"Failed to send Jito bundle: {str(e)}") from e
