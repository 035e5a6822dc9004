"""
Polls for the terminal state of a submitted transaction or bundle.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from loguru import logger
from solana.rpc.async_api import AsyncClient
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from volbot.solana.blockhash_tracker import BlockhashTracker
from volbot.solana.models import BlockhashLease, ConfirmationResult, RetryPolicy, TxStatus
from volbot.utils.rate_limit_utils import is_rate_limit_error

StatusReport = Tuple[TxStatus, Optional[str]]


class SecondaryStatusSource(Protocol):
    async def get_transaction_status(self, signature: str) -> StatusReport: ...


class BundleStatusSource(Protocol):
    async def get_bundle_status(self, bundle_id: str) -> Optional[Dict[str, Any]]: ...

    async def get_inflight_bundle_status(self, bundle_id: str) -> Optional[Dict[str, Any]]: ...


def _bundle_err(err: Any) -> Optional[str]:
    """Bundle status ``err`` is ``{"Ok": null}`` on success."""
    if err is None:
        return None
    if isinstance(err, dict) and "Ok" in err:
        return None
    return str(err)


class ConfirmationPoller:
    """
    Polls the primary status source until a transaction reaches a terminal state.

    Terminal states are reached in this order of precedence: an on-chain error
    (failed), a confirmed or finalized status (success), a block height past
    the lease's last valid height (expired). After ``max_poll_attempts``
    inconclusive polls, or repeated rate limiting, the secondary source
    decides. The wall-clock ceiling ``confirm_timeout`` bounds everything.
    """

    def __init__(
        self,
        client: AsyncClient,
        tracker: BlockhashTracker,
        relay: Optional[BundleStatusSource] = None,
        secondary: Optional[SecondaryStatusSource] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.tracker = tracker
        self.relay = relay
        self.secondary = secondary
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock

    async def confirm(
        self,
        identifier: str,
        lease: BlockhashLease,
        policy: Optional[RetryPolicy] = None,
        bundle: bool = False,
        signatures: Optional[List[str]] = None,
    ) -> ConfirmationResult:
        """
        Wait for a terminal state.

        Args:
            identifier: Signature, or bundle id when ``bundle`` is set
            lease: Blockhash lease the transaction was signed against
            policy: Poll and rate limit budget, defaults to the poller's policy
            bundle: Query the bundle relay instead of the RPC node
            signatures: Signatures inside the bundle, used by the secondary fallback

        Returns:
            ConfirmationResult with a terminal status
        """
        policy = policy or self.policy
        deadline = self._clock() + policy.confirm_timeout
        polls = 0
        rate_limit_hits = 0
        last_error: Optional[str] = None

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                return self._expired_by_timeout(identifier, policy)

            try:
                status, detail = await asyncio.wait_for(
                    self._poll_once(identifier, lease, bundle), timeout=remaining
                )
            except asyncio.TimeoutError:
                return self._expired_by_timeout(identifier, policy)
            except Exception as e:
                if is_rate_limit_error(e):
                    rate_limit_hits += 1
                    if rate_limit_hits >= policy.rate_limit_max_retries:
                        logger.bind(identifier=identifier, rate_limit_hits=rate_limit_hits).warning(
                            f"Status queries for {identifier} rate limited {rate_limit_hits} times, "
                            f"falling back to secondary source"
                        )
                        return await self._fallback(identifier, bundle, signatures, "rate limited")

                    delay = policy.rate_limit_delay(rate_limit_hits)
                    logger.bind(identifier=identifier, delay=delay).warning(
                        f"Rate limited while confirming {identifier}, backing off {delay:.1f}s "
                        f"({rate_limit_hits}/{policy.rate_limit_max_retries})"
                    )
                    await self._sleep(delay)
                    continue

                last_error = str(e)
                logger.bind(identifier=identifier).warning(f"Status query for {identifier} failed: {last_error}")
            else:
                if status is TxStatus.FAILED:
                    logger.bind(identifier=identifier, error=detail).error(
                        f"Transaction {identifier} failed on-chain: {detail}"
                    )
                    return ConfirmationResult(
                        success=False,
                        identifier=identifier,
                        final_status=TxStatus.FAILED,
                        error_detail=detail,
                        source="relay" if bundle else "rpc",
                    )

                if status.is_success:
                    logger.bind(identifier=identifier).info(f"Transaction {identifier} {status.value}")
                    return ConfirmationResult(
                        success=True,
                        identifier=identifier,
                        final_status=status,
                        source="relay" if bundle else "rpc",
                    )

                if status is TxStatus.EXPIRED:
                    logger.bind(identifier=identifier).warning(f"Transaction {identifier} expired: {detail}")
                    return ConfirmationResult(
                        success=False,
                        identifier=identifier,
                        final_status=TxStatus.EXPIRED,
                        error_detail=detail,
                    )

            polls += 1
            if polls >= policy.max_poll_attempts:
                reason = f"still pending after {polls} polls"
                if last_error:
                    reason += f" (last error: {last_error})"
                return await self._fallback(identifier, bundle, signatures, reason)

            delay = policy.poll_delay(polls - 1)
            logger.bind(identifier=identifier, poll=polls, delay=delay).debug(
                f"Transaction {identifier} pending, next poll in {delay:.1f}s ({polls}/{policy.max_poll_attempts})"
            )
            await self._sleep(delay)

    async def _poll_once(self, identifier: str, lease: BlockhashLease, bundle: bool) -> StatusReport:
        if bundle:
            status, detail = await self._bundle_status(identifier)
        else:
            status, detail = await self._signature_status(identifier)

        if status is TxStatus.FAILED or status.is_success:
            return status, detail

        height = await self.tracker.block_height()
        if lease.is_expired(height):
            return TxStatus.EXPIRED, (
                f"block height {height} passed last valid height {lease.last_valid_block_height}"
            )
        return TxStatus.PENDING, None

    async def _signature_status(self, signature: str) -> StatusReport:
        resp = await self.client.get_signature_statuses([Signature.from_string(signature)])
        status = resp.value[0] if resp.value else None
        if status is None:
            return TxStatus.PENDING, None
        if status.err is not None:
            return TxStatus.FAILED, str(status.err)
        if status.confirmation_status == TransactionConfirmationStatus.Finalized:
            return TxStatus.FINALIZED, None
        if status.confirmation_status == TransactionConfirmationStatus.Confirmed:
            return TxStatus.CONFIRMED, None
        return TxStatus.PENDING, None

    async def _bundle_status(self, bundle_id: str) -> StatusReport:
        if self.relay is None:
            raise RuntimeError("Bundle confirmation requires a relay client")

        landed = await self.relay.get_bundle_status(bundle_id)
        if landed:
            error = _bundle_err(landed.get("err"))
            if error:
                return TxStatus.FAILED, error
            confirmation_status = str(landed.get("confirmation_status") or "").lower()
            if confirmation_status == "finalized":
                return TxStatus.FINALIZED, None
            if confirmation_status == "confirmed":
                return TxStatus.CONFIRMED, None
            return TxStatus.PENDING, None

        inflight = await self.relay.get_inflight_bundle_status(bundle_id)
        if inflight and inflight.get("status") == "Failed":
            return TxStatus.FAILED, "bundle failed to land"
        # Landed bundles show up in getBundleStatuses on a later poll
        return TxStatus.PENDING, None

    async def _fallback(
        self, identifier: str, bundle: bool, signatures: Optional[List[str]], reason: str
    ) -> ConfirmationResult:
        """Ask the secondary source; anything inconclusive becomes UNKNOWN."""
        signature = signatures[0] if bundle and signatures else (None if bundle else identifier)

        if self.secondary is None or signature is None:
            detail = f"{reason}; no secondary status source available"
            logger.bind(identifier=identifier).warning(f"Confirmation of {identifier} inconclusive: {detail}")
            return ConfirmationResult(
                success=False, identifier=identifier, final_status=TxStatus.UNKNOWN, error_detail=detail
            )

        try:
            status, error = await self.secondary.get_transaction_status(signature)
        except Exception as e:
            detail = f"{reason}; secondary status check failed: {str(e)}"
            logger.bind(identifier=identifier).error(f"Confirmation of {identifier} inconclusive: {detail}")
            return ConfirmationResult(
                success=False,
                identifier=identifier,
                final_status=TxStatus.UNKNOWN,
                error_detail=detail,
                source="secondary",
            )

        if status.is_success:
            logger.bind(identifier=identifier).info(
                f"Transaction {identifier} {status.value} according to secondary source"
            )
            return ConfirmationResult(success=True, identifier=identifier, final_status=status, source="secondary")

        if status is TxStatus.FAILED:
            return ConfirmationResult(
                success=False,
                identifier=identifier,
                final_status=TxStatus.FAILED,
                error_detail=error,
                source="secondary",
            )

        detail = f"{reason}; secondary source reports {status.value}"
        if error:
            detail += f": {error}"
        logger.bind(identifier=identifier).warning(f"Confirmation of {identifier} inconclusive: {detail}")
        return ConfirmationResult(
            success=False,
            identifier=identifier,
            final_status=TxStatus.UNKNOWN,
            error_detail=detail,
            source="secondary",
        )

    def _expired_by_timeout(self, identifier: str, policy: RetryPolicy) -> ConfirmationResult:
        detail = f"not confirmed within {policy.confirm_timeout:.0f}s"
        logger.bind(identifier=identifier).warning(f"Transaction {identifier} {detail}")
        return ConfirmationResult(
            success=False, identifier=identifier, final_status=TxStatus.EXPIRED, error_detail=detail
        )
