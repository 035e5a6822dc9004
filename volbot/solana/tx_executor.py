"""
Transaction execution for Solana.

Drives one logical transaction through as many submission attempts as the
retry policy allows: lease a blockhash, build and sign, submit, re-broadcast
in the background and confirm.
"""

import asyncio
import inspect
import time
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from loguru import logger

from volbot.events.event_system import (
    Event,
    EventSystem,
    TransactionConfirmedEvent,
    TransactionFailedEvent,
    TransactionRetryEvent,
    TransactionSentEvent,
)
from volbot.solana.blockhash_tracker import BlockhashTracker
from volbot.solana.confirmation import ConfirmationPoller
from volbot.solana.errors import PreconditionError, SubmissionTimeoutError
from volbot.solana.models import (
    BlockhashLease,
    ConfirmationResult,
    RetryPolicy,
    SendOptions,
    SubmissionAttempt,
    SubmissionMode,
    TransactionRequest,
    TxStatus,
)
from volbot.solana.resender import Resender
from volbot.solana.tx_submitter import TxSubmitter

BuildFn = Callable[[BlockhashLease], Union[TransactionRequest, Awaitable[TransactionRequest]]]


class TxExecutor:
    """
    Executes Solana transactions with retry logic and error handling.

    Attempts are strictly sequential. Every attempt gets a freshly leased
    blockhash and a freshly signed transaction, so an expired lease is never
    reused.
    """

    def __init__(
        self,
        tracker: BlockhashTracker,
        submitter: TxSubmitter,
        poller: ConfirmationPoller,
        event_system: Optional[EventSystem] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the transaction executor.

        Args:
            tracker: Source of fresh blockhash leases
            submitter: Sends signed requests
            poller: Confirms submitted requests
            event_system: Receives lifecycle events, if given
            policy: Default retry policy
            sleep: Awaitable sleep, replaceable in tests
            clock: Monotonic clock, replaceable in tests
        """
        self.tracker = tracker
        self.submitter = submitter
        self.poller = poller
        self.event_system = event_system
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock

    async def _publish(self, event: Event):
        if self.event_system is not None:
            await self.event_system.publish(event)

    async def execute(
        self,
        build: BuildFn,
        options: Optional[SendOptions] = None,
        policy: Optional[RetryPolicy] = None,
        label: str = "",
    ) -> ConfirmationResult:
        """
        Run a logical transaction to a terminal result.

        Args:
            build: Builds and signs a request against the given lease
            options: Send options for the initial submission of each attempt
            policy: Retry policy, defaults to the executor's policy
            label: Human readable name used in logs and events

        Returns:
            ConfirmationResult; ``attempts`` holds the number of submissions

        Raises:
            PreconditionError: ``build`` rejected its inputs; nothing was sent
        """
        policy = policy or self.policy
        started = self._clock()
        attempts: List[SubmissionAttempt] = []
        result: Optional[ConfirmationResult] = None
        made = 0

        for attempt_number in range(1, policy.max_attempts + 1):
            remaining = self._remaining(policy, started)
            if remaining is not None and remaining <= 0:
                result = self._overall_timeout(policy, attempts)
                break

            made = attempt_number
            try:
                lease = await self.tracker.lease()
                request = build(lease)
                if inspect.isawaitable(request):
                    request = await request
            except PreconditionError:
                raise
            except Exception as e:
                logger.bind(label=label, attempt=attempt_number, error=str(e)).warning(
                    f"{label or 'Transaction'} could not be built on attempt {attempt_number}: {str(e)}"
                )
                result = ConfirmationResult(
                    success=False,
                    identifier=attempts[-1].identifier if attempts else None,
                    final_status=TxStatus.UNKNOWN,
                    error_detail=f"build failed: {str(e)}",
                )
                sent = False
            else:
                result, sent = await self._attempt(
                    request, lease, attempt_number, attempts, options, policy, remaining, label
                )

            if result.success:
                break
            # Unsent attempts never reached the network and are always retried
            if sent and not self._should_retry(result, policy):
                break
            if attempt_number >= policy.max_attempts:
                break

            delay = policy.delay_before_attempt(attempt_number)
            remaining = self._remaining(policy, started)
            if remaining is not None and remaining <= delay:
                result = self._overall_timeout(policy, attempts)
                break

            logger.bind(label=label, attempt=attempt_number, status=result.final_status.value, delay=delay).warning(
                f"{label or 'Transaction'} attempt {attempt_number} ended {result.final_status.value}, "
                f"retrying in {delay:.1f}s (attempt {attempt_number + 1}/{policy.max_attempts})"
            )
            await self._publish(TransactionRetryEvent(
                identifier=result.identifier,
                label=label,
                retry_count=attempt_number,
                reason=result.error_detail or result.final_status.value,
                delay=delay,
            ))
            await self._sleep(delay)

        result = result.model_copy(update={
            "attempts": max(made, 1),
            "identifier": result.identifier or (attempts[-1].identifier if attempts else None),
        })

        if result.success:
            await self._publish(TransactionConfirmedEvent(
                identifier=result.identifier,
                label=label,
                attempts=result.attempts,
                status=result.final_status.value,
                source=result.source,
            ))
        else:
            logger.bind(label=label, identifier=result.identifier, status=result.final_status.value).error(
                f"{label or 'Transaction'} ended {result.final_status.value} after {result.attempts} attempt(s): "
                f"{result.error_detail}" + (f" ({result.explorer_url})" if result.explorer_url else "")
            )
            await self._publish(TransactionFailedEvent(
                identifier=result.identifier,
                label=label,
                attempts=result.attempts,
                status=result.final_status.value,
                error=result.error_detail,
            ))

        return result

    async def _attempt(
        self,
        request: TransactionRequest,
        lease: BlockhashLease,
        attempt_number: int,
        attempts: List[SubmissionAttempt],
        options: Optional[SendOptions],
        policy: RetryPolicy,
        remaining: Optional[float],
        label: str,
    ) -> Tuple[ConfirmationResult, bool]:
        last_identifier = attempts[-1].identifier if attempts else None
        try:
            identifier = await self.submitter.submit(request, options)
        except PreconditionError:
            raise
        except SubmissionTimeoutError as e:
            if request.mode == SubmissionMode.BUNDLE:
                logger.bind(label=label, attempt=attempt_number, error=str(e)).warning(
                    f"{label or 'Transaction'} bundle send timed out on attempt {attempt_number}: {str(e)}"
                )
                return ConfirmationResult(
                    success=False,
                    identifier=last_identifier,
                    final_status=TxStatus.UNKNOWN,
                    error_detail=f"submission timed out, outcome unknown: {str(e)}",
                ), True
            # The signature is fixed by the signed bytes, so the send can still be confirmed
            identifier = request.signatures[0]
            logger.bind(label=label, attempt=attempt_number, identifier=identifier).warning(
                f"{label or 'Transaction'} send timed out on attempt {attempt_number}, confirming {identifier}"
            )
        except Exception as e:
            logger.bind(label=label, attempt=attempt_number, error=str(e)).warning(
                f"{label or 'Transaction'} submission failed on attempt {attempt_number}: {str(e)}"
            )
            return ConfirmationResult(
                success=False,
                identifier=last_identifier,
                final_status=TxStatus.UNKNOWN,
                error_detail=f"submission failed: {str(e)}",
            ), False

        attempt = SubmissionAttempt(attempt_number=attempt_number, identifier=identifier, lease=lease)
        attempts.append(attempt)
        bundle = request.mode == SubmissionMode.BUNDLE

        logger.bind(label=label, identifier=identifier, attempt=attempt_number, mode=request.mode.value).info(
            f"{label or 'Transaction'} sent: {identifier} (attempt {attempt_number}/{policy.max_attempts})"
        )
        await self._publish(TransactionSentEvent(
            identifier=identifier, label=label, attempt=attempt_number, mode=request.mode.value
        ))

        attempt_policy = policy
        if remaining is not None and remaining < policy.confirm_timeout:
            attempt_policy = policy.model_copy(update={"confirm_timeout": remaining})

        resender = Resender(self.submitter, request, policy.resend_interval)
        resender.start()
        try:
            result = await self.poller.confirm(
                identifier,
                lease,
                policy=attempt_policy,
                bundle=bundle,
                signatures=request.signatures if bundle else None,
            )
        finally:
            await resender.stop()

        attempt.status = result.final_status
        return result, True

    @staticmethod
    def _should_retry(result: ConfirmationResult, policy: RetryPolicy) -> bool:
        if result.final_status is TxStatus.EXPIRED:
            return True
        if result.final_status is TxStatus.UNKNOWN:
            return policy.retry_on_unknown
        return False

    def _remaining(self, policy: RetryPolicy, started: float) -> Optional[float]:
        if policy.overall_timeout is None:
            return None
        return policy.overall_timeout - (self._clock() - started)

    @staticmethod
    def _overall_timeout(policy: RetryPolicy, attempts: List[SubmissionAttempt]) -> ConfirmationResult:
        return ConfirmationResult(
            success=False,
            identifier=attempts[-1].identifier if attempts else None,
            final_status=TxStatus.EXPIRED,
            error_detail=f"overall timeout of {policy.overall_timeout:.0f}s reached",
        )
