"""
Background re-broadcast of an in-flight transaction.
"""

import asyncio
from typing import List, Optional

from loguru import logger

from volbot.solana.models import TransactionRequest
from volbot.solana.tx_submitter import TxSubmitter


class Resender:
    """
    Periodically re-sends the same signed bytes while confirmation is pending.

    A resend never re-signs, so every broadcast carries the same signature.
    Once ``stop`` has set the cancellation signal no new resend starts, and a
    resend already in flight is awaited before ``stop`` returns.
    """

    def __init__(self, submitter: TxSubmitter, request: TransactionRequest, interval: float):
        self.submitter = submitter
        self.request = request
        self.interval = interval
        self.resend_count = 0
        self.error_count = 0
        self.identifiers: List[str] = []
        self._cancelled = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Start the resend task. A zero interval disables resending."""
        if self._task is not None or self.interval <= 0:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self):
        """Signal cancellation and wait for the loop to exit."""
        self._cancelled.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def _run(self):
        while not self._cancelled.is_set():
            try:
                await asyncio.wait_for(self._cancelled.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

            if self._cancelled.is_set():
                break

            try:
                identifier = await self.submitter.resend(self.request)
                self.resend_count += 1
                self.identifiers.append(identifier)
                logger.bind(identifier=identifier, label=self.request.label).debug(
                    f"Re-sent {identifier} ({self.resend_count})"
                )
            except Exception as e:
                self.error_count += 1
                logger.bind(label=self.request.label, error=str(e)).warning(f"Resend failed: {str(e)}")

        logger.bind(label=self.request.label, resends=self.resend_count, errors=self.error_count).debug(
            f"Resender stopped after {self.resend_count} resends"
        )
