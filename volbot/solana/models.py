"""
Models for Solana submission and confirmation.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from solders.transaction import VersionedTransaction

from volbot import config


class TxStatus(str, Enum):
    """Status of a submission attempt."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"
    EXPIRED = "expired"
    UNKNOWN = "unknown"

    @property
    def is_success(self) -> bool:
        return self in (TxStatus.CONFIRMED, TxStatus.FINALIZED)


class SubmissionMode(str, Enum):
    """Where a request is sent: a single RPC send or an atomic Jito bundle."""
    SINGLE = "single"
    BUNDLE = "bundle"


class BlockhashLease(BaseModel):
    """A recent blockhash and the last block height at which it is valid."""
    model_config = ConfigDict(frozen=True)

    blockhash: str
    last_valid_block_height: int
    fetched_at: datetime = Field(default_factory=datetime.now)
    commitment: str = "confirmed"

    def is_expired(self, block_height: int) -> bool:
        return block_height > self.last_valid_block_height


class TransactionRequest(BaseModel):
    """Signed payload(s) ready for submission. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    payloads: List[bytes]
    signers: List[str]
    mode: SubmissionMode = SubmissionMode.SINGLE
    priority_fee: Optional[float] = None
    label: str = ""

    @property
    def signatures(self) -> List[str]:
        """First signature of every payload, base58 encoded."""
        return [
            str(VersionedTransaction.from_bytes(payload).signatures[0])
            for payload in self.payloads
        ]


class SubmissionAttempt(BaseModel):
    """One send of a request, tracked by the identifier the network assigned."""
    attempt_number: int
    identifier: str
    lease: BlockhashLease
    sent_at: datetime = Field(default_factory=datetime.now)
    status: TxStatus = TxStatus.PENDING


class ConfirmationResult(BaseModel):
    """Terminal outcome of confirming a transaction or bundle."""
    success: bool
    identifier: Optional[str] = None
    final_status: TxStatus
    error_detail: Optional[str] = None
    attempts: int = 1
    source: str = "rpc"

    @property
    def explorer_url(self) -> Optional[str]:
        if not self.identifier:
            return None
        return f"https://solscan.io/tx/{self.identifier}"


class SendOptions(BaseModel):
    """Options for a single submission call."""
    skip_validation: bool = False
    send_retries: int = Field(default=config.SEND_RETRIES, ge=0)


class RetryPolicy(BaseModel):
    """Retry, backoff and timeout budget shared by submission and confirmation."""
    max_attempts: int = Field(default=config.MAX_SUBMISSION_ATTEMPTS, ge=1)
    max_poll_attempts: int = Field(default=config.MAX_POLL_ATTEMPTS, ge=1)
    initial_poll_delay: float = Field(default=config.INITIAL_POLL_DELAY, ge=0)
    max_poll_delay: float = Field(default=config.MAX_POLL_DELAY, ge=0)
    rate_limit_max_retries: int = Field(default=config.RATE_LIMIT_MAX_RETRIES, ge=1)
    rate_limit_base_delay: float = Field(default=config.RATE_LIMIT_BASE_DELAY, ge=0)
    confirm_timeout: float = Field(default=config.CONFIRM_TIMEOUT, gt=0)
    overall_timeout: Optional[float] = None
    attempt_delay: float = Field(default=1.0, ge=0)
    linear_attempt_backoff: bool = False
    retry_on_unknown: bool = False
    resend_interval: float = Field(default=config.RESEND_INTERVAL, ge=0)

    def poll_delay(self, poll_number: int) -> float:
        """Delay before poll ``poll_number + 1``; doubles and is capped."""
        return min(self.initial_poll_delay * (2 ** poll_number), self.max_poll_delay)

    def rate_limit_delay(self, retry: int) -> float:
        return self.rate_limit_base_delay * (2 ** retry)

    def delay_before_attempt(self, attempt_number: int) -> float:
        """Pause after attempt ``attempt_number`` ended and before the next one."""
        if self.linear_attempt_backoff:
            return self.attempt_delay * attempt_number
        return self.attempt_delay * (2 ** (attempt_number - 1))


# Funding keeps resubmitting when confirmation times out, with a linearly
# increasing pause between attempts.
FUNDING_POLICY = RetryPolicy(
    max_attempts=3,
    attempt_delay=2.0,
    linear_attempt_backoff=True,
    retry_on_unknown=True,
    confirm_timeout=30.0,
)


class WalletInfo(BaseModel):
    """Information about a wallet."""
    label: str
    address: str
    secret_key: str
    created_at: datetime = Field(default_factory=datetime.now)
