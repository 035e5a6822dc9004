"""
Solana integration for the volume bot.

This package contains the submission and confirmation core (blockhash leases,
submission, confirmation polling, background resending and the attempt loop)
plus wallet management and funding built on top of it.

Every transaction attempt signs against a freshly leased blockhash; an
attempt whose lease expired is retried with a new lease rather than resent.
"""

from volbot.solana.models import (
    FUNDING_POLICY,
    BlockhashLease,
    ConfirmationResult,
    RetryPolicy,
    SendOptions,
    SubmissionAttempt,
    SubmissionMode,
    TransactionRequest,
    TxStatus,
    WalletInfo,
)
from volbot.solana.errors import (
    BundleSubmissionError,
    FundingError,
    InsufficientBalanceError,
    InvalidAddressError,
    InvalidBundleError,
    MissingSignerError,
    PreconditionError,
    RateLimitError,
    SubmissionTimeoutError,
    TransactionSendError,
    TxError,
)
