"""
Exceptions raised by the submission and confirmation layer.
"""
from typing import Optional


class TxError(Exception):
    """Base exception for transaction errors."""
    pass


class PreconditionError(TxError):
    """Raised before any network call when inputs cannot produce a valid transaction."""
    pass


class MissingSignerError(PreconditionError):
    """A required signer was not supplied."""
    pass


class InvalidAddressError(PreconditionError):
    """An address is not a valid base58 public key."""
    pass


class InsufficientBalanceError(PreconditionError):
    """The paying wallet cannot cover the requested amount."""
    pass


class InvalidBundleError(PreconditionError):
    """The number of payloads does not fit the submission mode."""
    pass


class TransactionSendError(TxError):
    """The network did not accept a submission."""
    pass


class BundleSubmissionError(TransactionSendError):
    """The bundle relay rejected a bundle. Terminal for the attempt."""
    pass


class SubmissionTimeoutError(TransactionSendError):
    """A send timed out. The payload may still have reached the network."""
    pass


class FundingError(TxError):
    """A funding transfer ended without confirmation."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result

    @property
    def identifier(self) -> Optional[str]:
        return self.result.identifier if self.result else None


class RateLimitError(TxError):
    """A submission or status query was answered with HTTP 429."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source
