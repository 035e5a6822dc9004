"""
Shared fixtures and fakes for the test suite.
"""

import json
from types import SimpleNamespace
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from volbot.api.http_client import ApiRateLimitError
from volbot.solana.models import BlockhashLease, RetryPolicy, SubmissionMode, TransactionRequest
from volbot.solana.transactions import build_transfer


class FakeClock:
    """Monotonic clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float):
        self.sleeps.append(delay)
        self.now += delay


class FakeResponse:
    def __init__(self, status: int = 200, body: bytes = b"{}"):
        self.status = status
        self._body = body

    async def read(self) -> bytes:
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession; replays queued responses or errors."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    def queue_json(self, data, status: int = 200):
        self.responses.append(FakeResponse(status, json.dumps(data).encode()))

    def request(self, method, url, headers=None, **kwargs):
        self.calls.append({"method": method, "url": url, "headers": headers, **kwargs})
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True


def rate_limited() -> ApiRateLimitError:
    return ApiRateLimitError("429 Too Many Requests", status_code=429)


def signature_status(err=None, confirmation_status=None, slot: int = 1):
    return SimpleNamespace(err=err, confirmation_status=confirmation_status, slot=slot)


def statuses(status) -> SimpleNamespace:
    """Shape of get_signature_statuses for a single signature."""
    return SimpleNamespace(value=[status])


def height(value: int) -> SimpleNamespace:
    return SimpleNamespace(value=value)


def make_lease(last_valid: int = 1000) -> BlockhashLease:
    return BlockhashLease(blockhash=str(Hash.new_unique()), last_valid_block_height=last_valid)


def unsigned_transfer(payer: Keypair, lamports: int = 1000) -> bytes:
    """Serialized unsigned transaction, the way a venue returns it."""
    ix = transfer(TransferParams(from_pubkey=payer.pubkey(), to_pubkey=Keypair().pubkey(), lamports=lamports))
    message = MessageV0.try_compile(payer.pubkey(), [ix], [], Hash.new_unique())
    return bytes(VersionedTransaction.populate(message, [Signature.default()]))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    return RetryPolicy(
        max_attempts=3,
        max_poll_attempts=5,
        initial_poll_delay=1.0,
        max_poll_delay=8.0,
        rate_limit_max_retries=3,
        rate_limit_base_delay=1.0,
        confirm_timeout=45.0,
        resend_interval=0,
    )


@pytest.fixture
def lease():
    return make_lease()


@pytest.fixture
def payer():
    return Keypair()


def transfer_request(payer: Keypair, lease: BlockhashLease) -> TransactionRequest:
    payload = build_transfer(payer, Keypair().pubkey(), 5000, lease)
    return TransactionRequest(payloads=[payload], signers=[str(payer.pubkey())], label="test transfer")


@pytest.fixture
def signed_request(payer, lease):
    return transfer_request(payer, lease)


@pytest.fixture
def bundle_request(lease):
    wallets = [Keypair() for _ in range(3)]
    payloads = [build_transfer(kp, Keypair().pubkey(), 5000, lease) for kp in wallets]
    return TransactionRequest(
        payloads=payloads,
        signers=[str(kp.pubkey()) for kp in wallets],
        mode=SubmissionMode.BUNDLE,
        label="test bundle",
    )


@pytest.fixture
def rpc():
    client = AsyncMock()
    client.get_signature_statuses = AsyncMock(return_value=statuses(None))
    client.get_block_height = AsyncMock(return_value=height(100))
    return client


@pytest.fixture
def tracker():
    fake = AsyncMock()
    fake.block_height = AsyncMock(return_value=100)
    return fake


@pytest.fixture
def secondary():
    fake = AsyncMock()
    fake.get_transaction_status = AsyncMock()
    return fake


def first_signature(payload: bytes) -> Optional[str]:
    return str(VersionedTransaction.from_bytes(payload).signatures[0])
