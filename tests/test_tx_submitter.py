"""
Unit tests for the TxSubmitter.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from solders.signature import Signature

from volbot.api.http_client import ApiBadResponseError, ApiClientError, ApiTimeoutError
from volbot.solana.errors import (
    BundleSubmissionError,
    InvalidBundleError,
    RateLimitError,
    SubmissionTimeoutError,
    TransactionSendError,
)
from volbot.solana.models import SendOptions, SubmissionMode, TransactionRequest
from volbot.solana.tx_submitter import TxSubmitter
from tests.conftest import FakeClock, rate_limited


@pytest.fixture
def client():
    fake = AsyncMock()
    fake.send_raw_transaction = AsyncMock(return_value=SimpleNamespace(value=Signature.new_unique()))
    return fake


@pytest.fixture
def relay():
    fake = AsyncMock()
    fake.send_bundle = AsyncMock(return_value="bundle-1")
    return fake


@pytest.fixture
def submitter(client, relay, clock):
    return TxSubmitter(client, relay=relay, sleep=clock.sleep)


class TestSingleSubmission:
    """sendTransaction path."""

    @pytest.mark.asyncio
    async def test_returns_signature(self, submitter, client, signed_request):
        signature = Signature.new_unique()
        client.send_raw_transaction.return_value = SimpleNamespace(value=signature)

        identifier = await submitter.submit(signed_request, SendOptions(skip_validation=True))

        assert identifier == str(signature)
        args, kwargs = client.send_raw_transaction.call_args
        assert args[0] == signed_request.payloads[0]
        assert kwargs["opts"].skip_preflight is True

    @pytest.mark.asyncio
    async def test_validation_on_by_default(self, submitter, client, signed_request):
        await submitter.submit(signed_request)

        assert client.send_raw_transaction.call_args.kwargs["opts"].skip_preflight is False

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, submitter, client, clock, signed_request):
        signature = Signature.new_unique()
        client.send_raw_transaction.side_effect = [
            ApiClientError("connection reset"),
            SimpleNamespace(value=signature),
        ]

        identifier = await submitter.submit(signed_request, SendOptions(send_retries=2))

        assert identifier == str(signature)
        assert client.send_raw_transaction.await_count == 2
        assert clock.sleeps == [TxSubmitter.SEND_RETRY_DELAY]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, submitter, client, signed_request):
        client.send_raw_transaction.side_effect = ApiClientError("connection reset")

        with pytest.raises(TransactionSendError, match="connection reset"):
            await submitter.submit(signed_request, SendOptions(send_retries=2))

        assert client.send_raw_transaction.await_count == 3

    @pytest.mark.asyncio
    async def test_timeout_is_reported_as_timeout(self, submitter, client, signed_request):
        client.send_raw_transaction.side_effect = httpx.ReadTimeout("timed out")

        with pytest.raises(SubmissionTimeoutError):
            await submitter.submit(signed_request, SendOptions(send_retries=1))

        assert client.send_raw_transaction.await_count == 2

    @pytest.mark.asyncio
    async def test_rate_limit_not_retried(self, submitter, client, clock, signed_request):
        """A 429 surfaces to the caller without local retries."""
        client.send_raw_transaction.side_effect = rate_limited()

        with pytest.raises(RateLimitError):
            await submitter.submit(signed_request, SendOptions(send_retries=3))

        assert client.send_raw_transaction.await_count == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_resend_skips_validation_and_retries(self, submitter, client, signed_request):
        client.send_raw_transaction.side_effect = ApiClientError("node unavailable")

        with pytest.raises(TransactionSendError):
            await submitter.resend(signed_request)

        assert client.send_raw_transaction.await_count == 1
        assert client.send_raw_transaction.call_args.kwargs["opts"].skip_preflight is True

    @pytest.mark.asyncio
    async def test_single_mode_takes_one_payload(self, submitter, client, bundle_request):
        request = bundle_request.model_copy(update={"mode": SubmissionMode.SINGLE})

        with pytest.raises(InvalidBundleError):
            await submitter.submit(request)

        client.send_raw_transaction.assert_not_awaited()


class TestBundleSubmission:
    """Jito relay path."""

    @pytest.mark.asyncio
    async def test_bundle_returns_bundle_id(self, submitter, relay, client, bundle_request):
        identifier = await submitter.submit(bundle_request)

        assert identifier == "bundle-1"
        relay.send_bundle.assert_awaited_once_with(bundle_request.payloads)
        client.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bundle_size_checked_before_sending(self, submitter, relay, bundle_request):
        request = TransactionRequest(
            payloads=bundle_request.payloads * 2,
            signers=bundle_request.signers,
            mode=SubmissionMode.BUNDLE,
        )

        with pytest.raises(InvalidBundleError):
            await submitter.submit(request)

        relay.send_bundle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_relay_failure_is_terminal(self, submitter, relay, bundle_request):
        relay.send_bundle.side_effect = ApiBadResponseError("bundle rejected", status_code=400)

        with pytest.raises(BundleSubmissionError):
            await submitter.submit(bundle_request)

        assert relay.send_bundle.await_count == 1

    @pytest.mark.asyncio
    async def test_relay_timeout(self, submitter, relay, bundle_request):
        relay.send_bundle.side_effect = ApiTimeoutError("Request to /bundles timed out")

        with pytest.raises(SubmissionTimeoutError):
            await submitter.submit(bundle_request)

    @pytest.mark.asyncio
    async def test_relay_rate_limit(self, submitter, relay, bundle_request):
        relay.send_bundle.side_effect = rate_limited()

        with pytest.raises(RateLimitError) as exc_info:
            await submitter.submit(bundle_request)

        assert exc_info.value.source == "relay"

    @pytest.mark.asyncio
    async def test_bundle_without_relay(self, client, bundle_request):
        submitter = TxSubmitter(client, relay=None, sleep=FakeClock().sleep)

        with pytest.raises(BundleSubmissionError):
            await submitter.submit(bundle_request)
