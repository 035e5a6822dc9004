"""
Tests for blockhash leases.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from solana.rpc.commitment import Confirmed, Finalized
from solders.hash import Hash

from volbot.solana.blockhash_tracker import BlockhashTracker, to_commitment
from volbot.solana.models import BlockhashLease
from tests.conftest import height


def latest(blockhash: Hash, last_valid: int) -> SimpleNamespace:
    return SimpleNamespace(value=SimpleNamespace(blockhash=blockhash, last_valid_block_height=last_valid))


@pytest.fixture
def client():
    fake = AsyncMock()
    fake.get_block_height = AsyncMock(return_value=height(1234))
    return fake


class TestBlockhashTracker:
    @pytest.mark.asyncio
    async def test_every_lease_is_fetched(self, client):
        first, second = Hash.new_unique(), Hash.new_unique()
        client.get_latest_blockhash = AsyncMock(side_effect=[latest(first, 100), latest(second, 160)])
        tracker = BlockhashTracker(client)

        a = await tracker.lease()
        b = await tracker.lease()

        assert a.blockhash == str(first)
        assert a.last_valid_block_height == 100
        assert b.blockhash == str(second)
        assert client.get_latest_blockhash.await_count == 2
        client.get_latest_blockhash.assert_awaited_with(Confirmed)

    @pytest.mark.asyncio
    async def test_commitment_override(self, client):
        client.get_latest_blockhash = AsyncMock(return_value=latest(Hash.new_unique(), 100))
        tracker = BlockhashTracker(client)

        lease = await tracker.lease("finalized")

        client.get_latest_blockhash.assert_awaited_once_with(Finalized)
        assert lease.commitment == "finalized"

    @pytest.mark.asyncio
    async def test_block_height(self, client):
        tracker = BlockhashTracker(client, commitment="finalized")

        assert await tracker.block_height() == 1234
        client.get_block_height.assert_awaited_once_with(Finalized)

    def test_rejects_unknown_commitment(self, client):
        with pytest.raises(ValueError):
            BlockhashTracker(client, commitment="processed")

    def test_to_commitment(self):
        assert to_commitment("Confirmed") == Confirmed


class TestLease:
    def test_expiry_is_strictly_past_last_valid_height(self):
        lease = BlockhashLease(blockhash=str(Hash.new_unique()), last_valid_block_height=100)

        assert not lease.is_expired(99)
        assert not lease.is_expired(100)
        assert lease.is_expired(101)
