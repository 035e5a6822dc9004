"""
Recent blockhash leases and block height lookups.
"""

from datetime import datetime
from typing import Optional

from loguru import logger
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed, Finalized

from volbot.solana.models import BlockhashLease

_COMMITMENTS = {
    "confirmed": Confirmed,
    "finalized": Finalized,
}


def to_commitment(name: str) -> Commitment:
    """Map a configured commitment name onto the solana-py constant."""
    try:
        return _COMMITMENTS[name.lower()]
    except KeyError:
        raise ValueError(f"Unsupported commitment level: {name}")


class BlockhashTracker:
    """
    Hands out a fresh blockhash for every submission attempt.

    Nothing is cached: a lease that has expired must never be reused, so every
    call goes to the node.
    """

    def __init__(self, client: AsyncClient, commitment: str = "confirmed"):
        self.client = client
        self.commitment = commitment
        to_commitment(commitment)

    async def lease(self, commitment: Optional[str] = None) -> BlockhashLease:
        """
        Fetch the latest blockhash.

        Args:
            commitment: Override the tracker's commitment for this lease

        Returns:
            BlockhashLease with the blockhash and its last valid block height
        """
        level = commitment or self.commitment
        resp = await self.client.get_latest_blockhash(to_commitment(level))
        value = resp.value

        lease = BlockhashLease(
            blockhash=str(value.blockhash),
            last_valid_block_height=value.last_valid_block_height,
            fetched_at=datetime.now(),
            commitment=level,
        )
        logger.bind(blockhash=lease.blockhash, last_valid_block_height=lease.last_valid_block_height).debug(
            f"Leased blockhash {lease.blockhash} valid until height {lease.last_valid_block_height}"
        )
        return lease

    async def block_height(self, commitment: Optional[str] = None) -> int:
        """Current block height at the tracker's commitment."""
        resp = await self.client.get_block_height(to_commitment(commitment or self.commitment))
        return resp.value
