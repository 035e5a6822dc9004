"""
Wallet management for Solana.
"""

import json
import os
from datetime import datetime
from typing import Iterator, List, Optional, Sequence

from loguru import logger
from solders.keypair import Keypair

from volbot.config import WALLET_DIR, WALLET_GROUP_SIZE
from volbot.solana.models import WalletInfo
from volbot.solana.transactions import keypair_from_base58, keypair_to_base58


class WalletManager:
    """
    Manages the pool of trader wallets, stored as plain JSON key files.
    """

    def __init__(self, wallet_dir: str = WALLET_DIR):
        """
        Initialize the wallet manager.

        Args:
            wallet_dir: Directory holding one JSON file per wallet
        """
        self.wallet_dir = wallet_dir
        logger.info(f"WalletManager using {wallet_dir}")

    def _path(self, label: str) -> str:
        return os.path.join(self.wallet_dir, f"{label}.json")

    def create_wallet(self, label: str) -> WalletInfo:
        """
        Creates a new wallet and writes its key file.

        Args:
            label: Wallet label, also the file name

        Returns:
            Wallet information including address and base58 secret key
        """
        keypair = Keypair()
        wallet = WalletInfo(
            label=label,
            address=str(keypair.pubkey()),
            secret_key=keypair_to_base58(keypair),
        )
        self.save(wallet)
        logger.info(f"Created wallet {label}: {wallet.address}")
        return wallet

    def create_trader_wallets(self, count: int, prefix: str = "trader") -> List[WalletInfo]:
        """Create ``count`` trader wallets, continuing the existing numbering."""
        if count <= 0:
            raise ValueError("Wallet count must be positive")

        start = len(self.load_all(prefix)) + 1
        return [self.create_wallet(f"{prefix}_{i}") for i in range(start, start + count)]

    def save(self, wallet: WalletInfo):
        os.makedirs(self.wallet_dir, exist_ok=True)
        data = {
            "id": wallet.label,
            "publicKey": wallet.address,
            "privateKey": wallet.secret_key,
            "createdAt": wallet.created_at.isoformat(),
        }
        with open(self._path(wallet.label), "w") as f:
            json.dump(data, f, indent=2)

    def load(self, label: str) -> WalletInfo:
        with open(self._path(label)) as f:
            data = json.load(f)
        created_at = data.get("createdAt")
        return WalletInfo(
            label=data.get("id", label),
            address=data["publicKey"],
            secret_key=data["privateKey"],
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.now(),
        )

    def load_all(self, prefix: Optional[str] = None) -> List[WalletInfo]:
        """
        Load every wallet file in the wallet directory.

        Args:
            prefix: Only load wallets whose label starts with this prefix

        Returns:
            Wallets ordered by label
        """
        if not os.path.isdir(self.wallet_dir):
            return []

        # trader_2 sorts before trader_10
        labels = sorted(
            (name[:-5] for name in os.listdir(self.wallet_dir)
             if name.endswith(".json") and (prefix is None or name.startswith(prefix))),
            key=lambda label: (len(label), label),
        )
        wallets = []
        for label in labels:
            try:
                wallets.append(self.load(label))
            except (OSError, ValueError, KeyError) as e:
                logger.error(f"Skipping unreadable wallet file {label}: {str(e)}")
        return wallets

    @staticmethod
    def import_wallet(private_key_b58: str, label: str = "main") -> WalletInfo:
        """
        Import a wallet from a raw private key (base58 encoded).

        Args:
            private_key_b58: Base58 encoded private key
            label: Label for the wallet

        Returns:
            WalletInfo with address and secret key
        """
        keypair = keypair_from_base58(private_key_b58)
        return WalletInfo(label=label, address=str(keypair.pubkey()), secret_key=private_key_b58)

    @staticmethod
    def get_keypair(wallet: WalletInfo) -> Keypair:
        return keypair_from_base58(wallet.secret_key)

    @staticmethod
    def partition(wallets: Sequence[WalletInfo], size: int = WALLET_GROUP_SIZE) -> Iterator[List[WalletInfo]]:
        """
        Split wallets into disjoint trading groups.

        Args:
            wallets: Wallets to split
            size: Maximum group size

        Yields:
            Groups of at most ``size`` wallets; no wallet appears twice
        """
        if size <= 0:
            raise ValueError("Group size must be positive")

        seen = set()
        unique = []
        for wallet in wallets:
            if wallet.address not in seen:
                seen.add(wallet.address)
                unique.append(wallet)

        for i in range(0, len(unique), size):
            yield unique[i:i + size]
