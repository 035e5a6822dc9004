"""
Building and signing helpers.

Venue transactions arrive unsigned with whatever blockhash the venue picked.
They are re-bound to the attempt's leased blockhash before signing, so the
lease alone decides when a signed payload expires.
"""

from typing import Iterable, List, Optional, Sequence, Union

import base58
from loguru import logger
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message, MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from volbot.solana.errors import InvalidAddressError, MissingSignerError
from volbot.solana.models import BlockhashLease, SubmissionMode, TransactionRequest

AnyMessage = Union[Message, MessageV0]


def parse_pubkey(address: str) -> Pubkey:
    """
    Parse a base58 address.

    Raises:
        InvalidAddressError: If the address is not a valid public key
    """
    try:
        return Pubkey.from_string(address)
    except (ValueError, TypeError) as e:
        raise InvalidAddressError(f"Invalid Solana address {address!r}: {str(e)}")


def keypair_from_base58(secret_key: str) -> Keypair:
    """Reconstruct a keypair from its base58 encoded 64 byte secret key."""
    if not secret_key:
        raise MissingSignerError("No secret key supplied")
    try:
        return Keypair.from_bytes(base58.b58decode(secret_key))
    except (ValueError, TypeError) as e:
        raise MissingSignerError(f"Invalid private key format: {str(e)}")


def keypair_to_base58(keypair: Keypair) -> str:
    return base58.b58encode(bytes(keypair)).decode("utf-8")


def rebind_blockhash(message: AnyMessage, blockhash: str) -> AnyMessage:
    """Return a copy of ``message`` that references ``blockhash``."""
    recent = Hash.from_string(blockhash)
    if isinstance(message, MessageV0):
        return MessageV0(
            message.header,
            message.account_keys,
            recent,
            message.instructions,
            message.address_table_lookups,
        )
    return Message.new_with_compiled_instructions(
        message.header.num_required_signatures,
        message.header.num_readonly_signed_accounts,
        message.header.num_readonly_unsigned_accounts,
        message.account_keys,
        recent,
        message.instructions,
    )


def required_signers(message: AnyMessage) -> List[Pubkey]:
    return list(message.account_keys[: message.header.num_required_signatures])


def sign_message(message: AnyMessage, signers: Sequence[Keypair]) -> VersionedTransaction:
    """
    Sign a message with every required signer.

    Raises:
        MissingSignerError: If a required signer is not among ``signers``
    """
    available = {kp.pubkey() for kp in signers}
    missing = [str(pk) for pk in required_signers(message) if pk not in available]
    if missing:
        raise MissingSignerError(f"Missing signer(s): {', '.join(missing)}")

    needed = set(required_signers(message))
    return VersionedTransaction(message, [kp for kp in signers if kp.pubkey() in needed])


def sign_serialized(raw: bytes, signers: Sequence[Keypair], lease: Optional[BlockhashLease] = None) -> bytes:
    """
    Sign a serialized unsigned transaction returned by a venue.

    Args:
        raw: Serialized transaction with empty signatures
        signers: Keypairs that must sign it
        lease: When given, the transaction is re-bound to this blockhash first

    Returns:
        Serialized signed transaction
    """
    unsigned = VersionedTransaction.from_bytes(raw)
    message = unsigned.message
    if lease is not None:
        message = rebind_blockhash(message, lease.blockhash)
    return bytes(sign_message(message, signers))


def build_transfer(source: Keypair, destination: Pubkey, lamports: int, lease: BlockhashLease) -> bytes:
    """Build and sign a SOL transfer against ``lease``."""
    instruction = transfer(
        TransferParams(from_pubkey=source.pubkey(), to_pubkey=destination, lamports=lamports)
    )
    message = MessageV0.try_compile(source.pubkey(), [instruction], [], Hash.from_string(lease.blockhash))
    return bytes(VersionedTransaction(message, [source]))


def make_request(
    payloads: Iterable[bytes],
    signers: Sequence[Keypair],
    mode: SubmissionMode = SubmissionMode.SINGLE,
    priority_fee: Optional[float] = None,
    label: str = "",
) -> TransactionRequest:
    request = TransactionRequest(
        payloads=list(payloads),
        signers=[str(kp.pubkey()) for kp in signers],
        mode=mode,
        priority_fee=priority_fee,
        label=label,
    )
    logger.bind(label=label, mode=mode.value, size=len(request.payloads)).debug(
        f"Built {mode.value} request {label} with {len(request.payloads)} transaction(s)"
    )
    return request
