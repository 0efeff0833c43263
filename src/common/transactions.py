from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional, Sequence

import base58
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.signature import Signature
from solders.transaction import Transaction

from .errors import PrivateKeyError, RpcError
from .solana_rpc import SolanaRpcClient


logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 2.0
KEYPAIR_LENGTH = 64


def parse_keypair(secret: str) -> Keypair:
    """Turn the admin secret into a Keypair.

    Accepts either:
    - base58 string of the 64-byte keypair (as exported by most wallets)
    - JSON array of 64 ints (Solana CLI keypair file contents)

    The keypair is rebuilt from the first 32 bytes (the seed).
    Raises PrivateKeyError for anything else.
    """
    raw = (secret or "").strip()
    if raw.startswith("["):
        try:
            decoded = bytes(json.loads(raw))
        except (ValueError, TypeError) as exc:
            raise PrivateKeyError(f"Failed to decode JSON keypair: {exc}") from exc
    else:
        try:
            decoded = base58.b58decode(raw)
        except ValueError as exc:
            raise PrivateKeyError(f"Failed to decode base58: {exc}") from exc

    if len(decoded) != KEYPAIR_LENGTH:
        raise PrivateKeyError(
            f"Invalid key length: expected {KEYPAIR_LENGTH} bytes, got {len(decoded)}"
        )
    return Keypair.from_seed(decoded[:32])


def build_signed_transaction(
    rpc: SolanaRpcClient,
    instructions: Sequence[Instruction],
    payer: Keypair,
) -> Transaction:
    """Sign `instructions` with `payer` (also the fee payer) against the latest blockhash."""
    blockhash = rpc.get_latest_blockhash()
    return Transaction.new_signed_with_payer(list(instructions), payer.pubkey(), [payer], blockhash)


def send_with_retry(
    rpc: SolanaRpcClient,
    transaction: Transaction,
    max_retries: int,
    *,
    sleep: Optional[Callable[[float], None]] = None,
) -> Signature:
    """Submit `transaction` and wait for confirmation, retrying on RPC failure.

    Each retry waits a fixed RETRY_BACKOFF_SECONDS and resubmits the same
    signed transaction. This relies on the cluster rejecting a transaction
    whose signature was already processed instead of applying it twice.
    Once `max_retries` retries are used up the last error propagates.
    """
    sleep = sleep or time.sleep
    retries = 0
    while True:
        try:
            return rpc.send_and_confirm_transaction(transaction)
        except RpcError as exc:
            if retries >= max_retries:
                raise
            retries += 1
            logger.warning("Transaction failed, retry %d/%d: %s", retries, max_retries, exc)
            sleep(RETRY_BACKOFF_SECONDS)


def confirm(rpc: SolanaRpcClient, signature: Signature) -> None:
    """Wait for an already-submitted signature without resubmitting it."""
    rpc.confirm_transaction(signature)


__all__ = [
    "RETRY_BACKOFF_SECONDS",
    "build_signed_transaction",
    "confirm",
    "parse_keypair",
    "send_with_retry",
]
