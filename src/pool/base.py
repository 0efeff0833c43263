from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer

from common.solana_rpc import SolanaRpcClient
from common.transactions import build_signed_transaction, confirm, send_with_retry


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrankCycleResult:
    deposit_signature: Signature
    crank_signature: Optional[Signature] = None


class PoolStrategy(ABC):
    """
    Ledger operations for one pool family.

    A crank cycle is two dependent steps: a lamport deposit into the pool
    reserve, then a pool-specific update. `execute_crank_cycle` fixes that
    order and subclasses may not override it; they implement `crank_pool`
    (and may replace `send_to_reserve`).
    """

    name = "pool"

    def __init__(self, *, max_retries: int = 3, sleep: Optional[Callable[[float], None]] = None) -> None:
        self._max_retries = max_retries
        self._sleep = sleep

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        if "execute_crank_cycle" in cls.__dict__:
            raise TypeError(f"{cls.__name__} must not override execute_crank_cycle")

    def send_to_reserve(
        self,
        rpc: SolanaRpcClient,
        signer: Keypair,
        reserve_address: Pubkey,
        amount: int,
    ) -> Signature:
        """Transfer `amount` lamports from `signer` to the reserve; returns once confirmed."""
        ix = transfer(TransferParams(from_pubkey=signer.pubkey(), to_pubkey=reserve_address, lamports=amount))
        tx = build_signed_transaction(rpc, [ix], signer)
        signature = self._submit(rpc, tx)
        logger.info("%s: Sent %d lamports to reserve %s with signature %s", self.name, amount, reserve_address, signature)
        return signature

    @abstractmethod
    def crank_pool(
        self,
        rpc: SolanaRpcClient,
        pool_address: Pubkey,
        fee_payer: Keypair,
    ) -> Optional[Signature]:
        """Run the pool update. None means the step is unnecessary and nothing was sent."""

    def execute_crank_cycle(
        self,
        rpc: SolanaRpcClient,
        signer: Keypair,
        pool_address: Pubkey,
        reserve_address: Pubkey,
        amount: int,
    ) -> CrankCycleResult:
        # A failed deposit raises here and the update is never attempted.
        deposit_sig = self.send_to_reserve(rpc, signer, reserve_address, amount)
        logger.info("Deposit transaction confirmed: %s", deposit_sig)
        confirm(rpc, deposit_sig)

        crank_sig = self.crank_pool(rpc, pool_address, signer)
        if crank_sig is not None:
            logger.info("Crank transaction confirmed: %s", crank_sig)
        else:
            logger.info("Crank not required (auto-registered)")
        return CrankCycleResult(deposit_signature=deposit_sig, crank_signature=crank_sig)

    def _submit(self, rpc: SolanaRpcClient, tx) -> Signature:
        return send_with_retry(rpc, tx, self._max_retries, sleep=self._sleep)
