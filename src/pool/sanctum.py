from __future__ import annotations

import logging
from typing import Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from common.solana_rpc import SolanaRpcClient

from .base import PoolStrategy


logger = logging.getLogger(__name__)


class SanctumPoolStrategy(PoolStrategy):
    """Sanctum pools register reserve deposits on their own; no update step."""

    name = "Sanctum"

    def crank_pool(
        self,
        rpc: SolanaRpcClient,
        pool_address: Pubkey,
        fee_payer: Keypair,
    ) -> Optional[Signature]:
        logger.info("%s: Pool cranking not required (deposits are auto-registered)", self.name)
        return None
