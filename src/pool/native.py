from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from common.errors import PoolError
from common.solana_rpc import SolanaRpcClient
from common.transactions import build_signed_transaction

from .base import PoolStrategy


logger = logging.getLogger(__name__)

STAKE_POOL_PROGRAM_ID = Pubkey.from_string("SPoo1Ku8WFXoNDMHPsrGSTSG1Y47rzgn41SLUNakuHy")

# StakePoolInstruction::UpdateStakePoolBalance (Borsh enum tag, no payload)
UPDATE_STAKE_POOL_BALANCE = 7
ACCOUNT_TYPE_STAKE_POOL = 1

_KEY = 32
# account_type, manager, staker, stake_deposit_authority, bump, then five keys
_HEADER_LEN = 1 + 3 * _KEY + 1 + 5 * _KEY


@dataclass(frozen=True)
class StakePoolState:
    """
    Leading fields of an SPL stake pool account (Borsh layout).

    Only the prefix up to `token_program_id` is decoded; the remaining
    fields (fees, lockups, epoch counters) are not needed to crank.
    """

    manager: Pubkey
    staker: Pubkey
    stake_deposit_authority: Pubkey
    stake_withdraw_bump_seed: int
    validator_list: Pubkey
    reserve_stake: Pubkey
    pool_mint: Pubkey
    manager_fee_account: Pubkey
    token_program_id: Pubkey

    @classmethod
    def from_bytes(cls, data: bytes) -> "StakePoolState":
        if len(data) < _HEADER_LEN:
            raise PoolError(
                f"Failed to deserialize stake pool: expected at least {_HEADER_LEN} bytes, got {len(data)}"
            )
        if data[0] != ACCOUNT_TYPE_STAKE_POOL:
            raise PoolError(f"Failed to deserialize stake pool: account type {data[0]} is not a stake pool")

        def key(offset: int) -> Pubkey:
            return Pubkey.from_bytes(data[offset:offset + _KEY])

        return cls(
            manager=key(1),
            staker=key(33),
            stake_deposit_authority=key(65),
            stake_withdraw_bump_seed=data[97],
            validator_list=key(98),
            reserve_stake=key(130),
            pool_mint=key(162),
            manager_fee_account=key(194),
            token_program_id=key(226),
        )


def find_withdraw_authority(pool_address: Pubkey) -> Pubkey:
    authority, _bump = Pubkey.find_program_address([bytes(pool_address), b"withdraw"], STAKE_POOL_PROGRAM_ID)
    return authority


def update_stake_pool_balance(pool_address: Pubkey, pool: StakePoolState) -> Instruction:
    accounts = [
        AccountMeta(pool_address, is_signer=False, is_writable=True),
        AccountMeta(find_withdraw_authority(pool_address), is_signer=False, is_writable=False),
        AccountMeta(pool.validator_list, is_signer=False, is_writable=True),
        AccountMeta(pool.reserve_stake, is_signer=False, is_writable=False),
        AccountMeta(pool.manager_fee_account, is_signer=False, is_writable=True),
        AccountMeta(pool.pool_mint, is_signer=False, is_writable=True),
        AccountMeta(pool.token_program_id, is_signer=False, is_writable=False),
    ]
    return Instruction(STAKE_POOL_PROGRAM_ID, bytes([UPDATE_STAKE_POOL_BALANCE]), accounts)


class NativePoolStrategy(PoolStrategy):
    """SPL stake pool: deposits only count after an explicit balance update."""

    name = "Native SPL"

    def crank_pool(
        self,
        rpc: SolanaRpcClient,
        pool_address: Pubkey,
        fee_payer: Keypair,
    ) -> Optional[Signature]:
        # Pool state changes every epoch; always read it fresh.
        pool = StakePoolState.from_bytes(rpc.get_account_data(pool_address))
        ix = update_stake_pool_balance(pool_address, pool)
        tx = build_signed_transaction(rpc, [ix], fee_payer)
        signature = self._submit(rpc, tx)
        logger.info("%s: Updated stake pool balance with signature %s", self.name, signature)
        return signature
