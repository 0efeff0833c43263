"""
Pool strategies: the ledger side of a crank cycle.

- native: SPL stake pool, deposit then UpdateStakePoolBalance
- sanctum: deposit only, the pool picks it up by itself
"""

from __future__ import annotations

from typing import Callable, Optional

from common.config import PoolType

from .base import CrankCycleResult, PoolStrategy
from .native import NativePoolStrategy, StakePoolState
from .sanctum import SanctumPoolStrategy


def strategy_for(
    pool_type: PoolType,
    *,
    max_retries: int = 3,
    sleep: Optional[Callable[[float], None]] = None,
) -> PoolStrategy:
    if pool_type is PoolType.NATIVE:
        return NativePoolStrategy(max_retries=max_retries, sleep=sleep)
    return SanctumPoolStrategy(max_retries=max_retries, sleep=sleep)


__all__ = [
    "CrankCycleResult",
    "NativePoolStrategy",
    "PoolStrategy",
    "SanctumPoolStrategy",
    "StakePoolState",
    "strategy_for",
]
