from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from solders.pubkey import Pubkey

from common.config import CrankerConfig
from common.errors import ConfigError
from common.solana_rpc import SolanaRpcClient
from common.transactions import parse_keypair
from pool import CrankCycleResult, PoolStrategy, strategy_for
from state.epoch_store import EpochStore, build_epoch_store


logger = logging.getLogger(__name__)


class TickOutcome(str, Enum):
    EPOCH_QUERY_FAILED = "epoch_query_failed"
    NOT_DUE = "not_due"
    CRANKED = "cranked"
    CRANK_FAILED = "crank_failed"


@dataclass(frozen=True)
class TickResult:
    outcome: TickOutcome
    epoch: Optional[int] = None
    result: Optional[CrankCycleResult] = None
    error: Optional[Exception] = None


def should_crank(current_epoch: int, last_cranked_epoch: Optional[int]) -> bool:
    """Due when nothing was cranked yet or the epoch strictly advanced."""
    return last_cranked_epoch is None or current_epoch > last_cranked_epoch


class SchedulerObserver:
    """Receives scheduler events. The base class ignores all of them."""

    def started(self, poll_interval: float) -> None:
        pass

    def state_loaded(self, epoch: Optional[int]) -> None:
        pass

    def state_load_failed(self, error: Exception) -> None:
        pass

    def state_save_failed(self, epoch: int, error: Exception) -> None:
        pass

    def epoch_query_failed(self, error: Exception) -> None:
        pass

    def epoch_not_due(self, current_epoch: int, last_cranked_epoch: Optional[int]) -> None:
        pass

    def cycle_started(self, epoch: int) -> None:
        pass

    def cycle_succeeded(self, epoch: int, result: CrankCycleResult) -> None:
        pass

    def cycle_failed(self, epoch: int, error: Exception) -> None:
        pass


class LoggingObserver(SchedulerObserver):
    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger

    def started(self, poll_interval: float) -> None:
        self._log.info("Starting epoch-based crank scheduler (polling every %.0fs)", poll_interval)

    def state_loaded(self, epoch: Optional[int]) -> None:
        if epoch is not None:
            self._log.info("Restored last cranked epoch: %d", epoch)

    def state_load_failed(self, error: Exception) -> None:
        self._log.warning("Failed to load epoch state, starting fresh: %s", error)

    def state_save_failed(self, epoch: int, error: Exception) -> None:
        self._log.error("Failed to save epoch state for epoch %d: %s", epoch, error)

    def epoch_query_failed(self, error: Exception) -> None:
        self._log.error("Failed to get epoch info: %s", error)

    def epoch_not_due(self, current_epoch: int, last_cranked_epoch: Optional[int]) -> None:
        self._log.debug("Epoch %d already cranked, waiting for next epoch", current_epoch)

    def cycle_started(self, epoch: int) -> None:
        self._log.info("New epoch detected: %d. Starting crank cycle...", epoch)

    def cycle_succeeded(self, epoch: int, result: CrankCycleResult) -> None:
        if result.crank_signature is not None:
            self._log.info(
                "Crank cycle completed for epoch %d: deposit=%s, crank=%s",
                epoch,
                result.deposit_signature,
                result.crank_signature,
            )
        else:
            self._log.info(
                "Crank cycle completed for epoch %d: deposit=%s (crank not required)",
                epoch,
                result.deposit_signature,
            )

    def cycle_failed(self, epoch: int, error: Exception) -> None:
        self._log.error("Crank cycle failed for epoch %d: %s", epoch, error)


def _parse_address(raw: str, what: str) -> Pubkey:
    try:
        return Pubkey.from_string(raw.strip())
    except ValueError as e:
        raise ConfigError(f"Invalid {what} address '{raw}': {e}") from e


class CrankScheduler:
    """
    Cranks the configured pool once per epoch.

    Lifecycle
    - Construction resolves the admin keypair and pool addresses (fatal on
      bad input), selects the pool strategy, builds the epoch store and loads
      the last cranked epoch. A load failure only means "nothing cranked yet".
    - `tick()` runs one check: query the epoch, and crank when it advanced.
      Every failure inside a tick is reported to the observer and swallowed;
      the stored epoch only moves after a fully successful cycle.
    - `run()` calls `tick()` on a fixed interval. Ticks never overlap: a slow
      cycle pushes the next check back instead of queueing extra ticks.

    Persistence is best-effort. When saving fails after a successful cycle
    the in-process epoch still advances, so a restart may crank that epoch
    again (at-least-once across restarts, exactly-once within a run).
    """

    def __init__(
        self,
        config: CrankerConfig,
        *,
        rpc: Optional[SolanaRpcClient] = None,
        strategy: Optional[PoolStrategy] = None,
        epoch_store: Optional[EpochStore] = None,
        observer: Optional[SchedulerObserver] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._keypair = parse_keypair(config.admin_private_key.get_secret_value())
        self._reserve_address = _parse_address(config.pool_reserve_address, "reserve")
        self._pool_address = _parse_address(config.resolved_pool_address, "pool")

        self._owns_rpc = rpc is None
        self._rpc = rpc or SolanaRpcClient(
            config.rpc_url,
            timeout=config.rpc_timeout,
            confirm_timeout=config.confirm_timeout,
        )
        self._strategy = strategy or strategy_for(config.pool_type, max_retries=config.max_retries)
        self._store = epoch_store or build_epoch_store(config)
        self._observer = observer or LoggingObserver()
        self._sleep = sleep
        self._clock = clock

        logger.info("Initialized cranker with admin pubkey: %s", self._keypair.pubkey())
        self._last_cranked_epoch = self._load_epoch()

    def close(self) -> None:
        if self._owns_rpc:
            self._rpc.close()

    def __enter__(self) -> "CrankScheduler":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def last_cranked_epoch(self) -> Optional[int]:
        return self._last_cranked_epoch

    @property
    def strategy(self) -> PoolStrategy:
        return self._strategy

    # --------------- Loop ---------------
    def run(self, *, max_ticks: Optional[int] = None) -> None:
        """Poll forever, or for `max_ticks` ticks. The first tick fires immediately."""
        interval = self._config.epoch_poll_interval.total_seconds()
        self._observer.started(interval)

        ticks = 0
        next_at = self._clock()
        while max_ticks is None or ticks < max_ticks:
            delay = next_at - self._clock()
            if delay > 0:
                self._sleep(delay)
            self.tick()
            ticks += 1
            next_at = max(next_at + interval, self._clock())

    def tick(self) -> TickResult:
        try:
            current_epoch = self._rpc.get_epoch()
        except Exception as e:
            self._observer.epoch_query_failed(e)
            return TickResult(TickOutcome.EPOCH_QUERY_FAILED, error=e)

        if not should_crank(current_epoch, self._last_cranked_epoch):
            self._observer.epoch_not_due(current_epoch, self._last_cranked_epoch)
            return TickResult(TickOutcome.NOT_DUE, epoch=current_epoch)

        self._observer.cycle_started(current_epoch)
        try:
            result = self._strategy.execute_crank_cycle(
                self._rpc,
                self._keypair,
                self._pool_address,
                self._reserve_address,
                self._config.crank_amount,
            )
        except Exception as e:
            self._observer.cycle_failed(current_epoch, e)
            return TickResult(TickOutcome.CRANK_FAILED, epoch=current_epoch, error=e)

        self._last_cranked_epoch = current_epoch
        self._save_epoch(current_epoch)
        self._observer.cycle_succeeded(current_epoch, result)
        return TickResult(TickOutcome.CRANKED, epoch=current_epoch, result=result)

    # --------------- Internal ---------------
    def _load_epoch(self) -> Optional[int]:
        try:
            epoch = self._store.load()
        except Exception as e:
            self._observer.state_load_failed(e)
            return None
        self._observer.state_loaded(epoch)
        return epoch

    def _save_epoch(self, epoch: int) -> None:
        try:
            self._store.save(epoch)
        except Exception as e:
            self._observer.state_save_failed(epoch, e)


__all__ = [
    "CrankScheduler",
    "LoggingObserver",
    "SchedulerObserver",
    "TickOutcome",
    "TickResult",
    "should_crank",
]
