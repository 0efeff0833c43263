from __future__ import annotations

import logging
import os
import sys
from typing import Any, Dict

from dotenv import load_dotenv

from common.config import CrankerConfig, EpochStorageType
from common.errors import ConfigError, CrankerError
from cranker.scheduler import CrankScheduler


logger = logging.getLogger("cranker")

ENV_LOG_LEVEL = "LOG_LEVEL"


def _configure_logging() -> None:
    level = os.environ.get(ENV_LOG_LEVEL, "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _load_config() -> CrankerConfig:
    config = CrankerConfig.from_env()
    logger.info("Configuration loaded: %s", config.summary())
    return config


def _build_scheduler() -> CrankScheduler:
    return CrankScheduler(_load_config())


def run_once() -> Dict[str, Any]:
    """Run a single epoch check, for cron- or Lambda-style invocation.

    Each invocation starts a fresh scheduler, so the last cranked epoch must
    come from a durable store; the memory backend is rejected with ConfigError.
    """
    config = _load_config()
    if config.epoch_storage_type is EpochStorageType.MEMORY:
        raise ConfigError("run_once needs a durable epoch store (file or s3), not memory")
    with CrankScheduler(config) as scheduler:
        tick = scheduler.tick()

    out: Dict[str, Any] = {
        "ok": tick.error is None,
        "outcome": tick.outcome.value,
        "epoch": tick.epoch,
        "last_cranked_epoch": scheduler.last_cranked_epoch,
    }
    if tick.result is not None:
        out["deposit_signature"] = str(tick.result.deposit_signature)
        crank_sig = tick.result.crank_signature
        out["crank_signature"] = str(crank_sig) if crank_sig is not None else None
    if tick.error is not None:
        out["error"] = str(tick.error)
    return out


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    return run_once()


def main() -> int:
    """Entry point for the long-running cranker service."""
    load_dotenv()
    _configure_logging()
    logger.info("Starting Solana Stake Pool Cranker")

    try:
        scheduler = _build_scheduler()
    except CrankerError as e:
        logger.error("Startup failed: %s", e)
        return 1
    except Exception as e:
        logger.error("Startup failed: %s", e, exc_info=True)
        return 1

    try:
        with scheduler:
            scheduler.run()
    except KeyboardInterrupt:
        logger.info("Cranker stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
