from __future__ import annotations

from pathlib import Path
from typing import Any, List

import pytest
from solders.hash import Hash

from common.errors import ConfigError
from state.epoch_store import MemoryEpochStore


class _FakeRpc:
    def __init__(self, epochs: List[Any]) -> None:
        self.epochs = list(epochs)

    def get_epoch(self) -> int:
        return self.epochs.pop(0)

    def get_latest_blockhash(self) -> Hash:
        return Hash.new_unique()

    def send_and_confirm_transaction(self, tx):
        return tx.signatures[0]

    def confirm_transaction(self, signature) -> None:
        pass


def _patch_env(monkeypatch: pytest.MonkeyPatch, admin_secret: str) -> None:
    from solders.pubkey import Pubkey

    monkeypatch.setenv("POOL_TYPE", "sanctum")
    monkeypatch.setenv("RPC_URL", "http://localhost:8899")
    monkeypatch.setenv("ADMIN_PRIVATE_KEY", admin_secret)
    monkeypatch.setenv("POOL_RESERVE_ADDRESS", str(Pubkey.new_unique()))
    monkeypatch.setenv("CRANK_AMOUNT", "1000")
    monkeypatch.setenv("EPOCH_STORAGE_TYPE", "memory")
    monkeypatch.delenv("POOL_ADDRESS", raising=False)
    monkeypatch.delenv("PARAM_PREFIX", raising=False)


def _patch_scheduler(monkeypatch: pytest.MonkeyPatch, rpc: _FakeRpc, *, durable: bool = False) -> None:
    from cranker import handler
    from cranker.scheduler import CrankScheduler

    def build(config):
        store = None if durable else MemoryEpochStore()
        return CrankScheduler(config, rpc=rpc, epoch_store=store)

    monkeypatch.setattr(handler, "CrankScheduler", build)


def test_run_once_cranks_and_reports(monkeypatch: pytest.MonkeyPatch, admin_secret: str, tmp_path: Path):
    from cranker import handler

    _patch_env(monkeypatch, admin_secret)
    monkeypatch.setenv("EPOCH_STORAGE_TYPE", "file")
    monkeypatch.setenv("EPOCH_STATE_FILE", str(tmp_path / ".epoch_state"))
    _patch_scheduler(monkeypatch, _FakeRpc([77, 77]), durable=True)

    out = handler.run_once()

    assert out["ok"] is True
    assert out["outcome"] == "cranked"
    assert out["epoch"] == 77
    assert out["last_cranked_epoch"] == 77
    assert out["deposit_signature"]
    assert out["crank_signature"] is None

    again = handler.run_once()
    assert again["outcome"] == "not_due"
    assert again["last_cranked_epoch"] == 77
    assert (tmp_path / ".epoch_state").read_text() == "77"


def test_run_once_rejects_memory_store(monkeypatch: pytest.MonkeyPatch, admin_secret: str):
    from cranker import handler

    _patch_env(monkeypatch, admin_secret)
    rpc = _FakeRpc([77])
    _patch_scheduler(monkeypatch, rpc)

    with pytest.raises(ConfigError, match="durable"):
        handler.run_once()
    assert rpc.epochs == [77]


def test_lambda_handler_delegates_to_run_once(monkeypatch: pytest.MonkeyPatch):
    from cranker import handler

    monkeypatch.setattr(handler, "run_once", lambda: {"ok": True, "outcome": "not_due"})
    assert handler.lambda_handler({}, None) == {"ok": True, "outcome": "not_due"}


def test_main_returns_nonzero_on_bad_config(monkeypatch: pytest.MonkeyPatch):
    from cranker import handler

    monkeypatch.setattr(handler, "load_dotenv", lambda: False)
    for name in ("POOL_TYPE", "RPC_URL", "ADMIN_PRIVATE_KEY", "PARAM_PREFIX"):
        monkeypatch.delenv(name, raising=False)

    assert handler.main() == 1


def test_main_returns_nonzero_on_bad_signing_material(monkeypatch: pytest.MonkeyPatch, admin_secret: str):
    from cranker import handler

    monkeypatch.setattr(handler, "load_dotenv", lambda: False)
    _patch_env(monkeypatch, admin_secret)
    monkeypatch.setenv("ADMIN_PRIVATE_KEY", "0000")

    assert handler.main() == 1


def test_main_stops_cleanly_on_keyboard_interrupt(monkeypatch: pytest.MonkeyPatch, admin_secret: str):
    from cranker import handler
    from cranker.scheduler import CrankScheduler

    monkeypatch.setattr(handler, "load_dotenv", lambda: False)
    _patch_env(monkeypatch, admin_secret)
    _patch_scheduler(monkeypatch, _FakeRpc([]))

    def interrupted(self, *, max_ticks=None):
        raise KeyboardInterrupt

    monkeypatch.setattr(CrankScheduler, "run", interrupted)

    assert handler.main() == 0
