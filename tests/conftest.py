import os
import sys
from datetime import timedelta

import base58
import pytest


def pytest_configure():
    # Ensure `src/` is importable as top-level for `common.*` imports
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


@pytest.fixture
def admin_keypair():
    from solders.keypair import Keypair

    return Keypair()


@pytest.fixture
def admin_secret(admin_keypair) -> str:
    return base58.b58encode(bytes(admin_keypair)).decode("ascii")


@pytest.fixture
def make_config(admin_secret):
    from solders.pubkey import Pubkey

    from common.config import CrankerConfig, EpochStorageType, PoolType

    def _make(**overrides):
        values = dict(
            pool_type=PoolType.SANCTUM,
            rpc_url="http://localhost:8899",
            admin_private_key=admin_secret,
            pool_reserve_address=str(Pubkey.new_unique()),
            crank_amount=1_000_000,
            epoch_poll_interval=timedelta(seconds=60),
            epoch_storage_type=EpochStorageType.MEMORY,
        )
        values.update(overrides)
        return CrankerConfig(**values)

    return _make
