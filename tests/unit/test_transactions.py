from __future__ import annotations

import json
from typing import Any, List

import base58
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from common.errors import PrivateKeyError, RpcError
from common.transactions import (
    RETRY_BACKOFF_SECONDS,
    build_signed_transaction,
    confirm,
    parse_keypair,
    send_with_retry,
)


class _FakeRpc:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.submitted: List[Transaction] = []
        self.confirmed: List[Any] = []
        self.blockhash = Hash.new_unique()

    def get_latest_blockhash(self) -> Hash:
        return self.blockhash

    def send_and_confirm_transaction(self, tx: Transaction):
        self.submitted.append(tx)
        if self.failures > 0:
            self.failures -= 1
            raise RpcError("blockhash not found")
        return tx.signatures[0]

    def confirm_transaction(self, signature) -> None:
        self.confirmed.append(signature)


def _signed_transfer(rpc: _FakeRpc, payer: Keypair) -> Transaction:
    ix = transfer(TransferParams(from_pubkey=payer.pubkey(), to_pubkey=Pubkey.new_unique(), lamports=10))
    return build_signed_transaction(rpc, [ix], payer)


def test_parse_keypair_base58(admin_keypair: Keypair, admin_secret: str):
    assert parse_keypair(admin_secret).pubkey() == admin_keypair.pubkey()


def test_parse_keypair_json_array(admin_keypair: Keypair):
    secret = json.dumps(list(bytes(admin_keypair)))
    assert parse_keypair(secret).pubkey() == admin_keypair.pubkey()


@pytest.mark.parametrize(
    "secret",
    [
        "",
        "0OIl",  # characters outside the base58 alphabet
        base58.b58encode(b"\x01" * 32).decode(),  # wrong length
        "[1, 2, 3]",
        "[300" + ", 0" * 63 + "]",
        "[not json",
    ],
)
def test_parse_keypair_rejects_bad_material(secret: str):
    with pytest.raises(PrivateKeyError):
        parse_keypair(secret)


def test_build_signed_transaction_uses_latest_blockhash(admin_keypair: Keypair):
    rpc = _FakeRpc()
    tx = _signed_transfer(rpc, admin_keypair)

    assert tx.message.recent_blockhash == rpc.blockhash
    assert tx.message.account_keys[0] == admin_keypair.pubkey()


def test_send_with_retry_succeeds_first_time(admin_keypair: Keypair):
    rpc = _FakeRpc()
    sleeps: List[float] = []
    tx = _signed_transfer(rpc, admin_keypair)

    sig = send_with_retry(rpc, tx, 3, sleep=sleeps.append)

    assert sig == tx.signatures[0]
    assert sleeps == []
    assert len(rpc.submitted) == 1


def test_send_with_retry_resubmits_same_transaction_with_fixed_backoff(admin_keypair: Keypair):
    rpc = _FakeRpc(failures=2)
    sleeps: List[float] = []
    tx = _signed_transfer(rpc, admin_keypair)

    sig = send_with_retry(rpc, tx, 3, sleep=sleeps.append)

    assert sig == tx.signatures[0]
    assert sleeps == [RETRY_BACKOFF_SECONDS, RETRY_BACKOFF_SECONDS]
    assert RETRY_BACKOFF_SECONDS == 2.0
    assert all(submitted is tx for submitted in rpc.submitted)
    assert len(rpc.submitted) == 3


def test_send_with_retry_exhausts_budget(admin_keypair: Keypair):
    rpc = _FakeRpc(failures=10)
    sleeps: List[float] = []
    tx = _signed_transfer(rpc, admin_keypair)

    with pytest.raises(RpcError, match="blockhash not found"):
        send_with_retry(rpc, tx, 2, sleep=sleeps.append)

    # one initial attempt plus two retries
    assert len(rpc.submitted) == 3
    assert len(sleeps) == 2


def test_send_with_retry_zero_budget_fails_fast(admin_keypair: Keypair):
    rpc = _FakeRpc(failures=1)
    sleeps: List[float] = []

    with pytest.raises(RpcError):
        send_with_retry(rpc, _signed_transfer(rpc, admin_keypair), 0, sleep=sleeps.append)
    assert sleeps == []


def test_confirm_does_not_resubmit(admin_keypair: Keypair):
    rpc = _FakeRpc()
    tx = _signed_transfer(rpc, admin_keypair)

    confirm(rpc, tx.signatures[0])

    assert rpc.confirmed == [tx.signatures[0]]
    assert rpc.submitted == []
