from __future__ import annotations

import base64
import itertools
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from .errors import RpcError, TransactionError


DEFAULT_COMMITMENT = "confirmed"


class SolanaRpcClient:
    """
    Minimal Solana JSON-RPC client covering what the cranker needs.

    Notes
    - Transport errors and HTTP 429/5xx are retried with exponential backoff,
      except on `sendTransaction`, which is posted exactly once per call; the
      transaction executor owns resubmission policy. JSON-RPC error payloads
      are raised as `RpcError` without retrying.
    - `confirm_transaction` polls `getSignatureStatuses` until the signature
      reaches the configured commitment, fails on-chain, or times out.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        commitment: str = DEFAULT_COMMITMENT,
        confirm_timeout: float = 60.0,
        poll_interval: float = 0.5,
        max_attempts: int = 3,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not url:
            raise ValueError("url is required")
        self._url = url
        self._commitment = commitment
        self._confirm_timeout = confirm_timeout
        self._poll_interval = poll_interval
        self._max_attempts = max(1, max_attempts)
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._sleep = sleep
        self._clock = clock
        self._ids = itertools.count(1)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "SolanaRpcClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def get_epoch(self) -> int:
        info = self._request("getEpochInfo", [{"commitment": self._commitment}])
        try:
            return int(info["epoch"])
        except (TypeError, KeyError, ValueError) as exc:
            raise RpcError(f"Malformed getEpochInfo result: {info!r}") from exc

    def get_account_data(self, address: Pubkey) -> bytes:
        """Return the raw data of `address`; RpcError if the account does not exist."""
        result = self._request(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self._commitment}],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if value is None:
            raise RpcError(f"Account {address} not found")
        try:
            encoded, _encoding = value["data"]
            return base64.b64decode(encoded)
        except (TypeError, KeyError, ValueError) as exc:
            raise RpcError(f"Malformed account data for {address}") from exc

    def get_latest_blockhash(self) -> Hash:
        result = self._request("getLatestBlockhash", [{"commitment": self._commitment}])
        try:
            return Hash.from_string(result["value"]["blockhash"])
        except (TypeError, KeyError, ValueError) as exc:
            raise RpcError(f"Malformed getLatestBlockhash result: {result!r}") from exc

    def send_transaction(self, transaction: Transaction) -> Signature:
        encoded = base64.b64encode(bytes(transaction)).decode("ascii")
        result = self._request(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self._commitment}],
            attempts=1,
        )
        try:
            return Signature.from_string(result)
        except (TypeError, ValueError) as exc:
            raise RpcError(f"Malformed sendTransaction result: {result!r}") from exc

    def get_signature_status(self, signature: Signature) -> Optional[Dict[str, Any]]:
        result = self._request(
            "getSignatureStatuses",
            [[str(signature)], {"searchTransactionHistory": False}],
        )
        values: List[Any] = (result or {}).get("value") or [None]
        status = values[0]
        return status if isinstance(status, dict) else None

    def confirm_transaction(self, signature: Signature, *, timeout: Optional[float] = None) -> None:
        """Block until `signature` is confirmed.

        Raises TransactionError if the transaction failed on-chain or did not
        reach the commitment level within `timeout` seconds.
        """
        wanted = {"finalized"} if self._commitment == "finalized" else {"confirmed", "finalized"}
        deadline = self._clock() + (self._confirm_timeout if timeout is None else timeout)
        while True:
            status = self.get_signature_status(signature)
            if status is not None:
                if status.get("err") is not None:
                    raise TransactionError(f"Transaction {signature} failed: {status['err']}")
                if status.get("confirmationStatus") in wanted:
                    return
            if self._clock() >= deadline:
                raise TransactionError(f"Transaction {signature} not confirmed before timeout")
            self._sleep(self._poll_interval)

    def send_and_confirm_transaction(self, transaction: Transaction) -> Signature:
        signature = self.send_transaction(transaction)
        self.confirm_transaction(signature)
        return signature

    # --------------- Internal ---------------
    def _request(self, method: str, params: List[Any], *, attempts: Optional[int] = None) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        max_attempts = self._max_attempts if attempts is None else max(1, attempts)

        attempt = 0
        backoff = 0.5
        last_exc: Optional[Exception] = None
        while attempt < max_attempts:
            try:
                resp = self._client.post(self._url, json=body)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
            else:
                if resp.status_code == 200:
                    try:
                        payload = resp.json()
                    except ValueError as exc:
                        raise RpcError(f"Failed to parse JSON from {method}") from exc
                    self._raise_on_rpc_error(method, payload)
                    return payload.get("result")
                if resp.status_code in (429, 500, 502, 503, 504):
                    last_exc = RpcError(f"HTTP {resp.status_code} from {method}")
                else:
                    raise RpcError(f"HTTP {resp.status_code} from {method}: {resp.text[:200]}")

            attempt += 1
            if attempt < max_attempts:
                self._sleep(backoff)
                backoff = min(backoff * 2, 8.0)

        raise RpcError(f"{method} failed after {max_attempts} attempts: {last_exc}") from last_exc

    @staticmethod
    def _raise_on_rpc_error(method: str, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise RpcError(f"Malformed JSON-RPC response from {method}")
        err = payload.get("error")
        if err is None:
            return
        if isinstance(err, dict):
            raise RpcError(f"{method}: {err.get('message', 'RPC error')} (code={err.get('code')})")
        raise RpcError(f"{method}: {err}")


__all__ = ["SolanaRpcClient", "DEFAULT_COMMITMENT"]
