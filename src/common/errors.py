from __future__ import annotations


class CrankerError(RuntimeError):
    """Base error for the cranker."""


class ConfigError(CrankerError):
    """Missing or malformed configuration; fatal at startup."""


class InvalidPoolTypeError(ConfigError):
    """POOL_TYPE is not one of the supported pool families."""


class ParseError(CrankerError):
    """Malformed duration string or epoch state content."""


class PrivateKeyError(CrankerError):
    """Admin signing material could not be turned into a keypair."""


class RpcError(CrankerError):
    """A remote ledger call failed (transport, HTTP or JSON-RPC error)."""


class TransactionError(RpcError):
    """A submitted transaction failed on-chain or was not confirmed in time."""


class PoolError(CrankerError):
    """Pool-specific failure, e.g. undecodable stake pool account data."""


__all__ = [
    "CrankerError",
    "ConfigError",
    "InvalidPoolTypeError",
    "ParseError",
    "PrivateKeyError",
    "RpcError",
    "TransactionError",
    "PoolError",
]
