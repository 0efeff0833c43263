"""
Common utilities for the stake pool cranker.

Modules:
- config: CrankerConfig loaded from the environment, duration parsing
- errors: exception hierarchy rooted at CrankerError
- solana_rpc: minimal Solana JSON-RPC client
- transactions: keypair parsing, signing and retried submission
"""

__all__ = [
    "config",
    "errors",
    "solana_rpc",
    "transactions",
]
