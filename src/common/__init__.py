"""
Common utilities for the asset bot.

Modules:
- config: Settings from env and SSM Parameter Store
- telegram: Telegram Bot API client
- pinning: IPFS pinning (Pinata) client
- jsonrpc / retry_rpc / ledger_codec / registry: ledger access with retries
- limits: rate limiter and per-key locks
- logging_setup: process-wide logging configuration
- whitelist: optional chat allow-list
"""

__all__ = [
    "config",
    "jsonrpc",
    "ledger_codec",
    "limits",
    "logging_setup",
    "pinning",
    "registry",
    "retry_rpc",
    "telegram",
    "whitelist",
]
