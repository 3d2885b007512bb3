from __future__ import annotations

import os
from typing import Callable, Dict, Iterable, Mapping, Optional

from pydantic import BaseModel, Field, SecretStr


# Environment configuration (same conventions as the scheduled runners)
ENV_STATE_BUCKET = "STATE_BUCKET"
ENV_STATE_KEY = "STATE_KEY"  # optional; defaults to "state.json"
ENV_PARAM_PREFIX = "PARAM_PREFIX"  # optional; secrets come from env when unset

SECRET_NAMES = [
    "telegram_bot_token",
    "fernet_key",
    "pinata_api_key",
    "pinata_secret_api_key",
    "faucet_private_key",  # optional
    "allowed_chat_ids",  # optional whitelist
]

DEFAULT_RPC_URL = "https://aeneid.storyrpc.io"
DEFAULT_EXPLORER_BASE = "https://aeneid.storyscan.xyz"
DEFAULT_IPFS_GATEWAY = "https://gateway.pinata.cloud/ipfs"


class Settings(BaseModel):
    """Runtime configuration for the bot process.

    Secrets are `SecretStr` so they never show up in reprs or logs.
    """

    telegram_bot_token: SecretStr
    fernet_key: SecretStr
    pinata_api_key: SecretStr
    pinata_secret_api_key: SecretStr
    faucet_private_key: Optional[SecretStr] = None
    allowed_chat_ids: Optional[str] = None

    state_bucket: str
    state_key: str = "state.json"

    rpc_url: str = DEFAULT_RPC_URL
    contract_address: str
    chain_id: int = 1315
    explorer_base: str = DEFAULT_EXPLORER_BASE
    ipfs_gateway: str = DEFAULT_IPFS_GATEWAY

    session_ttl_seconds: float = Field(default=900.0, gt=0)
    rpc_attempts: int = Field(default=3, ge=1)
    rpc_backoff_seconds: float = Field(default=1.0, ge=0)
    poll_interval_seconds: float = Field(default=2.0, ge=0)
    poll_attempts: int = Field(default=60, ge=1)
    workers: int = Field(default=8, ge=1)
    min_gas_balance_wei: int = Field(default=10**15, ge=0)
    faucet_amount_wei: int = Field(default=10**16, ge=0)
    watch_interval_seconds: float = Field(default=15.0, gt=0)
    log_level: str = "INFO"


# Env var name -> Settings field, for the non-secret knobs
_ENV_FIELDS = {
    "RPC_URL": "rpc_url",
    "CONTRACT_ADDRESS": "contract_address",
    "CHAIN_ID": "chain_id",
    "EXPLORER_BASE": "explorer_base",
    "IPFS_GATEWAY": "ipfs_gateway",
    "SESSION_TTL_SECONDS": "session_ttl_seconds",
    "RPC_ATTEMPTS": "rpc_attempts",
    "RPC_BACKOFF_SECONDS": "rpc_backoff_seconds",
    "POLL_INTERVAL_SECONDS": "poll_interval_seconds",
    "POLL_ATTEMPTS": "poll_attempts",
    "WORKERS": "workers",
    "MIN_GAS_BALANCE_WEI": "min_gas_balance_wei",
    "FAUCET_AMOUNT_WEI": "faucet_amount_wei",
    "WATCH_INTERVAL_SECONDS": "watch_interval_seconds",
    "LOG_LEVEL": "log_level",
}


def _getenv(environ: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    v = environ.get(name)
    return v if v not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise RuntimeError(f"Missing required configuration: {what}")
    return v


def _load_ssm_params(prefix: str, names: Iterable[str]) -> Dict[str, Optional[str]]:
    import boto3
    from botocore.exceptions import ClientError

    ssm = boto3.client("ssm")
    out: Dict[str, Optional[str]] = {k: None for k in names}
    for name in names:
        full = f"{prefix}{name}"
        try:
            resp = ssm.get_parameter(Name=full, WithDecryption=True)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("ParameterNotFound", "AccessDeniedException"):
                out[name] = None
                continue
            raise
        val = resp.get("Parameter", {}).get("Value")
        out[name] = val if isinstance(val, str) and val != "" else None
    return out


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    *,
    ssm_loader: Optional[Callable[[str, Iterable[str]], Dict[str, Optional[str]]]] = None,
) -> Settings:
    """
    Build `Settings` from the environment and, when `PARAM_PREFIX` is set,
    from SSM Parameter Store.

    - Secrets: `{PARAM_PREFIX}{name}` in SSM, else the upper-cased name as an
      env var (e.g. `TELEGRAM_BOT_TOKEN`).
    - `STATE_BUCKET` and `CONTRACT_ADDRESS` are required.
    Raises RuntimeError naming the first missing required value.
    """
    env = os.environ if environ is None else environ
    bucket = _require(_getenv(env, ENV_STATE_BUCKET), ENV_STATE_BUCKET)
    key = _getenv(env, ENV_STATE_KEY, "state.json")
    prefix = _getenv(env, ENV_PARAM_PREFIX)

    if prefix:
        params = (ssm_loader or _load_ssm_params)(prefix, SECRET_NAMES)
        where = prefix
    else:
        params = {name: _getenv(env, name.upper()) for name in SECRET_NAMES}
        where = ""

    def secret(name: str) -> str:
        return _require(params.get(name), f"{where}{name}" if where else name.upper())

    values: Dict[str, object] = {
        "telegram_bot_token": secret("telegram_bot_token"),
        "fernet_key": secret("fernet_key"),
        "pinata_api_key": secret("pinata_api_key"),
        "pinata_secret_api_key": secret("pinata_secret_api_key"),
        "faucet_private_key": params.get("faucet_private_key"),
        "allowed_chat_ids": params.get("allowed_chat_ids"),
        "state_bucket": bucket,
        "state_key": key,
    }
    for env_name, field_name in _ENV_FIELDS.items():
        raw = _getenv(env, env_name)
        if raw is not None:
            values[field_name] = raw
    values["contract_address"] = _require(_getenv(env, "CONTRACT_ADDRESS"), "CONTRACT_ADDRESS")
    return Settings.model_validate(values)


__all__ = ["Settings", "load_settings", "SECRET_NAMES"]
