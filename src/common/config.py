from __future__ import annotations

import os
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator, model_validator

from .errors import ConfigError, InvalidPoolTypeError, ParseError


# Environment variable names
ENV_POOL_TYPE = "POOL_TYPE"
ENV_RPC_URL = "RPC_URL"
ENV_ADMIN_PRIVATE_KEY = "ADMIN_PRIVATE_KEY"
ENV_PARAM_PREFIX = "PARAM_PREFIX"  # optional SSM prefix holding `admin_private_key`
ENV_POOL_RESERVE_ADDRESS = "POOL_RESERVE_ADDRESS"
ENV_POOL_ADDRESS = "POOL_ADDRESS"
ENV_CRANK_AMOUNT = "CRANK_AMOUNT"
ENV_EPOCH_POLL_INTERVAL = "EPOCH_POLL_INTERVAL"
ENV_EPOCH_STORAGE_TYPE = "EPOCH_STORAGE_TYPE"
ENV_EPOCH_STATE_FILE = "EPOCH_STATE_FILE"
ENV_EPOCH_STATE_BUCKET = "EPOCH_STATE_BUCKET"
ENV_EPOCH_STATE_KEY = "EPOCH_STATE_KEY"
ENV_MAX_RETRIES = "CRANK_MAX_RETRIES"
ENV_RPC_TIMEOUT = "RPC_TIMEOUT"
ENV_CONFIRM_TIMEOUT = "CONFIRM_TIMEOUT"

# Backward-compatible fallback (earlier deployments used a fixed crank interval)
FALLBACK_ENV_EPOCH_POLL_INTERVAL = "CRANK_INTERVAL"

DEFAULT_EPOCH_POLL_INTERVAL = "5m"
DEFAULT_EPOCH_STATE_FILE = ".epoch_state"
DEFAULT_EPOCH_STATE_KEY = "epoch_state"

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


class PoolType(str, Enum):
    SANCTUM = "sanctum"
    NATIVE = "native"

    @classmethod
    def parse(cls, raw: str) -> "PoolType":
        """Case-insensitive lookup; "SANCTUM", "Sanctum" and "sanctum" are equal."""
        try:
            return cls(raw.strip().lower())
        except ValueError:
            raise InvalidPoolTypeError(
                f"Invalid pool type '{raw}'. Expected 'sanctum' or 'native'"
            ) from None


class EpochStorageType(str, Enum):
    MEMORY = "memory"
    FILE = "file"
    S3 = "s3"

    @classmethod
    def parse(cls, raw: str) -> "EpochStorageType":
        try:
            return cls(raw.strip().lower())
        except ValueError:
            raise ConfigError(
                f"Invalid epoch storage type '{raw}'. Expected 'memory', 'file' or 's3'"
            ) from None


def parse_duration(raw: str) -> timedelta:
    """Parse `<n><unit>` where unit is one of s, m, h, d (e.g. "5m" -> 300s).

    Raises ParseError for empty input, a non-numeric count or an unknown unit.
    """
    s = raw.strip()
    if not s:
        raise ParseError("Empty duration string")

    num, unit = s[:-1], s[-1]
    if not (num.isascii() and num.isdigit()):
        raise ParseError(f"Invalid duration number '{num}' in '{raw}'")
    if unit not in _UNIT_SECONDS:
        raise ParseError(f"Invalid duration unit '{unit}'. Use 's', 'm', 'h', or 'd'")
    return timedelta(seconds=int(num) * _UNIT_SECONDS[unit])


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    # empty strings count as unset
    return os.environ.get(name) or default


def _required_env(name: str) -> str:
    value = _env(name)
    if value is None:
        raise ConfigError(f"Missing required configuration: {name}")
    return value


def _parse_int(raw: str, what: str) -> int:
    s = raw.strip()
    if not (s.isascii() and s.isdigit()):
        raise ConfigError(f"Invalid {what}: {raw!r}")
    return int(s)


def _parse_seconds(raw: str, what: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"Invalid {what}: {raw!r}") from None


SSM_ADMIN_KEY_PARAM = "admin_private_key"


def _read_ssm_secret(name: str, *, ssm: Optional[Any] = None) -> Optional[str]:
    """Decrypted value of SSM parameter `name`, or None if it is missing or unreadable."""
    client = ssm or boto3.client("ssm")
    try:
        resp = client.get_parameter(Name=name, WithDecryption=True)
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code")
        if code in ("ParameterNotFound", "AccessDeniedException"):
            return None
        raise
    value = resp.get("Parameter", {}).get("Value")
    return value if isinstance(value, str) and value else None


class CrankerConfig(BaseModel):
    """
    Process configuration, read once at startup and immutable afterwards.

    Fields
    - pool_type: which pool strategy cranks the pool.
    - rpc_url: JSON-RPC endpoint of the cluster.
    - admin_private_key: signing secret (base58 keypair or JSON byte array).
      Stored as SecretStr so it never shows up in reprs or log lines.
    - pool_reserve_address: account that receives the deposit.
    - pool_address: stake pool account; `resolved_pool_address` falls back
      to the reserve address when unset.
    - crank_amount: lamports deposited per crank cycle.
    - epoch_poll_interval: how often the current epoch is checked.
    - epoch_storage_type / epoch_state_file / epoch_state_bucket /
      epoch_state_key: where the last cranked epoch is persisted.
    - max_retries, rpc_timeout, confirm_timeout: RPC resilience knobs.
    """

    model_config = ConfigDict(frozen=True)

    pool_type: PoolType
    rpc_url: str = Field(..., min_length=1)
    admin_private_key: SecretStr
    pool_reserve_address: str = Field(..., min_length=1)
    pool_address: Optional[str] = None
    crank_amount: int = Field(..., gt=0)
    epoch_poll_interval: timedelta = Field(default_factory=lambda: parse_duration(DEFAULT_EPOCH_POLL_INTERVAL))
    epoch_storage_type: EpochStorageType = EpochStorageType.FILE
    epoch_state_file: str = DEFAULT_EPOCH_STATE_FILE
    epoch_state_bucket: Optional[str] = None
    epoch_state_key: str = DEFAULT_EPOCH_STATE_KEY
    max_retries: int = Field(default=3, ge=0)
    rpc_timeout: float = Field(default=30.0, gt=0)
    confirm_timeout: float = Field(default=60.0, gt=0)

    @field_validator("epoch_poll_interval")
    @classmethod
    def _positive_interval(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("epoch_poll_interval must be positive")
        return v

    @model_validator(mode="after")
    def _s3_needs_bucket(self) -> "CrankerConfig":
        if self.epoch_storage_type is EpochStorageType.S3 and not self.epoch_state_bucket:
            raise ValueError(f"{ENV_EPOCH_STATE_BUCKET} is required for s3 epoch storage")
        return self

    @property
    def resolved_pool_address(self) -> str:
        return self.pool_address or self.pool_reserve_address

    def summary(self) -> Dict[str, Any]:
        """Loggable view of the configuration (no secrets)."""
        return {
            "pool_type": self.pool_type.value,
            "rpc_url": self.rpc_url,
            "pool_reserve_address": self.pool_reserve_address,
            "pool_address": self.resolved_pool_address,
            "crank_amount": self.crank_amount,
            "epoch_poll_interval": f"{int(self.epoch_poll_interval.total_seconds())}s",
            "epoch_storage_type": self.epoch_storage_type.value,
            "max_retries": self.max_retries,
        }

    # -------- Construction helpers --------
    @classmethod
    def from_env(cls) -> "CrankerConfig":
        """Build the configuration from environment variables.

        Raises ConfigError (or its InvalidPoolTypeError subclass) for missing or
        malformed settings and ParseError for a malformed poll interval.
        """
        pool_type = PoolType.parse(_required_env(ENV_POOL_TYPE))
        rpc_url = _required_env(ENV_RPC_URL)

        admin_key = _env(ENV_ADMIN_PRIVATE_KEY)
        prefix = _env(ENV_PARAM_PREFIX)
        if not admin_key and prefix:
            admin_key = _read_ssm_secret(f"{prefix}{SSM_ADMIN_KEY_PARAM}")
        if not admin_key:
            raise ConfigError(f"Missing required configuration: {ENV_ADMIN_PRIVATE_KEY}")

        reserve = _required_env(ENV_POOL_RESERVE_ADDRESS)
        crank_amount = _parse_int(_required_env(ENV_CRANK_AMOUNT), ENV_CRANK_AMOUNT)

        interval_raw = (
            _env(ENV_EPOCH_POLL_INTERVAL)
            or _env(FALLBACK_ENV_EPOCH_POLL_INTERVAL)
            or DEFAULT_EPOCH_POLL_INTERVAL
        )

        try:
            return cls(
                pool_type=pool_type,
                rpc_url=rpc_url,
                admin_private_key=admin_key,
                pool_reserve_address=reserve,
                pool_address=_env(ENV_POOL_ADDRESS),
                crank_amount=crank_amount,
                epoch_poll_interval=parse_duration(interval_raw),
                epoch_storage_type=EpochStorageType.parse(_env(ENV_EPOCH_STORAGE_TYPE, "file")),
                epoch_state_file=_env(ENV_EPOCH_STATE_FILE, DEFAULT_EPOCH_STATE_FILE),
                epoch_state_bucket=_env(ENV_EPOCH_STATE_BUCKET),
                epoch_state_key=_env(ENV_EPOCH_STATE_KEY, DEFAULT_EPOCH_STATE_KEY),
                max_retries=_parse_int(_env(ENV_MAX_RETRIES, "3"), ENV_MAX_RETRIES),
                rpc_timeout=_parse_seconds(_env(ENV_RPC_TIMEOUT, "30"), ENV_RPC_TIMEOUT),
                confirm_timeout=_parse_seconds(_env(ENV_CONFIRM_TIMEOUT, "60"), ENV_CONFIRM_TIMEOUT),
            )
        except ValidationError as ve:
            raise ConfigError(f"Invalid configuration: {ve}") from ve


__all__ = [
    "CrankerConfig",
    "EpochStorageType",
    "PoolType",
    "parse_duration",
]
