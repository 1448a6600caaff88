"""Shared configuration loader for batchpay."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".batchpay.yaml"
_CONFIG_PATH_OVERRIDE: Path | None = None

SATS_PER_COIN = 100_000_000
DEFAULT_RPC_PORT = 8332
DEFAULT_RPC_TIMEOUT = 30.0
DEFAULT_UNLOCK_SECONDS = 10800
DEFAULT_MAX_BATCH_VALUE = 10 * SATS_PER_COIN
DEFAULT_MAX_OUTPUTS = 1


@dataclass
class RPCConfig:
    """Configuration container for node RPC connection details."""

    user: str
    password: str
    host: str = "127.0.0.1"
    port: int = DEFAULT_RPC_PORT
    use_https: bool = False
    wallet: str | None = None
    timeout: float = DEFAULT_RPC_TIMEOUT

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_https else "http"
        return f"{scheme}://{self.host}:{self.port}"


@dataclass
class PayoutConfig:
    """Batching limits applied by :class:`batchpay.payouts.PayoutBatcher`.

    ``max_batch_value`` is expressed in satoshis. It is a stopping condition:
    a batch keeps growing while its value is below the cap, so the request that
    crosses it is still included.
    """

    max_batch_value: int = DEFAULT_MAX_BATCH_VALUE
    max_outputs: int = DEFAULT_MAX_OUTPUTS
    unlock_seconds: int = DEFAULT_UNLOCK_SECONDS


def set_default_config_path(path: str | Path | None) -> None:
    """Remember a user-supplied config path for future loads."""

    global _CONFIG_PATH_OVERRIDE
    _CONFIG_PATH_OVERRIDE = Path(path).expanduser() if path else None


def _resolve_config_path(config_path: str | Path | None) -> tuple[Path, bool]:
    explicit_path = config_path is not None or _CONFIG_PATH_OVERRIDE is not None
    path = (
        Path(config_path).expanduser()
        if config_path is not None
        else _CONFIG_PATH_OVERRIDE or DEFAULT_CONFIG_PATH
    )
    return path, explicit_path


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML mapping")
    return loaded


def _section(file_config: Mapping[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name, {})
    if section and not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section or {}


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return None


def _coerce_int(raw: Any, *, source: str, label: str = "port") -> int | None:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ConfigurationError(f"Invalid {label} in {source}: {raw}")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid {label} in {source}: {raw}") from exc


def _coerce_float(raw: Any, *, source: str, label: str) -> float | None:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid {label} in {source}: {raw}") from exc


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def _parse_endpoint(raw: str | None) -> tuple[str | None, int | None, bool | None]:
    if not raw:
        return None, None, None
    parsed = urlparse(raw)
    if not parsed.scheme and not parsed.hostname:
        raise ConfigurationError(f"Invalid RPC endpoint URL: {raw}")
    host = parsed.hostname or None
    port = parsed.port
    use_https = parsed.scheme.lower() == "https" if parsed.scheme else None
    return host, port, use_https


def load_rpc_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> RPCConfig:
    """Load RPC configuration from environment variables and optional YAML."""

    env_map = os.environ if env is None else env
    path, explicit_path = _resolve_config_path(config_path)
    file_config = _load_config_file(path, required=explicit_path)
    rpc_section = _section(file_config, "rpc", path)
    override_map = dict(overrides or {})

    env_endpoint = env_map.get("BATCHPAY_RPC_ENDPOINT") or env_map.get("BATCHPAY_RPC_URL")
    endpoint_host, endpoint_port, endpoint_use_https = _parse_endpoint(
        _first_value(override_map.get("endpoint"), env_endpoint, rpc_section.get("endpoint"))
    )

    resolved_user = _first_value(
        override_map.get("user"), env_map.get("BATCHPAY_RPC_USER") or None, rpc_section.get("user")
    )
    resolved_password = _first_value(
        override_map.get("password"),
        env_map.get("BATCHPAY_RPC_PASSWORD") or None,
        rpc_section.get("password"),
    )
    if not resolved_user or not resolved_password:
        raise ConfigurationError(
            "RPC credentials must be provided via BATCHPAY_RPC_* environment variables or a config file"
        )

    resolved_host = _first_value(
        override_map.get("host"),
        endpoint_host,
        env_map.get("BATCHPAY_RPC_HOST") or None,
        rpc_section.get("host"),
        "127.0.0.1",
    )
    resolved_port = _first_value(
        _coerce_int(override_map.get("port"), source="overrides"),
        endpoint_port,
        _coerce_int(env_map.get("BATCHPAY_RPC_PORT"), source="environment"),
        _coerce_int(rpc_section.get("port"), source=f"{path} rpc.port"),
        DEFAULT_RPC_PORT,
    )
    resolved_use_https = _first_value(
        _coerce_bool(override_map.get("use_https")),
        endpoint_use_https,
        _coerce_bool(env_map.get("BATCHPAY_RPC_USE_HTTPS")),
        _coerce_bool(rpc_section.get("use_https")),
        False,
    )
    resolved_wallet = _first_value(
        override_map.get("wallet"), env_map.get("BATCHPAY_RPC_WALLET") or None, rpc_section.get("wallet")
    )
    resolved_timeout = _first_value(
        _coerce_float(override_map.get("timeout"), source="overrides", label="timeout"),
        _coerce_float(env_map.get("BATCHPAY_RPC_TIMEOUT"), source="environment", label="timeout"),
        _coerce_float(rpc_section.get("timeout"), source=f"{path} rpc.timeout", label="timeout"),
        DEFAULT_RPC_TIMEOUT,
    )

    return RPCConfig(
        user=resolved_user,
        password=resolved_password,
        host=resolved_host,
        port=resolved_port,
        use_https=bool(resolved_use_https),
        wallet=resolved_wallet,
        timeout=resolved_timeout,
    )


def load_payout_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> PayoutConfig:
    """Load batching limits from the ``payouts`` YAML section and environment."""

    env_map = os.environ if env is None else env
    path, explicit_path = _resolve_config_path(config_path)
    file_config = _load_config_file(path, required=explicit_path)
    section = _section(file_config, "payouts", path)
    override_map = dict(overrides or {})

    resolved: dict[str, int] = {}
    for key, env_name, default in (
        ("max_batch_value", "BATCHPAY_MAX_BATCH_VALUE", DEFAULT_MAX_BATCH_VALUE),
        ("max_outputs", "BATCHPAY_MAX_OUTPUTS", DEFAULT_MAX_OUTPUTS),
        ("unlock_seconds", "BATCHPAY_UNLOCK_SECONDS", DEFAULT_UNLOCK_SECONDS),
    ):
        value = _first_value(
            _coerce_int(override_map.get(key), source="overrides", label=key),
            _coerce_int(env_map.get(env_name), source="environment", label=key),
            _coerce_int(section.get(key), source=f"{path} payouts.{key}", label=key),
            default,
        )
        if value <= 0:
            raise ConfigurationError(f"payouts.{key} must be positive, got {value}")
        resolved[key] = value

    return PayoutConfig(**resolved)
