"""config/keeper_config.py

Keeper configuration schema and loader.

Sources, lowest to highest precedence:
- dataclass defaults
- optional YAML mapping (--config)
- environment variables

Implements manual validation to avoid Pydantic dependency.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml


DEFAULT_PRIMARY_RPC_URL = "https://api.mainnet-beta.solana.com"
DEFAULT_FALLBACK_RPC_URL = "https://solana-api.projectserum.com"


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class KeeperConfig:
    """
    Static keeper parameters, read once at startup.
    """
    # Target accounts (base58)
    program_id: str
    slab_address: str
    oracle_address: str

    # Endpoints (primary first)
    primary_rpc_url: str = DEFAULT_PRIMARY_RPC_URL
    fallback_rpc_urls: Tuple[str, ...] = (DEFAULT_FALLBACK_RPC_URL,)
    commitment: str = "confirmed"
    probe_timeout_seconds: float = 5.0
    rpc_timeout_seconds: float = 10.0

    # Scheduler
    poll_interval_seconds: float = 5.0
    max_staleness_slots: int = 15  # 15 slots ~ 6 seconds

    # Executor
    max_attempts: int = 5
    max_fee_lamports: int = 5_000_000  # 0.005 SOL
    retry_base_delay_seconds: float = 1.0
    blockhash_expiry_threshold: int = 3
    blockhash_penalty_seconds: float = 30.0

    # Account layout (operator supplied, no built-in offsets)
    slab_last_crank_offset: Optional[int] = None
    oracle_slot_offset: Optional[int] = None

    # Reporting
    metrics_report_interval_seconds: float = 60.0
    metrics_csv_path: Optional[str] = None
    alerts_enabled: bool = False

    def __post_init__(self):
        for name in ("program_id", "slab_address", "oracle_address", "primary_rpc_url"):
            if not getattr(self, name):
                raise ConfigError(f"{name} is required")
        if self.commitment not in ("processed", "confirmed", "finalized"):
            raise ConfigError(f"commitment must be one of processed|confirmed|finalized, got: {self.commitment}")

        self._validate_range("probe_timeout_seconds", self.probe_timeout_seconds, 0.1, 60.0)
        self._validate_range("rpc_timeout_seconds", self.rpc_timeout_seconds, 0.1, 120.0)
        self._validate_range("poll_interval_seconds", self.poll_interval_seconds, 0.1, None)
        self._validate_range("max_staleness_slots", self.max_staleness_slots, 1, None)
        self._validate_range("max_attempts", self.max_attempts, 1, 20)
        self._validate_range("max_fee_lamports", self.max_fee_lamports, 0, None)
        self._validate_range("retry_base_delay_seconds", self.retry_base_delay_seconds, 0.0, 60.0)
        self._validate_range("blockhash_expiry_threshold", self.blockhash_expiry_threshold, 1, None)
        self._validate_range("blockhash_penalty_seconds", self.blockhash_penalty_seconds, 0.0, 600.0)
        self._validate_range("metrics_report_interval_seconds", self.metrics_report_interval_seconds, 1.0, None)

        if self.slab_last_crank_offset is not None:
            self._validate_range("slab_last_crank_offset", self.slab_last_crank_offset, 0, None)
        if self.oracle_slot_offset is not None:
            self._validate_range("oracle_slot_offset", self.oracle_slot_offset, 0, None)

    def _validate_range(self, name: str, value: Any, min_val: float, max_val: Optional[float] = None) -> None:
        try:
            val = float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{name} must be numeric, got {value!r}")

        if val < min_val:
            raise ConfigError(f"{name} {val} is below minimum {min_val}")
        if max_val is not None and val > max_val:
            raise ConfigError(f"{name} {val} is above maximum {max_val}")

    @property
    def endpoints(self) -> Tuple[str, ...]:
        """Primary first, then fallbacks in configured order, without duplicates."""
        ordered = []
        for url in (self.primary_rpc_url, *self.fallback_rpc_urls):
            if url and url not in ordered:
                ordered.append(url)
        return tuple(ordered)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_urls(value: str) -> Tuple[str, ...]:
    return tuple(u.strip() for u in value.split(",") if u.strip())


# env var -> (field, parser)
_ENV_FIELDS = {
    "PRIMARY_RPC_URL": ("primary_rpc_url", str),
    "FALLBACK_RPC_URL": ("fallback_rpc_urls", _parse_urls),
    "CRANK_CHECK_INTERVAL_MS": ("poll_interval_seconds", lambda v: int(v) / 1000.0),
    "PERCOLATOR_PROGRAM_ID": ("program_id", str),
    "PERCOLATOR_SLAB": ("slab_address", str),
    "ORACLE_ACCOUNT": ("oracle_address", str),
    "MAX_STALENESS_SLOTS": ("max_staleness_slots", int),
    "MAX_RETRIES": ("max_attempts", int),
    "MAX_FEE_LAMPORTS": ("max_fee_lamports", int),
    "SLAB_LAST_CRANK_OFFSET": ("slab_last_crank_offset", int),
    "ORACLE_SLOT_OFFSET": ("oracle_slot_offset", int),
    "METRICS_REPORT_INTERVAL_SEC": ("metrics_report_interval_seconds", float),
    "METRICS_CSV_PATH": ("metrics_csv_path", str),
    "CRANK_ALERTS_ENABLED": ("alerts_enabled", _parse_bool),
}


# field -> (accepted YAML types, parser for string values)
_YAML_FIELDS: Dict[str, Tuple[Tuple[type, ...], Any]] = {
    "program_id": ((str,), str),
    "slab_address": ((str,), str),
    "oracle_address": ((str,), str),
    "primary_rpc_url": ((str,), str),
    "fallback_rpc_urls": ((list, tuple), _parse_urls),
    "commitment": ((str,), str),
    "probe_timeout_seconds": ((int, float), float),
    "rpc_timeout_seconds": ((int, float), float),
    "poll_interval_seconds": ((int, float), float),
    "max_staleness_slots": ((int,), int),
    "max_attempts": ((int,), int),
    "max_fee_lamports": ((int,), int),
    "retry_base_delay_seconds": ((int, float), float),
    "blockhash_expiry_threshold": ((int,), int),
    "blockhash_penalty_seconds": ((int, float), float),
    "slab_last_crank_offset": ((int,), int),
    "oracle_slot_offset": ((int,), int),
    "metrics_report_interval_seconds": ((int, float), float),
    "metrics_csv_path": ((str,), str),
    "alerts_enabled": ((bool,), _parse_bool),
}


def _coerce_yaml_value(name: str, value: Any) -> Any:
    """Coerce one YAML value to its field type, with the same string parsers as env vars."""
    types, parse = _YAML_FIELDS[name]
    if isinstance(value, bool) and bool not in types:
        raise ConfigError(f"{name} must not be a boolean, got {value!r}")
    if isinstance(value, types):
        if name == "fallback_rpc_urls":
            if not all(isinstance(u, str) for u in value):
                raise ConfigError(f"{name} must be a list of URLs, got {value!r}")
            return tuple(value)
        return value
    if isinstance(value, str):
        try:
            return parse(value)
        except ValueError:
            raise ConfigError(f"{name} has invalid value: {value!r}")
    raise ConfigError(f"{name} has wrong type {type(value).__name__}: {value!r}")


def _read_yaml(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config not found: {p}")

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read config {p}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {p}: {e}")

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{p} must be a YAML mapping (dict at top-level)")

    unknown = sorted(str(k) for k in raw if k not in _YAML_FIELDS)
    if unknown:
        raise ConfigError(f"Unknown config keys in {p}: {', '.join(unknown)}")

    # null means "not set": the dataclass default applies
    return {name: _coerce_yaml_value(name, value) for name, value in raw.items() if value is not None}


def load_keeper_config(
    path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> KeeperConfig:
    """Load keeper config from an optional YAML file plus environment overrides.

    Args:
        path: Optional path to a YAML mapping whose keys are KeeperConfig fields.
        env: Environment mapping (defaults to os.environ).

    Returns:
        Validated KeeperConfig.

    Raises:
        ConfigError: If the file is invalid, a value does not parse, or a
            required field is missing.
    """
    if env is None:
        env = os.environ

    values: Dict[str, Any] = _read_yaml(path) if path else {}

    for var, (name, parse) in _ENV_FIELDS.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        try:
            values[name] = parse(raw)
        except ValueError:
            raise ConfigError(f"{var} has invalid value: {raw!r}")

    for name in ("program_id", "slab_address", "oracle_address"):
        if not values.get(name):
            raise ConfigError(f"Missing required setting: {name}")

    try:
        return KeeperConfig(**values)
    except TypeError as e:
        raise ConfigError(str(e))
