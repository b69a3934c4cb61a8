"""
SOULFORGE Configuration System

Unified configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (SOULFORGE_*)
    2. Runtime overrides
    3. User config file (~/.soulforge/config.yaml)
    4. Project config file (./soulforge.yaml)
    5. Default values

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from soulforge.constants import U64_MAX, Cluster

T = TypeVar("T")

CLUSTER_NAMES = tuple(c.value for c in Cluster)
COMMITMENT_LEVELS = ("confirmed", "finalized")


class ConfigError(Exception):
    """Configuration error."""
    pass


class ValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[Optional[T], T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value. Environment overrides are validated like ``set``."""
        if self.env_var and self.env_var in os.environ:
            raw = os.environ[self.env_var]
            try:
                value = self._coerce(raw)
            except ValueError as e:
                raise ValidationError(f"Invalid value for {self.env_var}: {raw!r}") from e
            if self.validator and not self.validator(value):
                raise ValidationError(f"Invalid value for {self.env_var}: {raw!r}")
            return value

        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ValidationError(f"Invalid value for config: {value}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        """Drop any runtime override."""
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        elif target_type == float:
            return float(value)  # type: ignore
        else:
            return value  # type: ignore

    def on_change(self, callback: Callable[[Optional[T], T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


@dataclass
class LedgerConfig:
    """Configuration for the JSON-RPC ledger endpoint."""
    cluster: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default=Cluster.MAINNET_BETA.value,
        env_var="SOULFORGE_CLUSTER",
        description="Target cluster (mainnet-beta, devnet, testnet, localnet)",
        validator=lambda x: x in CLUSTER_NAMES,
    ))
    rpc_url: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="SOULFORGE_RPC_URL",
        description="JSON-RPC endpoint override (empty uses the cluster default)",
    ))
    request_timeout_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=10.0,
        env_var="SOULFORGE_RPC_TIMEOUT",
        description="Per-request HTTP timeout in seconds",
        validator=lambda x: x > 0,
    ))

    def endpoint(self) -> str:
        """Resolved RPC endpoint."""
        return self.rpc_url.get() or Cluster(self.cluster.get()).rpc_url


@dataclass
class CoordinatorConfig:
    """Configuration for the transaction coordinator."""
    commitment: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="confirmed",
        env_var="SOULFORGE_COMMITMENT",
        description="Finality level awaited after submission (confirmed, finalized)",
        validator=lambda x: x in COMMITMENT_LEVELS,
    ))
    confirmation_timeout_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=60.0,
        env_var="SOULFORGE_CONFIRM_TIMEOUT",
        description="Hard bound on the confirmation wait in seconds",
        validator=lambda x: x > 0,
    ))
    poll_interval_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=1.0,
        env_var="SOULFORGE_POLL_INTERVAL",
        description="Delay between status polls in seconds",
        validator=lambda x: x >= 0,
    ))
    skip_preflight: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="SOULFORGE_SKIP_PREFLIGHT",
        description="Skip preflight simulation on submission",
    ))
    check_payer_balance: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=True,
        env_var="SOULFORGE_CHECK_BALANCE",
        description="Check the fee payer balance before requesting a signature",
    ))
    max_raw_amount: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=U64_MAX,
        env_var="SOULFORGE_MAX_RAW_AMOUNT",
        description="Largest raw amount the signer and ledger carry losslessly",
        validator=lambda x: 0 < x <= U64_MAX,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="SOULFORGE_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="SOULFORGE_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class ForgeConfig:
    """
    Root configuration for SOULFORGE.

    Aggregates all component configurations and provides
    loading/saving functionality.
    """
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False)


def apply_dict(config: ForgeConfig, data: Dict[str, Any]) -> None:
    """Apply nested dictionary values to a configuration."""
    def apply_to_config(config_obj: Any, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            if not hasattr(config_obj, key):
                raise ConfigError(f"Unknown configuration key: {key}")
            attr = getattr(config_obj, key)
            if isinstance(attr, ConfigValue):
                attr.set(value)
            elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                apply_to_config(attr, value)

    apply_to_config(config, data)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = ForgeConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @property
    def config(self) -> ForgeConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f)

        if data:
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration file must contain a mapping: {path}")
            apply_dict(self._config, data)
            self._config_paths.append(path)

    def load_defaults(self) -> List[Path]:
        """Load default configuration files if they exist. Returns loaded paths."""
        default_paths = [
            Path("soulforge.yaml"),
            Path("config/soulforge.yaml"),
            Path.home() / ".soulforge" / "config.yaml",
        ]

        loaded = []
        for path in default_paths:
            if path.exists():
                self.load_from_file(path)
                loaded.append(path)
        return loaded

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("coordinator.confirmation_timeout_seconds", 30.0)
        """
        parts = path.split(".")
        obj = self._config

        for part in parts[:-1]:
            obj = getattr(obj, part)

        attr = getattr(obj, parts[-1], None)
        if isinstance(attr, ConfigValue):
            attr.set(value)
        else:
            raise ConfigError(f"Invalid config path: {path}")

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("ledger.cluster")
        """
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)

        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def reset(self) -> None:
        """Restore defaults and forget loaded files."""
        self._config = ForgeConfig()
        self._config_paths = []

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value}")
                except (ConfigError, TypeError, ValueError) as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors


def get_config() -> ForgeConfig:
    """Get the current SOULFORGE configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
