"""
Keyvault Configuration System

Configuration for the program and its in-process host ledger, with YAML files,
environment variables and validation.

Configuration Sources (in order of precedence):
    1. Environment variables (KEYVAULT_*)
    2. Runtime overrides
    3. User config file (~/.keyvault/config.yaml)
    4. Project config file (./keyvault.yaml)
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

T = TypeVar("T")


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
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
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])
        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator:
            try:
                ok = self.validator(value)
            except (TypeError, ValueError) as e:
                raise ConfigValidationError(f"Invalid value for config: {value!r}") from e
            if not ok:
                raise ConfigValidationError(f"Invalid value for config: {value}")

        old_value = self._value
        self._value = value
        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
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
        return value  # type: ignore

    def on_change(self, callback: Callable[[Optional[T], T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


@dataclass
class RentConfig:
    """Host ledger rent parameters used for minimum retained balances."""
    lamports_per_byte_year: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=3480,
        env_var="KEYVAULT_RENT_LAMPORTS_PER_BYTE_YEAR",
        description="Rent rate in lamports per byte-year",
        validator=lambda x: x >= 0,
    ))
    exemption_threshold: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=2.0,
        env_var="KEYVAULT_RENT_EXEMPTION_THRESHOLD",
        description="Years of rent an account must hold to be exempt",
        validator=lambda x: x >= 0,
    ))
    account_storage_overhead: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=128,
        env_var="KEYVAULT_RENT_STORAGE_OVERHEAD",
        description="Bytes charged per account on top of its data",
        validator=lambda x: x >= 0,
    ))


@dataclass
class ProgramConfig:
    """Vault program limits."""
    max_account_size: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10176,
        env_var="KEYVAULT_MAX_ACCOUNT_SIZE",
        description="Storage ceiling for a vault account in bytes",
        validator=lambda x: x > 0,
    ))


@dataclass
class LedgerConfig:
    """In-process host ledger limits."""
    max_permitted_data_increase: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10240,
        env_var="KEYVAULT_LEDGER_MAX_DATA_INCREASE",
        description="Maximum growth of one account within a single call",
        validator=lambda x: x > 0,
    ))
    max_permitted_data_length: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10 * 1024 * 1024,  # 10MiB
        env_var="KEYVAULT_LEDGER_MAX_DATA_LENGTH",
        description="Maximum length of any account",
        validator=lambda x: x > 0,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for logging."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="KEYVAULT_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="KEYVAULT_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class KeyvaultConfig:
    """
    Root configuration.

    Aggregates all component configurations and provides
    dictionary/YAML export.
    """
    rent: RentConfig = field(default_factory=RentConfig)
    program: ProgramConfig = field(default_factory=ProgramConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
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

        self._config = KeyvaultConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @property
    def config(self) -> KeyvaultConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data:
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration file must contain a mapping: {path}")
            self._apply_dict(data)
            self._config_paths.append(path)

    def load_defaults(self) -> None:
        """Load default configuration files if they exist."""
        default_paths = [
            Path("keyvault.yaml"),
            Path("config/keyvault.yaml"),
            Path.home() / ".keyvault" / "config.yaml",
        ]

        for path in default_paths:
            if path.exists():
                self.load_from_file(path)

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {prefix}{key}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{prefix}{key}.")

        apply_to_config(self._config, data, "")

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("program.max_account_size", 4096)
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

        Example: config.get("rent.exemption_threshold")
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
        """Drop runtime overrides and loaded files, returning to defaults."""
        self._config = KeyvaultConfig()
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
                except (TypeError, ValueError) as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors


def get_config() -> KeyvaultConfig:
    """Get the current keyvault configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
