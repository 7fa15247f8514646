"""
ZKBRIDGE Configuration System

Unified configuration management with YAML files, environment variables
and validation.

Configuration Sources (in order of precedence):
    1. Environment variables (ZKBRIDGE_*)
    2. Runtime overrides and loaded files
    3. Default values

The circuit section must agree with the compiled circuit; changing it
without recompiling yields witnesses the prover rejects.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from zkbridge.hardening import ConfigError

T = TypeVar("T")

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding and validation.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])
        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ConfigError(f"Invalid value for config: {value}")
        self._value = value

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


# =============================================================================
# CIRCUIT PARAMETERS
# =============================================================================

@dataclass(frozen=True)
class CircuitParameters:
    """Static capacities of the compiled claim circuit."""
    max_tx_bytes: int = 512
    merkle_depth: int = 12
    locker_script_bytes: int = 65
    root_slots: int = 2

    @property
    def max_tx_bits(self) -> int:
        return self.max_tx_bytes * 8

    @property
    def max_padded_bits(self) -> int:
        """Padded capacity: ((max_tx_bits + 64) // 512 + 1) * 512."""
        return ((self.max_tx_bits + 64) // 512 + 1) * 512

    @property
    def max_blocks(self) -> int:
        return self.max_padded_bits // 512

    @property
    def locker_script_bits(self) -> int:
        return self.locker_script_bytes * 8


# =============================================================================
# SECTIONS
# =============================================================================

@dataclass
class CircuitConfig:
    """Capacities of the claim circuit."""
    max_tx_bytes: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=512,
        env_var="ZKBRIDGE_CIRCUIT_MAX_TX_BYTES",
        description="Maximum stripped transaction size accepted by the circuit",
        validator=lambda x: 64 <= x <= 1 << 16,
    ))
    merkle_depth: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=12,
        env_var="ZKBRIDGE_CIRCUIT_MERKLE_DEPTH",
        description="Maximum Merkle inclusion proof depth",
        validator=lambda x: 1 <= x <= 32,
    ))
    locker_script_bytes: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=65,
        env_var="ZKBRIDGE_CIRCUIT_LOCKER_SCRIPT_BYTES",
        description="Zero-padded locker script width",
        validator=lambda x: 22 <= x <= 128,
    ))
    root_slots: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=2,
        env_var="ZKBRIDGE_CIRCUIT_ROOT_SLOTS",
        description="Number of candidate Merkle roots in the public inputs",
        validator=lambda x: 1 <= x <= 16,
    ))

    def to_parameters(self) -> CircuitParameters:
        return CircuitParameters(
            max_tx_bytes=self.max_tx_bytes.get(),
            merkle_depth=self.merkle_depth.get(),
            locker_script_bytes=self.locker_script_bytes.get(),
            root_slots=self.root_slots.get(),
        )


@dataclass
class ProviderConfig:
    """Block-data provider (Esplora HTTP API)."""
    base_url: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="https://mempool.space/api",
        env_var="ZKBRIDGE_PROVIDER_URL",
        description="Esplora-compatible API base URL",
        validator=lambda x: x.startswith(("http://", "https://")),
    ))
    timeout_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=15.0,
        env_var="ZKBRIDGE_PROVIDER_TIMEOUT",
        description="HTTP timeout per request",
        validator=lambda x: x > 0,
    ))
    max_attempts: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=4,
        env_var="ZKBRIDGE_PROVIDER_MAX_ATTEMPTS",
        description="Attempts per request on transient failure",
        validator=lambda x: 1 <= x <= 20,
    ))
    base_delay_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=0.5,
        env_var="ZKBRIDGE_PROVIDER_BASE_DELAY",
        description="Initial backoff delay",
        validator=lambda x: x >= 0,
    ))


@dataclass
class ProverConfig:
    """Proof backend selection."""
    backend: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="mock",
        env_var="ZKBRIDGE_PROVER_BACKEND",
        description="Proof backend (mock, snarkjs)",
        validator=lambda x: x in ("mock", "snarkjs"),
    ))
    build_dir: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="zkproof/build",
        env_var="ZKBRIDGE_PROVER_BUILD_DIR",
        description="Directory holding main_js/, circuit_final.zkey, verification_key.json",
    ))
    snarkjs_command: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="npx snarkjs",
        env_var="ZKBRIDGE_SNARKJS",
        description="Command used to invoke snarkjs",
    ))
    node_command: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="node",
        env_var="ZKBRIDGE_NODE",
        description="Node.js executable for witness generation",
    ))
    timeout_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=600,
        env_var="ZKBRIDGE_PROVER_TIMEOUT",
        description="Upper bound for one prove or verify subprocess",
        validator=lambda x: x > 0,
    ))


@dataclass
class ClaimConfig:
    """Destination-ledger claim settings."""
    destination_chain_id: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=137,
        env_var="ZKBRIDGE_CHAIN_ID",
        description="Chain id bound into commitments and claim public signals",
        validator=lambda x: 0 <= x <= 0xFFFF,
    ))


@dataclass
class LoggingConfig:
    level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="ZKBRIDGE_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in LOG_LEVELS,
    ))
    format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="ZKBRIDGE_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class BridgeConfig:
    """Root configuration."""
    circuit: CircuitConfig = field(default_factory=CircuitConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    prover: ProverConfig = field(default_factory=ProverConfig)
    claim: ClaimConfig = field(default_factory=ClaimConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

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
        return yaml.safe_dump(self.to_dict(), default_flow_style=False)


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

        self._config = BridgeConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton; the next access starts from defaults."""
        with cls._lock:
            cls._instance = None

    @property
    def config(self) -> BridgeConfig:
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data:
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration root must be a mapping: {path}")
            self._apply_dict(data)
            self._config_paths.append(path)

    def _apply_dict(self, data: Dict[str, Any], prefix: str = "") -> None:
        """Apply dictionary values to configuration."""
        for key, value in data.items():
            path = f"{prefix}.{key}" if prefix else key
            if isinstance(value, dict):
                self._apply_dict(value, path)
            else:
                self.set(path, value)

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("provider.max_attempts", 6)
        """
        parts = path.split(".")
        obj: Any = self._config

        for part in parts[:-1]:
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)

        attr = getattr(obj, parts[-1], None)
        if isinstance(attr, ConfigValue):
            attr.set(value)
        else:
            raise ConfigError(f"Invalid config path: {path}")

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("claim.destination_chain_id")
        """
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)

        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

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
                except ValueError as e:
                    errors.append(f"{path}: {e}")
                    return
                if obj.validator and not obj.validator(value):
                    errors.append(f"{path}: validation failed for value {value}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


def get_config() -> BridgeConfig:
    """Get the current configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    return ConfigManager()
