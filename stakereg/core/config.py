"""
Registry Configuration System

Unified configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (STAKEREG_*)
    2. Runtime overrides
    3. User config file (~/.stakereg/config.yaml)
    4. Project config file (./stakereg.yaml, ./config/stakereg.yaml)
    5. Default values

YAML documents are checked against CONFIG_FILE_SCHEMA (jsonschema) before
any value is applied, so a typo in a section or key name is an error rather
than a silently ignored setting.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar, Union

import yaml
from jsonschema import Draft202012Validator

T = TypeVar("T")

WEI_PER_GWEI = 10**9


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    One tunable setting.

    The environment variable, when bound and present, beats any value set at
    runtime or loaded from a file; the default applies when neither exists.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[T, T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        raw = os.environ.get(self.env_var) if self.env_var else None
        if raw is not None:
            return self._from_env(raw)
        if self._value is None:
            return self.default
        return self._value

    def set(self, value: T) -> None:
        """Validate and store `value`, then notify callbacks with (old, new)."""
        if self.validator is not None and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value!r}")
        previous, self._value = self._value, value
        for callback in self._callbacks:
            callback(previous, value)

    def reset(self) -> None:
        self._value = None

    def _from_env(self, raw: str) -> T:
        if isinstance(self.default, bool):
            return raw.strip().lower() in ("1", "true", "yes", "on")  # type: ignore
        if isinstance(self.default, int):
            # base 0 accepts 0x-prefixed values
            return int(raw, 0)  # type: ignore
        return raw  # type: ignore

    def on_change(self, callback: Callable[[T, T], None]) -> None:
        self._callbacks.append(callback)


def _is_int(x: Any) -> bool:
    return isinstance(x, int) and not isinstance(x, bool)


def _is_section(obj: Any) -> bool:
    return hasattr(obj, "__dataclass_fields__")


def _walk(obj: Any, prefix: str = "") -> Iterator[Tuple[str, ConfigValue]]:
    """Yield (dotted path, ConfigValue) for every leaf under `obj`."""
    for name in obj.__dataclass_fields__:
        child = getattr(obj, name)
        path = f"{prefix}.{name}" if prefix else name
        if isinstance(child, ConfigValue):
            yield path, child
        elif _is_section(child):
            yield from _walk(child, path)


def _nest(pairs: Iterator[Tuple[str, Any]]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for path, value in pairs:
        *parents, leaf = path.split(".")
        node = out
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return out


@dataclass
class CollateralConfig:
    """Collateral bounds."""
    min_collateral_wei: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10**17,
        env_var="STAKEREG_MIN_COLLATERAL_WEI",
        description="Minimum collateral escrowed at registration, in wei",
        validator=lambda x: _is_int(x) and x >= WEI_PER_GWEI,
    ))
    max_collateral_gwei: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=2**80 - 1,
        env_var="STAKEREG_MAX_COLLATERAL_GWEI",
        description="Upper bound on a single operator's collateral, in gwei",
        validator=lambda x: _is_int(x) and x > 0,
    ))


@dataclass
class TimingConfig:
    """Window and delay lengths, in ledger heights."""
    fraud_proof_window: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=7200,
        env_var="STAKEREG_FRAUD_PROOF_WINDOW",
        description="Heights after registration during which fraud proofs are accepted",
        validator=lambda x: _is_int(x) and x > 0,
    ))
    min_unregistration_delay: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=7200,
        env_var="STAKEREG_MIN_UNREGISTRATION_DELAY",
        description="Smallest unregistration delay an operator may choose",
        validator=lambda x: _is_int(x) and x > 0,
    ))
    seconds_per_block: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=12,
        env_var="STAKEREG_SECONDS_PER_BLOCK",
        description="Timestamp increment per height used by LedgerClock.advance",
        validator=lambda x: _is_int(x) and x > 0,
    ))


@dataclass
class SigningConfig:
    """Signature scheme and registration domain."""
    scheme: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="bls12-381",
        env_var="STAKEREG_SIGNATURE_SCHEME",
        description="Signature scheme (bls12-381, ed25519)",
        validator=lambda x: x in ("bls12-381", "ed25519"),
    ))
    registration_domain: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="stakereg/registration/v1",
        env_var="STAKEREG_REGISTRATION_DOMAIN",
        description="Domain separator for registration signatures",
        validator=lambda x: isinstance(x, str) and 0 < len(x.encode()) <= 255,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="STAKEREG_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="STAKEREG_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class RegistryConfig:
    """Root of the configuration tree; one attribute per section."""
    collateral: CollateralConfig = field(default_factory=CollateralConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    signing: SigningConfig = field(default_factory=SigningConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Effective values, nested by section."""
        return _nest((path, value.get()) for path, value in _walk(self))

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=True)


def _json_type(default: Any) -> str:
    if isinstance(default, bool):
        return "boolean"
    if _is_int(default):
        return "integer"
    return "string"


def build_config_file_schema() -> Dict[str, Any]:
    """JSON Schema for YAML configuration documents.

    Derived from the dataclass tree so a new setting never needs a schema
    edit. Unknown sections and keys are rejected.
    """
    root = RegistryConfig()
    sections: Dict[str, Any] = {}
    for path, value in _walk(root):
        section, key = path.split(".", 1)
        entry = sections.setdefault(
            section, {"type": "object", "properties": {}, "additionalProperties": False}
        )
        entry["properties"][key] = {"type": _json_type(value.default)}
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "properties": sections,
        "additionalProperties": False,
    }


CONFIG_FILE_SCHEMA = build_config_file_schema()


def validate_config_document(data: Any) -> List[str]:
    """Return schema errors for a configuration document (empty when valid)."""
    validator = Draft202012Validator(CONFIG_FILE_SCHEMA)
    return [
        f"{list(e.absolute_path)}: {e.message}"
        for e in sorted(validator.iter_errors(data), key=str)
    ]


class ConfigManager:
    """
    Process-wide holder of the registry configuration.

    A singleton: every `ConfigManager()` call returns the same instance
    until `reset()` drops it.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._config = RegistryConfig()
                instance._config_paths = []
                instance._watchers = []
                cls._instance = instance
            return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next ConfigManager() starts from defaults."""
        with cls._lock:
            cls._instance = None

    @property
    def config(self) -> RegistryConfig:
        return self._config

    @property
    def loaded_paths(self) -> List[Path]:
        return list(self._config_paths)

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Apply a YAML document. Nothing is applied unless it passes the schema."""
        path = Path(path)
        if not path.is_file():
            raise ConfigError(f"Configuration file not found: {path}")
        try:
            data = yaml.safe_load(path.read_text())
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if not data:
            return
        errors = validate_config_document(data)
        if errors:
            raise ConfigValidationError(f"{path}: " + "; ".join(errors))
        for section, values in data.items():
            for key, value in values.items():
                self.set(f"{section}.{key}", value)
        self._config_paths.append(path)

    def load_defaults(self) -> None:
        """Apply whichever of the standard config files exist.

        Project files first, then the user file, so the user file wins.
        """
        for path in (
            Path("stakereg.yaml"),
            Path("config") / "stakereg.yaml",
            Path.home() / ".stakereg" / "config.yaml",
        ):
            if path.is_file():
                self.load_from_file(path)

    def _lookup(self, path: str) -> Any:
        node: Any = self._config
        for part in path.split("."):
            if not _is_section(node) or part not in node.__dataclass_fields__:
                raise ConfigError(f"Invalid config path: {path}")
            node = getattr(node, part)
        return node

    def set(self, path: str, value: Any) -> None:
        """Set one setting, e.g. ``set("timing.fraud_proof_window", 100)``."""
        node = self._lookup(path)
        if not isinstance(node, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        node.set(value)

    def get(self, path: str) -> Any:
        """Effective value of a setting, or the section object for a section path."""
        node = self._lookup(path)
        return node.get() if isinstance(node, ConfigValue) else node

    def watch(self, callback: Callable[[RegistryConfig], None]) -> None:
        """Call `callback` with the config after every reload()."""
        self._watchers.append(callback)

    def reload(self) -> None:
        """Re-read every file loaded so far, in the original order."""
        paths, self._config_paths = self._config_paths, []
        for path in paths:
            if path.is_file():
                self.load_from_file(path)
        for watcher in self._watchers:
            watcher(self._config)

    def validate(self) -> List[str]:
        """Return every problem with the effective values (empty when valid)."""
        errors: List[str] = []
        for path, setting in _walk(self._config):
            try:
                value = setting.get()
            except ValueError as e:
                errors.append(f"{path}: {e}")
                continue
            if setting.validator is not None and not setting.validator(value):
                errors.append(f"{path}: validation failed for value {value}")
        if errors:
            return errors

        window = self.get("timing.fraud_proof_window")
        delay = self.get("timing.min_unregistration_delay")
        if delay < window:
            errors.append(
                "timing.min_unregistration_delay: must be >= timing.fraud_proof_window "
                f"({delay} < {window})"
            )
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Describe every setting: type, default, description and env var."""
        def describe(setting: ConfigValue) -> Dict[str, Any]:
            info = {
                "type": type(setting.default).__name__,
                "default": str(setting.default),
                "description": setting.description,
            }
            if setting.env_var:
                info["env_var"] = setting.env_var
            return info

        return {"properties": _nest((p, describe(v)) for p, v in _walk(self._config))}


@dataclass(frozen=True)
class RegistryParameters:
    """Immutable values a ledger is constructed with."""
    min_collateral_wei: int = 10**17
    max_collateral_gwei: int = 2**80 - 1
    fraud_proof_window: int = 7200
    min_unregistration_delay: int = 7200
    registration_domain: bytes = b"stakereg/registration/v1"

    def __post_init__(self):
        if self.min_collateral_wei < WEI_PER_GWEI:
            raise ConfigValidationError("min_collateral_wei must be at least 1 gwei")
        if self.max_collateral_gwei <= 0:
            raise ConfigValidationError("max_collateral_gwei must be positive")
        if self.fraud_proof_window <= 0 or self.min_unregistration_delay <= 0:
            raise ConfigValidationError("window and delay must be positive")
        if not self.registration_domain or len(self.registration_domain) > 255:
            raise ConfigValidationError("registration_domain must be 1..255 bytes")

    @property
    def min_collateral_gwei(self) -> int:
        return self.min_collateral_wei // WEI_PER_GWEI

    @classmethod
    def from_config(cls, manager: Optional[ConfigManager] = None) -> "RegistryParameters":
        """Freeze the current configuration, refusing inconsistent values."""
        manager = manager or ConfigManager()
        errors = manager.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))
        return cls(
            min_collateral_wei=manager.get("collateral.min_collateral_wei"),
            max_collateral_gwei=manager.get("collateral.max_collateral_gwei"),
            fraud_proof_window=manager.get("timing.fraud_proof_window"),
            min_unregistration_delay=manager.get("timing.min_unregistration_delay"),
            registration_domain=manager.get("signing.registration_domain").encode("utf-8"),
        )


def get_config() -> RegistryConfig:
    """Get the current registry configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
