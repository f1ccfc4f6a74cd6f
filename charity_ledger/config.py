"""
Charity Ledger Configuration

Length limits, the vault reserve, the rent schedule and logging options are
configuration, not compile-time globals. ``LedgerConfig`` is immutable and is
handed to the validator and program at construction.

Configuration Sources (in order of precedence):
    1. Environment variables (CHARITY_LEDGER_*)
    2. Keyword overrides passed to load_config()
    3. YAML config file
    4. Default values

Loaded mappings are checked against the bundled JSON Schema
(schemas/ledger-config.schema.json) before a LedgerConfig is built.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, TypeVar, Union

import yaml
from jsonschema import Draft202012Validator

from charity_ledger.derivation import MAX_SEED_LEN, PROGRAM_ID
from charity_ledger.errors import ConfigError
from charity_ledger.keys import Address

T = TypeVar("T")

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "ledger-config.schema.json"
ENV_PREFIX = "CHARITY_LEDGER_"


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Binds a default to an environment variable and a validator.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None

    def from_env(self, env: Mapping[str, str]) -> Optional[T]:
        """Read and coerce the bound environment variable, if set."""
        if self.env_var and self.env_var in env:
            return self._coerce(env[self.env_var])
        return None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            try:
                return int(value)  # type: ignore
            except ValueError as e:
                raise ConfigError(f"{self.env_var}: expected integer, got {value!r}") from e
        else:
            return value  # type: ignore


CONFIG_VALUES: Dict[str, ConfigValue] = {
    "name_max": ConfigValue(
        default=32,
        env_var=ENV_PREFIX + "NAME_MAX",
        description="Maximum charity name length in UTF-8 bytes",
        validator=lambda x: 1 <= x <= MAX_SEED_LEN,
    ),
    "description_max": ConfigValue(
        default=256,
        env_var=ENV_PREFIX + "DESCRIPTION_MAX",
        description="Maximum charity description length in UTF-8 bytes",
        validator=lambda x: 1 <= x <= 10240,
    ),
    "min_reserve": ConfigValue(
        default=890_880,
        env_var=ENV_PREFIX + "MIN_RESERVE",
        description="Lamports a vault must retain after any withdrawal",
        validator=lambda x: x >= 0,
    ),
    "rent_lamports_per_byte_year": ConfigValue(
        default=3480,
        env_var=ENV_PREFIX + "RENT_PER_BYTE_YEAR",
        description="Rent rate in lamports per byte-year",
        validator=lambda x: x >= 0,
    ),
    "rent_exemption_years": ConfigValue(
        default=2,
        env_var=ENV_PREFIX + "RENT_EXEMPTION_YEARS",
        description="Years of rent an account deposit must cover",
        validator=lambda x: x >= 0,
    ),
    "account_storage_overhead": ConfigValue(
        default=128,
        env_var=ENV_PREFIX + "STORAGE_OVERHEAD",
        description="Bytes charged per account on top of its data",
        validator=lambda x: x >= 0,
    ),
    "max_derivation_attempts": ConfigValue(
        default=256,
        env_var=ENV_PREFIX + "MAX_DERIVATION_ATTEMPTS",
        description="Bound on the off-curve bump search",
        validator=lambda x: 1 <= x <= 256,
    ),
    "program_id": ConfigValue(
        default=str(PROGRAM_ID),
        env_var=ENV_PREFIX + "PROGRAM_ID",
        description="Base58 address of the ledger program",
    ),
    "log_level": ConfigValue(
        default="info",
        env_var=ENV_PREFIX + "LOG_LEVEL",
        description="Log level (debug, info, warning, error, critical)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ),
    "log_format": ConfigValue(
        default="json",
        env_var=ENV_PREFIX + "LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ),
}


@dataclass(frozen=True)
class LedgerConfig:
    """Immutable ledger configuration."""
    name_max: int = CONFIG_VALUES["name_max"].default
    description_max: int = CONFIG_VALUES["description_max"].default
    min_reserve: int = CONFIG_VALUES["min_reserve"].default
    rent_lamports_per_byte_year: int = CONFIG_VALUES["rent_lamports_per_byte_year"].default
    rent_exemption_years: int = CONFIG_VALUES["rent_exemption_years"].default
    account_storage_overhead: int = CONFIG_VALUES["account_storage_overhead"].default
    max_derivation_attempts: int = CONFIG_VALUES["max_derivation_attempts"].default
    program_id: str = CONFIG_VALUES["program_id"].default
    log_level: str = CONFIG_VALUES["log_level"].default
    log_format: str = CONFIG_VALUES["log_format"].default
    _program_address: Address = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        errors: List[str] = []
        for f in fields(self):
            if not f.init:
                continue
            value = getattr(self, f.name)
            spec = CONFIG_VALUES[f.name]
            if type(value) is not type(spec.default):
                errors.append(f"{f.name}: expected {type(spec.default).__name__}, got {type(value).__name__}")
            elif spec.validator and not spec.validator(value):
                errors.append(f"{f.name}: invalid value {value!r}")
        try:
            address = Address.from_string(self.program_id)
        except (ValueError, TypeError, AttributeError):
            errors.append(f"program_id: not a 32-byte base58 address: {self.program_id!r}")
            address = None
        if errors:
            raise ConfigError("Invalid configuration: " + "; ".join(errors))
        object.__setattr__(self, "_program_address", address)

    @property
    def program_address(self) -> Address:
        return self._program_address

    def minimum_balance(self, data_len: int) -> int:
        """Rent-exempt deposit for an account holding ``data_len`` bytes."""
        return (
            (self.account_storage_overhead + data_len)
            * self.rent_lamports_per_byte_year
            * self.rent_exemption_years
        )

    def replace(self, **changes: Any) -> "LedgerConfig":
        values = self.to_dict()
        values.update(changes)
        return LedgerConfig(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if not k.startswith("_")}

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=True)


@lru_cache(maxsize=1)
def config_schema() -> Dict[str, Any]:
    """The JSON Schema that config files must satisfy."""
    with open(SCHEMA_PATH, encoding="utf-8") as f:
        return json.load(f)


def validate_config_mapping(data: Mapping[str, Any]) -> List[str]:
    """Validate a raw config mapping. Returns error messages (empty if valid)."""
    validator = Draft202012Validator(config_schema())
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(dict(data)), key=lambda e: e.json_path)
    ]


def load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML config file into a mapping."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {path}")
    # Allow nesting under a top-level `ledger:` key.
    if set(data) == {"ledger"} and isinstance(data["ledger"], dict):
        data = data["ledger"]
    return data


def load_config(
    path: Optional[Union[str, Path]] = None,
    env: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> LedgerConfig:
    """
    Build a LedgerConfig from file, overrides and environment.

    Raises ConfigError listing every schema violation.
    """
    env = os.environ if env is None else env
    merged: Dict[str, Any] = {}

    if path is not None:
        merged.update(load_config_file(path))
    merged.update(overrides)
    for key, spec in CONFIG_VALUES.items():
        value = spec.from_env(env)
        if value is not None:
            merged[key] = value

    errors = validate_config_mapping(merged)
    if errors:
        raise ConfigError("Invalid configuration: " + "; ".join(errors))

    return LedgerConfig(**merged)


def export_schema() -> Dict[str, Any]:
    """Configuration reference for documentation and the CLI."""
    return {
        key: {
            "type": type(spec.default).__name__,
            "default": spec.default,
            "env_var": spec.env_var,
            "description": spec.description,
        }
        for key, spec in CONFIG_VALUES.items()
    }
