"""
Configuration loading and credential lookup for the pie portfolio engine.

This module loads refresh settings from YAML files, resolves broker API keys
from the environment, and provides the credential store used to look up a
user's broker key before a refresh.
"""

import os
from abc import ABC, abstractmethod
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import dotenv_values

from pie_pilot.models import DuplicateCategoryPolicy, PieAllocation, RefreshSettings


# Default paths for configuration files
PROJECT_ROOT = Path(__file__).parent.parent.parent
DEFAULT_ENV_FILE = PROJECT_ROOT / ".env"
DEFAULT_API_KEYS_FILE = PROJECT_ROOT / "config" / "api_keys.yaml"

TRADING212_SERVICE = "trading212"

# Environment variable / YAML key per service
_SERVICE_KEYS = {
    TRADING212_SERVICE: ("TRADING212_API_KEY", "trading212_api_key"),
}


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


class MissingCredentialError(ConfigurationError):
    """Raised when a user has no API key configured for a service."""

    def __init__(self, user_id: Optional[str], service_name: str):
        self.user_id = user_id
        self.service_name = service_name
        super().__init__(
            f"{service_name} API key is not configured for user {user_id or '<default>'}"
        )


def load_api_keys(
    env_file: str | Path | None = None,
    api_keys_file: str | Path | None = None,
) -> dict[str, str]:
    """
    Load API keys from multiple sources with priority.

    Sources are checked in this order (later sources override earlier):
    1. config/api_keys.yaml file
    2. .env file in project root
    3. Environment variables

    Args:
        env_file: Path to .env file (defaults to project root .env)
        api_keys_file: Path to api_keys.yaml (defaults to config/api_keys.yaml)

    Returns:
        Dictionary keyed by service name (e.g. "trading212")
    """
    api_keys: dict[str, str] = {}

    yaml_path = Path(api_keys_file) if api_keys_file else DEFAULT_API_KEYS_FILE
    if yaml_path.exists():
        try:
            with open(yaml_path, "r") as f:
                yaml_config = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            raise ConfigurationError(f"Cannot read API keys file {yaml_path}: {e}")
        if isinstance(yaml_config, dict):
            for service, (_, yaml_key) in _SERVICE_KEYS.items():
                if yaml_config.get(yaml_key):
                    api_keys[service] = str(yaml_config[yaml_key])

    env_path = Path(env_file) if env_file else DEFAULT_ENV_FILE
    if env_path.exists():
        env_values = dotenv_values(env_path)
        for service, (env_key, _) in _SERVICE_KEYS.items():
            if env_values.get(env_key):
                api_keys[service] = str(env_values[env_key])

    for service, (env_key, _) in _SERVICE_KEYS.items():
        if os.environ.get(env_key):
            api_keys[service] = os.environ[env_key]

    return api_keys


class CredentialStore(ABC):
    """Source of per-user decrypted API keys."""

    @abstractmethod
    def get_user_api_key(self, user_id: str, service_name: str) -> Optional[str]:
        """
        Look up a user's key for a service.

        Returns:
            The key, or None if the user has not configured one
        """
        pass

    def require_api_key(self, user_id: str, service_name: str) -> str:
        """
        Like get_user_api_key, but raises when the key is absent.

        Raises:
            MissingCredentialError: If no key is configured
        """
        key = self.get_user_api_key(user_id, service_name)
        if not key:
            raise MissingCredentialError(user_id, service_name)
        return key


class EnvCredentialStore(CredentialStore):
    """
    Single-user credential store backed by the configuration sources.

    Every user id resolves to the same keys, which suits the CLI.
    """

    def __init__(
        self,
        env_file: str | Path | None = None,
        api_keys_file: str | Path | None = None,
    ):
        self._env_file = env_file
        self._api_keys_file = api_keys_file

    def get_user_api_key(self, user_id: str, service_name: str) -> Optional[str]:
        keys = load_api_keys(self._env_file, self._api_keys_file)
        return keys.get(service_name)


class StaticCredentialStore(CredentialStore):
    """In-memory credential store keyed by (user_id, service_name)."""

    def __init__(self, keys: Optional[dict[tuple[str, str], str]] = None):
        self._keys = dict(keys or {})

    def set_user_api_key(self, user_id: str, service_name: str, api_key: str) -> None:
        self._keys[(user_id, service_name)] = api_key

    def get_user_api_key(self, user_id: str, service_name: str) -> Optional[str]:
        return self._keys.get((user_id, service_name))


def load_refresh_settings(config_path: str | Path) -> RefreshSettings:
    """
    Load refresh settings from a YAML file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        RefreshSettings with validated values

    Raises:
        ConfigurationError: If the file cannot be loaded or is invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}")

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigurationError("Configuration file must contain a mapping")

    return parse_refresh_settings(raw_config)


def parse_refresh_settings(raw: dict[str, Any]) -> RefreshSettings:
    """
    Parse and validate a raw configuration dictionary.

    Unknown keys are rejected so typos surface early.

    Raises:
        ConfigurationError: If a value is missing its expected type or range
    """
    defaults = RefreshSettings()
    known = set(defaults.__dataclass_fields__)
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(f"Unknown configuration fields: {sorted(unknown)}")

    deadline_raw = raw.get("deadline_seconds", defaults.deadline_seconds)
    deadline = None
    if deadline_raw is not None:
        deadline = _parse_float(deadline_raw, "deadline_seconds", min_val=0.0)

    policy_raw = str(raw.get("duplicate_category_policy", defaults.duplicate_category_policy.value))
    try:
        policy = DuplicateCategoryPolicy(policy_raw.lower())
    except ValueError:
        choices = ", ".join(p.value for p in DuplicateCategoryPolicy)
        raise ConfigurationError(
            f"Invalid duplicate_category_policy: {policy_raw}. Expected one of: {choices}"
        )

    return RefreshSettings(
        monthly_budget=_parse_decimal(
            raw.get("monthly_budget", defaults.monthly_budget),
            "monthly_budget",
            min_val=Decimal("0"),
        ),
        country=str(raw.get("country", defaults.country)),
        inter_pie_delay=_parse_float(
            raw.get("inter_pie_delay", defaults.inter_pie_delay), "inter_pie_delay", min_val=0.0
        ),
        request_delay=_parse_float(
            raw.get("request_delay", defaults.request_delay), "request_delay", min_val=0.0
        ),
        request_retries=_parse_int(
            raw.get("request_retries", defaults.request_retries), "request_retries", min_val=0
        ),
        request_timeout=_parse_float(
            raw.get("request_timeout", defaults.request_timeout), "request_timeout", min_val=0.1
        ),
        cache_ttl_seconds=_parse_int(
            raw.get("cache_ttl_seconds", defaults.cache_ttl_seconds), "cache_ttl_seconds", min_val=0
        ),
        metadata_cache_hours=_parse_int(
            raw.get("metadata_cache_hours", defaults.metadata_cache_hours),
            "metadata_cache_hours",
            min_val=0,
        ),
        max_workers=_parse_int(
            raw.get("max_workers", defaults.max_workers), "max_workers", min_val=1
        ),
        instrument_workers=_parse_int(
            raw.get("instrument_workers", defaults.instrument_workers),
            "instrument_workers",
            min_val=1,
        ),
        broker_rate_per_second=_parse_float(
            raw.get("broker_rate_per_second", defaults.broker_rate_per_second),
            "broker_rate_per_second",
            min_val=0.0,
        ),
        market_data_rate_per_second=_parse_float(
            raw.get("market_data_rate_per_second", defaults.market_data_rate_per_second),
            "market_data_rate_per_second",
            min_val=0.0,
        ),
        deadline_seconds=deadline,
        include_benchmarks=bool(raw.get("include_benchmarks", defaults.include_benchmarks)),
        rebalance_threshold=_parse_decimal(
            raw.get("rebalance_threshold", defaults.rebalance_threshold),
            "rebalance_threshold",
            min_val=Decimal("0"),
            max_val=Decimal("100"),
        ),
        duplicate_category_policy=policy,
        output_dir=str(raw.get("output_dir", defaults.output_dir)),
        pie_allocations=_parse_pie_allocations(raw.get("pie_allocations")),
    )


def _parse_pie_allocations(raw: Any) -> list[PieAllocation]:
    """
    Parse saved pie targets from a mapping of pie name to target percent.

    Raises:
        ConfigurationError: If the value is not a mapping or a percent is invalid
    """
    if raw is None:
        return []
    if not isinstance(raw, dict):
        raise ConfigurationError("pie_allocations must be a mapping of pie name to percent")

    return [
        PieAllocation(
            pie_name=str(name),
            target_allocation=_parse_decimal(
                percent,
                f"pie_allocations[{name}]",
                min_val=Decimal("0"),
                max_val=Decimal("100"),
            ),
        )
        for name, percent in raw.items()
    ]


def _parse_decimal(
    value: Any,
    field_name: str,
    min_val: Decimal | None = None,
    max_val: Decimal | None = None,
) -> Decimal:
    """
    Parse a decimal value with optional range validation.

    Raises:
        ConfigurationError: If the value is invalid or out of range
    """
    try:
        decimal_value = Decimal(str(value))
    except Exception:
        raise ConfigurationError(f"Invalid decimal value for {field_name}: {value}")

    if not decimal_value.is_finite():
        raise ConfigurationError(f"Invalid decimal value for {field_name}: {value}")

    if min_val is not None and decimal_value < min_val:
        raise ConfigurationError(
            f"{field_name} must be >= {min_val}, got {decimal_value}"
        )

    if max_val is not None and decimal_value > max_val:
        raise ConfigurationError(
            f"{field_name} must be <= {max_val}, got {decimal_value}"
        )

    return decimal_value


def _parse_float(value: Any, field_name: str, min_val: float | None = None) -> float:
    try:
        float_value = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid number for {field_name}: {value}")
    if min_val is not None and float_value < min_val:
        raise ConfigurationError(f"{field_name} must be >= {min_val}, got {float_value}")
    return float_value


def _parse_int(value: Any, field_name: str, min_val: int | None = None) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid integer for {field_name}: {value}")
    try:
        int_value = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid integer for {field_name}: {value}")
    if min_val is not None and int_value < min_val:
        raise ConfigurationError(f"{field_name} must be >= {min_val}, got {int_value}")
    return int_value


def write_settings(settings: RefreshSettings, output_path: str | Path) -> None:
    """
    Write RefreshSettings to a YAML file.

    Args:
        settings: The settings to write
        output_path: Path to write the YAML file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = {
        "monthly_budget": str(settings.monthly_budget),
        "country": settings.country,
        "inter_pie_delay": settings.inter_pie_delay,
        "request_delay": settings.request_delay,
        "request_retries": settings.request_retries,
        "request_timeout": settings.request_timeout,
        "cache_ttl_seconds": settings.cache_ttl_seconds,
        "metadata_cache_hours": settings.metadata_cache_hours,
        "max_workers": settings.max_workers,
        "instrument_workers": settings.instrument_workers,
        "broker_rate_per_second": settings.broker_rate_per_second,
        "market_data_rate_per_second": settings.market_data_rate_per_second,
        "deadline_seconds": settings.deadline_seconds,
        "include_benchmarks": settings.include_benchmarks,
        "rebalance_threshold": str(settings.rebalance_threshold),
        "duplicate_category_policy": settings.duplicate_category_policy.value,
        "output_dir": settings.output_dir,
        "pie_allocations": {
            a.pie_name: str(a.target_allocation) for a in settings.pie_allocations
        },
    }

    with open(output_path, "w") as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)
