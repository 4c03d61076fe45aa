"""Configuration loader for dnsttctl.

Values are resolved from several sources, later sources winning:

1. Built-in defaults (the paths of a stock install).
2. ``/etc/dnsttctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``DNSTTCTL_``.
4. Explicit overrides supplied programmatically (CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export DNSTTCTL_SYSTEMD__UNIT_DIR=/run/systemd/system
    export DNSTTCTL_HEALTH_CHECK__MAX_ATTEMPTS=5

Values are coerced via PyYAML's ``safe_load`` so numbers and booleans parse
naturally. The result is exposed as frozen dataclasses.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .identity import SERVICE_PREFIX
from .models import (
    DEFAULT_HEALTH_INTERVAL,
    DEFAULT_LISTEN_HOST,
    DEFAULT_LISTEN_PORT,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RESOLVER,
    DEFAULT_RETRY_DELAY,
    DEFAULT_SETTLE_DELAY,
)

ENV_PREFIX = "DNSTTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

ALLOWED_CONFLICT_POLICIES = {"reject", "overwrite"}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class InstanceDefaults:
    """Values offered when the operator leaves a field empty."""

    resolver: str = DEFAULT_RESOLVER
    listen_host: str = DEFAULT_LISTEN_HOST
    listen_port: int = DEFAULT_LISTEN_PORT

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "resolver": self.resolver,
            "listen_host": self.listen_host,
            "listen_port": self.listen_port,
        }


@dataclass(frozen=True)
class HealthCheckConfig:
    """Defaults for generated health-check scripts and timers."""

    interval: int = DEFAULT_HEALTH_INTERVAL
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_delay: int = DEFAULT_RETRY_DELAY
    settle_delay: int = DEFAULT_SETTLE_DELAY
    probe_delay: int = 5
    boot_delay: int = 60

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "interval": self.interval,
            "max_attempts": self.max_attempts,
            "retry_delay": self.retry_delay,
            "settle_delay": self.settle_delay,
            "probe_delay": self.probe_delay,
            "boot_delay": self.boot_delay,
        }


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    unit_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    journalctl_bin: str = "journalctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "unit_dir": str(self.unit_dir),
            "systemctl_bin": self.systemctl_bin,
            "journalctl_bin": self.journalctl_bin,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for dnsttctl."""

    config_file: Path
    config_dir: Path
    logs_dir: Path
    runtime_dir: Path
    templates_dir: Path
    lock_timeout: float
    client_bin: Path
    service_prefix: str
    on_conflict: str
    defaults: InstanceDefaults
    health_check: HealthCheckConfig
    systemd: SystemdConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "config_dir": str(self.config_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "templates_dir": str(self.templates_dir),
            "lock_timeout": self.lock_timeout,
            "client_bin": str(self.client_bin),
            "service_prefix": self.service_prefix,
            "on_conflict": self.on_conflict,
            "defaults": self.defaults.to_dict(),
            "health_check": self.health_check.to_dict(),
            "systemd": self.systemd.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/dnsttctl/config.yml",
    "config_dir": "/etc/dnstt-client",
    "logs_dir": "/var/log/dnsttctl",
    "runtime_dir": "/run/dnsttctl",
    "templates_dir": "/etc/dnsttctl/templates",
    "lock_timeout": 30.0,
    "client_bin": "/usr/local/bin/dnstt-client",
    "service_prefix": SERVICE_PREFIX,
    "on_conflict": "reject",
    "defaults": {
        "resolver": DEFAULT_RESOLVER,
        "listen_host": DEFAULT_LISTEN_HOST,
        "listen_port": DEFAULT_LISTEN_PORT,
    },
    "health_check": {
        "interval": DEFAULT_HEALTH_INTERVAL,
        "max_attempts": DEFAULT_MAX_ATTEMPTS,
        "retry_delay": DEFAULT_RETRY_DELAY,
        "settle_delay": DEFAULT_SETTLE_DELAY,
        "probe_delay": 5,
        "boot_delay": 60,
    },
    "systemd": {
        "unit_dir": "/etc/systemd/system",
        "systemctl_bin": "systemctl",
        "journalctl_bin": "journalctl",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    "defaults": {"resolver", "listen_host", "listen_port"},
    "health_check": {
        "interval",
        "max_attempts",
        "retry_delay",
        "settle_delay",
        "probe_delay",
        "boot_delay",
    },
    "systemd": {"unit_dir", "systemctl_bin", "journalctl_bin"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    policy = str(raw.get("on_conflict", "reject"))
    if policy not in ALLOWED_CONFLICT_POLICIES:
        allowed_text = ", ".join(sorted(ALLOWED_CONFLICT_POLICIES))
        raise ConfigError(f"Unsupported on_conflict policy '{policy}'. Allowed: {allowed_text}.")

    prefix = raw.get("service_prefix")
    if not isinstance(prefix, str) or not prefix.strip():
        raise ConfigError("service_prefix must be a non-empty string.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    defaults_mapping = _as_dict(raw.get("defaults"), "defaults")
    listen_port = _expect_int(
        defaults_mapping.get("listen_port"),
        "defaults.listen_port",
        default=DEFAULT_LISTEN_PORT,
    )
    if not 1 <= listen_port <= 65535:
        raise ConfigError("defaults.listen_port must be between 1 and 65535.")
    defaults = InstanceDefaults(
        resolver=str(defaults_mapping.get("resolver", DEFAULT_RESOLVER)),
        listen_host=str(defaults_mapping.get("listen_host", DEFAULT_LISTEN_HOST)),
        listen_port=listen_port,
    )

    hc_mapping = _as_dict(raw.get("health_check"), "health_check")
    hc_values: dict[str, int] = {}
    base_health = HealthCheckConfig()
    for field, minimum in (
        ("interval", 1),
        ("max_attempts", 1),
        ("retry_delay", 0),
        ("settle_delay", 0),
        ("probe_delay", 0),
        ("boot_delay", 0),
    ):
        value = _expect_int(
            hc_mapping.get(field),
            f"health_check.{field}",
            default=cast(int, getattr(base_health, field)),
        )
        if value < minimum:
            raise ConfigError(f"health_check.{field} must be at least {minimum}.")
        hc_values[field] = value
    health_check = HealthCheckConfig(**hc_values)

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        unit_dir=_to_path(systemd_mapping.get("unit_dir", "/etc/systemd/system")),
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
        journalctl_bin=str(systemd_mapping.get("journalctl_bin", "journalctl")),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        config_dir=_to_path(raw.get("config_dir")),
        logs_dir=_to_path(raw.get("logs_dir")),
        runtime_dir=_to_path(raw.get("runtime_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        lock_timeout=_expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0),
        client_bin=_to_path(raw.get("client_bin")),
        service_prefix=str(raw.get("service_prefix", SERVICE_PREFIX)).strip(),
        on_conflict=str(raw.get("on_conflict", "reject")),
        defaults=defaults,
        health_check=health_check,
        systemd=systemd,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS or not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            child: MutableMapping[str, object] = {}
            current[segment] = child
            current = child
        elif isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
        else:
            raise ConfigError(
                f"Environment overrides conflict with existing scalar value at {'.'.join(path)}"
            )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    return {
        key: _deep_copy(_as_dict(value, key)) if isinstance(value, Mapping) else value
        for key, value in source.items()
    }


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw


def _to_path(value: object) -> Path:
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str) and value.strip():
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(value: object | None, label: str, *, default: float) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "HealthCheckConfig",
    "InstanceDefaults",
    "SystemdConfig",
    "load_config",
]
