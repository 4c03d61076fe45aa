"""Data models describing dnstt-client instances."""
from __future__ import annotations

from dataclasses import dataclass

from .identity import SERVICE_PREFIX, derive_instance_name

DEFAULT_RESOLVER = "127.0.0.53:53"
DEFAULT_LISTEN_HOST = "127.0.0.1"
DEFAULT_LISTEN_PORT = 7000
DEFAULT_HEALTH_INTERVAL = 60
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 5
DEFAULT_SETTLE_DELAY = 5


@dataclass(frozen=True, slots=True)
class HealthCheck:
    """Periodic liveness probe attached to an instance."""

    command: str
    interval: int = DEFAULT_HEALTH_INTERVAL
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_delay: int = DEFAULT_RETRY_DELAY
    settle_delay: int = DEFAULT_SETTLE_DELAY

    def __post_init__(self) -> None:
        """Validate the probe parameters."""
        if not self.command.strip():
            raise ValueError("Health check command must be a non-empty string.")
        if self.interval <= 0:
            raise ValueError("Health check interval must be a positive number of seconds.")
        if self.max_attempts <= 0:
            raise ValueError("Health check attempts must be a positive integer.")
        if self.retry_delay < 0 or self.settle_delay < 0:
            raise ValueError("Health check delays cannot be negative.")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "command": self.command,
            "interval": self.interval,
            "max_attempts": self.max_attempts,
            "retry_delay": self.retry_delay,
            "settle_delay": self.settle_delay,
        }


@dataclass(frozen=True, slots=True)
class Instance:
    """Configuration for a single dnstt-client tunnel endpoint."""

    domain: str
    public_key: str
    resolver: str = DEFAULT_RESOLVER
    listen_port: int = DEFAULT_LISTEN_PORT
    listen_host: str = DEFAULT_LISTEN_HOST
    extra_args: str = ""
    health_check: HealthCheck | None = None

    def __post_init__(self) -> None:
        """Validate required fields."""
        if not self.domain.strip():
            raise ValueError("Domain name is required.")
        if not self.public_key.strip():
            raise ValueError("Public key is required.")
        if not 1 <= self.listen_port <= 65535:
            raise ValueError(f"Listen port {self.listen_port} is outside 1-65535.")

    @property
    def listen_address(self) -> str:
        """Return the local ``host:port`` the tunnel exposes."""
        return f"{self.listen_host}:{self.listen_port}"

    def name(self, prefix: str = SERVICE_PREFIX) -> str:
        """Return the derived instance name."""
        return derive_instance_name(self.domain, self.listen_port, prefix=prefix)

    def to_dict(self, *, include_key: bool = False) -> dict[str, object]:
        """Return a serialisable representation (key material omitted by default)."""
        payload: dict[str, object] = {
            "domain": self.domain,
            "resolver": self.resolver,
            "listen_host": self.listen_host,
            "listen_port": self.listen_port,
            "extra_args": self.extra_args,
            "health_check": self.health_check.to_dict() if self.health_check else None,
        }
        if include_key:
            payload["public_key"] = self.public_key
        return payload


@dataclass(frozen=True, slots=True)
class InstanceStatus:
    """Supervisor state of an instance at query time."""

    name: str
    running: bool = False
    enabled: bool = False

    @property
    def state(self) -> str:
        """Return ``running`` or ``stopped``."""
        return "running" if self.running else "stopped"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"name": self.name, "state": self.state, "enabled": self.enabled}


__all__ = [
    "DEFAULT_HEALTH_INTERVAL",
    "DEFAULT_LISTEN_HOST",
    "DEFAULT_LISTEN_PORT",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_RESOLVER",
    "DEFAULT_RETRY_DELAY",
    "DEFAULT_SETTLE_DELAY",
    "HealthCheck",
    "Instance",
    "InstanceStatus",
]
