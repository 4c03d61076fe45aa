"""Read-side view of the instances present on this host.

dnsttctl keeps no database of its own. The set of instances is whatever
systemd reports under the service prefix, and the configuration of an
instance is read back from the artifacts that were generated for it.
"""
from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from ..artifacts import ArtifactPaths
from ..identity import SERVICE_PREFIX, is_instance_unit
from ..models import InstanceStatus
from ..providers.systemd import SystemdProvider

HEALTH_ABSENT = "absent"
HEALTH_COMPLETE = "complete"
HEALTH_PARTIAL = "partial"

_SCRIPT_VAR = re.compile(r"^(CHECK_CMD|MAX_RETRIES|RETRY_DELAY)=(.*)$", re.MULTILINE)
_SCRIPT_SETTLE = re.compile(r"^sleep (\d+)\s*$", re.MULTILINE)
_TIMER_INTERVAL = re.compile(r"^OnUnitActiveSec=(\S+)\s*$", re.MULTILINE)


@dataclass(slots=True)
class InstanceRecord:
    """Instance configuration reconstructed from its on-disk artifacts."""

    name: str
    paths: ArtifactPaths
    status: InstanceStatus
    present: dict[str, bool] = field(default_factory=dict)
    client_bin: str | None = None
    domain: str | None = None
    resolver: str | None = None
    listen_address: str | None = None
    extra_args: str = ""
    public_key: str | None = None
    health_command: str | None = None
    health_interval: str | None = None
    health_max_attempts: int | None = None
    health_retry_delay: int | None = None
    health_settle_delay: int | None = None

    @property
    def health_check_state(self) -> str:
        """Return ``absent``, ``complete`` or ``partial`` for the probe group."""
        flags = [self.present.get(key, False) for key in ("script", "probe_unit", "timer")]
        if all(flags):
            return HEALTH_COMPLETE
        if any(flags):
            return HEALTH_PARTIAL
        return HEALTH_ABSENT

    @property
    def consistent(self) -> bool:
        """Return ``True`` when no artifact group is half-present."""
        base = [self.present.get("unit", False), self.present.get("key", False)]
        return all(base) and self.health_check_state != HEALTH_PARTIAL

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation (the key itself is omitted)."""
        health: dict[str, object] | None = None
        if self.health_command is not None or self.health_check_state != HEALTH_ABSENT:
            health = {
                "state": self.health_check_state,
                "command": self.health_command,
                "interval": self.health_interval,
                "max_attempts": self.health_max_attempts,
                "retry_delay": self.health_retry_delay,
                "settle_delay": self.health_settle_delay,
            }
        return {
            **self.status.to_dict(),
            "domain": self.domain,
            "resolver": self.resolver,
            "listen": self.listen_address,
            "extra_args": self.extra_args,
            "client_bin": self.client_bin,
            "public_key_present": self.public_key is not None,
            "health_check": health,
            "consistent": self.consistent,
            "artifacts": {key: str(getattr(self.paths, key)) for key in self.present},
            "present": dict(self.present),
        }


class InstanceRegistry:
    """Enumerate instances and query their state through systemd."""

    def __init__(
        self,
        provider: SystemdProvider,
        *,
        config_dir: Path,
        unit_dir: Path,
        prefix: str = SERVICE_PREFIX,
    ) -> None:
        self.provider = provider
        self.config_dir = Path(config_dir)
        self.unit_dir = Path(unit_dir)
        self.prefix = prefix

    def list_instances(self) -> list[str]:
        """Return instance names in the order systemd lists them.

        Probe units share the prefix and are filtered out.
        """
        names: list[str] = []
        for unit in self.provider.list_unit_files(f"{self.prefix}*"):
            if not unit.endswith(".service"):
                continue
            name = unit[: -len(".service")]
            if is_instance_unit(name, prefix=self.prefix) and name not in names:
                names.append(name)
        return names

    def status(self, name: str) -> InstanceStatus:
        """Return the running/enabled state of *name*."""
        unit = f"{name}.service"
        return InstanceStatus(
            name=name,
            running=self.provider.is_active(unit),
            enabled=self.provider.is_enabled(unit),
        )

    def refresh(self) -> list[InstanceStatus]:
        """Return fresh status for every listed instance."""
        return [self.status(name) for name in self.list_instances()]

    def paths_for(self, name: str) -> ArtifactPaths:
        return ArtifactPaths.for_name(name, config_dir=self.config_dir, unit_dir=self.unit_dir)

    def exists(self, name: str) -> bool:
        """Return ``True`` when systemd lists *name* or any of its files exist."""
        if any(path.exists() for path in self.paths_for(name).all()):
            return True
        return name in self.list_instances()

    def describe(self, name: str) -> InstanceRecord:
        """Rebuild what is known about *name* from its artifacts."""
        paths = self.paths_for(name)
        record = InstanceRecord(
            name=name,
            paths=paths,
            status=self.status(name),
            present={
                "unit": paths.unit.exists(),
                "key": paths.key.exists(),
                "script": paths.script.exists(),
                "probe_unit": paths.probe_unit.exists(),
                "timer": paths.timer.exists(),
            },
        )
        if record.present["unit"]:
            _apply_exec_start(record, _read(paths.unit))
        if record.present["key"]:
            record.public_key = _read(paths.key).strip() or None
        if record.present["script"]:
            _apply_script(record, _read(paths.script))
        if record.present["timer"]:
            match = _TIMER_INTERVAL.search(_read(paths.timer))
            record.health_interval = match.group(1) if match else None
        return record


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError:
        return ""


def _apply_exec_start(record: InstanceRecord, text: str) -> None:
    line = next(
        (item for item in text.splitlines() if item.startswith("ExecStart=")),
        None,
    )
    if line is None:
        return
    try:
        tokens = shlex.split(line[len("ExecStart=") :])
    except ValueError:
        return
    if len(tokens) < 3:
        return
    record.client_bin = tokens[0]
    record.domain, record.listen_address = tokens[-2], tokens[-1]
    extras: list[str] = []
    body = tokens[1:-2]
    index = 0
    while index < len(body):
        token = body[index]
        if token == "-udp" and index + 1 < len(body):
            record.resolver = body[index + 1]
            index += 2
            continue
        if token == "-pubkey-file" and index + 1 < len(body):
            index += 2
            continue
        extras.append(token)
        index += 1
    record.extra_args = shlex.join(extras) if extras else ""


def _apply_script(record: InstanceRecord, text: str) -> None:
    for key, raw in _SCRIPT_VAR.findall(text):
        try:
            parts = shlex.split(raw)
        except ValueError:
            parts = [raw]
        value = parts[0] if len(parts) == 1 else raw
        if key == "CHECK_CMD":
            record.health_command = value
        elif value.isdigit():
            if key == "MAX_RETRIES":
                record.health_max_attempts = int(value)
            else:
                record.health_retry_delay = int(value)
    settle = _SCRIPT_SETTLE.search(text)
    if settle:
        record.health_settle_delay = int(settle.group(1))


__all__ = [
    "HEALTH_ABSENT",
    "HEALTH_COMPLETE",
    "HEALTH_PARTIAL",
    "InstanceRecord",
    "InstanceRegistry",
]
