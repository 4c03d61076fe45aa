"""Render and persist the on-disk artifacts that make up an instance.

An instance owns up to five files: the client unit and public key, and,
when a health check is configured, a probe script together with a oneshot
probe unit and the timer that triggers it. Writes go through
:func:`write_artifacts`, which stages every file beside its destination
before moving any of them into place.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from .identity import HEALTHCHECK_SUFFIX
from .models import Instance
from .templates import TemplateEngine

KEY_FILE_MODE = 0o644
SCRIPT_MODE = 0o755
UNIT_FILE_MODE = 0o644


class ArtifactWriteError(RuntimeError):
    """Raised when instance artifacts cannot be written to disk."""


@dataclass(frozen=True, slots=True)
class ArtifactPaths:
    """Filesystem locations of every artifact belonging to one instance."""

    name: str
    unit: Path
    key: Path
    script: Path
    probe_unit: Path
    timer: Path

    @classmethod
    def for_name(cls, name: str, *, config_dir: Path, unit_dir: Path) -> ArtifactPaths:
        """Return the artifact paths for instance *name*."""
        probe = f"{name}{HEALTHCHECK_SUFFIX}"
        return cls(
            name=name,
            unit=unit_dir / f"{name}.service",
            key=config_dir / f"{name}.pub",
            script=config_dir / f"{probe}.sh",
            probe_unit=unit_dir / f"{probe}.service",
            timer=unit_dir / f"{probe}.timer",
        )

    @property
    def probe_unit_name(self) -> str:
        return self.probe_unit.name

    @property
    def timer_name(self) -> str:
        return self.timer.name

    def health_check_paths(self) -> tuple[Path, Path, Path]:
        """Return the script, probe unit and timer paths."""
        return (self.script, self.probe_unit, self.timer)

    def all(self) -> tuple[Path, ...]:
        """Return every artifact path in removal order."""
        return (self.unit, self.key, self.script, self.probe_unit, self.timer)


@dataclass(frozen=True, slots=True)
class Artifact:
    """Rendered file content waiting to be written."""

    path: Path
    content: str
    mode: int


class ArtifactGenerator:
    """Render instance artifacts from templates."""

    def __init__(
        self,
        templates: TemplateEngine,
        *,
        config_dir: Path,
        unit_dir: Path,
        client_bin: Path,
        systemctl_bin: str = "systemctl",
        probe_delay: int = 5,
        boot_delay: int = 60,
    ) -> None:
        self.templates = templates
        self.config_dir = Path(config_dir)
        self.unit_dir = Path(unit_dir)
        self.client_bin = Path(client_bin)
        self.systemctl_bin = systemctl_bin
        self.probe_delay = probe_delay
        self.boot_delay = boot_delay

    def paths_for(self, name: str) -> ArtifactPaths:
        """Return the artifact paths for *name* under the configured directories."""
        return ArtifactPaths.for_name(name, config_dir=self.config_dir, unit_dir=self.unit_dir)

    def render(self, instance: Instance, name: str) -> list[Artifact]:
        """Render all artifacts for *instance* stored under *name*.

        The health-check group is only rendered when the instance carries a
        health check, so the three files always appear together.
        """
        paths = self.paths_for(name)
        artifacts = [
            Artifact(paths.key, f"{instance.public_key.strip()}\n", KEY_FILE_MODE),
            Artifact(
                paths.unit,
                self.templates.render_to_string(
                    "systemd/client.service.j2",
                    {
                        "name": name,
                        "domain": instance.domain,
                        "resolver": instance.resolver,
                        "listen_address": instance.listen_address,
                        "client_bin": str(self.client_bin),
                        "pubkey_file": str(paths.key),
                        "extra_args": instance.extra_args.strip(),
                    },
                ),
                UNIT_FILE_MODE,
            ),
        ]
        check = instance.health_check
        if check is None:
            return artifacts

        artifacts.append(
            Artifact(
                paths.script,
                self.templates.render_to_string(
                    "scripts/healthcheck.sh.j2",
                    {
                        "name": name,
                        "command": check.command,
                        "max_attempts": check.max_attempts,
                        "retry_delay": check.retry_delay,
                        "settle_delay": check.settle_delay,
                        "systemctl_bin": self.systemctl_bin,
                    },
                ),
                SCRIPT_MODE,
            )
        )
        artifacts.append(
            Artifact(
                paths.probe_unit,
                self.templates.render_to_string(
                    "systemd/healthcheck.service.j2",
                    {
                        "name": name,
                        "script_path": str(paths.script),
                        "probe_delay": self.probe_delay,
                    },
                ),
                UNIT_FILE_MODE,
            )
        )
        artifacts.append(
            Artifact(
                paths.timer,
                self.templates.render_to_string(
                    "systemd/healthcheck.timer.j2",
                    {
                        "name": name,
                        "interval": check.interval,
                        "boot_delay": self.boot_delay,
                    },
                ),
                UNIT_FILE_MODE,
            )
        )
        return artifacts


@dataclass(slots=True)
class _Backup:
    path: Path
    content: bytes | None
    mode: int | None


def write_artifacts(artifacts: Sequence[Artifact]) -> None:
    """Write *artifacts* all-or-nothing.

    Every file is first written to a temporary sibling. Only when all of them
    are staged are they renamed into place; if a rename fails the files that
    were already replaced get their previous content back.
    """
    staged: list[tuple[Artifact, Path]] = []
    try:
        for artifact in artifacts:
            staged.append((artifact, _stage(artifact)))
    except OSError as exc:
        _discard(tmp for _, tmp in staged)
        raise ArtifactWriteError(f"Failed to stage {artifact.path}: {exc}") from exc

    backups: list[_Backup] = []
    for index, (artifact, tmp_path) in enumerate(staged):
        try:
            backups.append(_snapshot(artifact.path))
            os.replace(tmp_path, artifact.path)
        except OSError as exc:
            _discard(tmp for _, tmp in staged[index:])
            _restore(backups)
            raise ArtifactWriteError(f"Failed to write {artifact.path}: {exc}") from exc


def _stage(artifact: Artifact) -> Path:
    parent = artifact.path.parent
    parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(parent), prefix=f".{artifact.path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(artifact.content)
        os.chmod(tmp_path, artifact.mode)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
    return tmp_path


def _snapshot(path: Path) -> _Backup:
    try:
        return _Backup(path, path.read_bytes(), path.stat().st_mode & 0o777)
    except FileNotFoundError:
        return _Backup(path, None, None)


def _restore(backups: Sequence[_Backup]) -> None:
    for backup in reversed(backups):
        try:
            if backup.content is None:
                backup.path.unlink(missing_ok=True)
                continue
            backup.path.write_bytes(backup.content)
            if backup.mode is not None:
                os.chmod(backup.path, backup.mode)
        except OSError:
            continue


def _discard(paths: Iterable[Path]) -> None:
    for path in paths:
        path.unlink(missing_ok=True)


__all__ = [
    "Artifact",
    "ArtifactGenerator",
    "ArtifactPaths",
    "ArtifactWriteError",
    "write_artifacts",
]
