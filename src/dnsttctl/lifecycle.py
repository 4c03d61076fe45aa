"""Create, remove and inspect dnstt-client instances.

The controller keeps systemd and the generated files in step: artifacts are
written as a group before systemd hears about them, and removal tears down
units first and files second so nothing is left pointing at a missing file.
"""
from __future__ import annotations

import subprocess
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .artifacts import ArtifactGenerator, ArtifactPaths, write_artifacts
from .identity import SERVICE_PREFIX
from .logging import OperationScope
from .models import Instance, InstanceStatus
from .providers.systemd import SystemdError, SystemdProvider
from .state.registry import InstanceRegistry

CONFLICT_REJECT = "reject"
CONFLICT_OVERWRITE = "overwrite"

# systemctl wording for units that are not installed.
_MISSING_UNIT_MARKERS = ("not loaded", "does not exist", "not found", "no such file")


class LifecycleError(RuntimeError):
    """Raised when an instance lifecycle operation cannot proceed."""


class InstanceExistsError(LifecycleError):
    """Raised when creating an instance whose name is already taken."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Instance '{name}' already exists. Remove it first or pass --force to overwrite."
        )
        self.name = name


@dataclass(slots=True)
class CreateResult:
    """Outcome of a successful create."""

    name: str
    paths: ArtifactPaths
    written: list[Path]
    health_check: bool
    replaced: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "written": [str(path) for path in self.written],
            "health_check": self.health_check,
            "replaced": self.replaced,
        }


@dataclass(slots=True)
class RemovalOutcome:
    """What happened to a single instance during removal."""

    name: str
    removed: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "removed": [str(path) for path in self.removed],
            "warnings": list(self.warnings),
            "errors": list(self.errors),
        }


@dataclass(slots=True)
class RemovalReport:
    """Per-instance outcomes for a removal batch."""

    outcomes: list[RemovalOutcome] = field(default_factory=list)
    reload_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.reload_error is None and all(item.ok for item in self.outcomes)

    @property
    def removed_names(self) -> list[str]:
        return [item.name for item in self.outcomes if item.ok]

    def warnings(self) -> list[str]:
        """Return every warning, prefixed with its instance name."""
        messages = [f"{item.name}: {text}" for item in self.outcomes for text in item.warnings]
        if self.reload_error:
            messages.append(f"daemon-reload: {self.reload_error}")
        return messages

    def errors(self) -> list[str]:
        """Return every error, prefixed with its instance name."""
        return [f"{item.name}: {text}" for item in self.outcomes for text in item.errors]


class LifecycleController:
    """Coordinate artifacts on disk with unit state in systemd."""

    def __init__(
        self,
        *,
        provider: SystemdProvider,
        registry: InstanceRegistry,
        generator: ArtifactGenerator,
        prefix: str = SERVICE_PREFIX,
        on_conflict: str = CONFLICT_REJECT,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.generator = generator
        self.prefix = prefix
        self.on_conflict = on_conflict

    def name_for(self, instance: Instance) -> str:
        """Return the name *instance* will be managed under."""
        return instance.name(self.prefix)

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------
    def create(
        self,
        instance: Instance,
        *,
        overwrite: bool = False,
        scope: OperationScope | None = None,
    ) -> CreateResult:
        """Provision *instance* and start it.

        Raises :class:`InstanceExistsError` when the name is taken and
        overwriting was not requested, :class:`~dnsttctl.artifacts.ArtifactWriteError`
        when the files cannot be written (systemd is not touched), and
        :class:`SystemdError` when systemd refuses a command. In the last case
        a freshly created instance is torn down again before the error
        propagates.
        """
        name = self.name_for(instance)
        existed = self.registry.exists(name)
        if existed and not (overwrite or self.on_conflict == CONFLICT_OVERWRITE):
            raise InstanceExistsError(name)

        paths = self.generator.paths_for(name)
        artifacts = self.generator.render(instance, name)
        _step(scope, "artifacts.render", detail=f"{len(artifacts)} file(s)")

        write_artifacts(artifacts)
        written = [artifact.path for artifact in artifacts]
        _step(scope, "artifacts.write", detail=", ".join(str(path) for path in written))

        if existed and instance.health_check is None:
            self._drop_health_check(paths, scope)

        unit = paths.unit.name
        try:
            self.provider.daemon_reload()
            _step(scope, "systemd.daemon_reload")
            self.provider.enable(unit)
            _step(scope, "systemd.enable", detail=unit)
            if existed:
                self.provider.restart(unit)
                _step(scope, "systemd.restart", detail=unit)
            else:
                self.provider.start(unit)
                _step(scope, "systemd.start", detail=unit)
            if instance.health_check is not None:
                self.provider.enable(paths.timer_name)
                _step(scope, "systemd.enable", detail=paths.timer_name)
                self.provider.start(paths.timer_name)
                _step(scope, "systemd.start", detail=paths.timer_name)
        except SystemdError as exc:
            _step(scope, "systemd", status="error", detail=str(exc))
            if not existed:
                self._teardown(name, scope)
                _step(scope, "cleanup", status="warning", detail=name)
            raise

        return CreateResult(
            name=name,
            paths=paths,
            written=written,
            health_check=instance.health_check is not None,
            replaced=existed,
        )

    def _drop_health_check(self, paths: ArtifactPaths, scope: OperationScope | None) -> None:
        # The replacement carries no probe; retire the old group as a whole.
        outcome = RemovalOutcome(name=paths.name)
        self._stop_units(
            outcome,
            [("stop", paths.timer_name), ("disable", paths.timer_name), ("stop", paths.probe_unit_name)],
        )
        self._delete_files(outcome, paths.health_check_paths())
        if outcome.removed:
            _step(scope, "health_check.remove", detail=", ".join(str(p) for p in outcome.removed))

    def _teardown(self, name: str, scope: OperationScope | None) -> None:
        outcome = self._remove_one(name)
        for message in outcome.warnings + outcome.errors:
            _step(scope, "cleanup", status="warning", detail=message)
        try:
            self.provider.daemon_reload()
        except SystemdError as exc:
            _step(scope, "cleanup.daemon_reload", status="warning", detail=str(exc))

    # ------------------------------------------------------------------
    # remove
    # ------------------------------------------------------------------
    def remove(
        self,
        names: Iterable[str],
        *,
        scope: OperationScope | None = None,
    ) -> RemovalReport:
        """Remove every instance in *names*, continuing past failures.

        Units are stopped and disabled best-effort, then the five possible
        files are deleted. systemd re-reads its unit files once at the end.
        """
        report = RemovalReport()
        for name in dict.fromkeys(names):
            outcome = self._remove_one(name)
            report.outcomes.append(outcome)
            status = "success" if outcome.ok else "error"
            if outcome.ok and outcome.warnings:
                status = "warning"
            _step(scope, "instance.remove", status=status, detail=name)
        if report.outcomes:
            try:
                self.provider.daemon_reload()
                _step(scope, "systemd.daemon_reload")
            except SystemdError as exc:
                report.reload_error = str(exc)
                _step(scope, "systemd.daemon_reload", status="warning", detail=str(exc))
        return report

    def _remove_one(self, name: str) -> RemovalOutcome:
        paths = self.generator.paths_for(name)
        outcome = RemovalOutcome(name=name)
        self._stop_units(
            outcome,
            [
                ("stop", paths.timer_name),
                ("disable", paths.timer_name),
                ("stop", paths.probe_unit_name),
                ("stop", paths.unit.name),
                ("disable", paths.unit.name),
            ],
        )
        self._delete_files(outcome, paths.all())
        return outcome

    def _stop_units(self, outcome: RemovalOutcome, actions: list[tuple[str, str]]) -> None:
        for action, unit in actions:
            try:
                getattr(self.provider, action)(unit)
            except SystemdError as exc:
                if _is_missing_unit(exc):
                    continue
                outcome.warnings.append(f"{action} {unit}: {exc}")

    @staticmethod
    def _delete_files(outcome: RemovalOutcome, paths: Iterable[Path]) -> None:
        for path in paths:
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                outcome.errors.append(f"Failed to delete {path}: {exc}")
                continue
            outcome.removed.append(path)

    # ------------------------------------------------------------------
    # read side
    # ------------------------------------------------------------------
    def refresh_status(self) -> list[InstanceStatus]:
        """Return fresh status for every instance."""
        return self.registry.refresh()

    def logs(
        self,
        name: str,
        *,
        follow: bool = True,
        lines: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Show the journal of *name*, streaming it when *follow* is set."""
        return self.provider.logs(f"{name}.service", lines=lines, follow=follow)


def _is_missing_unit(exc: SystemdError) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _MISSING_UNIT_MARKERS)


def _step(
    scope: OperationScope | None,
    name: str,
    *,
    status: str = "success",
    detail: str | None = None,
) -> None:
    if scope is not None:
        scope.add_step(name, status=status, detail=detail)


__all__ = [
    "CONFLICT_OVERWRITE",
    "CONFLICT_REJECT",
    "CreateResult",
    "InstanceExistsError",
    "LifecycleController",
    "LifecycleError",
    "RemovalOutcome",
    "RemovalReport",
]
