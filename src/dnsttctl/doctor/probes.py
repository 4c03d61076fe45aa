"""Probe registration entry point for the doctor command."""

from __future__ import annotations

import os
import platform
import shutil
from collections.abc import Callable, Sequence
from pathlib import Path

from .. import __version__
from ..artifacts import ArtifactGenerator
from ..models import HealthCheck, Instance
from ..providers.systemd import SystemdError
from ..state.registry import HEALTH_PARTIAL
from ..templates import TemplateRenderError
from .models import (
    DoctorImpact,
    ProbeCategory,
    ProbeContext,
    ProbeDefinition,
    ProbeResult,
    ProbeStatus,
)


def collect_probes(context: ProbeContext) -> Sequence[ProbeDefinition]:
    """Return the set of probes that should run for the current context."""
    return (
        _make_probe("env-python", "env", _probe_env_python),
        _make_probe("env-client", "env", _probe_env_client),
        _make_probe("env-systemctl", "env", _probe_env_systemctl),
        _make_probe("env-journalctl", "env", _probe_env_journalctl),
        _make_probe("config-file", "config", _probe_config_file),
        _make_probe("fs-directories", "fs", _probe_filesystem_directories),
        _make_probe("templates-render", "templates", _probe_templates_render),
        _make_probe("state-artifacts", "state", _probe_state_artifacts),
        _make_probe("systemd-status", "systemd", _probe_systemd_status),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_probe(
    probe_id: str,
    category: ProbeCategory,
    handler: Callable[[ProbeContext], ProbeResult],
) -> ProbeDefinition:
    return ProbeDefinition(id=probe_id, category=category, run=handler)


def _command_exists(command: str) -> bool:
    path = Path(command)
    if path.is_absolute() or str(path.parent) not in {"", "."}:
        return path.is_file() and os.access(path, os.X_OK)
    resolved = shutil.which(command)
    return resolved is not None and os.access(resolved, os.X_OK)


def _result(
    probe_id: str,
    category: ProbeCategory,
    status: ProbeStatus,
    impact: DoctorImpact,
    message: str,
    **extra: object,
) -> ProbeResult:
    return ProbeResult(
        id=probe_id,
        category=category,
        status=status,
        impact=impact,
        message=message,
        **extra,  # type: ignore[arg-type]
    )


# ---------------------------------------------------------------------------
# Environment probes
# ---------------------------------------------------------------------------


def _probe_env_python(_context: ProbeContext) -> ProbeResult:
    return _result(
        "env-python",
        "env",
        ProbeStatus.GREEN,
        DoctorImpact.OK,
        f"Python {platform.python_version()} running dnsttctl {__version__}.",
    )


def _probe_env_client(context: ProbeContext) -> ProbeResult:
    binary = context.config.client_bin
    if _command_exists(str(binary)):
        return _result(
            "env-client", "env", ProbeStatus.GREEN, DoctorImpact.OK,
            f"dnstt-client binary {binary} is executable.",
        )
    return _result(
        "env-client",
        "env",
        ProbeStatus.RED,
        DoctorImpact.ENVIRONMENT,
        f"dnstt-client binary {binary} is missing or not executable.",
        remediation="Install dnstt-client or set client_bin in the config file.",
    )


def _probe_env_systemctl(context: ProbeContext) -> ProbeResult:
    binary = context.systemd_provider.systemctl_bin
    if _command_exists(binary):
        return _result(
            "env-systemctl", "env", ProbeStatus.GREEN, DoctorImpact.OK,
            f"systemctl binary '{binary}' available.",
        )
    return _result(
        "env-systemctl", "env", ProbeStatus.RED, DoctorImpact.ENVIRONMENT,
        f"systemctl binary '{binary}' not found.",
    )


def _probe_env_journalctl(context: ProbeContext) -> ProbeResult:
    binary = context.systemd_provider.journalctl_bin
    if _command_exists(binary):
        return _result(
            "env-journalctl", "env", ProbeStatus.GREEN, DoctorImpact.OK,
            f"journalctl binary '{binary}' available.",
        )
    return _result(
        "env-journalctl",
        "env",
        ProbeStatus.YELLOW,
        DoctorImpact.OK,
        f"journalctl binary '{binary}' not found; logs are unavailable.",
        warnings=("missing:journalctl",),
    )


# ---------------------------------------------------------------------------
# Config / filesystem probes
# ---------------------------------------------------------------------------


def _probe_config_file(context: ProbeContext) -> ProbeResult:
    config_file = context.config.config_file
    if config_file.exists():
        return _result(
            "config-file", "config", ProbeStatus.GREEN, DoctorImpact.OK,
            f"Config file {config_file} loaded successfully.",
        )
    return _result(
        "config-file", "config", ProbeStatus.GREEN, DoctorImpact.OK,
        f"No config file at {config_file}; built-in defaults in use.",
    )


def _probe_filesystem_directories(context: ProbeContext) -> ProbeResult:
    config = context.config
    directories = {
        "config_dir": config.config_dir,
        "unit_dir": config.systemd.unit_dir,
    }
    missing = [label for label, path in directories.items() if not Path(path).is_dir()]
    unwritable = [
        label
        for label, path in directories.items()
        if label not in missing and not os.access(path, os.W_OK)
    ]
    data = {label: str(path) for label, path in directories.items()}
    if unwritable:
        return _result(
            "fs-directories",
            "fs",
            ProbeStatus.RED,
            DoctorImpact.ENVIRONMENT,
            f"Directories not writable: {', '.join(sorted(unwritable))}.",
            remediation="Run dnsttctl as root.",
            data=data,
        )
    if missing:
        return _result(
            "fs-directories",
            "fs",
            ProbeStatus.YELLOW,
            DoctorImpact.OK,
            f"Directories will be created on first use: {', '.join(sorted(missing))}.",
            data=data,
        )
    return _result(
        "fs-directories", "fs", ProbeStatus.GREEN, DoctorImpact.OK,
        "Artifact directories exist and are writable.", data=data,
    )


def _probe_templates_render(context: ProbeContext) -> ProbeResult:
    config = context.config
    generator = ArtifactGenerator(
        context.templates,
        config_dir=config.config_dir,
        unit_dir=config.systemd.unit_dir,
        client_bin=config.client_bin,
        systemctl_bin=config.systemd.systemctl_bin,
    )
    sample = Instance(
        domain="t.example.com",
        public_key="0" * 64,
        health_check=HealthCheck(command="true"),
    )
    try:
        rendered = generator.render(sample, "doctor-sample")
    except TemplateRenderError as exc:
        return _result(
            "templates-render",
            "templates",
            ProbeStatus.RED,
            DoctorImpact.ENVIRONMENT,
            str(exc),
            remediation=f"Fix or remove the override in {config.templates_dir}.",
        )
    return _result(
        "templates-render", "templates", ProbeStatus.GREEN, DoctorImpact.OK,
        f"{len(rendered)} templates render cleanly.",
    )


# ---------------------------------------------------------------------------
# Instance probes
# ---------------------------------------------------------------------------


def _probe_state_artifacts(context: ProbeContext) -> ProbeResult:
    try:
        names = context.registry.list_instances()
    except SystemdError as exc:
        return _result(
            "state-artifacts", "state", ProbeStatus.RED, DoctorImpact.PROVIDER,
            f"Unable to list instances: {exc}",
        )
    problems: dict[str, str] = {}
    for name in names:
        record = context.registry.describe(name)
        missing = [key for key in ("unit", "key") if not record.present.get(key)]
        if missing:
            problems[name] = f"missing {', '.join(missing)}"
        elif record.health_check_state == HEALTH_PARTIAL:
            absent = [
                key for key in ("script", "probe_unit", "timer") if not record.present.get(key)
            ]
            problems[name] = f"health check incomplete (missing {', '.join(absent)})"
    if problems:
        return _result(
            "state-artifacts",
            "state",
            ProbeStatus.RED,
            DoctorImpact.VALIDATION,
            f"{len(problems)} instance(s) have inconsistent artifacts.",
            remediation="Remove and recreate the affected instances.",
            data={"problems": problems},
        )
    message = "No instances found." if not names else f"{len(names)} instance(s) consistent."
    return _result("state-artifacts", "state", ProbeStatus.GREEN, DoctorImpact.OK, message)


def _probe_systemd_status(context: ProbeContext) -> ProbeResult:
    try:
        statuses = context.registry.refresh()
    except SystemdError as exc:
        return _result(
            "systemd-status", "systemd", ProbeStatus.RED, DoctorImpact.PROVIDER,
            f"Unable to query systemd: {exc}",
        )
    stopped = [status.name for status in statuses if not status.running]
    disabled = [status.name for status in statuses if not status.enabled]
    if stopped or disabled:
        return _result(
            "systemd-status",
            "systemd",
            ProbeStatus.YELLOW,
            DoctorImpact.OK,
            f"{len(stopped)} stopped, {len(disabled)} disabled instance(s).",
            data={"stopped": stopped, "disabled": disabled},
            warnings=tuple(f"stopped:{name}" for name in stopped),
        )
    return _result(
        "systemd-status", "systemd", ProbeStatus.GREEN, DoctorImpact.OK,
        "All instances are running and enabled.",
    )
