"""Unit tests covering individual doctor probes."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from dnsttctl.config import AppConfig, load_config
from dnsttctl.doctor import (
    DoctorEngine,
    DoctorImpact,
    ProbeContext,
    ProbeResult,
    ProbeStatus,
    collect_probes,
)
from dnsttctl.lifecycle import LifecycleController
from dnsttctl.models import HealthCheck, Instance
from dnsttctl.providers.systemd import SystemdProvider
from dnsttctl.state.registry import InstanceRegistry
from dnsttctl.templates import TemplateEngine

if TYPE_CHECKING:
    from conftest import FakeSystemd

NAME = "dnstt-client-t_example_com_7000"


def _config(
    tmp_path: Path,
    *,
    client_bin: Path,
    tool_bins: dict[str, Path],
    unit_dir: Path,
    config_dir: Path,
) -> AppConfig:
    return load_config(
        config_file=tmp_path / "missing.yml",
        env={},
        overrides={
            "config_dir": str(config_dir),
            "templates_dir": str(tmp_path / "templates"),
            "client_bin": str(client_bin),
            "systemd": {
                "unit_dir": str(unit_dir),
                "systemctl_bin": str(tool_bins["systemctl"]),
                "journalctl_bin": str(tool_bins["journalctl"]),
            },
        },
    )


@pytest.fixture
def config(
    tmp_path: Path,
    client_bin: Path,
    tool_bins: dict[str, Path],
    unit_dir: Path,
    config_dir: Path,
) -> AppConfig:
    return _config(
        tmp_path,
        client_bin=client_bin,
        tool_bins=tool_bins,
        unit_dir=unit_dir,
        config_dir=config_dir,
    )


@pytest.fixture
def probe_context(config: AppConfig, fake_systemd: FakeSystemd) -> ProbeContext:
    provider = SystemdProvider(
        systemctl_bin=config.systemd.systemctl_bin,
        journalctl_bin=config.systemd.journalctl_bin,
    )
    return ProbeContext(
        config=config,
        registry=InstanceRegistry(
            provider, config_dir=config.config_dir, unit_dir=config.systemd.unit_dir
        ),
        systemd_provider=provider,
        templates=TemplateEngine.with_overrides(config.templates_dir),
    )


def _run(context: ProbeContext) -> dict[str, ProbeResult]:
    return {probe.id: probe.run(context) for probe in collect_probes(context)}


def _create(controller: LifecycleController, **kwargs: object) -> None:
    controller.create(Instance(domain="t.example.com", public_key="deadbeef", **kwargs))  # type: ignore[arg-type]


def test_collect_probes_registers_expected_ids(probe_context: ProbeContext) -> None:
    """Every probe category is represented."""
    ids = [probe.id for probe in collect_probes(probe_context)]

    assert ids == [
        "env-python",
        "env-client",
        "env-systemctl",
        "env-journalctl",
        "config-file",
        "fs-directories",
        "templates-render",
        "state-artifacts",
        "systemd-status",
    ]


def test_clean_host_exits_zero(probe_context: ProbeContext) -> None:
    """No instances and all binaries present yields exit code 0."""
    report = DoctorEngine(probe_context).run(collect_probes(probe_context))

    assert report.summary.exit_code == 0
    results = {result.id: result for result in report.results}
    assert results["state-artifacts"].message == "No instances found."
    # config_dir does not exist yet; it is created on first use.
    assert results["fs-directories"].status is ProbeStatus.YELLOW


def test_missing_client_binary_is_environment_failure(
    tmp_path: Path,
    tool_bins: dict[str, Path],
    unit_dir: Path,
    config_dir: Path,
    fake_systemd: FakeSystemd,
) -> None:
    """A missing dnstt-client binary maps to the environment exit code."""
    config = _config(
        tmp_path,
        client_bin=tmp_path / "nowhere" / "dnstt-client",
        tool_bins=tool_bins,
        unit_dir=unit_dir,
        config_dir=config_dir,
    )
    provider = SystemdProvider(
        systemctl_bin=str(tool_bins["systemctl"]),
        journalctl_bin=str(tool_bins["journalctl"]),
    )
    context = ProbeContext(
        config=config,
        registry=InstanceRegistry(provider, config_dir=config_dir, unit_dir=unit_dir),
        systemd_provider=provider,
        templates=TemplateEngine.with_overrides(None),
    )

    report = DoctorEngine(context).run(collect_probes(context))

    result = next(item for item in report.results if item.id == "env-client")
    assert result.status is ProbeStatus.RED
    assert result.remediation
    assert report.summary.exit_code == DoctorImpact.ENVIRONMENT.value


def test_missing_journalctl_only_warns(
    probe_context: ProbeContext,
    tool_bins: dict[str, Path],
) -> None:
    """Logs being unavailable is a warning, not a failure."""
    tool_bins["journalctl"].unlink()

    result = _run(probe_context)["env-journalctl"]

    assert result.status is ProbeStatus.YELLOW
    assert result.impact is DoctorImpact.OK


def test_broken_template_override_fails(
    probe_context: ProbeContext,
    tmp_path: Path,
) -> None:
    """Overrides referencing unknown variables are caught before use."""
    override = tmp_path / "templates" / "systemd"
    override.mkdir(parents=True)
    (override / "client.service.j2").write_text("{{ no_such_value }}\n", encoding="utf-8")
    context = ProbeContext(
        config=probe_context.config,
        registry=probe_context.registry,
        systemd_provider=probe_context.systemd_provider,
        templates=TemplateEngine.with_overrides(tmp_path / "templates"),
    )

    result = _run(context)["templates-render"]

    assert result.status is ProbeStatus.RED
    assert result.impact is DoctorImpact.ENVIRONMENT


def test_partial_health_group_is_validation_failure(
    probe_context: ProbeContext,
    controller: LifecycleController,
) -> None:
    """An instance with half a health-check group is flagged."""
    _create(controller, health_check=HealthCheck(command="true"))
    controller.generator.paths_for(NAME).script.unlink()

    result = _run(probe_context)["state-artifacts"]

    assert result.status is ProbeStatus.RED
    assert result.impact is DoctorImpact.VALIDATION
    assert "script" in result.data["problems"][NAME]  # type: ignore[index]


def test_missing_key_is_validation_failure(
    probe_context: ProbeContext,
    controller: LifecycleController,
) -> None:
    """A unit without its key file is inconsistent."""
    _create(controller)
    controller.generator.paths_for(NAME).key.unlink()

    result = _run(probe_context)["state-artifacts"]

    assert result.status is ProbeStatus.RED
    assert result.data["problems"][NAME] == "missing key"  # type: ignore[index]


def test_stopped_instance_warns(
    probe_context: ProbeContext,
    controller: LifecycleController,
    fake_systemd: FakeSystemd,
) -> None:
    """Stopped instances are reported as warnings."""
    _create(controller)
    fake_systemd.active.clear()

    result = _run(probe_context)["systemd-status"]

    assert result.status is ProbeStatus.YELLOW
    assert result.data == {"stopped": [NAME], "disabled": []}
    assert result.warnings == (f"stopped:{NAME}",)


def test_running_instances_are_green(
    probe_context: ProbeContext,
    controller: LifecycleController,
) -> None:
    """Healthy instances pass both instance probes."""
    _create(controller, health_check=HealthCheck(command="true"))

    results = _run(probe_context)

    assert results["state-artifacts"].status is ProbeStatus.GREEN
    assert results["systemd-status"].status is ProbeStatus.GREEN


def test_unreachable_systemd_is_provider_failure(
    probe_context: ProbeContext,
    fake_systemd: FakeSystemd,
) -> None:
    """Listing failures map to the provider exit code."""
    fake_systemd.fail("list-unit-files", message="Failed to connect to bus")

    report = DoctorEngine(probe_context).run(collect_probes(probe_context))

    assert report.summary.exit_code == DoctorImpact.PROVIDER.value
