"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import fnmatch
import os
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from dnsttctl.artifacts import ArtifactGenerator
from dnsttctl.lifecycle import LifecycleController
from dnsttctl.providers import systemd as systemd_module
from dnsttctl.providers.systemd import SystemdProvider
from dnsttctl.state.registry import InstanceRegistry
from dnsttctl.templates import TemplateEngine

QUERY_COMMANDS = {"list-unit-files", "is-active", "is-enabled", "status"}


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@dataclass
class FakeSystemd:
    """In-memory stand-in for ``systemctl`` and ``journalctl``.

    Unit files are discovered from ``unit_dir`` so the fake agrees with
    whatever the code under test wrote to disk.
    """

    unit_dir: Path
    calls: list[list[str]] = field(default_factory=list)
    active: set[str] = field(default_factory=set)
    enabled: set[str] = field(default_factory=set)
    failures: dict[tuple[str, str | None], str] = field(default_factory=dict)
    journal: str = "-- Logs begin --\ndnstt-client: connected\n"

    def fail(self, command: str, unit: str | None = None, message: str = "boom") -> None:
        """Make ``systemctl <command> [unit]`` exit non-zero."""
        self.failures[(command, unit)] = message

    def systemctl_calls(self) -> list[list[str]]:
        return [call[1:] for call in self.calls if Path(call[0]).name == "systemctl"]

    def mutating_calls(self) -> list[list[str]]:
        """Return systemctl invocations that change systemd state."""
        return [call for call in self.systemctl_calls() if call[0] not in QUERY_COMMANDS]

    def __call__(self, args: Sequence[str], **_kwargs: object) -> subprocess.CompletedProcess[str]:
        argv = list(args)
        self.calls.append(argv)
        if Path(argv[0]).name == "journalctl":
            return subprocess.CompletedProcess(argv, 0, stdout=self.journal, stderr="")
        command = argv[1]
        operands = [item for item in argv[2:] if not item.startswith("--")]
        unit = operands[0] if operands else None

        for key in ((command, unit), (command, None)):
            if key in self.failures:
                return subprocess.CompletedProcess(argv, 1, stdout="", stderr=self.failures[key])

        if command == "list-unit-files":
            pattern = unit or "*"
            lines = [
                f"{path.name} enabled enabled"
                for path in sorted(self.unit_dir.glob("*.service"))
                if fnmatch.fnmatch(path.name, pattern)
            ]
            return _done(argv, stdout="\n".join(lines) + ("\n" if lines else ""))
        if command == "is-active":
            return _done(argv, 0 if unit in self.active else 3)
        if command == "is-enabled":
            return _done(argv, 0 if unit in self.enabled else 1)
        if command == "daemon-reload":
            return _done(argv)
        if command == "status":
            return _done(argv, 0 if unit in self.active else 3, stdout=f"{unit} status\n")

        assert unit is not None
        installed = (self.unit_dir / unit).exists()
        if command in {"start", "restart"}:
            if not installed:
                return _done(argv, 5, stderr=f"Failed to start {unit}: Unit {unit} not found.")
            self.active.add(unit)
        elif command == "stop":
            if not installed and unit not in self.active:
                return _done(argv, 5, stderr=f"Failed to stop {unit}: Unit {unit} not loaded.")
            self.active.discard(unit)
        elif command == "enable":
            if not installed:
                return _done(argv, 1, stderr=f"Failed to enable unit: Unit file {unit} does not exist.")
            self.enabled.add(unit)
        elif command == "disable":
            if not installed and unit not in self.enabled:
                return _done(argv, 1, stderr=f"Failed to disable unit: Unit file {unit} does not exist.")
            self.enabled.discard(unit)
        return _done(argv)


def _done(
    argv: list[str],
    returncode: int = 0,
    *,
    stdout: str = "",
    stderr: str = "",
) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(argv, returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def unit_dir(tmp_path: Path) -> Path:
    path = tmp_path / "systemd"
    path.mkdir()
    return path


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    return tmp_path / "etc" / "dnstt-client"


@pytest.fixture
def client_bin(tmp_path: Path) -> Path:
    binary = tmp_path / "bin" / "dnstt-client"
    binary.parent.mkdir(parents=True)
    binary.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    binary.chmod(0o755)
    return binary


@pytest.fixture
def tool_bins(tmp_path: Path, client_bin: Path) -> dict[str, Path]:
    """Executable stand-ins so PATH lookups for systemctl/journalctl succeed."""
    tools: dict[str, Path] = {}
    for tool in ("systemctl", "journalctl"):
        path = client_bin.parent / tool
        path.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
        path.chmod(0o755)
        tools[tool] = path
    return tools


@pytest.fixture
def fake_systemd(unit_dir: Path, monkeypatch: pytest.MonkeyPatch) -> FakeSystemd:
    """Route every systemctl/journalctl call through :class:`FakeSystemd`."""
    fake = FakeSystemd(unit_dir=unit_dir)
    monkeypatch.setattr(systemd_module.subprocess, "run", fake)
    return fake


@pytest.fixture
def provider(fake_systemd: FakeSystemd) -> SystemdProvider:
    return SystemdProvider()


@pytest.fixture
def registry(provider: SystemdProvider, config_dir: Path, unit_dir: Path) -> InstanceRegistry:
    return InstanceRegistry(provider, config_dir=config_dir, unit_dir=unit_dir)


@pytest.fixture
def generator(config_dir: Path, unit_dir: Path, client_bin: Path) -> ArtifactGenerator:
    return ArtifactGenerator(
        TemplateEngine.with_overrides(None),
        config_dir=config_dir,
        unit_dir=unit_dir,
        client_bin=client_bin,
    )


@pytest.fixture
def controller(
    provider: SystemdProvider,
    registry: InstanceRegistry,
    generator: ArtifactGenerator,
) -> LifecycleController:
    return LifecycleController(provider=provider, registry=registry, generator=generator)


@pytest.fixture
def cli_env(
    tmp_path: Path,
    fake_systemd: FakeSystemd,
    config_dir: Path,
    unit_dir: Path,
    client_bin: Path,
    tool_bins: dict[str, Path],
) -> dict[str, str]:
    """Environment pointing every dnsttctl path into ``tmp_path``."""
    return {
        "DNSTTCTL_CONFIG_FILE": str(tmp_path / "config.yml"),
        "DNSTTCTL_CONFIG_DIR": str(config_dir),
        "DNSTTCTL_LOGS_DIR": str(tmp_path / "logs"),
        "DNSTTCTL_RUNTIME_DIR": str(tmp_path / "run"),
        "DNSTTCTL_TEMPLATES_DIR": str(tmp_path / "templates"),
        "DNSTTCTL_CLIENT_BIN": str(client_bin),
        "DNSTTCTL_SYSTEMD__UNIT_DIR": str(unit_dir),
        "DNSTTCTL_SYSTEMD__SYSTEMCTL_BIN": str(tool_bins["systemctl"]),
        "DNSTTCTL_SYSTEMD__JOURNALCTL_BIN": str(tool_bins["journalctl"]),
        "DNSTTCTL_LOCK_TIMEOUT": "2",
    }
