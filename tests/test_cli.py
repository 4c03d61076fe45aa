"""Tests for the dnsttctl command line."""
from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner, Result

from dnsttctl import __version__
from dnsttctl.cli import app

if TYPE_CHECKING:
    from conftest import FakeSystemd

runner = CliRunner()

NAME = "dnstt-client-t_example_com_7000"
OTHER = "dnstt-client-t_example_com_7001"


def _extract_json(output: str) -> dict[str, object]:
    """Extract the first JSON object embedded in *output*."""
    start = output.find("{")
    end = output.rfind("}")
    assert start != -1 and end != -1, f"No JSON payload found in output: {output}"
    return json.loads(output[start : end + 1])


def _invoke(env: dict[str, str], args: list[str], *, input: str | None = None) -> Result:
    return runner.invoke(app, args, env=env, input=input)


def _create(env: dict[str, str], port: int = 7000, *extra: str) -> Result:
    result = _invoke(
        env,
        ["create", "-d", "t.example.com", "-k", "deadbeef", "-p", str(port), "--yes", *extra],
    )
    assert result.exit_code == 0, result.stdout
    return result


def _operations(env: dict[str, str]) -> list[dict[str, object]]:
    path = Path(env["DNSTTCTL_LOGS_DIR"]) / "operations.jsonl"
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_version_flag(cli_env: dict[str, str]) -> None:
    """--version prints the package version and exits cleanly."""
    result = _invoke(cli_env, ["--version"])

    assert result.exit_code == 0
    assert f"dnsttctl {__version__}" in result.stdout


def test_create_provisions_instance(
    cli_env: dict[str, str],
    unit_dir: Path,
    config_dir: Path,
    fake_systemd: FakeSystemd,
) -> None:
    """create writes the artifacts and starts the unit."""
    result = _create(
        cli_env,
        7000,
        "--health-check",
        "curl -sf --socks5 127.0.0.1:7000 https://example.com",
        "--interval",
        "120",
    )

    assert f"Created {NAME}" in result.stdout
    assert (unit_dir / f"{NAME}.service").exists()
    assert (unit_dir / f"{NAME}-healthcheck.timer").exists()
    assert (config_dir / f"{NAME}.pub").read_text(encoding="utf-8") == "deadbeef\n"
    assert f"{NAME}.service" in fake_systemd.active
    record = _operations(cli_env)[-1]
    assert record["command"] == "create"
    assert record["result"]["status"] == "success"  # type: ignore[index]
    assert record["lock_wait_ms"] is not None


def test_create_uses_config_defaults(cli_env: dict[str, str], unit_dir: Path) -> None:
    """Resolver and port default to the configured values."""
    Path(cli_env["DNSTTCTL_CONFIG_FILE"]).write_text(
        "defaults:\n  resolver: 9.9.9.9:53\n  listen_port: 7100\n", encoding="utf-8"
    )

    result = _invoke(cli_env, ["create", "-d", "t.example.com", "-k", "deadbeef", "--yes"])

    assert result.exit_code == 0, result.stdout
    unit = (unit_dir / "dnstt-client-t_example_com_7100.service").read_text(encoding="utf-8")
    assert "-udp 9.9.9.9:53" in unit
    assert "127.0.0.1:7100" in unit


def test_create_collision_is_rejected(cli_env: dict[str, str], fake_systemd: FakeSystemd) -> None:
    """Creating the same domain and port twice fails with exit code 2."""
    _create(cli_env)
    before = fake_systemd.mutating_calls()

    result = _invoke(cli_env, ["create", "-d", "t.example.com", "-k", "other", "--yes"])

    assert result.exit_code == 2
    assert "already exists" in result.stdout
    assert fake_systemd.mutating_calls() == before


def test_create_force_replaces(cli_env: dict[str, str], config_dir: Path) -> None:
    """--force overwrites an existing instance."""
    _create(cli_env)

    result = _invoke(
        cli_env, ["create", "-d", "t.example.com", "-k", "cafebabe", "--force", "--yes"]
    )

    assert result.exit_code == 0, result.stdout
    assert f"Replaced {NAME}" in result.stdout
    assert (config_dir / f"{NAME}.pub").read_text(encoding="utf-8") == "cafebabe\n"


def test_create_without_client_binary_exits_3(
    cli_env: dict[str, str],
    tmp_path: Path,
    unit_dir: Path,
) -> None:
    """A missing dnstt-client binary is an environment error."""
    env = {**cli_env, "DNSTTCTL_CLIENT_BIN": str(tmp_path / "missing" / "dnstt-client")}

    result = _invoke(env, ["create", "-d", "t.example.com", "-k", "deadbeef", "--yes"])

    assert result.exit_code == 3
    assert "not found" in result.stdout
    assert list(unit_dir.iterdir()) == []


def test_create_invalid_port_exits_2(cli_env: dict[str, str]) -> None:
    """Ports outside 1-65535 are rejected before anything is written."""
    result = _invoke(
        cli_env, ["create", "-d", "t.example.com", "-k", "deadbeef", "-p", "70000", "--yes"]
    )

    assert result.exit_code == 2


def test_create_systemd_failure_exits_4(
    cli_env: dict[str, str],
    unit_dir: Path,
    fake_systemd: FakeSystemd,
) -> None:
    """A systemd refusal is a provider error and leaves no files behind."""
    fake_systemd.fail("start", f"{NAME}.service", "Job failed")

    result = _invoke(cli_env, ["create", "-d", "t.example.com", "-k", "deadbeef", "--yes"])

    assert result.exit_code == 4
    assert list(unit_dir.iterdir()) == []


def test_create_prompts_for_confirmation(cli_env: dict[str, str], unit_dir: Path) -> None:
    """Declining the confirmation leaves the host untouched."""
    result = _invoke(
        cli_env, ["create", "-d", "t.example.com", "-k", "deadbeef"], input="n\n"
    )

    assert result.exit_code == 0
    assert "cancelled" in result.stdout
    assert list(unit_dir.iterdir()) == []


def test_list_json(cli_env: dict[str, str], fake_systemd: FakeSystemd) -> None:
    """list --json reports name, state and enabled flag."""
    _create(cli_env, 7000, "--health-check", "true")
    _create(cli_env, 7001)
    fake_systemd.active.discard(f"{OTHER}.service")

    result = _invoke(cli_env, ["list", "--json"])

    assert result.exit_code == 0
    assert _extract_json(result.stdout) == {
        "instances": [
            {"name": NAME, "state": "running", "enabled": True},
            {"name": OTHER, "state": "stopped", "enabled": True},
        ]
    }


def test_list_table_when_empty(cli_env: dict[str, str]) -> None:
    """An empty host renders a placeholder row."""
    result = _invoke(cli_env, ["list"])

    assert result.exit_code == 0
    assert "(none)" in result.stdout


def test_list_systemd_failure_exits_4(cli_env: dict[str, str], fake_systemd: FakeSystemd) -> None:
    """Listing failures are provider errors."""
    fake_systemd.fail("list-unit-files", message="Failed to connect to bus")

    result = _invoke(cli_env, ["list"])

    assert result.exit_code == 4


def test_remove_mixed_selection(cli_env: dict[str, str], unit_dir: Path) -> None:
    """Valid positions are removed, invalid ones reported as warnings."""
    _create(cli_env)

    result = _invoke(cli_env, ["remove", "1,99,abc", "--yes"])

    assert result.exit_code == 0, result.stdout
    assert "Invalid selection: 99" in result.stdout
    assert "Invalid selection: abc" in result.stdout
    assert f"Removed {NAME}" in result.stdout
    assert list(unit_dir.iterdir()) == []
    record = _operations(cli_env)[-1]
    assert record["result"]["status"] == "warning"  # type: ignore[index]


def test_remove_all(cli_env: dict[str, str], unit_dir: Path, fake_systemd: FakeSystemd) -> None:
    """'all' removes every instance with a single daemon-reload."""
    _create(cli_env, 7000, "--health-check", "true")
    _create(cli_env, 7001)
    fake_systemd.calls.clear()

    result = _invoke(cli_env, ["remove", "all", "--yes"])

    assert result.exit_code == 0, result.stdout
    assert list(unit_dir.iterdir()) == []
    assert fake_systemd.mutating_calls().count(["daemon-reload"]) == 1


def test_remove_nothing_valid_is_noop(cli_env: dict[str, str], unit_dir: Path) -> None:
    """A selection with no usable entries warns and removes nothing."""
    _create(cli_env)

    result = _invoke(cli_env, ["remove", "abc", "--yes"])

    assert result.exit_code == 0, result.stdout
    assert "Invalid selection: abc" in result.stdout
    assert "No valid instances selected" in result.stdout
    assert (unit_dir / f"{NAME}.service").exists()
    record = _operations(cli_env)[-1]
    assert record["command"] == "remove"
    assert record["result"]["status"] == "warning"  # type: ignore[index]


def test_remove_requires_confirmation(cli_env: dict[str, str], unit_dir: Path) -> None:
    """Without --yes the operator must confirm."""
    _create(cli_env)

    result = _invoke(cli_env, ["remove", "1"], input="n\n")

    assert result.exit_code == 0
    assert "Removal cancelled" in result.stdout
    assert (unit_dir / f"{NAME}.service").exists()


def test_show_json(cli_env: dict[str, str]) -> None:
    """show resolves positions and reports the recovered configuration."""
    _create(cli_env, 7000, "--health-check", "true", "--resolver", "1.1.1.1:53")

    result = _invoke(cli_env, ["show", "1", "--json"])

    assert result.exit_code == 0, result.stdout
    payload = _extract_json(result.stdout)
    assert payload["name"] == NAME
    assert payload["domain"] == "t.example.com"
    assert payload["resolver"] == "1.1.1.1:53"
    assert payload["listen"] == "127.0.0.1:7000"
    assert payload["consistent"] is True
    assert payload["health_check"]["state"] == "complete"  # type: ignore[index]


def test_show_unknown_instance_exits_2(cli_env: dict[str, str]) -> None:
    """Unknown names are validation errors."""
    result = _invoke(cli_env, ["show", "dnstt-client-nope_1"])

    assert result.exit_code == 2


def test_logs_no_follow(cli_env: dict[str, str], fake_systemd: FakeSystemd) -> None:
    """logs --no-follow prints the journal and exits."""
    _create(cli_env)

    result = _invoke(cli_env, ["logs", "1", "--no-follow", "-n", "5"])

    assert result.exit_code == 0, result.stdout
    assert "dnstt-client: connected" in result.stdout
    journal_call = fake_systemd.calls[-1]
    assert Path(journal_call[0]).name == "journalctl"
    assert journal_call[1:] == ["-u", f"{NAME}.service", "--no-pager", "--lines", "5"]


def test_logs_by_name(cli_env: dict[str, str], fake_systemd: FakeSystemd) -> None:
    """Instances can be addressed by name as well as position."""
    _create(cli_env)

    result = _invoke(cli_env, ["logs", NAME, "--no-follow"])

    assert result.exit_code == 0


def test_logs_invalid_selection(cli_env: dict[str, str]) -> None:
    """An out-of-range position is rejected."""
    result = _invoke(cli_env, ["logs", "3", "--no-follow"])

    assert result.exit_code == 2
    assert "Invalid selection" in result.stdout


def test_config_show_json(cli_env: dict[str, str], unit_dir: Path) -> None:
    """config show reflects environment overrides."""
    result = _invoke(cli_env, ["config", "show", "--json"])

    assert result.exit_code == 0
    payload = _extract_json(result.stdout)
    assert payload["client_bin"] == cli_env["DNSTTCTL_CLIENT_BIN"]
    assert payload["systemd"]["unit_dir"] == str(unit_dir)  # type: ignore[index]


def test_invalid_config_exits_2(cli_env: dict[str, str]) -> None:
    """A broken config file stops every command."""
    Path(cli_env["DNSTTCTL_CONFIG_FILE"]).write_text("on_conflict: merge\n", encoding="utf-8")

    result = _invoke(cli_env, ["list"])

    assert result.exit_code == 2
    assert "on_conflict" in result.stdout


def test_doctor_json(cli_env: dict[str, str]) -> None:
    """doctor --json reports a clean host with exit code 0."""
    _create(cli_env)

    result = _invoke(cli_env, ["doctor", "--json"])

    assert result.exit_code == 0, result.stdout
    payload = _extract_json(result.stdout)
    assert payload["summary"]["exit_code"] == 0  # type: ignore[index]
    ids = {item["id"] for item in payload["results"]}  # type: ignore[union-attr]
    assert {"env-client", "state-artifacts", "systemd-status"} <= ids


def test_doctor_failure_sets_exit_code(cli_env: dict[str, str], config_dir: Path) -> None:
    """Inconsistent artifacts make doctor exit with the validation code."""
    _create(cli_env)
    (config_dir / f"{NAME}.pub").unlink()

    result = _invoke(cli_env, ["doctor"])

    assert result.exit_code == 2
    assert "state-artifacts" in result.stdout


@pytest.mark.parametrize("args", [[], ["menu"]])
def test_menu_status_and_exit(cli_env: dict[str, str], args: list[str]) -> None:
    """The menu shows status and exits on 0."""
    _create(cli_env)

    result = _invoke(cli_env, args, input="3\n0\n")

    assert result.exit_code == 0, result.stdout
    assert "dnstt Client Management" in result.stdout
    assert NAME in result.stdout
    assert "Goodbye!" in result.stdout


def test_menu_invalid_option_loops(cli_env: dict[str, str]) -> None:
    """Unknown options are reported and the menu is shown again."""
    result = _invoke(cli_env, [], input="9\n0\n")

    assert result.exit_code == 0
    assert "Invalid option." in result.stdout


def test_menu_create_flow(cli_env: dict[str, str], unit_dir: Path) -> None:
    """Option 1 prompts for each field and creates the instance."""
    answers = "\n".join(
        [
            "1",
            "t.example.com",  # domain
            "",  # resolver default
            "",  # port default
            "deadbeef",  # public key
            "",  # extra args
            "",  # no health check
            "y",  # confirm
            "0",
        ]
    )

    result = _invoke(cli_env, [], input=answers + "\n")

    assert result.exit_code == 0, result.stdout
    assert f"Created {NAME}" in result.stdout
    assert (unit_dir / f"{NAME}.service").exists()


def test_menu_remove_flow(cli_env: dict[str, str], unit_dir: Path) -> None:
    """Option 2 lists instances, takes a selection and confirms."""
    _create(cli_env)

    result = _invoke(cli_env, [], input="2\n1\ny\n0\n")

    assert result.exit_code == 0, result.stdout
    assert f"Removed {NAME}" in result.stdout
    assert list(unit_dir.iterdir()) == []


def test_menu_survives_non_ascii_digit_selection(cli_env: dict[str, str], unit_dir: Path) -> None:
    """A superscript digit is an invalid selection, not a crash."""
    _create(cli_env)

    result = _invoke(cli_env, [], input="2\n²\n0\n")

    assert result.exit_code == 0, result.stdout
    assert "Invalid selection: ²" in result.stdout
    assert "Goodbye!" in result.stdout
    assert (unit_dir / f"{NAME}.service").exists()


def _blocked_runtime(env: dict[str, str], tmp_path: Path) -> dict[str, str]:
    blocker = tmp_path / "blocked"
    blocker.write_text("not a directory", encoding="utf-8")
    return {**env, "DNSTTCTL_RUNTIME_DIR": str(blocker / "run")}


def test_create_with_unusable_runtime_dir_exits_3(
    cli_env: dict[str, str],
    tmp_path: Path,
    unit_dir: Path,
) -> None:
    """A lock directory that cannot be created is an environment error."""
    env = _blocked_runtime(cli_env, tmp_path)

    result = _invoke(
        env,
        ["create", "-d", "t.example.com", "-k", "deadbeef", "-p", "7000", "--yes"],
    )

    assert result.exit_code == 3, result.stdout
    assert "Cannot open lock" in result.stdout
    assert not (unit_dir / f"{NAME}.service").exists()


def test_menu_remove_with_unusable_runtime_dir_keeps_running(
    cli_env: dict[str, str],
    tmp_path: Path,
    unit_dir: Path,
) -> None:
    """A lock failure during menu removal is reported and the menu continues."""
    _create(cli_env)
    env = _blocked_runtime(cli_env, tmp_path)

    result = _invoke(env, [], input="2\n1\ny\n0\n")

    assert result.exit_code == 0, result.stdout
    assert "Cannot open lock" in result.stdout
    assert "Goodbye!" in result.stdout
    assert (unit_dir / f"{NAME}.service").exists()


def test_menu_requires_client_binary(cli_env: dict[str, str], tmp_path: Path) -> None:
    """The menu refuses to start without dnstt-client."""
    env = {**cli_env, "DNSTTCTL_CLIENT_BIN": str(tmp_path / "missing")}

    result = _invoke(env, [], input="0\n")

    assert result.exit_code == 3
