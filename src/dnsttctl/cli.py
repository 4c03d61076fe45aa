"""Typer-powered command line for ``dnsttctl``.

Running ``dnsttctl`` without a subcommand opens the interactive menu. Every
other command is a scriptable equivalent of one menu entry plus a few
inspection helpers (``show``, ``doctor``, ``config show``).
"""
from __future__ import annotations

import json
import os
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .artifacts import ArtifactGenerator, ArtifactWriteError
from .config import AppConfig, ConfigError, load_config
from .doctor import DoctorEngine, DoctorReport, ProbeContext, ProbeStatus, collect_probes
from .exit_codes import ExitCode
from .lifecycle import CreateResult, LifecycleController, LifecycleError, RemovalReport
from .locking import LockError, LockManager
from .logging import OperationScope, StructuredLogger
from .models import HealthCheck, Instance, InstanceStatus
from .providers import SystemdError, SystemdProvider
from .selection import parse_position, parse_selection
from .state import InstanceRegistry
from .templates import TemplateEngine, TemplateRenderError

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to dnsttctl's YAML config file.",
)
JSON_OPTION = typer.Option(False, "--json", help="Emit JSON instead of a table.")
YES_OPTION = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt.")

_PROBE_STATUS_STYLE = {
    ProbeStatus.GREEN: "[green]OK[/green]",
    ProbeStatus.YELLOW: "[yellow]WARN[/yellow]",
    ProbeStatus.RED: "[red]FAIL[/red]",
}

_CREATE_ERRORS = (
    ValueError,
    LifecycleError,
    ArtifactWriteError,
    TemplateRenderError,
    SystemdError,
    LockError,
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Provision and tear down dnstt-client tunnel instances under systemd.

        Run without a command to open the interactive menu.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


@dataclass(slots=True)
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    locks: LockManager
    logger: StructuredLogger
    templates: TemplateEngine
    systemd_provider: SystemdProvider
    registry: InstanceRegistry
    generator: ArtifactGenerator
    lifecycle: LifecycleController


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    lock_timeout_override: float | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override
    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    templates = TemplateEngine.with_overrides(config.templates_dir)
    provider = SystemdProvider(
        systemctl_bin=config.systemd.systemctl_bin,
        journalctl_bin=config.systemd.journalctl_bin,
    )
    registry = InstanceRegistry(
        provider,
        config_dir=config.config_dir,
        unit_dir=config.systemd.unit_dir,
        prefix=config.service_prefix,
    )
    generator = ArtifactGenerator(
        templates,
        config_dir=config.config_dir,
        unit_dir=config.systemd.unit_dir,
        client_bin=config.client_bin,
        systemctl_bin=config.systemd.systemctl_bin,
        probe_delay=config.health_check.probe_delay,
        boot_delay=config.health_check.boot_delay,
    )
    runtime = RuntimeContext(
        config=config,
        locks=LockManager(config.runtime_dir, config.lock_timeout),
        logger=StructuredLogger(config.logs_dir),
        templates=templates,
        systemd_provider=provider,
        registry=registry,
        generator=generator,
        lifecycle=LifecycleController(
            provider=provider,
            registry=registry,
            generator=generator,
            prefix=config.service_prefix,
            on_conflict=config.on_conflict,
        ),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the dnsttctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override lock acquisition timeout in seconds.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    runtime = _ensure_runtime(ctx, config_file, lock_timeout)
    if version:
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"dnsttctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        _run_menu(runtime)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _client_binary_problem(runtime: RuntimeContext) -> str | None:
    binary = runtime.config.client_bin
    if not binary.is_file():
        return f"dnstt-client not found at {binary}. Install it before creating instances."
    if not os.access(binary, os.X_OK):
        return f"dnstt-client at {binary} is not executable."
    return None


def _exit_code_for(exc: BaseException) -> ExitCode:
    if isinstance(exc, SystemdError):
        return ExitCode.PROVIDER
    if isinstance(exc, (ArtifactWriteError, TemplateRenderError, LockError)):
        return ExitCode.ENVIRONMENT
    return ExitCode.VALIDATION


def _health_check_from(
    runtime: RuntimeContext,
    command: str | None,
    interval: int | None,
) -> HealthCheck | None:
    if not command or not command.strip():
        return None
    defaults = runtime.config.health_check
    return HealthCheck(
        command=command.strip(),
        interval=defaults.interval if interval is None else interval,
        max_attempts=defaults.max_attempts,
        retry_delay=defaults.retry_delay,
        settle_delay=defaults.settle_delay,
    )


def _perform_create(
    runtime: RuntimeContext,
    op: OperationScope,
    instance: Instance,
    *,
    overwrite: bool,
) -> CreateResult:
    name = runtime.lifecycle.name_for(instance)
    with runtime.locks.mutate_instances([name]) as bundle:
        op.set_lock_wait_ms(bundle.wait_ms)
        return runtime.lifecycle.create(instance, overwrite=overwrite, scope=op)


def _perform_remove(
    runtime: RuntimeContext,
    op: OperationScope,
    names: Sequence[str],
) -> RemovalReport:
    with runtime.locks.mutate_instances(names) as bundle:
        op.set_lock_wait_ms(bundle.wait_ms)
        return runtime.lifecycle.remove(names, scope=op)


def _report_created(runtime: RuntimeContext, result: CreateResult, instance: Instance) -> None:
    verb = "Replaced" if result.replaced else "Created"
    console.print(f"[green]{verb} {result.name}[/green]")
    status = runtime.registry.status(result.name)
    console.print(f"  state: {_state_markup(status)}  enabled: {_yes_no(status.enabled)}")
    console.print(f"  listening on {instance.listen_address}")
    if result.health_check and instance.health_check is not None:
        console.print(
            f"  health check every {instance.health_check.interval}s "
            f"({result.paths.timer_name})"
        )


def _report_removal(report: RemovalReport) -> None:
    for outcome in report.outcomes:
        if not outcome.ok:
            console.print(f"[red]Failed to fully remove {outcome.name}[/red]")
            for message in outcome.errors:
                console.print(f"  [red]{message}[/red]")
        else:
            console.print(f"[green]Removed {outcome.name}[/green]")
        for message in outcome.warnings:
            console.print(f"  [yellow]{message}[/yellow]")
    if report.reload_error:
        console.print(f"[yellow]daemon-reload failed: {report.reload_error}[/yellow]")


def _state_markup(status: InstanceStatus) -> str:
    return "[green]running[/green]" if status.running else "[red]stopped[/red]"


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def _status_table(statuses: Sequence[InstanceStatus]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("State")
    table.add_column("Enabled")
    if not statuses:
        table.add_row("", "(none)", "", "")
    for index, status in enumerate(statuses, start=1):
        table.add_row(str(index), status.name, _state_markup(status), _yes_no(status.enabled))
    return table


def _resolve_instance(runtime: RuntimeContext, token: str) -> str | None:
    """Map a 1-based index or an instance name onto a known instance."""
    names = runtime.registry.list_instances()
    text = token.strip()
    position = parse_position(text)
    if position is not None:
        return names[position - 1] if position <= len(names) else None
    if text in names:
        return text
    if any(path.exists() for path in runtime.registry.paths_for(text).all()):
        return text
    return None


def _render_doctor_report(report: DoctorReport) -> None:
    summary = report.summary
    totals = summary.totals
    console.print(
        f"Doctor summary: {_PROBE_STATUS_STYLE[summary.status]} "
        f"(impact={summary.impact.name.lower()}, exit={summary.exit_code})"
    )
    console.print(
        f"Totals: green={totals.get(ProbeStatus.GREEN, 0)} "
        f"warn={totals.get(ProbeStatus.YELLOW, 0)} red={totals.get(ProbeStatus.RED, 0)}"
    )
    console.print()
    for result in report.results:
        console.print(
            f"{_PROBE_STATUS_STYLE[result.status]} \\[{result.category}] {result.id}: "
            f"{result.message}"
        )
        if result.remediation:
            console.print(f"  remediation: {result.remediation}")
        if result.data and result.is_failure:
            console.print(f"  details: {json.dumps(dict(result.data), sort_keys=True)}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def create(
    ctx: typer.Context,
    domain: str = typer.Option(..., "--domain", "-d", prompt="Tunnel domain", help="Tunnel domain."),
    pubkey: str = typer.Option(
        ...,
        "--pubkey",
        "-k",
        prompt="Server public key",
        help="Public key of the dnstt server.",
    ),
    resolver: str | None = typer.Option(
        None, "--resolver", "-r", help="DNS resolver address (default from config)."
    ),
    port: int | None = typer.Option(
        None, "--port", "-p", help="Local listening port (default from config)."
    ),
    extra_args: str = typer.Option("", "--extra-args", help="Extra dnstt-client arguments."),
    health_check: str | None = typer.Option(
        None,
        "--health-check",
        help="Shell command probing the tunnel; enables the health-check timer.",
    ),
    interval: int | None = typer.Option(
        None, "--interval", help="Health-check interval in seconds."
    ),
    force: bool = typer.Option(
        False, "--force", help="Overwrite an existing instance with the same name."
    ),
    yes: bool = YES_OPTION,
) -> None:
    """Create, enable and start a dnstt-client instance."""
    runtime = _get_runtime(ctx)
    defaults = runtime.config.defaults
    with runtime.logger.operation(
        "create",
        args={
            "domain": domain,
            "resolver": resolver,
            "port": port,
            "extra_args": extra_args,
            "health_check": bool(health_check),
            "interval": interval,
            "force": force,
        },
        target={"kind": "instance", "domain": domain},
    ) as op:
        problem = _client_binary_problem(runtime)
        if problem:
            _command_error(op, problem, rc=ExitCode.ENVIRONMENT)

        try:
            instance = Instance(
                domain=domain.strip(),
                public_key=pubkey.strip(),
                resolver=(resolver or defaults.resolver).strip(),
                listen_port=defaults.listen_port if port is None else port,
                listen_host=defaults.listen_host,
                extra_args=extra_args.strip(),
                health_check=_health_check_from(runtime, health_check, interval),
            )
            name = runtime.lifecycle.name_for(instance)
        except ValueError as exc:
            _command_error(op, str(exc))

        if not yes and not typer.confirm(f"Create instance '{name}'?", default=True):
            console.print("[yellow]Creation cancelled.[/yellow]")
            op.warning("Create cancelled by operator.", warnings=["user-cancelled"])
            return

        try:
            result = _perform_create(runtime, op, instance, overwrite=force)
        except _CREATE_ERRORS as exc:
            _command_error(op, str(exc), rc=_exit_code_for(exc))

        _report_created(runtime, result, instance)
        op.success(
            f"Instance {result.name} created.",
            changed=len(result.written),
            context=result.to_dict(),
        )


@app.command()
def remove(
    ctx: typer.Context,
    selection: str = typer.Argument(
        ..., help="'all' or comma separated positions from `dnsttctl list`, e.g. 1,3."
    ),
    yes: bool = YES_OPTION,
) -> None:
    """Stop, disable and delete the selected instances."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "remove",
        args={"selection": selection},
        target={"kind": "instance", "scope": "selection"},
    ) as op:
        try:
            names = runtime.registry.list_instances()
        except SystemdError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        chosen = parse_selection(selection, names)
        for message in chosen.warnings():
            console.print(f"[yellow]{message}[/yellow]")
        if chosen.empty:
            console.print("[yellow]No valid instances selected.[/yellow]")
            op.warning(
                "No valid instances selected.",
                warnings=chosen.warnings() or ["empty-selection"],
                changed=0,
            )
            return

        if not yes:
            console.print("[yellow]The following instances will be removed:[/yellow]")
            for name in chosen.names:
                console.print(f"  - {name}")
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[yellow]Removal cancelled.[/yellow]")
                op.warning("Removal cancelled by operator.", warnings=["user-cancelled"])
                return

        try:
            report = _perform_remove(runtime, op, chosen.names)
        except LockError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)

        _report_removal(report)
        context = {"outcomes": [item.to_dict() for item in report.outcomes]}
        if report.errors():
            _command_error(
                op,
                "Some instances could not be removed.",
                rc=ExitCode.ENVIRONMENT,
                errors=report.errors(),
            )
        warnings = chosen.warnings() + report.warnings()
        if warnings:
            op.warning(
                f"Removed {len(report.outcomes)} instance(s) with warnings.",
                warnings=warnings,
                changed=len(report.outcomes),
                context=context,
            )
            return
        op.success(
            f"Removed {len(report.outcomes)} instance(s).",
            changed=len(report.outcomes),
            context=context,
        )


@app.command("list")
def list_instances(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List instances with their running and enabled state."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "list",
        args={"json": json_output},
        target={"kind": "instance", "scope": "systemd"},
    ) as op:
        try:
            statuses = runtime.lifecycle.refresh_status()
        except SystemdError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)

        if json_output:
            console.print_json(data={"instances": [status.to_dict() for status in statuses]})
        else:
            console.print(_status_table(statuses))
        op.success("Reported instance list.", changed=0, context={"count": len(statuses)})


@app.command()
def show(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Instance name or its position in `dnsttctl list`."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the configuration recovered from an instance's files."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "show",
        args={"name": name, "json": json_output},
        target={"kind": "instance", "name": name},
    ) as op:
        try:
            resolved = _resolve_instance(runtime, name)
        except SystemdError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        if resolved is None:
            _command_error(op, f"Instance '{name}' not found.")
        record = runtime.registry.describe(resolved)
        payload = record.to_dict()

        if json_output:
            console.print_json(data=payload)
            op.success("Reported instance details as JSON.", changed=0)
            return

        table = Table(show_header=False)
        table.add_column("Field", style="bold")
        table.add_column("Value")
        table.add_row("Name", record.name)
        table.add_row("State", _state_markup(record.status))
        table.add_row("Enabled", _yes_no(record.status.enabled))
        table.add_row("Domain", record.domain or "")
        table.add_row("Resolver", record.resolver or "")
        table.add_row("Listen", record.listen_address or "")
        table.add_row("Extra args", record.extra_args)
        table.add_row("Health check", record.health_check_state)
        if record.health_command is not None:
            table.add_row("  command", record.health_command)
            table.add_row("  interval", record.health_interval or "")
        for key, present in record.present.items():
            path = getattr(record.paths, key)
            table.add_row(f"File ({key})", f"{path}" if present else f"[red]missing[/red] {path}")
        console.print(table)
        if not record.consistent:
            console.print("[yellow]Artifacts are incomplete; remove and recreate.[/yellow]")
            op.warning("Instance artifacts are inconsistent.", warnings=["inconsistent"])
            return
        op.success("Reported instance details.", changed=0)


@app.command()
def logs(
    ctx: typer.Context,
    target: str = typer.Argument(..., help="Instance name or its position in `dnsttctl list`."),
    no_follow: bool = typer.Option(False, "--no-follow", help="Print and exit instead of following."),
    lines: int | None = typer.Option(None, "--lines", "-n", help="Number of journal lines."),
) -> None:
    """Show the journal of an instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "logs",
        args={"target": target, "follow": not no_follow, "lines": lines},
        target={"kind": "instance", "name": target},
    ) as op:
        try:
            name = _resolve_instance(runtime, target)
        except SystemdError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        if name is None:
            _command_error(op, f"Invalid selection: {target}")
        _show_logs(runtime, op, name, follow=not no_follow, lines=lines)


def _show_logs(
    runtime: RuntimeContext,
    op: OperationScope,
    name: str,
    *,
    follow: bool,
    lines: int | None,
) -> None:
    if follow:
        console.print(f"Showing logs for {name} (press Ctrl+C to exit)...")
    try:
        result = runtime.lifecycle.logs(name, follow=follow, lines=lines)
    except SystemdError as exc:
        _command_error(op, str(exc), rc=ExitCode.PROVIDER)
    except KeyboardInterrupt:
        op.success(f"Stopped following logs for {name}.", changed=0)
        return
    if not follow and result.stdout:
        console.print(result.stdout, markup=False, highlight=False, end="")
    op.success(f"Displayed logs for {name}.", changed=0)


@app.command()
def doctor(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Run environment and instance health checks."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "doctor",
        args={"json": json_output},
        target={"kind": "system", "scope": "health"},
    ) as op:
        context = ProbeContext(
            config=runtime.config,
            registry=runtime.registry,
            systemd_provider=runtime.systemd_provider,
            templates=runtime.templates,
        )
        report = DoctorEngine(context).run(collect_probes(context))
        payload = report.to_dict()
        if json_output:
            console.print_json(data=payload)
        else:
            _render_doctor_report(report)

        summary = report.summary
        warning_ids = [r.id for r in report.results if r.status is ProbeStatus.YELLOW]
        if summary.exit_code == 0:
            if warning_ids:
                op.warning(
                    "Doctor completed with warnings.",
                    warnings=warning_ids,
                    context={"report": payload},
                )
            else:
                op.success("All doctor checks passed.", context={"report": payload})
            return
        failed = [r.id for r in report.results if r.is_failure]
        op.error(
            "Doctor detected issues.",
            errors=failed,
            rc=summary.exit_code,
            context={"report": payload},
        )
        raise typer.Exit(code=summary.exit_code)


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)
        console.print(table)
        op.success("Rendered configuration table.", changed=0)


@app.command()
def menu(ctx: typer.Context) -> None:
    """Open the interactive menu."""
    _run_menu(_get_runtime(ctx))


# ---------------------------------------------------------------------------
# Interactive menu
# ---------------------------------------------------------------------------

_MENU_TEXT = """
[bold]dnstt Client Management[/bold]
=======================

1) Create new dnstt-client instance
2) Remove existing dnstt-client instance(s)
3) Show all dnstt-client services status
4) View logs for a service
0) Exit
"""


def _run_menu(runtime: RuntimeContext) -> None:
    problem = _client_binary_problem(runtime)
    if problem:
        console.print(f"[red]{problem}[/red]")
        raise typer.Exit(code=ExitCode.ENVIRONMENT)

    actions = {
        "1": _menu_create,
        "2": _menu_remove,
        "3": _menu_status,
        "4": _menu_logs,
    }
    while True:
        console.print(_MENU_TEXT)
        choice = typer.prompt("Please select an option (0-4)", default="", show_default=False)
        choice = choice.strip()
        if choice == "0":
            console.print("Goodbye!")
            return
        action = actions.get(choice)
        if action is None:
            console.print("[red]Invalid option.[/red]")
            continue
        try:
            action(runtime)
        except typer.Exit:
            # Command helpers exit on failure; the menu keeps running.
            continue


def _prompt_required(label: str) -> str:
    while True:
        value = typer.prompt(label, default="", show_default=False).strip()
        if value:
            return value
        console.print(f"[red]{label} is required.[/red]")


def _prompt_int(label: str, default: int) -> int:
    while True:
        raw = typer.prompt(label, default=str(default)).strip()
        value = parse_position(raw)
        if value is not None:
            return value
        console.print(f"[red]{label} must be a positive number.[/red]")


def _menu_create(runtime: RuntimeContext) -> None:
    defaults = runtime.config.defaults
    domain = _prompt_required("Tunnel domain (e.g. t.example.com)")
    resolver = typer.prompt("DNS resolver", default=defaults.resolver).strip()
    port = _prompt_int("Local listening port", defaults.listen_port)
    pubkey = _prompt_required("Server public key")
    extra_args = typer.prompt("Extra arguments (optional)", default="", show_default=False)
    console.print("Health check (optional): a command that tests whether the tunnel works.")
    command = typer.prompt("Health check command (empty to skip)", default="", show_default=False)
    interval: int | None = None
    if command.strip():
        interval = _prompt_int("Health check interval (seconds)", runtime.config.health_check.interval)

    with runtime.logger.operation(
        "menu create",
        args={"domain": domain, "resolver": resolver, "port": port, "health_check": bool(command)},
        target={"kind": "instance", "domain": domain},
    ) as op:
        try:
            instance = Instance(
                domain=domain,
                public_key=pubkey,
                resolver=resolver or defaults.resolver,
                listen_port=port,
                listen_host=defaults.listen_host,
                extra_args=extra_args.strip(),
                health_check=_health_check_from(runtime, command, interval),
            )
            name = runtime.lifecycle.name_for(instance)
        except ValueError as exc:
            _command_error(op, str(exc))

        console.print(f"\nInstance:  {name}")
        console.print(f"Domain:    {instance.domain}")
        console.print(f"Resolver:  {instance.resolver}")
        console.print(f"Listen:    {instance.listen_address}")
        if instance.extra_args:
            console.print(f"Extra:     {instance.extra_args}")
        if instance.health_check is not None:
            console.print(
                f"Health:    {instance.health_check.command} "
                f"(every {instance.health_check.interval}s)"
            )
        if not typer.confirm("Create this instance?", default=True):
            console.print("[yellow]Creation cancelled.[/yellow]")
            op.warning("Create cancelled by operator.", warnings=["user-cancelled"])
            return

        try:
            exists = runtime.registry.exists(name)
        except SystemdError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        overwrite = False
        if exists and runtime.config.on_conflict != "overwrite":
            overwrite = typer.confirm(f"'{name}' already exists. Overwrite it?", default=False)
            if not overwrite:
                console.print("[yellow]Creation cancelled.[/yellow]")
                op.warning("Create cancelled: instance exists.", warnings=["exists"])
                return

        try:
            result = _perform_create(runtime, op, instance, overwrite=overwrite)
        except _CREATE_ERRORS as exc:
            _command_error(op, str(exc), rc=_exit_code_for(exc))
        _report_created(runtime, result, instance)
        op.success(
            f"Instance {result.name} created.",
            changed=len(result.written),
            context=result.to_dict(),
        )


def _menu_status(runtime: RuntimeContext) -> list[str]:
    with runtime.logger.operation("menu status", target={"kind": "instance"}) as op:
        try:
            statuses = runtime.lifecycle.refresh_status()
        except SystemdError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        console.print(_status_table(statuses))
        op.success("Reported instance list.", changed=0, context={"count": len(statuses)})
    return [status.name for status in statuses]


def _menu_remove(runtime: RuntimeContext) -> None:
    names = _menu_status(runtime)
    if not names:
        console.print("No instances to remove.")
        return
    raw = typer.prompt(
        "Enter instance number(s) to remove (comma-separated, e.g. 1,3) or 'all'",
        default="",
        show_default=False,
    )
    with runtime.logger.operation(
        "menu remove",
        args={"selection": raw},
        target={"kind": "instance", "scope": "selection"},
    ) as op:
        if not raw.strip():
            console.print("[yellow]No selection made.[/yellow]")
            op.warning("No selection made.", warnings=["empty-selection"])
            return
        chosen = parse_selection(raw, names)
        for message in chosen.warnings():
            console.print(f"[yellow]{message}[/yellow]")
        if chosen.empty:
            console.print("[yellow]No valid instances selected.[/yellow]")
            op.warning("No valid instances selected.", warnings=chosen.warnings())
            return

        console.print("[yellow]The following instances will be removed:[/yellow]")
        for name in chosen.names:
            console.print(f"  - {name}")
        if not typer.confirm("Confirm removal?", default=False):
            console.print("[yellow]Removal cancelled.[/yellow]")
            op.warning("Removal cancelled by operator.", warnings=["user-cancelled"])
            return

        try:
            report = _perform_remove(runtime, op, chosen.names)
        except LockError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        _report_removal(report)
        message = f"Removed {len(report.outcomes)} instance(s)."
        if report.ok and not chosen.invalid:
            op.success(message, changed=len(report.outcomes))
            return
        op.warning(
            message,
            warnings=chosen.warnings() + report.warnings(),
            errors=report.errors(),
            changed=len(report.outcomes),
        )


def _menu_logs(runtime: RuntimeContext) -> None:
    names = _menu_status(runtime)
    if not names:
        console.print("No instances found.")
        return
    raw = typer.prompt("Enter instance number to view logs", default="", show_default=False)
    with runtime.logger.operation(
        "menu logs",
        args={"selection": raw},
        target={"kind": "instance"},
    ) as op:
        position = parse_position(raw)
        if position is None or position > len(names):
            _command_error(op, "Invalid selection.")
        _show_logs(runtime, op, names[position - 1], follow=True, lines=None)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "main"]
