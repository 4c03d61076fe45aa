"""Systemd provider wrapping ``systemctl`` and ``journalctl``."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Issue systemd commands for dnstt-client units.

    Every method takes a full unit name (``foo.service``, ``foo.timer``);
    callers decide which units belong to an instance.
    """

    systemctl_bin: str = "systemctl"
    journalctl_bin: str = "journalctl"

    def list_unit_files(self, pattern: str | None = None) -> list[str]:
        """Return installed service unit names, optionally filtered by glob *pattern*."""
        args = ["list-unit-files", "--type=service", "--no-legend", "--no-pager"]
        if pattern:
            args.append(pattern)
        result = self._systemctl(*args)
        units: list[str] = []
        for line in (result.stdout or "").splitlines():
            fields = line.split()
            if fields:
                units.append(fields[0])
        return units

    def is_active(self, unit: str) -> bool:
        """Return ``True`` when *unit* is active. Query failures count as inactive."""
        return self._query("is-active", unit)

    def is_enabled(self, unit: str) -> bool:
        """Return ``True`` when *unit* is enabled. Query failures count as disabled."""
        return self._query("is-enabled", unit)

    def daemon_reload(self) -> subprocess.CompletedProcess[str]:
        """Ask systemd to re-read unit files."""
        return self._systemctl("daemon-reload")

    def enable(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Enable *unit*."""
        return self._systemctl("enable", unit)

    def disable(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Disable *unit*."""
        return self._systemctl("disable", unit)

    def start(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Start *unit*."""
        return self._systemctl("start", unit)

    def stop(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Stop *unit*."""
        return self._systemctl("stop", unit)

    def restart(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Restart *unit*."""
        return self._systemctl("restart", unit)

    def status(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Return the status output for *unit* without raising on inactive units."""
        return self._systemctl("status", unit, "--no-pager", check=False)

    def logs(
        self,
        unit: str,
        *,
        lines: int | None = None,
        follow: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Return journalctl output for *unit*, or stream it when *follow* is set."""
        args: list[str] = ["-u", unit, "--no-pager"]
        if lines is not None:
            args.extend(["--lines", str(lines)])
        if follow:
            args.append("--follow")
        return self._journalctl(args, capture_output=not follow)

    # ------------------------------------------------------------------
    def _query(self, command: str, unit: str) -> bool:
        try:
            result = self._systemctl(command, "--quiet", unit, check=False)
        except SystemdError:
            return False
        return result.returncode == 0

    def _systemctl(self, command: str, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        argv: list[str] = [self.systemctl_bin, command, *args]
        return self._run_command(
            argv,
            check=check,
            error_prefix=" ".join(argv),
            capture_output=True,
        )

    def _journalctl(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        capture_output: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.journalctl_bin, *args]
        joined = " ".join(args)
        return self._run_command(
            command,
            check=check,
            error_prefix=f"{self.journalctl_bin} {joined}".rstrip(),
            capture_output=capture_output,
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
        capture_output: bool,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                capture_output=capture_output,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["SystemdError", "SystemdProvider"]
