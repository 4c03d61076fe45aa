"""File-based locks guarding mutating dnsttctl commands.

Mutations take the global ``dnsttctl.lock`` first and then one lock per
instance name, always in sorted order, so two invocations on the same host
serialise instead of racing on ``systemctl daemon-reload``.
"""
from __future__ import annotations

import fcntl
import json
import os
import time
from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager, ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

GLOBAL_LOCK_NAME = "dnsttctl.lock"
_POLL_INTERVAL = 0.05


class LockError(RuntimeError):
    """Raised when a lock file cannot be created or opened."""


class LockTimeoutError(LockError):
    """Raised when a lock cannot be acquired within the timeout."""


@dataclass(slots=True)
class LockHandle:
    """Acquired lock and the time spent waiting for it."""

    path: Path
    wait_ms: int


@dataclass(slots=True)
class LockBundle:
    """Group of locks acquired together."""

    handles: list[LockHandle] = field(default_factory=list)

    @property
    def wait_ms(self) -> int:
        """Return the total wait across all locks in the bundle."""
        return sum(handle.wait_ms for handle in self.handles)


class LockManager:
    """Acquire global and per-instance locks under a runtime directory."""

    def __init__(self, runtime_dir: Path, default_timeout: float = 30.0) -> None:
        """Create a manager rooted at *runtime_dir*."""
        self.runtime_dir = Path(runtime_dir).expanduser()
        self.default_timeout = float(default_timeout)

    def global_lock(self, *, timeout: float | None = None) -> AbstractContextManager[LockHandle]:
        """Acquire the global dnsttctl lock."""
        return self._acquire(self.runtime_dir / GLOBAL_LOCK_NAME, timeout)

    def instance_lock(
        self,
        name: str,
        *,
        timeout: float | None = None,
    ) -> AbstractContextManager[LockHandle]:
        """Acquire the lock dedicated to instance *name*."""
        safe = name.strip().replace("/", "-")
        if not safe:
            raise ValueError("Lock name must be a non-empty string.")
        return self._acquire(self.runtime_dir / f"{safe}.lock", timeout)

    @contextmanager
    def mutate_instances(
        self,
        names: Iterable[str],
        *,
        timeout: float | None = None,
    ) -> Iterator[LockBundle]:
        """Acquire the global lock followed by each instance lock."""
        bundle = LockBundle()
        with ExitStack() as stack:
            bundle.handles.append(stack.enter_context(self.global_lock(timeout=timeout)))
            for name in sorted(set(names)):
                bundle.handles.append(
                    stack.enter_context(self.instance_lock(name, timeout=timeout))
                )
            yield bundle

    @contextmanager
    def _acquire(self, path: Path, timeout: float | None) -> Iterator[LockHandle]:
        limit = self.default_timeout if timeout is None else float(timeout)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o640)
        except OSError as exc:
            raise LockError(f"Cannot open lock {path}: {exc}") from exc
        started = time.monotonic()
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() - started >= limit:
                        raise LockTimeoutError(
                            f"Timed out after {limit:.1f}s waiting for lock {path}."
                        ) from None
                    time.sleep(_POLL_INTERVAL)
            wait_ms = int((time.monotonic() - started) * 1000)
            _write_metadata(fd, path)
            try:
                yield LockHandle(path=path, wait_ms=wait_ms)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


def _write_metadata(fd: int, path: Path) -> None:
    payload = {
        "pid": os.getpid(),
        "path": str(path),
        "acquired_at": datetime.now(UTC).isoformat(),
    }
    os.ftruncate(fd, 0)
    os.lseek(fd, 0, os.SEEK_SET)
    os.write(fd, json.dumps(payload).encode("utf-8"))


__all__ = ["LockBundle", "LockError", "LockHandle", "LockManager", "LockTimeoutError"]
