"""Instance naming helpers.

Every artifact and systemd call for an instance is keyed by a name derived
from the tunnel domain and the local listening port. The derivation is pure so
that the same (domain, port) pair always maps onto the same unit files.
"""
from __future__ import annotations

import re

SERVICE_PREFIX = "dnstt-client-"
HEALTHCHECK_SUFFIX = "-healthcheck"

_DISALLOWED = re.compile(r"[^A-Za-z0-9_-]")


class IdentityError(ValueError):
    """Raised when an instance name cannot be derived."""


def sanitize_domain(domain: str) -> str:
    """Return *domain* with dots mapped to underscores and other symbols dropped."""
    return _DISALLOWED.sub("", domain.replace(".", "_"))


def derive_instance_name(
    domain: str,
    port: int | str,
    *,
    prefix: str = SERVICE_PREFIX,
) -> str:
    """Return the canonical instance name for *domain* and *port*.

    >>> derive_instance_name("d.example.com", "7000")
    'dnstt-client-d_example_com_7000'
    """
    if not domain or not domain.strip():
        raise IdentityError("Domain must be a non-empty string.")
    sanitized = sanitize_domain(domain.strip())
    if not sanitized:
        raise IdentityError(f"Domain '{domain}' contains no usable characters.")
    port_text = str(port).strip()
    if not port_text:
        raise IdentityError("Port must be a non-empty value.")
    return f"{prefix}{sanitized}_{port_text}"


def is_instance_unit(unit: str, *, prefix: str = SERVICE_PREFIX) -> bool:
    """Return ``True`` when *unit* (without suffix) names a base instance unit."""
    return unit.startswith(prefix) and not unit.endswith(HEALTHCHECK_SUFFIX)


__all__ = [
    "HEALTHCHECK_SUFFIX",
    "IdentityError",
    "SERVICE_PREFIX",
    "derive_instance_name",
    "is_instance_unit",
    "sanitize_domain",
]
