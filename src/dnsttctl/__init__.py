"""dnsttctl package bootstrap.

Exposes lightweight metadata used by the CLI, the structured logger and the
packaging machinery.
"""
from __future__ import annotations

__all__ = ["__version__"]

# NOTE: The version is duplicated in ``pyproject.toml`` and managed by Hatch.
__version__ = "0.3.0"