"""State helpers for dnsttctl."""
from __future__ import annotations

from .registry import InstanceRecord, InstanceRegistry

__all__ = ["InstanceRecord", "InstanceRegistry"]
