from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class FeeburnError(Exception):
    """Canonical error type for configuration and collaborator faults.

    Absence (no deployment, no governance event, non-epoch height) is never
    raised; it is returned as None / Unknown.
    """

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


@dataclass
class RegistryError(FeeburnError):
    """Core contracts registry could not be built from its source."""


@dataclass
class StoreError(FeeburnError):
    """Reward/transfer data store failed or violated its contract."""
