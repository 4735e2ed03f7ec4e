"""Typed results for create-or-recover operations against the node."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Created:
    """The node accepted the resource. ``resource_id`` is set when the node returns one."""

    resource_id: Optional[str] = None


@dataclass(frozen=True)
class AlreadyExists:
    """The node reported a name collision. ``existing_id`` is resolved lazily by callers."""

    existing_id: Optional[str] = None
    detail: str = ""


@dataclass(frozen=True)
class Failed:
    reason: str
    status_code: Optional[int] = None


Outcome = Union[Created, AlreadyExists, Failed]

__all__ = ["AlreadyExists", "Created", "Failed", "Outcome"]
