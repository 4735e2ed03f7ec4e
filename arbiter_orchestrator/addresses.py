"""Account address validation helpers."""

from __future__ import annotations

import re
from typing import Iterable, List

from web3 import Web3

from .errors import ValidationError

_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_address(value: object) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_PATTERN.match(value))


def normalize_address(value: object, *, label: str = "address") -> str:
    """Return the checksummed form of ``value`` or raise :class:`ValidationError`."""

    if not is_valid_address(value):
        raise ValidationError(f"Malformed {label}: {value!r}")
    return Web3.to_checksum_address(str(value))


def normalize_addresses(values: Iterable[object], *, label: str = "address") -> List[str]:
    """Checksum every entry and drop duplicates while preserving order."""

    seen: set[str] = set()
    result: List[str] = []
    for value in values:
        address = normalize_address(value, label=label)
        if address in seen:
            continue
        seen.add(address)
        result.append(address)
    return result


__all__ = ["is_valid_address", "normalize_address", "normalize_addresses"]
