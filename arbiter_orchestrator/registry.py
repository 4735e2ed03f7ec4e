"""Durable registry of provisioned keys, jobs and contract addresses.

The registry is a flat ``KEY="value"`` file shared with the shell tooling that
sources it. It is read at the start of each stage and rewritten as a whole
(temp file plus atomic replace) at the end of every stage that changes state.
Records this module does not manage are preserved verbatim and in order.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .addresses import normalize_address
from .errors import ValidationError

LOGGER = logging.getLogger(__name__)

_DEFAULT_PATH = Path(os.environ.get("ARBITER_REGISTRY_PATH", "installer/.contracts"))

_LINE_PATTERN = re.compile(r"^(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)=(.*)$")
_KEY_ADDRESS = re.compile(r"^KEY_(\d+)_ADDRESS$")
_JOB_ID = re.compile(r"^JOB_ID_(\d+)$")
_JOB_ID_RELATED = re.compile(r"^JOB_ID(?:_\d+)?(?:_NO_HYPHENS)?$")

KEY_COUNT = "KEY_COUNT"
ARBITER_COUNT = "ARBITER_COUNT"
OPERATOR_ADDR = "OPERATOR_ADDR"
OPERATOR_ADDRESS = "OPERATOR_ADDRESS"
AGGREGATOR_ADDRESS = "AGGREGATOR_ADDRESS"


def _unquote(raw: str) -> str:
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value


def parse_records(text: str, *, source: str = "<registry>") -> Dict[str, str]:
    """Parse ``KEY=value`` lines. Blank lines and ``#`` comments are ignored."""

    records: Dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        match = _LINE_PATTERN.match(stripped)
        if match is None:
            raise ValidationError(f"{source}:{lineno}: expected KEY=value, got {stripped!r}")
        records[match.group(1)] = _unquote(match.group(2))
    return records


def _contiguous(mapping: Mapping[int, str], label: str) -> List[Tuple[int, str]]:
    indices = sorted(mapping)
    if indices != list(range(1, len(indices) + 1)):
        raise ValidationError(f"{label} indices must be contiguous from 1, got {indices}")
    return [(index, mapping[index]) for index in indices]


class Registry:
    """In-memory view of the registry file with typed accessors."""

    def __init__(self, path: Path | None = None, records: Optional[Mapping[str, str]] = None) -> None:
        self.path = Path(path) if path is not None else _DEFAULT_PATH
        self._records: Dict[str, str] = dict(records or {})
        self._lock = threading.Lock()

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Registry":
        target = Path(path) if path is not None else _DEFAULT_PATH
        if not target.exists():
            LOGGER.debug("Registry %s does not exist yet; starting empty", target)
            return cls(target)
        text = target.read_text(encoding="utf-8")
        return cls(target, parse_records(text, source=str(target)))

    # Raw records -----------------------------------------------------------
    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self._records.get(name, default)

    def set(self, name: str, value: object) -> None:
        self._records[name] = str(value)

    def remove(self, names: Iterable[str]) -> None:
        for name in list(names):
            self._records.pop(name, None)

    def as_dict(self) -> Dict[str, str]:
        return dict(self._records)

    # Keys ------------------------------------------------------------------
    def key_addresses(self) -> Dict[int, str]:
        keys: Dict[int, str] = {}
        for name, value in self._records.items():
            match = _KEY_ADDRESS.match(name)
            if match and value:
                keys[int(match.group(1))] = normalize_address(value, label=name)
        return dict(sorted(keys.items()))

    def set_key_addresses(self, keys: Mapping[int, str]) -> None:
        ordered = _contiguous(keys, "Key")
        self.remove(name for name in self._records if _KEY_ADDRESS.match(name) or name == KEY_COUNT)
        for index, address in ordered:
            self._records[f"KEY_{index}_ADDRESS"] = normalize_address(address, label=f"key {index}")
        self._records[KEY_COUNT] = str(len(ordered))

    @property
    def key_count(self) -> int:
        raw = self._records.get(KEY_COUNT)
        if raw is None or raw == "":
            return len(self.key_addresses())
        try:
            return int(raw)
        except ValueError as exc:
            raise ValidationError(f"KEY_COUNT is not an integer: {raw!r}") from exc

    # Jobs ------------------------------------------------------------------
    def job_ids(self) -> Dict[int, str]:
        jobs: Dict[int, str] = {}
        for name, value in self._records.items():
            match = _JOB_ID.match(name)
            if match and value:
                jobs[int(match.group(1))] = value
        return dict(sorted(jobs.items()))

    def set_job_ids(self, job_ids: Mapping[int, str]) -> None:
        ordered = _contiguous(job_ids, "Job")
        self.remove(name for name in self._records if _JOB_ID_RELATED.match(name) or name == ARBITER_COUNT)
        for index, job_id in ordered:
            self._records[f"JOB_ID_{index}"] = job_id
            self._records[f"JOB_ID_{index}_NO_HYPHENS"] = job_id.replace("-", "")
        if ordered:
            # Single-arbiter tooling still reads the unnumbered fields.
            self._records["JOB_ID"] = ordered[0][1]
            self._records["JOB_ID_NO_HYPHENS"] = ordered[0][1].replace("-", "")
        self._records[ARBITER_COUNT] = str(len(ordered))

    @property
    def arbiter_count(self) -> Optional[int]:
        raw = self._records.get(ARBITER_COUNT)
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError as exc:
            raise ValidationError(f"ARBITER_COUNT is not an integer: {raw!r}") from exc

    # Contracts -------------------------------------------------------------
    @property
    def operator_address(self) -> Optional[str]:
        raw = self._records.get(OPERATOR_ADDR) or self._records.get(OPERATOR_ADDRESS)
        return normalize_address(raw, label="operator address") if raw else None

    @operator_address.setter
    def operator_address(self, value: str) -> None:
        self._records[OPERATOR_ADDR] = normalize_address(value, label="operator address")

    @property
    def aggregator_address(self) -> Optional[str]:
        raw = self._records.get(AGGREGATOR_ADDRESS)
        return normalize_address(raw, label="aggregator address") if raw else None

    @aggregator_address.setter
    def aggregator_address(self, value: str) -> None:
        self._records[AGGREGATOR_ADDRESS] = normalize_address(value, label="aggregator address")

    # Persistence -----------------------------------------------------------
    def render(self) -> str:
        return "".join(f'{name}="{value}"\n' for name, value in self._records.items())

    def save(self, path: Path | str | None = None) -> Path:
        target = Path(path) if path is not None else self.path
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = self.render()
        with self._lock:
            tmp_path = target.with_name(target.name + ".tmp")
            with tmp_path.open("w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            tmp_path.replace(target)
        LOGGER.debug("Registry written to %s (%d records)", target, len(self._records))
        return target


__all__ = ["Registry", "parse_records"]
