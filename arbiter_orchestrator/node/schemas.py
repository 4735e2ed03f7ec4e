"""Typed parsers for node API documents and key-management CLI output.

Every parser validates a fixed schema and raises :class:`ResponseParseError`
on any unexpected shape instead of returning an empty or partial result.
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..addresses import is_valid_address, normalize_address
from ..errors import ResponseParseError
from ..outcomes import AlreadyExists, Failed, Outcome

ModelT = TypeVar("ModelT", bound=BaseModel)

_DUPLICATE_MARKERS = (
    "duplicate key value violates unique constraint",
    "already exists",
)


class ErrorItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    detail: Optional[str] = None
    message: Optional[str] = None

    @property
    def text(self) -> str:
        return self.detail or self.message or ""


class ErrorDocument(BaseModel):
    errors: List[ErrorItem] = Field(..., min_length=1)

    @property
    def summary(self) -> str:
        return "; ".join(item.text for item in self.errors if item.text) or "unspecified error"


class SessionAttributes(BaseModel):
    authenticated: bool


class SessionResource(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    attributes: SessionAttributes


class SessionDocument(BaseModel):
    data: SessionResource


class JobAttributes(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: Optional[str] = None
    external_job_id: str = Field(..., alias="externalJobID")


class JobResource(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = Field(..., pattern=r"^jobs$")
    id: str
    attributes: JobAttributes


class JobDocument(BaseModel):
    data: JobResource


class ListMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    count: Optional[int] = Field(default=None, ge=0)


class JobListDocument(BaseModel):
    model_config = ConfigDict(extra="allow")

    data: List[JobResource]
    meta: Optional[ListMeta] = None


def decode_json(body: str | bytes, *, context: str) -> Any:
    try:
        return json.loads(body)
    except (TypeError, ValueError) as exc:
        preview = body[:200] if isinstance(body, (str, bytes)) else body
        raise ResponseParseError(f"{context}: response is not valid JSON: {preview!r}") from exc


def parse_document(payload: Any, model: Type[ModelT], *, context: str) -> ModelT:
    """Validate ``payload`` (decoded JSON or raw text) against ``model``."""

    if isinstance(payload, (str, bytes)):
        payload = decode_json(payload, context=context)
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ResponseParseError(f"{context}: unexpected response shape: {exc}") from exc


def parse_error_document(payload: Any) -> Optional[ErrorDocument]:
    """Return the error document if ``payload`` carries one, else ``None``."""

    if isinstance(payload, dict) and "errors" in payload:
        try:
            return ErrorDocument.model_validate(payload)
        except PydanticValidationError:
            return None
    return None


def classify_rejection(status_code: int, payload: Any) -> Outcome:
    """Turn an error response into ``AlreadyExists`` or ``Failed``."""

    document = parse_error_document(payload)
    detail = document.summary if document is not None else str(payload)[:500]
    lowered = detail.lower()
    if status_code == 409 or any(marker in lowered for marker in _DUPLICATE_MARKERS):
        return AlreadyExists(detail=detail)
    return Failed(reason=detail, status_code=status_code)


def normalize_job_id(raw: str) -> str:
    """Validate an external job ID (UUID with or without hyphens) and return the hyphenated form."""

    try:
        return str(uuid.UUID(raw.strip()))
    except (AttributeError, ValueError) as exc:
        raise ResponseParseError(f"Invalid external job ID format: {raw!r}") from exc


# Key-management CLI output ---------------------------------------------------

_SEPARATOR = re.compile(r"^\s*-{3,}\s*$")
_FIELD = re.compile(r"^\s*([A-Za-z][A-Za-z0-9 ]*?)\s*:\s*(.*?)\s*$")


@dataclass(frozen=True)
class NodeKeyRecord:
    address: str
    chain_id: int


def _blocks(text: str) -> List[List[str]]:
    blocks: List[List[str]] = []
    current: List[str] = []
    for line in text.splitlines():
        if not line.strip() or _SEPARATOR.match(line):
            if current:
                blocks.append(current)
                current = []
            continue
        current.append(line)
    if current:
        blocks.append(current)
    return blocks


def _fields(block: List[str]) -> Dict[str, str]:
    matches = [_FIELD.match(line) for line in block]
    if not any(matches):
        return {}
    fields: Dict[str, str] = {}
    for line, match in zip(block, matches):
        if match is None:
            raise ResponseParseError(f"Unexpected line in key listing: {line.strip()!r}")
        fields[match.group(1).strip().lower()] = match.group(2)
    return fields


def parse_key_listing(text: str) -> List[NodeKeyRecord]:
    """Parse ``keys eth list`` output into records, in node order.

    Header blocks with no ``Label: value`` fields are skipped. A key block
    without an address or a chain ID, or with a malformed one, is an error.
    """

    records: List[NodeKeyRecord] = []
    for block in _blocks(text):
        fields = _fields(block)
        if not fields:
            continue
        address = fields.get("address")
        chain_raw = fields.get("evm chain id")
        if address is None or chain_raw is None:
            raise ResponseParseError(f"Key block is missing address or EVM chain ID: {fields}")
        if not is_valid_address(address):
            raise ResponseParseError(f"Malformed key address in listing: {address!r}")
        if not chain_raw.isdigit():
            raise ResponseParseError(f"Malformed EVM chain ID in listing: {chain_raw!r}")
        records.append(NodeKeyRecord(address=normalize_address(address), chain_id=int(chain_raw)))
    return records


def parse_created_key(text: str, *, chain_id: int) -> str:
    """Return the address reported by ``keys eth create`` for ``chain_id``."""

    records = parse_key_listing(text)
    if len(records) != 1:
        raise ResponseParseError(f"Expected exactly one key in creation output, found {len(records)}")
    record = records[0]
    if record.chain_id != chain_id:
        raise ResponseParseError(f"Created key is scoped to chain {record.chain_id}, expected {chain_id}")
    return record.address


__all__ = [
    "ErrorDocument",
    "JobDocument",
    "JobListDocument",
    "JobResource",
    "NodeKeyRecord",
    "SessionDocument",
    "classify_rejection",
    "decode_json",
    "normalize_job_id",
    "parse_created_key",
    "parse_document",
    "parse_error_document",
    "parse_key_listing",
]
