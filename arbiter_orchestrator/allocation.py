"""Key allocation policy: how many signing keys a job count needs and which key a job uses.

Two consecutive arbiter jobs share one key, so jobs 1 and 2 sign with key 1,
jobs 3 and 4 with key 2, and so on up to ten jobs on five keys.
"""

from __future__ import annotations

import logging
from typing import Mapping

from .errors import ValidationError

LOGGER = logging.getLogger(__name__)

MIN_JOBS = 1
MAX_JOBS = 10
JOBS_PER_KEY = 2


def validate_job_count(value: object, label: str = "job count") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Invalid {label}: {value!r}. Must be an integer between {MIN_JOBS} and {MAX_JOBS}.")
    if value < MIN_JOBS or value > MAX_JOBS:
        raise ValidationError(f"Invalid {label}: {value}. Must be between {MIN_JOBS} and {MAX_JOBS}.")
    return value


def calculate_keys_needed(job_count: int) -> int:
    """Return ``ceil(job_count / 2)`` for ``job_count`` in ``[1, 10]``."""

    count = validate_job_count(job_count, "job count")
    keys = (count + JOBS_PER_KEY - 1) // JOBS_PER_KEY
    LOGGER.debug("Job count %d needs %d key(s)", count, keys)
    return keys


def key_index_for_job(job_number: int) -> int:
    """Return the 1-based key index used by ``job_number``."""

    number = validate_job_count(job_number, "job number")
    return (number + JOBS_PER_KEY - 1) // JOBS_PER_KEY


def key_address_for_job(job_number: int, keys: Mapping[int, str]) -> str:
    """Resolve the signer address for ``job_number`` from an index→address map."""

    index = key_index_for_job(job_number)
    address = keys.get(index)
    if not address:
        raise ValidationError(f"Could not find key {index} for job {job_number}")
    LOGGER.debug("Job %d uses key %d: %s", job_number, index, address)
    return address


__all__ = [
    "JOBS_PER_KEY",
    "MAX_JOBS",
    "MIN_JOBS",
    "calculate_keys_needed",
    "key_address_for_job",
    "key_index_for_job",
    "validate_job_count",
]
