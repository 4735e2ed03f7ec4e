import pytest

from arbiter_orchestrator.allocation import (
    calculate_keys_needed,
    key_address_for_job,
    key_index_for_job,
)
from arbiter_orchestrator.errors import ValidationError


@pytest.mark.parametrize("job_count", range(1, 11))
def test_keys_needed_is_half_rounded_up(job_count):
    assert calculate_keys_needed(job_count) == -(-job_count // 2)


@pytest.mark.parametrize("job_number", range(1, 11))
def test_key_index_is_half_rounded_up(job_number):
    assert key_index_for_job(job_number) == -(-job_number // 2)


def test_single_arbiter_uses_first_key():
    assert calculate_keys_needed(1) == 1
    assert key_index_for_job(1) == 1


def test_four_arbiters_share_two_keys():
    assert calculate_keys_needed(4) == 2
    assert [key_index_for_job(job) for job in (1, 2, 3, 4)] == [1, 1, 2, 2]


def test_ten_arbiters_use_five_keys():
    assert calculate_keys_needed(10) == 5
    assert key_index_for_job(9) == 5
    assert key_index_for_job(10) == 5


@pytest.mark.parametrize("value", [0, 11, -1, 2.0, "3", True, None])
def test_out_of_range_or_non_integer_rejected(value):
    with pytest.raises(ValidationError):
        calculate_keys_needed(value)
    with pytest.raises(ValidationError):
        key_index_for_job(value)


def test_key_address_for_job_resolves_shared_key():
    keys = {1: "0x1111111111111111111111111111111111111111", 2: "0x2222222222222222222222222222222222222222"}
    assert key_address_for_job(3, keys) == keys[2]
    assert key_address_for_job(2, keys) == keys[1]


def test_key_address_for_job_missing_key():
    with pytest.raises(ValidationError, match="Could not find key 3"):
        key_address_for_job(5, {1: "0x1111111111111111111111111111111111111111"})
