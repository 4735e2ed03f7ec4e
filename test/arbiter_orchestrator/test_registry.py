from pathlib import Path

import pytest
from web3 import Web3

from arbiter_orchestrator.errors import ValidationError
from arbiter_orchestrator.registry import Registry, parse_records

KEY_1 = "0x1111111111111111111111111111111111111111"
KEY_2 = "0x2222222222222222222222222222222222222222"
JOB_1 = "6d1c3c4e-8f7a-4a5b-9c2d-0e1f2a3b4c5d"
JOB_2 = "0f9e8d7c-6b5a-4948-8372-6150a9b8c7d6"


def _registry(tmp_path: Path, text: str = "") -> Registry:
    path = tmp_path / ".contracts"
    if text:
        path.write_text(text, encoding="utf-8")
    return Registry.load(path)


def test_missing_file_loads_empty(tmp_path):
    registry = _registry(tmp_path)
    assert registry.as_dict() == {}
    assert registry.key_addresses() == {}
    assert registry.arbiter_count is None


def test_parse_records_handles_quotes_exports_and_comments():
    text = '# generated\nexport OPERATOR_ADDR="0xabc"\nKEY_COUNT=2\n\nNAME=\'quoted value\'\n'
    assert parse_records(text) == {"OPERATOR_ADDR": "0xabc", "KEY_COUNT": "2", "NAME": "quoted value"}


def test_parse_records_rejects_garbage():
    with pytest.raises(ValidationError, match=":2:"):
        parse_records("KEY_COUNT=1\nthis is not a record\n")


def test_keys_round_trip_through_file(tmp_path):
    registry = _registry(tmp_path, 'AGGREGATOR_ADDRESS="0x00000000000000000000000000000000000000bb"\n')
    registry.set_key_addresses({2: KEY_2, 1: KEY_1})
    registry.save()

    text = (tmp_path / ".contracts").read_text(encoding="utf-8")
    assert 'KEY_1_ADDRESS="0x1111111111111111111111111111111111111111"' in text
    assert 'KEY_COUNT="2"' in text
    # Unmanaged records survive a rewrite.
    assert text.startswith('AGGREGATOR_ADDRESS=')

    reloaded = Registry.load(tmp_path / ".contracts")
    assert reloaded.key_addresses() == {1: KEY_1, 2: KEY_2}
    assert reloaded.key_count == 2


def test_set_key_addresses_replaces_previous_set(tmp_path):
    registry = _registry(tmp_path, f'KEY_1_ADDRESS="{KEY_1}"\nKEY_2_ADDRESS="{KEY_2}"\nKEY_COUNT="2"\n')
    registry.set_key_addresses({1: KEY_2})
    assert registry.key_addresses() == {1: KEY_2}
    assert registry.get("KEY_2_ADDRESS") is None
    assert registry.key_count == 1


def test_key_indices_must_be_contiguous(tmp_path):
    registry = _registry(tmp_path)
    with pytest.raises(ValidationError, match="contiguous"):
        registry.set_key_addresses({1: KEY_1, 3: KEY_2})


def test_malformed_key_address_is_rejected(tmp_path):
    registry = _registry(tmp_path, 'KEY_1_ADDRESS="0x1234"\n')
    with pytest.raises(ValidationError):
        registry.key_addresses()


def test_job_ids_write_numbered_and_legacy_fields(tmp_path):
    registry = _registry(tmp_path, 'JOB_ID_3="stale"\nJOB_ID_3_NO_HYPHENS="stale"\n')
    registry.set_job_ids({1: JOB_1, 2: JOB_2})

    records = registry.as_dict()
    assert records["JOB_ID_1"] == JOB_1
    assert records["JOB_ID_2_NO_HYPHENS"] == JOB_2.replace("-", "")
    assert records["JOB_ID"] == JOB_1
    assert records["JOB_ID_NO_HYPHENS"] == JOB_1.replace("-", "")
    assert records["ARBITER_COUNT"] == "2"
    assert "JOB_ID_3" not in records
    assert registry.job_ids() == {1: JOB_1, 2: JOB_2}
    assert registry.arbiter_count == 2


def test_operator_address_falls_back_to_legacy_name(tmp_path):
    operator = "0x00000000000000000000000000000000000000aa"
    registry = _registry(tmp_path, f'OPERATOR_ADDRESS="{operator}"\n')
    assert registry.operator_address == Web3.to_checksum_address(operator)

    registry.operator_address = operator
    assert registry.get("OPERATOR_ADDR") == Web3.to_checksum_address(operator)


def test_save_replaces_atomically(tmp_path):
    registry = _registry(tmp_path)
    registry.set("ARBITER_COUNT", 1)
    target = registry.save()
    assert target.read_text(encoding="utf-8") == 'ARBITER_COUNT="1"\n'
    assert not (tmp_path / ".contracts.tmp").exists()
