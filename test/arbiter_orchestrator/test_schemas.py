import pytest

from arbiter_orchestrator.errors import ResponseParseError
from arbiter_orchestrator.node.schemas import (
    JobDocument,
    classify_rejection,
    normalize_job_id,
    parse_created_key,
    parse_document,
    parse_key_listing,
)
from arbiter_orchestrator.outcomes import AlreadyExists, Failed

KEY_LISTING = """\
🔑 ETH keys
-----------------------------------------------------
Address:           0x1111111111111111111111111111111111111111
EVM Chain ID:      84532
Next Nonce:        0
ETH:               0.004000000000000000
LINK:              0
Disabled:          false
Created:           2024-05-01 10:00:00 +0000 UTC
Updated:           2024-05-01 10:00:00 +0000 UTC
Max Gas Price Wei: 115792089237316195423570985008687907853269984665640564039457584007913129639935
-----------------------------------------------------
Address:           0x2222222222222222222222222222222222222222
EVM Chain ID:      11155111
Next Nonce:        3
-----------------------------------------------------
Address:           0x3333333333333333333333333333333333333333
EVM Chain ID:      84532
Next Nonce:        0
"""


def test_key_listing_keeps_node_order_and_chain_ids():
    records = parse_key_listing(KEY_LISTING)
    assert [r.address[-4:] for r in records] == ["1111", "2222", "3333"]
    assert [r.chain_id for r in records] == [84532, 11155111, 84532]


def test_empty_listing_is_empty_not_an_error():
    assert parse_key_listing("🔑 ETH keys\n") == []


def test_key_block_without_chain_id_is_an_error():
    with pytest.raises(ResponseParseError, match="missing"):
        parse_key_listing("Address: 0x1111111111111111111111111111111111111111\nNext Nonce: 0\n")


def test_malformed_address_is_an_error():
    with pytest.raises(ResponseParseError, match="Malformed key address"):
        parse_key_listing("Address: 0x1234\nEVM Chain ID: 84532\n")


def test_unexpected_line_inside_key_block_is_an_error():
    with pytest.raises(ResponseParseError):
        parse_key_listing("Address: 0x1111111111111111111111111111111111111111\nEVM Chain ID: 84532\n!!garbage!!\n")


def test_created_key_must_match_chain():
    text = "Address: 0x1111111111111111111111111111111111111111\nEVM Chain ID: 84532\n"
    assert parse_created_key(text, chain_id=84532) == "0x1111111111111111111111111111111111111111"
    with pytest.raises(ResponseParseError, match="scoped to chain"):
        parse_created_key(text, chain_id=8453)


def test_created_key_requires_exactly_one_record():
    with pytest.raises(ResponseParseError):
        parse_created_key("", chain_id=84532)


def test_job_document_requires_jobs_type():
    payload = {"data": {"type": "jobs", "id": "7", "attributes": {"externalJobID": "a" * 32, "name": "x"}}}
    document = parse_document(payload, JobDocument, context="job creation")
    assert document.data.attributes.external_job_id == "a" * 32

    payload["data"]["type"] = "bridges"
    with pytest.raises(ResponseParseError):
        parse_document(payload, JobDocument, context="job creation")


def test_invalid_json_is_an_error():
    with pytest.raises(ResponseParseError, match="not valid JSON"):
        parse_document("<html>oops</html>", JobDocument, context="job creation")


def test_normalize_job_id_accepts_hyphenless_form():
    assert normalize_job_id("6d1c3c4e8f7a4a5b9c2d0e1f2a3b4c5d") == "6d1c3c4e-8f7a-4a5b-9c2d-0e1f2a3b4c5d"
    with pytest.raises(ResponseParseError):
        normalize_job_id("not-a-uuid")


def test_duplicate_error_becomes_already_exists():
    payload = {"errors": [{"detail": 'ERROR: duplicate key value violates unique constraint "idx_jobs_name"'}]}
    outcome = classify_rejection(400, payload)
    assert isinstance(outcome, AlreadyExists)
    assert "duplicate key" in outcome.detail


def test_other_errors_become_failed():
    outcome = classify_rejection(422, {"errors": [{"detail": "invalid TOML"}]})
    assert outcome == Failed(reason="invalid TOML", status_code=422)
