import json
import logging

from arbiter_orchestrator.logging_utils import StructuredJsonFormatter, configure_logging


def test_json_formatter_includes_extra_context():
    record = logging.makeLogRecord(
        {"name": "arbiter_orchestrator.chain.funding", "levelname": "INFO", "msg": "sent %s", "args": ("tx",)}
    )
    record.tx_hash = "0xabc"
    payload = json.loads(StructuredJsonFormatter().format(record))
    assert payload["message"] == "sent tx"
    assert payload["context"] == {"tx_hash": "0xabc"}


def test_configure_logging_writes_audit_file(tmp_path):
    log_file = tmp_path / "logs" / "audit.jsonl"
    logger = configure_logging(log_file, level=logging.INFO)
    logging.getLogger("arbiter_orchestrator.node.jobs").info("Created job", extra={"arbiter_index": 1})
    for handler in logger.handlers:
        handler.flush()

    lines = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert lines[-1]["message"] == "Created job"
    assert lines[-1]["context"] == {"arbiter_index": 1}
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
