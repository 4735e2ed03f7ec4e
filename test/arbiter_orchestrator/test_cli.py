import json

import pytest

from arbiter_orchestrator import cli
from arbiter_orchestrator.errors import RegistryMismatchError
from arbiter_orchestrator.node.keys import KeyEnsureResult


def test_keys_needed(capsys):
    cli.main(["keys-needed", "7"])
    assert json.loads(capsys.readouterr().out) == {"job_count": 7, "keys_needed": 4}


def test_key_index(capsys):
    cli.main(["key-index", "10"])
    assert json.loads(capsys.readouterr().out) == {"job_number": 10, "key_index": 5}


def test_validation_error_exits_with_message():
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["keys-needed", "11"])
    assert "Must be between 1 and 10" in str(excinfo.value.code)


class _StubPipeline:
    def __init__(self, config):
        self.config = config

    def custody(self, job_count):
        return KeyEnsureResult(keys={1: "0x1111111111111111111111111111111111111111"}, needed=1)


def test_ensure_keys_uses_registry_override(monkeypatch, tmp_path, capsys):
    seen = {}

    def factory(config):
        seen["registry"] = config.registry_path
        return _StubPipeline(config)

    monkeypatch.setattr(cli, "ProvisioningPipeline", factory)
    cli.main(["--registry", str(tmp_path / "contracts"), "ensure-keys", "2"])

    out = json.loads(capsys.readouterr().out)
    assert out["keys"] == {"1": "0x1111111111111111111111111111111111111111"}
    assert seen["registry"] == tmp_path / "contracts"


def test_remediation_is_printed(monkeypatch):
    class Failing(_StubPipeline):
        def custody(self, job_count):
            raise RegistryMismatchError("key 2 missing", remediation="docker exec -it chainlink chainlink keys eth list")

    monkeypatch.setattr(cli, "ProvisioningPipeline", Failing)
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["ensure-keys", "4"])
    assert "remediation: docker exec -it chainlink chainlink keys eth list" in str(excinfo.value.code)


def test_config_file_is_loaded(monkeypatch, tmp_path):
    path = tmp_path / "arbiter.yaml"
    path.write_text("chain:\n  network: base_mainnet\n", encoding="utf-8")
    seen = {}

    def factory(config):
        seen["chain_id"] = config.chain.resolved_chain_id
        return _StubPipeline(config)

    monkeypatch.setattr(cli, "ProvisioningPipeline", factory)
    cli.main(["--config", str(path), "ensure-keys", "1"])
    assert seen["chain_id"] == 8453


@pytest.mark.parametrize(
    "argv",
    [["keys-needed", "3"], ["--log-file", "audit.jsonl", "ensure-keys", "2"]],
)
def test_logging_configured_once_per_command(monkeypatch, argv, capsys):
    calls = []
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: calls.append((args, kwargs)))
    monkeypatch.setattr(cli, "ProvisioningPipeline", _StubPipeline)

    cli.main(argv)

    assert len(calls) == 1
    if "--log-file" in argv:
        assert str(calls[0][0][0]) == "audit.jsonl"
