from decimal import Decimal
from typing import List

import pytest

from arbiter_orchestrator.chain.authorization import AuthorizationResult, AuthorizationSynchronizer
from arbiter_orchestrator.chain.funding import FundingReport
from arbiter_orchestrator.config import ProvisionerConfig
from arbiter_orchestrator.errors import KeyCreationError, ValidationError
from arbiter_orchestrator.node.jobs import JobDefinition, JobState
from arbiter_orchestrator.node.keys import KeyEnsureResult
from arbiter_orchestrator.pipeline import ProvisioningPipeline
from arbiter_orchestrator.registry import Registry

KEY_1 = "0x1111111111111111111111111111111111111111"
KEY_2 = "0x2222222222222222222222222222222222222222"
OPERATOR = "0x4444444444444444444444444444444444444444"
JOB_IDS = ["00000000-0000-4000-8000-000000000001", "00000000-0000-4000-8000-000000000002"]
PRIVATE_KEY = "0x" + "11" * 32


class StubKeyManager:
    def __init__(self, keys=None, error=None) -> None:
        self.keys = keys or {1: KEY_1, 2: KEY_2}
        self.error = error
        self.recorded = None

    def ensure_keys_exist(self, job_count, credentials, *, recorded=None):
        self.recorded = recorded
        if self.error is not None:
            raise self.error
        return KeyEnsureResult(keys=dict(self.keys), needed=len(self.keys))


class StubProvisioner:
    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def provision(self, job_count, keys, contract_address, *, chain_id, gas_price_wei):
        self.calls.append((job_count, dict(keys), contract_address, chain_id, gas_price_wei))
        return [
            JobDefinition(
                arbiter_index=i,
                job_name=f"Verdikta AI Arbiter {i}",
                from_address=keys[(i + 1) // 2],
                contract_address=contract_address,
                spec_text="",
                external_job_id=JOB_IDS[i - 1],
                state=JobState.CONFIRMED,
            )
            for i in range(1, job_count + 1)
        ]

    def detect_arbiter_count(self):
        return 2


class StubSubmitter:
    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def fund_keys(self, addresses, per_key_wei, private_key, *, dry_run=False):
        self.calls.append((list(addresses), per_key_wei, private_key, dry_run))
        return FundingReport(sender="0x0", per_key_wei=per_key_wei, dry_run=dry_run)


class StubTask:
    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def run(self, operator, senders, timeout):
        self.calls.append((operator, list(senders)))
        return AuthorizationResult(operator=operator, senders=list(senders), confirmed=True)


def _config(tmp_path, **funding):
    return ProvisionerConfig.from_dict(
        {
            "registry_path": str(tmp_path / ".contracts"),
            "node": {"credentials": {"email": "ops@example.com", "password": "hunter22"}},
            "funding": {"private_key": PRIVATE_KEY, **funding},
        }
    )


def _pipeline(tmp_path, **kwargs):
    task = kwargs.pop("task", StubTask())
    defaults = dict(
        key_manager=StubKeyManager(),
        provisioner=StubProvisioner(),
        submitter=StubSubmitter(),
        synchronizer=AuthorizationSynchronizer(task),
    )
    defaults.update(kwargs)
    return ProvisioningPipeline(_config(tmp_path), **defaults), task


def test_run_executes_stages_and_persists_registry(tmp_path):
    pipeline, task = _pipeline(tmp_path)

    report = pipeline.run(2, contract_address=OPERATOR)

    assert report.keys_needed == 1
    assert report.key_assignments == {1: 1, 2: 1}
    assert [d.external_job_id for d in report.jobs] == JOB_IDS
    registry = Registry.load(tmp_path / ".contracts")
    assert registry.key_addresses() == {1: KEY_1, 2: KEY_2}
    assert registry.job_ids() == {1: JOB_IDS[0], 2: JOB_IDS[1]}
    assert registry.arbiter_count == 2
    assert registry.operator_address == OPERATOR
    assert pipeline.submitter.calls[0][:2] == ([KEY_1, KEY_2], 5_000_000_000_000_000)
    assert task.calls == [(OPERATOR, [KEY_1, KEY_2])]


def test_custody_passes_recorded_keys(tmp_path):
    (tmp_path / ".contracts").write_text(f'KEY_1_ADDRESS="{KEY_1}"\nKEY_COUNT="1"\n', encoding="utf-8")
    manager = StubKeyManager()
    pipeline, _ = _pipeline(tmp_path, key_manager=manager)

    pipeline.custody(3)

    assert manager.recorded == {1: KEY_1}


def test_partial_keys_are_persisted_on_failure(tmp_path):
    error = KeyCreationError("Failed to create key 2", partial={1: KEY_1})
    pipeline, _ = _pipeline(tmp_path, key_manager=StubKeyManager(error=error))

    with pytest.raises(KeyCreationError):
        pipeline.custody(4)

    assert Registry.load(tmp_path / ".contracts").key_addresses() == {1: KEY_1}


def test_provision_requires_keys_and_operator(tmp_path):
    pipeline, _ = _pipeline(tmp_path)
    with pytest.raises(ValidationError, match="No keys"):
        pipeline.provision(1, contract_address=OPERATOR)

    (tmp_path / ".contracts").write_text(f'KEY_1_ADDRESS="{KEY_1}"\n', encoding="utf-8")
    with pytest.raises(ValidationError) as excinfo:
        pipeline.provision(1)
    assert "OPERATOR_ADDR" in excinfo.value.remediation


def test_provision_uses_registry_operator_and_detected_count(tmp_path):
    (tmp_path / ".contracts").write_text(
        f'KEY_1_ADDRESS="{KEY_1}"\nOPERATOR_ADDR="{OPERATOR}"\n', encoding="utf-8"
    )
    provisioner = StubProvisioner()
    pipeline, _ = _pipeline(tmp_path, provisioner=provisioner)

    pipeline.provision()

    job_count, keys, operator, chain_id, gas_price = provisioner.calls[0]
    assert (job_count, operator, chain_id, gas_price) == (2, OPERATOR, 84532, 2_000_000_000)


def test_fund_amount_override_and_dry_run(tmp_path):
    (tmp_path / ".contracts").write_text(f'KEY_1_ADDRESS="{KEY_1}"\n', encoding="utf-8")
    pipeline, _ = _pipeline(tmp_path)

    pipeline.fund(amount_eth=Decimal("0.01"), dry_run=True)

    assert pipeline.submitter.calls == [([KEY_1], 10_000_000_000_000_000, PRIVATE_KEY, True)]


def test_dry_run_skips_authorization(tmp_path):
    pipeline, task = _pipeline(tmp_path)
    report = pipeline.run(1, contract_address=OPERATOR, dry_run=True)
    assert report.authorization is None
    assert task.calls == []


def test_credentials_fall_back_to_api_file(tmp_path):
    api_file = tmp_path / ".api"
    api_file.write_text("file@example.com\nsecret\n", encoding="utf-8")
    config = ProvisionerConfig.from_dict({"registry_path": str(tmp_path / ".contracts")})

    pipeline = ProvisioningPipeline(config, api_file=api_file)

    assert pipeline.credentials.email == "file@example.com"


def test_missing_credentials_have_remediation(tmp_path):
    config = ProvisionerConfig.from_dict({"registry_path": str(tmp_path / ".contracts")})
    pipeline = ProvisioningPipeline(config, api_file=tmp_path / "missing")
    with pytest.raises(ValidationError) as excinfo:
        pipeline.credentials
    assert "CHAINLINK_API_EMAIL" in excinfo.value.remediation


def test_missing_private_key(tmp_path):
    config = ProvisionerConfig.from_dict({"registry_path": str(tmp_path / ".contracts")})
    (tmp_path / ".contracts").write_text(f'KEY_1_ADDRESS="{KEY_1}"\n', encoding="utf-8")
    pipeline = ProvisioningPipeline(config, submitter=StubSubmitter())
    with pytest.raises(ValidationError, match="private key"):
        pipeline.fund()


def test_hardhat_mode_builds_subprocess_task(tmp_path):
    config = ProvisionerConfig.from_dict(
        {
            "registry_path": str(tmp_path / ".contracts"),
            "authorization": {"mode": "hardhat", "hardhat_dir": str(tmp_path), "kill_grace": 5},
        }
    )
    synchronizer = ProvisioningPipeline(config).synchronizer
    assert synchronizer.task.argv()[:3] == ["npx", "hardhat", "run"]
    assert synchronizer.task.kill_grace == 5
    assert synchronizer.project_dir == tmp_path
