"""Stage sequencing: allocate → custody → provision → fund → authorize.

Each stage reads the registry when it starts and rewrites it when it has
changed something, so an interrupted run resumes from the last completed
stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

from web3 import Web3

from .allocation import calculate_keys_needed, key_index_for_job
from .chain.authorization import (
    AuthorizationResult,
    AuthorizationSynchronizer,
    AuthorizationTask,
    ContractAuthorizationTask,
    HardhatAuthorizationTask,
)
from .chain.client import ChainGateway, Web3Config, get_web3
from .chain.funding import FundingReport, TransactionSubmitter, eth_to_wei
from .config import NodeCredentials, ProvisionerConfig
from .errors import KeyCreationError, ValidationError
from .node.api import NodeApiClient
from .node.cli import NodeKeyCli
from .node.jobs import DeletionReport, JobDefinition, JobProvisioner
from .node.keys import KeyCustodyManager, KeyEnsureResult
from .node.templates import load_template
from .registry import Registry
from .retry import RetryPolicy

LOGGER = logging.getLogger(__name__)

DEFAULT_API_FILE = Path.home() / ".chainlink-sepolia" / ".api"


@dataclass
class PipelineReport:
    job_count: int
    keys_needed: int
    keys: Dict[int, str] = field(default_factory=dict)
    jobs: List[JobDefinition] = field(default_factory=list)
    funding: Optional[FundingReport] = None
    authorization: Optional[AuthorizationResult] = None

    @property
    def key_assignments(self) -> Dict[int, int]:
        return {job: key_index_for_job(job) for job in range(1, self.job_count + 1)}


class ProvisioningPipeline:
    """Wire the components from a :class:`ProvisionerConfig` and run the stages.

    Components are built on first use; tests pass prebuilt ones instead.
    """

    def __init__(
        self,
        config: ProvisionerConfig,
        *,
        key_manager: Optional[KeyCustodyManager] = None,
        provisioner: Optional[JobProvisioner] = None,
        submitter: Optional[TransactionSubmitter] = None,
        synchronizer: Optional[AuthorizationSynchronizer] = None,
        credentials: Optional[NodeCredentials] = None,
        api_file: Path = DEFAULT_API_FILE,
    ) -> None:
        self.config = config
        self.registry_path = Path(config.registry_path)
        self._key_manager = key_manager
        self._provisioner = provisioner
        self._submitter = submitter
        self._synchronizer = synchronizer
        self._credentials = credentials
        self._api_file = api_file
        self._api: Optional[NodeApiClient] = None
        self._web3: Optional[Web3] = None

    # -- wiring ------------------------------------------------------------

    @property
    def retry(self) -> RetryPolicy:
        return RetryPolicy(attempts=self.config.retry.attempts, delay=self.config.retry.delay)

    @property
    def credentials(self) -> NodeCredentials:
        if self._credentials is None:
            if self.config.node.credentials is not None:
                self._credentials = self.config.node.credentials
            elif self._api_file.exists():
                self._credentials = NodeCredentials.from_api_file(self._api_file)
            else:
                raise ValidationError(
                    "No node API credentials configured",
                    remediation=f"export CHAINLINK_API_EMAIL=... CHAINLINK_API_PASSWORD=... or create {self._api_file}",
                )
        return self._credentials

    @property
    def chain_id(self) -> int:
        return self.config.chain.resolved_chain_id

    @property
    def key_manager(self) -> KeyCustodyManager:
        if self._key_manager is None:
            cli = NodeKeyCli(self.config.node.container_name, timeout=self.config.node.cli_timeout)
            self._key_manager = KeyCustodyManager(cli, self.chain_id, retry=self.retry)
        return self._key_manager

    @property
    def provisioner(self) -> JobProvisioner:
        if self._provisioner is None:
            node = self.config.node
            self._api = NodeApiClient(
                node.url,
                self.credentials,
                timeout=node.request_timeout,
                retry=self.retry,
                session_max_age=node.session_max_age,
            )
            jobs = self.config.jobs
            self._provisioner = JobProvisioner(
                self._api,
                bridge_name=self.config.bridge.name,
                bridge_url=self.config.bridge.url,
                name_prefix=jobs.name_prefix,
                template=load_template(jobs.template_path),
                post_login_delay=jobs.post_login_delay,
                post_bridge_delay=jobs.post_bridge_delay,
                inter_job_delay=jobs.inter_job_delay,
                inter_delete_delay=jobs.inter_delete_delay,
            )
        return self._provisioner

    @property
    def web3(self) -> Web3:
        if self._web3 is None:
            chain = self.config.chain
            self._web3 = get_web3(
                Web3Config(
                    rpc_url=chain.resolved_rpc_url(),
                    chain_id=chain.resolved_chain_id,
                    enable_poa=chain.enable_poa,
                    request_kwargs={"timeout": chain.request_timeout},
                )
            )
        return self._web3

    def _private_key(self) -> str:
        secret = self.config.funding.private_key
        if secret is None:
            raise ValidationError("No funding wallet private key configured", remediation="export PRIVATE_KEY=0x...")
        return secret.get_secret_value()

    @property
    def submitter(self) -> TransactionSubmitter:
        if self._submitter is None:
            funding = self.config.funding
            self._submitter = TransactionSubmitter(
                ChainGateway(self.web3, retry=self.retry),
                chain_id=self.chain_id,
                gas_buffer_wei=int(Web3.to_wei(funding.gas_buffer_eth, "ether")),
                skip_threshold_ratio=funding.skip_threshold_ratio,
                simple_transfer_gas=funding.simple_transfer_gas,
                poll_interval=funding.poll_interval,
                max_wait=funding.max_wait,
                inter_transaction_delay=funding.inter_transaction_delay,
                explorer_tx_url=self.config.chain.explorer_tx_url,
            )
        return self._submitter

    @property
    def synchronizer(self) -> AuthorizationSynchronizer:
        if self._synchronizer is None:
            auth = self.config.authorization
            task: AuthorizationTask
            if auth.mode == "hardhat":
                task = HardhatAuthorizationTask(
                    network=self.config.chain.network,
                    project_dir=auth.hardhat_dir,
                    script=auth.hardhat_script,
                    kill_grace=auth.kill_grace,
                )
            else:
                task = ContractAuthorizationTask(
                    self.web3,
                    self._private_key(),
                    chain_id=self.chain_id,
                    confirmations=auth.confirmations,
                )
            self._synchronizer = AuthorizationSynchronizer(
                task,
                timeout=auth.timeout,
                network=self.config.chain.network,
                project_dir=auth.hardhat_dir,
                script=auth.hardhat_script,
            )
        return self._synchronizer

    def close(self) -> None:
        if self._api is not None:
            self._api.close()

    def load_registry(self) -> Registry:
        return Registry.load(self.registry_path)

    # -- stages ------------------------------------------------------------

    def allocate(self, job_count: int) -> int:
        needed = calculate_keys_needed(job_count)
        LOGGER.info("%d arbiter(s) need %d key(s)", job_count, needed)
        return needed

    def custody(self, job_count: int) -> KeyEnsureResult:
        registry = self.load_registry()
        recorded = registry.key_addresses()
        try:
            result = self.key_manager.ensure_keys_exist(job_count, self.credentials, recorded=recorded)
        except KeyCreationError as exc:
            if exc.partial:
                registry.set_key_addresses(exc.partial)
                registry.save()
                LOGGER.warning("Recorded %d key(s) created before the failure", len(exc.partial))
            raise
        registry.set_key_addresses(result.keys)
        registry.save()
        return result

    def resolve_job_count(self, registry: Optional[Registry] = None) -> int:
        registry = registry or self.load_registry()
        count = registry.arbiter_count
        if count is not None:
            return count
        return self.provisioner.detect_arbiter_count()

    def provision(self, job_count: Optional[int] = None, *, contract_address: Optional[str] = None) -> List[JobDefinition]:
        registry = self.load_registry()
        if job_count is None:
            job_count = self.resolve_job_count(registry)
        keys = registry.key_addresses()
        if not keys:
            raise ValidationError("No keys recorded in the registry", remediation="arbiter-orchestrator ensure-keys")
        operator = contract_address or registry.operator_address
        if operator is None:
            raise ValidationError(
                "No operator contract address known",
                remediation=f"Pass --operator or add OPERATOR_ADDR to {self.registry_path}",
            )
        definitions = self.provisioner.provision(
            job_count,
            keys,
            operator,
            chain_id=self.chain_id,
            gas_price_wei=self.config.chain.resolved_gas_price_wei,
        )
        registry.operator_address = operator
        registry.set_job_ids({d.arbiter_index: d.external_job_id for d in definitions if d.external_job_id})
        registry.save()
        return definitions

    def delete_jobs(self) -> DeletionReport:
        return self.provisioner.delete_jobs_matching()

    def fund(self, *, amount_eth: Optional[Decimal | str] = None, dry_run: bool = False) -> FundingReport:
        registry = self.load_registry()
        keys = registry.key_addresses()
        if not keys:
            raise ValidationError("No keys recorded in the registry", remediation="arbiter-orchestrator ensure-keys")
        amount = Decimal(str(amount_eth)) if amount_eth is not None else self.config.funding_amount_eth
        return self.submitter.fund_keys(list(keys.values()), eth_to_wei(amount), self._private_key(), dry_run=dry_run)

    def authorize(self, operator: Optional[str] = None) -> AuthorizationResult:
        registry = self.load_registry()
        keys = registry.key_addresses()
        if not keys:
            raise ValidationError("No keys recorded in the registry", remediation="arbiter-orchestrator ensure-keys")
        operator = operator or registry.operator_address
        if operator is None:
            raise ValidationError(
                "No operator contract address known",
                remediation=f"Pass --operator or add OPERATOR_ADDR to {self.registry_path}",
            )
        return self.synchronizer.sync_authorized_senders(operator, list(keys.values()))

    def run(
        self,
        job_count: int,
        *,
        contract_address: Optional[str] = None,
        fund: bool = True,
        authorize: bool = True,
        dry_run: bool = False,
    ) -> PipelineReport:
        report = PipelineReport(job_count=job_count, keys_needed=self.allocate(job_count))
        report.keys = self.custody(job_count).keys
        report.jobs = self.provision(job_count, contract_address=contract_address)
        if fund:
            report.funding = self.fund(dry_run=dry_run)
        if authorize and not dry_run:
            report.authorization = self.authorize(contract_address)
        return report


__all__ = ["DEFAULT_API_FILE", "PipelineReport", "ProvisioningPipeline"]
