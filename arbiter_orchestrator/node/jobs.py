"""Job provisioning: bridge upsert, per-arbiter job creation and cleanup."""

from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Pattern

from ..allocation import MAX_JOBS, MIN_JOBS, key_address_for_job, validate_job_count
from ..errors import DuplicateResourceError, NodeRequestError, ProvisioningError
from ..outcomes import AlreadyExists, Created, Failed
from .api import NodeApiClient
from .schemas import normalize_job_id
from .templates import DEFAULT_JOB_SPEC_TEMPLATE, render_job_spec

LOGGER = logging.getLogger(__name__)


class JobState(str, enum.Enum):
    NOT_CREATED = "NotCreated"
    BRIDGE_ENSURED = "BridgeEnsured"
    SUBMITTED = "Submitted"
    CONFIRMED = "Confirmed"
    DUPLICATE_DETECTED = "DuplicateDetected"
    EXISTING_ID_RESOLVED = "ExistingIdResolved"


@dataclass
class JobDefinition:
    arbiter_index: int
    job_name: str
    from_address: str
    contract_address: str
    spec_text: str
    external_job_id: Optional[str] = None
    state: JobState = JobState.NOT_CREATED

    @property
    def job_id_no_hyphens(self) -> Optional[str]:
        return self.external_job_id.replace("-", "") if self.external_job_id else None


@dataclass
class DeletionReport:
    deleted: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def arbiter_name_pattern(prefix: str) -> Pattern[str]:
    return re.compile(rf"^{re.escape(prefix)} (\d+)$")


class JobProvisioner:
    """Create one job per arbiter under a single shared node session."""

    def __init__(
        self,
        api: NodeApiClient,
        *,
        bridge_name: str = "verdikta-ai",
        bridge_url: str = "http://localhost:8080/evaluate",
        name_prefix: str = "Verdikta AI Arbiter",
        template: str = DEFAULT_JOB_SPEC_TEMPLATE,
        post_login_delay: float = 1.0,
        post_bridge_delay: float = 2.0,
        inter_job_delay: float = 2.0,
        inter_delete_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api = api
        self.bridge_name = bridge_name
        self.bridge_url = bridge_url
        self.name_prefix = name_prefix
        self.template = template
        self.post_login_delay = post_login_delay
        self.post_bridge_delay = post_bridge_delay
        self.inter_job_delay = inter_job_delay
        self.inter_delete_delay = inter_delete_delay
        self._sleep = sleep

    def job_name(self, arbiter_index: int) -> str:
        return f"{self.name_prefix} {arbiter_index}"

    def ensure_bridge(self, name: Optional[str] = None, url: Optional[str] = None) -> None:
        """Create the bridge or update it in place; either is success."""

        name = name or self.bridge_name
        url = url or self.bridge_url
        outcome = self.api.upsert_bridge(name, url)
        if isinstance(outcome, Failed):
            raise NodeRequestError(
                f"Bridge {name} could not be created or updated: {outcome.reason}",
                status_code=outcome.status_code,
                remediation=f"Create bridge '{name}' pointing at {url} in the node UI",
            )

    def create_job(self, spec_text: str, job_name: str, definition: Optional[JobDefinition] = None) -> str:
        """Submit ``spec_text`` and return the external job ID, recovering duplicates by name.

        When ``definition`` is given its state follows the submission.
        """

        if definition is not None:
            definition.state = JobState.SUBMITTED
        outcome = self.api.create_job(spec_text)
        if isinstance(outcome, Created) and outcome.resource_id:
            LOGGER.info("Created job %s with ID %s", job_name, outcome.resource_id)
            if definition is not None:
                definition.external_job_id = outcome.resource_id
                definition.state = JobState.CONFIRMED
            return outcome.resource_id
        if isinstance(outcome, AlreadyExists):
            if definition is not None:
                definition.state = JobState.DUPLICATE_DETECTED
            job_id = self._resolve_existing(job_name)
            if definition is not None:
                definition.external_job_id = job_id
                definition.state = JobState.EXISTING_ID_RESOLVED
            return job_id
        reason = outcome.reason if isinstance(outcome, Failed) else "node returned no job ID"
        raise NodeRequestError(
            f"Failed to create job {job_name}: {reason}",
            status_code=getattr(outcome, "status_code", None),
            remediation="Inspect the node logs, then rerun configure-jobs",
        )

    def build_definition(
        self,
        arbiter_index: int,
        keys: Mapping[int, str],
        contract_address: str,
        *,
        chain_id: int,
        gas_price_wei: int,
    ) -> JobDefinition:
        name = self.job_name(arbiter_index)
        from_address = key_address_for_job(arbiter_index, keys)
        spec = render_job_spec(
            job_name=name,
            from_address=from_address,
            contract_address=contract_address,
            chain_id=chain_id,
            gas_price_wei=gas_price_wei,
            template=self.template,
        )
        return JobDefinition(
            arbiter_index=arbiter_index,
            job_name=name,
            from_address=from_address,
            contract_address=contract_address,
            spec_text=spec,
        )

    def provision(
        self,
        job_count: int,
        keys: Mapping[int, str],
        contract_address: str,
        *,
        chain_id: int,
        gas_price_wei: int,
    ) -> List[JobDefinition]:
        """Ensure the bridge, then create (or recover) jobs 1..``job_count`` in order.

        Definitions are rendered up front so a missing key fails the batch
        before anything is sent to the node.
        """

        validate_job_count(job_count)
        definitions = [
            self.build_definition(index, keys, contract_address, chain_id=chain_id, gas_price_wei=gas_price_wei)
            for index in range(1, job_count + 1)
        ]

        self.api.session()
        self._sleep(self.post_login_delay)
        self.ensure_bridge()
        for definition in definitions:
            definition.state = JobState.BRIDGE_ENSURED
        self._sleep(self.post_bridge_delay)

        for position, definition in enumerate(definitions):
            if position:
                self._sleep(self.inter_job_delay)
            LOGGER.info(
                "Creating job %s using key %s",
                definition.job_name,
                definition.from_address,
                extra={"arbiter_index": definition.arbiter_index},
            )
            self.create_job(definition.spec_text, definition.job_name, definition)
        return definitions

    def _resolve_existing(self, job_name: str) -> str:
        LOGGER.info("Job %s already exists; looking up its ID", job_name)
        existing = self.api.find_job_by_name(job_name)
        if existing is None:
            raise DuplicateResourceError(
                f"Node reported a duplicate for {job_name} but no job with that name is listed",
                remediation="Delete conflicting jobs in the node UI, then rerun configure-jobs",
            )
        job_id = normalize_job_id(existing.attributes.external_job_id)
        LOGGER.info("Found existing job %s with ID %s", job_name, job_id)
        return job_id

    def delete_jobs_matching(self, name_pattern: Optional[Pattern[str] | str] = None) -> DeletionReport:
        """Delete every job whose name matches; failures are logged and skipped."""

        if name_pattern is None:
            pattern = arbiter_name_pattern(self.name_prefix)
        elif isinstance(name_pattern, str):
            pattern = re.compile(name_pattern)
        else:
            pattern = name_pattern

        report = DeletionReport()
        matching = [job for job in self.api.list_jobs() if job.attributes.name and pattern.search(job.attributes.name)]
        LOGGER.info("Found %d job(s) to delete", len(matching))
        for position, job in enumerate(matching):
            if position:
                self._sleep(self.inter_delete_delay)
            try:
                self.api.delete_job(job.id)
            except ProvisioningError as exc:
                LOGGER.warning("Failed to delete job %s (%s): %s", job.attributes.name, job.id, exc)
                report.failed[job.id] = str(exc)
                continue
            LOGGER.info("Deleted job %s (%s)", job.attributes.name, job.id)
            report.deleted.append(job.id)
        return report

    def detect_arbiter_count(self, default: int = 1) -> int:
        """Count arbiter jobs on the node (1..10); fall back to ``default`` if none."""

        pattern = arbiter_name_pattern(self.name_prefix)
        indices = set()
        for job in self.api.list_jobs():
            match = pattern.match(job.attributes.name or "")
            if match and MIN_JOBS <= int(match.group(1)) <= MAX_JOBS:
                indices.add(int(match.group(1)))
        if not indices:
            LOGGER.info("No arbiter jobs found on the node; assuming %d", default)
            return default
        count = len(indices)
        LOGGER.info("Detected %d arbiter job(s) on the node", count)
        return count


__all__ = ["DeletionReport", "JobDefinition", "JobProvisioner", "JobState", "arbiter_name_pattern"]
