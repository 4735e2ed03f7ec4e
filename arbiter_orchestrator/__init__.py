"""Key and job orchestration for arbiter jobs on an oracle node."""

from .allocation import calculate_keys_needed, key_address_for_job, key_index_for_job
from .config import ProvisionerConfig
from .errors import ProvisioningError, ValidationError
from .pipeline import PipelineReport, ProvisioningPipeline
from .registry import Registry

__all__ = [
    "PipelineReport",
    "ProvisionerConfig",
    "ProvisioningError",
    "ProvisioningPipeline",
    "Registry",
    "ValidationError",
    "calculate_keys_needed",
    "key_address_for_job",
    "key_index_for_job",
]
