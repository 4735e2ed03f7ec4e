"""Node-side components: key custody and job provisioning."""

from .api import NodeApiClient, NodeSession
from .cli import NodeKeyCli
from .jobs import JobDefinition, JobProvisioner, JobState
from .keys import KeyCustodyManager

__all__ = [
    "JobDefinition",
    "JobProvisioner",
    "JobState",
    "KeyCustodyManager",
    "NodeApiClient",
    "NodeKeyCli",
    "NodeSession",
]
