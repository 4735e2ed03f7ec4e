"""Key custody: list, create and top up the node's signing keys for one chain."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from ..allocation import calculate_keys_needed
from ..config import NodeCredentials
from ..errors import KeyCreationError, ProvisioningError, RegistryMismatchError
from ..retry import RetryPolicy
from .cli import NodeKeyCli
from .schemas import parse_created_key, parse_key_listing

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArbiterKey:
    index: int
    address: str
    chain_id: int


@dataclass
class KeyEnsureResult:
    keys: Dict[int, str]
    created: List[ArbiterKey] = field(default_factory=list)
    needed: int = 0

    @property
    def created_count(self) -> int:
        return len(self.created)


class KeyCustodyManager:
    """Ensure the node holds enough keys for the configured chain.

    Keys are append-only: indices are assigned in the order the node lists
    them, starting at 1, and new keys always extend the end of the list.
    """

    def __init__(
        self,
        cli: NodeKeyCli,
        chain_id: int,
        *,
        retry: Optional[RetryPolicy] = None,
    ) -> None:
        self.cli = cli
        self.chain_id = chain_id
        self.retry = retry or RetryPolicy()

    def _login(self, credentials: NodeCredentials) -> None:
        self.retry.call(self.cli.login, credentials, description="node CLI login")

    def list_existing_keys(self, credentials: NodeCredentials) -> List[Tuple[int, str]]:
        """Return ``[(index, address), ...]`` for keys scoped to the configured chain."""

        self._login(credentials)
        output = self.retry.call(self.cli.list_keys, description="node key listing")
        records = [record for record in parse_key_listing(output) if record.chain_id == self.chain_id]
        LOGGER.debug("Found %d key(s) for chain ID %d", len(records), self.chain_id)
        return [(index, record.address) for index, record in enumerate(records, start=1)]

    def create_key(self, credentials: NodeCredentials) -> str:
        """Create one key for the configured chain and return its address."""

        self._login(credentials)
        output = self.cli.create_key(self.chain_id)
        address = parse_created_key(output, chain_id=self.chain_id)
        LOGGER.info("Created new key: %s", address)
        return address

    def ensure_keys_exist(
        self,
        job_count: int,
        credentials: NodeCredentials,
        *,
        recorded: Optional[Mapping[int, str]] = None,
    ) -> KeyEnsureResult:
        """Create ``max(0, needed - existing)`` keys and return the full index→address map.

        ``recorded`` is the mapping from the registry. Every recorded key must
        still be listed by the node at the same index, otherwise the call
        fails with :class:`RegistryMismatchError` before creating anything.
        """

        needed = calculate_keys_needed(job_count)
        LOGGER.info("Ensuring %d key(s) exist for %d arbiter(s)", needed, job_count)
        existing = self.list_existing_keys(credentials)
        keys: Dict[int, str] = dict(existing)
        if recorded:
            self._check_registry(recorded, keys)

        to_create = max(0, needed - len(keys))
        LOGGER.info("Found %d existing key(s), need %d total", len(keys), needed)
        created: List[ArbiterKey] = []
        start = len(keys)
        for offset in range(1, to_create + 1):
            index = start + offset
            LOGGER.info("Creating key %d of %d", index, needed)
            try:
                address = self.create_key(credentials)
            except ProvisioningError as exc:
                raise KeyCreationError(
                    f"Failed to create key {index}: {exc}",
                    partial=keys,
                    remediation=exc.remediation
                    or f"docker exec -it {self.cli.container} chainlink keys eth create --evm-chain-id {self.chain_id}",
                ) from exc
            keys[index] = address
            created.append(ArbiterKey(index=index, address=address, chain_id=self.chain_id))

        if created:
            LOGGER.info("Created %d new key(s)", len(created))
        else:
            LOGGER.info("Sufficient keys already exist")
        return KeyEnsureResult(keys=keys, created=created, needed=needed)

    def _check_registry(self, recorded: Mapping[int, str], listed: Mapping[int, str]) -> None:
        for index, address in sorted(recorded.items()):
            on_node = listed.get(index)
            if on_node is None or on_node.lower() != address.lower():
                raise RegistryMismatchError(
                    f"Registry key {index} ({address}) is not listed by the node for chain {self.chain_id} "
                    f"(node reports {on_node or 'nothing'} at that index)",
                    remediation=f"docker exec -it {self.cli.container} chainlink keys eth list",
                )


__all__ = ["ArbiterKey", "KeyCustodyManager", "KeyEnsureResult"]
