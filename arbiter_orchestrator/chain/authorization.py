"""Keep the operator contract's authorized-sender list in step with the node keys.

Every sync submits the complete key set, never a delta.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from ..addresses import normalize_address, normalize_addresses
from ..errors import (
    AuthorizationTimeoutError,
    ProvisioningError,
    TransactionRejectedError,
    TransientNetworkError,
    ValidationError,
)

logger = logging.getLogger(__name__)

OPERATOR_ABI: List[Dict[str, object]] = [
    {
        "inputs": [{"internalType": "address[]", "name": "senders", "type": "address[]"}],
        "name": "setAuthorizedSenders",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getAuthorizedSenders",
        "outputs": [{"internalType": "address[]", "name": "", "type": "address[]"}],
        "stateMutability": "view",
        "type": "function",
    },
]


@dataclass
class AuthorizationResult:
    operator: str
    senders: List[str]
    confirmed: bool = False
    timed_out: bool = False
    tx_hash: Optional[str] = None
    on_chain: Optional[List[str]] = None
    remediation: Optional[str] = None
    output: str = ""


class AuthorizationTask(Protocol):
    def run(self, operator: str, senders: List[str], timeout: float) -> AuthorizationResult:
        """Submit ``senders`` to ``operator``; raise AuthorizationTimeoutError past ``timeout``."""


def hardhat_command(
    operator: str,
    senders: Sequence[str],
    *,
    network: str,
    script: str = "scripts/setAuthorizedSenders.js",
    project_dir: Optional[Path | str] = None,
) -> str:
    """Shell command an operator can run by hand to perform the same update."""

    command = f"env OPERATOR={operator} NODES={','.join(senders)} npx hardhat run {script} --network {network}"
    if project_dir is not None:
        return f"cd {project_dir} && {command}"
    return command


class HardhatAuthorizationTask:
    """Run the operator project's Hardhat script in a child process.

    On timeout the child is sent SIGTERM, given ``kill_grace`` seconds to exit
    and then killed.
    """

    def __init__(
        self,
        *,
        network: str,
        project_dir: Optional[Path | str] = None,
        script: str = "scripts/setAuthorizedSenders.js",
        kill_grace: float = 15.0,
        command: Optional[Sequence[str]] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.network = network
        self.project_dir = Path(project_dir) if project_dir is not None else None
        self.script = script
        self.kill_grace = kill_grace
        self._command = list(command) if command is not None else None
        self._env = dict(env) if env is not None else None

    def argv(self) -> List[str]:
        if self._command is not None:
            return list(self._command)
        return ["npx", "hardhat", "run", self.script, "--network", self.network]

    def run(self, operator: str, senders: List[str], timeout: float) -> AuthorizationResult:
        env = dict(self._env if self._env is not None else os.environ)
        env["OPERATOR"] = operator
        env["NODES"] = ",".join(senders)
        argv = self.argv()
        logger.info("Running %s", " ".join(argv))
        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(self.project_dir) if self.project_dir is not None else None,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError as exc:
            raise ProvisioningError(
                f"Executable not found: {argv[0]}",
                remediation="Install Node.js and run npm install in the operator project",
            ) from exc

        try:
            output, _ = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Authorization task exceeded %.0fs; terminating", timeout)
            proc.terminate()
            try:
                proc.communicate(timeout=self.kill_grace)
            except subprocess.TimeoutExpired:
                logger.warning("Authorization task ignored SIGTERM; killing")
                proc.kill()
                proc.communicate()
            raise AuthorizationTimeoutError(f"Authorization task did not finish within {timeout:.0f}s")

        if proc.returncode != 0:
            tail = "\n".join((output or "").strip().splitlines()[-10:])
            raise ProvisioningError(f"Authorization task failed (exit {proc.returncode}): {tail}")
        return AuthorizationResult(operator=operator, senders=list(senders), confirmed=True, output=output or "")


class ContractAuthorizationTask:
    """Call ``setAuthorizedSenders`` directly through web3 with a local signing key."""

    def __init__(
        self,
        web3: Web3,
        private_key: str,
        *,
        chain_id: int,
        confirmations: int = 2,
        poll_interval: float = 2.0,
        gas_limit: int = 300_000,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.web3 = web3
        self._account = Account.from_key(private_key)
        self.chain_id = chain_id
        self.confirmations = confirmations
        self.poll_interval = poll_interval
        self.gas_limit = gas_limit
        self._sleep = sleep
        self._clock = clock

    def run(self, operator: str, senders: List[str], timeout: float) -> AuthorizationResult:
        deadline = self._clock() + timeout
        contract = self.web3.eth.contract(address=operator, abi=OPERATOR_ABI)
        tx_hash = self._submit(contract, senders)
        tx_hex = tx_hash if isinstance(tx_hash, str) else Web3.to_hex(tx_hash)
        logger.info("Submitted setAuthorizedSenders transaction %s", tx_hex)

        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=timeout, poll_latency=self.poll_interval
            )
        except TimeExhausted as exc:
            raise AuthorizationTimeoutError(
                f"setAuthorizedSenders transaction {tx_hex} not mined within {timeout:.0f}s"
            ) from exc
        if int(receipt["status"]) != 1:
            raise ProvisioningError(f"setAuthorizedSenders transaction {tx_hex} reverted")

        target = int(receipt["blockNumber"]) + self.confirmations - 1
        while self.web3.eth.block_number < target:
            if self._clock() >= deadline:
                raise AuthorizationTimeoutError(
                    f"setAuthorizedSenders transaction {tx_hex} lacks {self.confirmations} confirmations"
                )
            self._sleep(self.poll_interval)

        try:
            current = contract.functions.getAuthorizedSenders().call()
        except OSError as exc:
            raise TransientNetworkError(f"Failed to read authorized senders: {exc}") from exc
        except (Web3Exception, ValueError) as exc:
            raise ProvisioningError(f"Failed to read authorized senders from {operator}: {exc}") from exc
        on_chain = [Web3.to_checksum_address(item) for item in current]
        return AuthorizationResult(
            operator=operator,
            senders=list(senders),
            confirmed=True,
            tx_hash=tx_hex,
            on_chain=on_chain,
        )

    def _submit(self, contract, senders: List[str]):
        try:
            transaction = contract.functions.setAuthorizedSenders(senders).build_transaction(
                {
                    "from": self._account.address,
                    "nonce": self.web3.eth.get_transaction_count(self._account.address, "pending"),
                    "gas": self.gas_limit,
                    "gasPrice": self.web3.eth.gas_price,
                    "chainId": self.chain_id,
                }
            )
            signed = self._account.sign_transaction(transaction)
            return self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except OSError as exc:
            raise TransientNetworkError(f"RPC unreachable while submitting setAuthorizedSenders: {exc}") from exc
        except (Web3Exception, ValueError) as exc:
            # reverts here usually mean the signer does not own the operator
            raise TransactionRejectedError(
                f"setAuthorizedSenders rejected for {self._account.address}: {exc}"
            ) from exc


@dataclass
class AuthorizationSynchronizer:
    task: AuthorizationTask
    timeout: float = 600.0
    network: str = "base_sepolia"
    project_dir: Optional[Path] = None
    script: str = "scripts/setAuthorizedSenders.js"

    def sync_authorized_senders(self, operator_contract: str, all_key_addresses: Sequence[str]) -> AuthorizationResult:
        """Submit the full key set to the operator contract.

        A timeout is returned as a result with ``timed_out`` set and a manual
        remediation command; the transaction may still land on-chain.
        """

        operator = normalize_address(operator_contract, label="operator contract address")
        senders = normalize_addresses(all_key_addresses, label="key address")
        if not senders:
            raise ValidationError("No key addresses to authorize")
        remediation = hardhat_command(
            operator,
            senders,
            network=self.network,
            script=self.script,
            project_dir=self.project_dir,
        )
        logger.info("Authorizing %d key(s) on operator %s", len(senders), operator)
        try:
            result = self.task.run(operator, senders, self.timeout)
        except AuthorizationTimeoutError as exc:
            logger.warning("%s; the update may still be pending. Run manually: %s", exc, remediation)
            result = AuthorizationResult(
                operator=operator,
                senders=senders,
                timed_out=True,
                remediation=remediation,
            )
            return result
        except ProvisioningError as exc:
            if exc.remediation is None:
                exc.remediation = remediation
            raise

        if result.on_chain is not None:
            authorized = {address.lower() for address in result.on_chain}
            missing = [address for address in senders if address.lower() not in authorized]
            if missing:
                raise ProvisioningError(
                    f"Operator {operator} does not list {len(missing)} key(s) as authorized: {', '.join(missing)}",
                    remediation=remediation,
                )
        logger.info("Authorized senders updated on %s", operator)
        return result


__all__ = [
    "AuthorizationResult",
    "AuthorizationSynchronizer",
    "AuthorizationTask",
    "ContractAuthorizationTask",
    "HardhatAuthorizationTask",
    "OPERATOR_ABI",
    "hardhat_command",
]
