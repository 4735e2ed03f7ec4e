"""Drive the node's key-management CLI inside its container."""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from ..config import NodeCredentials
from ..errors import AuthenticationError, ProvisioningError, TransientNetworkError

LOGGER = logging.getLogger(__name__)

_AUTH_FAILURE_MARKERS = ("invalid email", "invalid password", "unauthorized", "incorrect")


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str


CommandRunner = Callable[[Sequence[str], Optional[str], float], CommandResult]


def run_command(argv: Sequence[str], stdin: Optional[str], timeout: float) -> CommandResult:
    """Run ``argv`` feeding ``stdin``; map launch problems to project errors."""

    try:
        proc = subprocess.run(
            list(argv),
            input=stdin,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        raise TransientNetworkError(f"Command timed out after {timeout:.0f}s: {' '.join(argv[:4])}") from exc
    except FileNotFoundError as exc:
        raise ProvisioningError(
            f"Executable not found: {argv[0]}",
            remediation="Install Docker and make sure the node container is running",
        ) from exc
    return CommandResult(proc.returncode, proc.stdout or "", proc.stderr or "")


class NodeKeyCli:
    """Wrapper over ``docker exec -i <container> chainlink ...``.

    The CLI's interactive login prompt needs a terminal, so credentials are
    staged in a private file inside the container and passed with
    ``admin login --file``. The file is removed again after every login.
    """

    def __init__(
        self,
        container: str = "chainlink",
        *,
        runner: CommandRunner = run_command,
        timeout: float = 60.0,
        docker: str = "docker",
        credentials_path: str = "/tmp/.arbiter-orchestrator-api",
    ) -> None:
        self.container = container
        self._runner = runner
        self._timeout = timeout
        self._docker = docker
        self.credentials_path = credentials_path

    def _argv(self, *args: str) -> List[str]:
        return [self._docker, "exec", "-i", self.container, "chainlink", *args]

    def _run(self, *args: str, stdin: Optional[str] = None) -> CommandResult:
        argv = self._argv(*args)
        LOGGER.debug("Running node CLI: %s", " ".join(argv[4:]))
        return self._runner(argv, stdin, self._timeout)

    def _shell(self, script: str, stdin: Optional[str] = None) -> CommandResult:
        argv = [self._docker, "exec", "-i", self.container, "sh", "-c", script]
        return self._runner(argv, stdin, self._timeout)

    def login(self, credentials: NodeCredentials) -> None:
        contents = f"{credentials.email}\n{credentials.password.get_secret_value()}\n"
        staged = self._shell(f"umask 077 && cat > {shlex.quote(self.credentials_path)}", stdin=contents)
        if staged.returncode != 0:
            raise ProvisioningError(
                f"Could not stage node credentials in container {self.container}: {staged.stderr.strip()}",
                remediation=f"docker exec -it {self.container} chainlink admin login",
            )
        try:
            result = self._run("admin", "login", "--file", self.credentials_path)
        finally:
            self._shell(f"rm -f {shlex.quote(self.credentials_path)}")
        if result.returncode == 0:
            LOGGER.debug("Node CLI login succeeded")
            return
        output = f"{result.stdout}\n{result.stderr}".lower()
        if any(marker in output for marker in _AUTH_FAILURE_MARKERS):
            raise AuthenticationError(
                "Node CLI rejected the API credentials",
                remediation=f"docker exec -it {self.container} chainlink admin login",
            )
        raise TransientNetworkError(
            f"Node CLI login failed (exit {result.returncode}): {result.stderr.strip() or result.stdout.strip()}"
        )

    def list_keys(self) -> str:
        result = self._run("keys", "eth", "list")
        if result.returncode != 0:
            raise TransientNetworkError(
                f"Failed to fetch keys from node CLI (exit {result.returncode}): {result.stderr.strip()}"
            )
        return result.stdout

    def create_key(self, chain_id: int) -> str:
        result = self._run("keys", "eth", "create", "--evm-chain-id", str(chain_id))
        if result.returncode != 0:
            raise ProvisioningError(
                f"Node CLI rejected key creation (exit {result.returncode}): {result.stderr.strip()}",
                remediation=f"docker exec -it {self.container} chainlink keys eth create --evm-chain-id {chain_id}",
            )
        return result.stdout


__all__ = ["CommandResult", "CommandRunner", "NodeKeyCli", "run_command"]
