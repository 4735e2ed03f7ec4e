"""Error taxonomy shared by every provisioning stage."""

from __future__ import annotations

from typing import Dict, Optional


class ProvisioningError(RuntimeError):
    """Base class for provisioning failures.

    ``remediation`` holds the concrete command an operator can run to recover
    manually. The CLI prints it next to the error message.
    """

    def __init__(self, message: str, *, remediation: Optional[str] = None) -> None:
        super().__init__(message)
        self.remediation = remediation

    def __str__(self) -> str:
        message = super().__str__()
        if self.remediation:
            return f"{message} (remediation: {self.remediation})"
        return message


class ValidationError(ProvisioningError, ValueError):
    """Raised for bad job counts, malformed addresses or invalid configuration."""


class AuthenticationError(ProvisioningError):
    """Raised when the node rejects the supplied credentials."""


class TransientNetworkError(ProvisioningError):
    """Raised when the node or the RPC endpoint is unreachable."""


class DuplicateResourceError(ProvisioningError):
    """Raised when a job or bridge name collides and no existing record is found."""


class InsufficientFundsError(ProvisioningError):
    """Raised when the funding wallet cannot cover the requested transfers."""

    def __init__(
        self,
        message: str,
        *,
        available_wei: int,
        required_wei: int,
        remediation: Optional[str] = None,
    ) -> None:
        super().__init__(message, remediation=remediation)
        self.available_wei = available_wei
        self.required_wei = required_wei


class ConfirmationTimeoutError(ProvisioningError):
    """Raised when a transaction receipt does not appear within the wait budget."""

    def __init__(self, message: str, *, tx_hash: str, remediation: Optional[str] = None) -> None:
        super().__init__(message, remediation=remediation)
        self.tx_hash = tx_hash


class TransactionRejectedError(ProvisioningError):
    """Raised when the RPC endpoint refuses a signed transaction or contract call."""


class AuthorizationTimeoutError(ProvisioningError):
    """Raised when the authorized-sender update exceeds its time budget."""


class ResponseParseError(ProvisioningError):
    """Raised when a node or CLI response does not match the expected schema."""


class NodeRequestError(ProvisioningError):
    """Raised when the node answers a request with an error."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        remediation: Optional[str] = None,
    ) -> None:
        super().__init__(message, remediation=remediation)
        self.status_code = status_code


class KeyCreationError(ProvisioningError):
    """Raised when a key creation fails part way through ``ensure_keys_exist``.

    ``partial`` contains every key known at the time of the failure, including
    the ones created earlier in the same call. Nothing is rolled back.
    """

    def __init__(
        self,
        message: str,
        *,
        partial: Dict[int, str],
        remediation: Optional[str] = None,
    ) -> None:
        super().__init__(message, remediation=remediation)
        self.partial = dict(partial)


class RegistryMismatchError(ProvisioningError):
    """Raised when the registry lists a key that the node no longer reports."""


__all__ = [
    "AuthenticationError",
    "AuthorizationTimeoutError",
    "ConfirmationTimeoutError",
    "DuplicateResourceError",
    "InsufficientFundsError",
    "KeyCreationError",
    "NodeRequestError",
    "ProvisioningError",
    "RegistryMismatchError",
    "ResponseParseError",
    "TransactionRejectedError",
    "TransientNetworkError",
    "ValidationError",
]
