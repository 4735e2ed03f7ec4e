"""Web3 client factory and the JSON-RPC calls the submitter needs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TypeVar

from web3 import HTTPProvider, Web3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

from ..errors import TransactionRejectedError, TransientNetworkError, ValidationError
from ..retry import NO_RETRY, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class Web3Config:
    rpc_url: str
    chain_id: int
    enable_poa: bool = True
    request_kwargs: Optional[Dict[str, Any]] = None


def get_web3(config: Web3Config) -> Web3:
    logger.debug("Initialising Web3 client", extra={"chain_id": config.chain_id})
    provider = HTTPProvider(config.rpc_url, request_kwargs=config.request_kwargs)
    web3 = Web3(provider)
    if config.enable_poa:
        web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    try:
        connected = web3.is_connected()
    except OSError as exc:
        raise TransientNetworkError(f"Failed to reach RPC endpoint: {exc}") from exc
    if not connected:
        raise TransientNetworkError("Failed to connect to RPC endpoint", remediation="Check RPC_URL / INFURA_API_KEY")
    chain_id = web3.eth.chain_id
    if chain_id != config.chain_id:
        raise ValidationError(f"Chain ID mismatch: expected {config.chain_id} got {chain_id}")
    return web3


class ChainGateway:
    """Thin layer over ``web3.eth`` that maps connection failures to project errors."""

    def __init__(self, web3: Web3, *, retry: Optional[RetryPolicy] = None) -> None:
        self.web3 = web3
        self._retry = retry or NO_RETRY

    def _call(self, label: str, func: Callable[..., T], *args: Any) -> T:
        def _attempt() -> T:
            try:
                return func(*args)
            except OSError as exc:
                raise TransientNetworkError(f"RPC {label} failed: {exc}") from exc

        return self._retry.call(_attempt, description=f"RPC {label}")

    def get_balance(self, address: str) -> int:
        return int(self._call("get_balance", self.web3.eth.get_balance, Web3.to_checksum_address(address)))

    def gas_price(self) -> int:
        return int(self._call("gas_price", lambda: self.web3.eth.gas_price))

    def pending_nonce(self, address: str) -> int:
        """Pending transaction count, so externally issued transactions are accounted for."""

        return int(
            self._call(
                "get_transaction_count",
                self.web3.eth.get_transaction_count,
                Web3.to_checksum_address(address),
                "pending",
            )
        )

    def estimate_gas(self, transaction: Dict[str, Any], fallback: int) -> int:
        try:
            return int(self._call("estimate_gas", self.web3.eth.estimate_gas, transaction))
        except TransientNetworkError:
            raise
        except Exception as exc:  # noqa: BLE001 - any estimation failure uses the fallback
            logger.warning("Gas estimation failed (%s); using %d", exc, fallback)
            return fallback

    def send_raw_transaction(self, raw_transaction: bytes) -> str:
        """Broadcast a signed transaction; node-side refusals raise :class:`TransactionRejectedError`."""

        try:
            tx_hash = self._call("send_raw_transaction", self.web3.eth.send_raw_transaction, raw_transaction)
        except (Web3Exception, ValueError) as exc:
            raise TransactionRejectedError(
                f"RPC rejected the transaction: {exc}",
                remediation="Check the sender's pending transactions and balance on the block explorer, then rerun",
            ) from exc
        if isinstance(tx_hash, str):
            return tx_hash
        return Web3.to_hex(tx_hash)

    def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            receipt = self._call("get_transaction_receipt", self.web3.eth.get_transaction_receipt, tx_hash)
        except TransactionNotFound:
            return None
        if receipt is None:
            return None
        return dict(receipt)


__all__ = ["ChainGateway", "Web3Config", "get_web3"]
