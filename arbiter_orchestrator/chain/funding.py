"""Fund node signing keys from an operator wallet.

Transfers go out strictly one at a time: fresh pending nonce, network gas
price, signed locally with ``eth_account`` and submitted raw. Recipients that
already hold at least the skip threshold of the target amount are left alone,
which makes reruns safe.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

from eth_account import Account
from web3 import Web3

from ..addresses import normalize_addresses
from ..errors import (
    ConfirmationTimeoutError,
    InsufficientFundsError,
    ProvisioningError,
    TransientNetworkError,
    ValidationError,
)
from .client import ChainGateway

logger = logging.getLogger(__name__)


class TxStatus(str, enum.Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


@dataclass
class FundingTransaction:
    sender: str
    recipient: str
    value_wei: int
    gas_limit: int
    gas_price: int
    nonce: int
    tx_hash: Optional[str] = None
    status: TxStatus = TxStatus.PENDING
    block_number: Optional[int] = None
    error: Optional[str] = None
    explorer_url: Optional[str] = None


@dataclass(frozen=True)
class SkippedRecipient:
    address: str
    balance_wei: int


@dataclass(frozen=True)
class CostPreview:
    recipients: int
    per_key_wei: int
    gas_price_wei: int
    gas_per_transfer: int

    @property
    def total_value_wei(self) -> int:
        return self.per_key_wei * self.recipients

    @property
    def estimated_gas_wei(self) -> int:
        return self.gas_price_wei * self.gas_per_transfer * self.recipients

    @property
    def total_wei(self) -> int:
        return self.total_value_wei + self.estimated_gas_wei


@dataclass
class FundingReport:
    sender: str
    per_key_wei: int
    dry_run: bool = False
    transactions: List[FundingTransaction] = field(default_factory=list)
    skipped: List[SkippedRecipient] = field(default_factory=list)
    planned: List[str] = field(default_factory=list)
    preview: Optional[CostPreview] = None

    def _count(self, status: TxStatus) -> int:
        return sum(1 for tx in self.transactions if tx.status is status)

    @property
    def confirmed(self) -> int:
        return self._count(TxStatus.CONFIRMED)

    @property
    def failed(self) -> int:
        return self._count(TxStatus.FAILED)

    @property
    def timed_out(self) -> int:
        return self._count(TxStatus.TIMED_OUT)

    def summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {
            "sender": self.sender,
            "dry_run": self.dry_run,
            "submitted": len(self.transactions),
            "confirmed": self.confirmed,
            "failed": self.failed,
            "timed_out": self.timed_out,
            "skipped": len(self.skipped),
            "planned": len(self.planned),
        }
        if self.preview is not None:
            summary["estimated_cost_wei"] = self.preview.total_wei
        return summary


def eth_to_wei(amount: Decimal | str | float) -> int:
    value = Decimal(str(amount))
    if value <= 0:
        raise ValidationError(f"Funding amount must be positive, got {amount}")
    return int(Web3.to_wei(value, "ether"))


def wei_to_eth(amount: int) -> Decimal:
    return Decimal(Web3.from_wei(amount, "ether"))


class TransactionSubmitter:
    def __init__(
        self,
        gateway: ChainGateway,
        *,
        chain_id: int,
        gas_buffer_wei: int = Web3.to_wei(Decimal("0.01"), "ether"),
        skip_threshold_ratio: Decimal = Decimal("0.8"),
        simple_transfer_gas: int = 21_000,
        poll_interval: float = 10.0,
        max_wait: float = 300.0,
        inter_transaction_delay: float = 5.0,
        explorer_tx_url: Optional[Callable[[str], str]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.gateway = gateway
        self.chain_id = chain_id
        self.gas_buffer_wei = int(gas_buffer_wei)
        self.skip_threshold_ratio = Decimal(skip_threshold_ratio)
        self.simple_transfer_gas = simple_transfer_gas
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.inter_transaction_delay = inter_transaction_delay
        self._explorer_tx_url = explorer_tx_url
        self._sleep = sleep
        self._clock = clock
        self._last_nonce: Dict[str, int] = {}

    @staticmethod
    def sender_address(private_key: str) -> str:
        try:
            return Account.from_key(private_key).address
        except (ValueError, TypeError) as exc:
            raise ValidationError("Funding private key is not a valid secp256k1 key") from exc

    def is_funded(self, balance_wei: int, per_key_wei: int) -> bool:
        return Decimal(balance_wei) >= self.skip_threshold_ratio * Decimal(per_key_wei)

    def preview_cost(self, recipients: int, per_key_wei: int) -> CostPreview:
        return CostPreview(
            recipients=recipients,
            per_key_wei=per_key_wei,
            gas_price_wei=self.gateway.gas_price(),
            gas_per_transfer=self.simple_transfer_gas,
        )

    def _next_nonce(self, sender: str) -> int:
        observed = self.gateway.pending_nonce(sender)
        last = self._last_nonce.get(sender)
        if last is not None and observed <= last:
            logger.warning(
                "Pending nonce %d for %s does not advance past %d; using %d",
                observed,
                sender,
                last,
                last + 1,
            )
            observed = last + 1
        return observed

    def fund_keys(
        self,
        key_addresses: Sequence[str],
        per_key_wei: int,
        sender_private_key: str,
        *,
        dry_run: bool = False,
    ) -> FundingReport:
        """Top up every key below the threshold; see the module docstring."""

        if per_key_wei <= 0:
            raise ValidationError(f"Funding amount must be positive, got {per_key_wei} wei")
        recipients = normalize_addresses(key_addresses, label="key address")
        if not recipients:
            raise ValidationError("No key addresses to fund")
        sender = self.sender_address(sender_private_key)
        report = FundingReport(sender=sender, per_key_wei=per_key_wei, dry_run=dry_run)

        balance = self.gateway.get_balance(sender)
        required = per_key_wei * len(recipients) + self.gas_buffer_wei
        logger.info(
            "Funding wallet %s holds %s ETH; %s ETH required",
            sender,
            wei_to_eth(balance),
            wei_to_eth(required),
        )
        if balance < required:
            raise InsufficientFundsError(
                f"Funding wallet {sender} holds {wei_to_eth(balance)} ETH but {wei_to_eth(required)} ETH is required",
                available_wei=balance,
                required_wei=required,
                remediation=f"Send at least {wei_to_eth(required - balance)} ETH to {sender}",
            )
        if dry_run:
            logger.info("Dry run: no transactions will be sent")

        for position, recipient in enumerate(recipients, start=1):
            current = self.gateway.get_balance(recipient)
            if self.is_funded(current, per_key_wei):
                logger.info("Key %d (%s) already holds %s ETH; skipping", position, recipient, wei_to_eth(current))
                report.skipped.append(SkippedRecipient(address=recipient, balance_wei=current))
                continue
            if dry_run:
                logger.info("Dry run: would send %s ETH to key %d (%s)", wei_to_eth(per_key_wei), position, recipient)
                report.planned.append(recipient)
                continue
            if report.transactions:
                self._sleep(self.inter_transaction_delay)
            tx = self._submit(sender, recipient, per_key_wei, sender_private_key)
            report.transactions.append(tx)
            if tx.status is TxStatus.PENDING:
                self.wait_for_receipt(tx)

        if dry_run:
            report.preview = self.preview_cost(len(report.planned), per_key_wei)
            logger.info(
                "Dry run: %d transfer(s) would cost about %s ETH including gas",
                report.preview.recipients,
                wei_to_eth(report.preview.total_wei),
            )
        logger.info("Funding summary: %s", report.summary())
        return report

    def _submit(
        self,
        sender: str,
        recipient: str,
        value_wei: int,
        private_key: str,
    ) -> FundingTransaction:
        nonce = self._next_nonce(sender)
        gas_price = self.gateway.gas_price()
        base = {"from": sender, "to": recipient, "value": value_wei}
        gas_limit = self.gateway.estimate_gas(base, self.simple_transfer_gas)
        tx = FundingTransaction(
            sender=sender,
            recipient=recipient,
            value_wei=value_wei,
            gas_limit=gas_limit,
            gas_price=gas_price,
            nonce=nonce,
        )
        payload = {
            "to": recipient,
            "value": value_wei,
            "gas": gas_limit,
            "gasPrice": gas_price,
            "nonce": nonce,
            "chainId": self.chain_id,
        }
        signed = Account.sign_transaction(payload, private_key)
        try:
            tx.tx_hash = self.gateway.send_raw_transaction(signed.raw_transaction)
        except ProvisioningError as exc:
            logger.error("Failed to send %s wei to %s: %s", value_wei, recipient, exc)
            tx.status = TxStatus.FAILED
            tx.error = str(exc)
            return tx
        self._last_nonce[sender] = nonce
        if self._explorer_tx_url is not None:
            tx.explorer_url = self._explorer_tx_url(tx.tx_hash)
        logger.info("Sent %s ETH to %s (nonce %d): %s", wei_to_eth(value_wei), recipient, nonce, tx.tx_hash)
        return tx

    def wait_for_receipt(self, tx: FundingTransaction, *, raise_on_timeout: bool = False) -> FundingTransaction:
        """Poll until a receipt appears or ``max_wait`` elapses; sets the terminal status.

        A timeout is only a warning unless ``raise_on_timeout`` is set, in which
        case :class:`ConfirmationTimeoutError` is raised after the status update.
        """

        if tx.tx_hash is None:
            raise ValidationError("Transaction has not been submitted")
        deadline = self._clock() + self.max_wait
        while True:
            try:
                receipt = self.gateway.get_receipt(tx.tx_hash)
            except TransientNetworkError as exc:
                logger.warning("Receipt lookup for %s failed: %s", tx.tx_hash, exc)
                receipt = None
            if receipt is not None:
                tx.block_number = receipt.get("blockNumber")
                if int(receipt.get("status", 0)) == 1:
                    tx.status = TxStatus.CONFIRMED
                    logger.info("Transaction %s confirmed in block %s", tx.tx_hash, tx.block_number)
                else:
                    tx.status = TxStatus.FAILED
                    tx.error = "receipt status 0"
                    logger.error("Transaction %s reverted", tx.tx_hash)
                return tx
            if self._clock() >= deadline:
                tx.status = TxStatus.TIMED_OUT
                logger.warning(
                    "Transaction %s not confirmed after %.0fs; it may still be pending: %s",
                    tx.tx_hash,
                    self.max_wait,
                    tx.explorer_url or tx.tx_hash,
                )
                if raise_on_timeout:
                    raise ConfirmationTimeoutError(
                        f"Transaction {tx.tx_hash} was not confirmed within {self.max_wait:.0f}s",
                        tx_hash=tx.tx_hash,
                        remediation=f"Check {tx.explorer_url or tx.tx_hash} before resending",
                    )
                return tx
            self._sleep(self.poll_interval)


__all__ = [
    "CostPreview",
    "FundingReport",
    "FundingTransaction",
    "SkippedRecipient",
    "TransactionSubmitter",
    "TxStatus",
    "eth_to_wei",
    "wei_to_eth",
]
