"""Chain-side components: key funding and authorized-sender sync."""

from .authorization import AuthorizationSynchronizer, ContractAuthorizationTask, HardhatAuthorizationTask
from .client import ChainGateway, Web3Config, get_web3
from .funding import TransactionSubmitter, TxStatus

__all__ = [
    "AuthorizationSynchronizer",
    "ChainGateway",
    "ContractAuthorizationTask",
    "HardhatAuthorizationTask",
    "TransactionSubmitter",
    "TxStatus",
    "Web3Config",
    "get_web3",
]
