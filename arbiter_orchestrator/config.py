"""Configuration models for the arbiter key and job orchestration engine."""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

Network = Literal["base_sepolia", "base_mainnet"]


class NetworkPreset(BaseModel):
    model_config = ConfigDict(frozen=True)

    chain_id: int
    explorer_url: str
    infura_host: str
    default_funding_eth: Decimal
    default_gas_price_wei: int


NETWORK_PRESETS: Dict[str, NetworkPreset] = {
    "base_sepolia": NetworkPreset(
        chain_id=84532,
        explorer_url="https://sepolia.basescan.org",
        infura_host="base-sepolia.infura.io",
        default_funding_eth=Decimal("0.005"),
        default_gas_price_wei=2_000_000_000,
    ),
    "base_mainnet": NetworkPreset(
        chain_id=8453,
        explorer_url="https://basescan.org",
        infura_host="base-mainnet.infura.io",
        default_funding_eth=Decimal("0.002"),
        default_gas_price_wei=1_000_000_000,
    ),
}


class NodeCredentials(BaseModel):
    """Login for the node's admin API and CLI."""

    email: str = Field(..., min_length=3)
    password: SecretStr

    @classmethod
    def from_api_file(cls, path: Path | str) -> "NodeCredentials":
        """Read the node's ``.api`` file: email on the first line, password on the second."""

        lines = [line.strip() for line in Path(path).read_text(encoding="utf-8").splitlines() if line.strip()]
        if len(lines) < 2:
            raise ValidationError(f"API credentials file {path} must contain an email and a password")
        return cls(email=lines[0], password=SecretStr(lines[1]))


class NodeConfig(BaseModel):
    url: str = "http://localhost:6688"
    container_name: str = "chainlink"
    credentials: Optional[NodeCredentials] = None
    request_timeout: float = Field(30.0, gt=0)
    cli_timeout: float = Field(60.0, gt=0)
    session_max_age: float = Field(1800.0, gt=0)


class ChainConfig(BaseModel):
    network: Network = "base_sepolia"
    rpc_url: Optional[str] = None
    infura_api_key: Optional[SecretStr] = None
    chain_id: Optional[int] = None
    gas_price_wei: Optional[int] = Field(None, ge=0)
    enable_poa: bool = True
    request_timeout: float = Field(30.0, gt=0)

    @property
    def preset(self) -> NetworkPreset:
        return NETWORK_PRESETS[self.network]

    @property
    def resolved_chain_id(self) -> int:
        return self.chain_id if self.chain_id is not None else self.preset.chain_id

    @property
    def resolved_gas_price_wei(self) -> int:
        return self.gas_price_wei if self.gas_price_wei is not None else self.preset.default_gas_price_wei

    def resolved_rpc_url(self) -> str:
        if self.rpc_url:
            return self.rpc_url
        if self.infura_api_key is None:
            raise ValidationError(
                "No RPC endpoint configured: set chain.rpc_url or INFURA_API_KEY",
                remediation="export INFURA_API_KEY=<your key>",
            )
        return f"https://{self.preset.infura_host}/v3/{self.infura_api_key.get_secret_value()}"

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.preset.explorer_url}/tx/{tx_hash}"


class BridgeConfig(BaseModel):
    name: str = Field("verdikta-ai", pattern=r"^[a-z0-9_-]+$")
    url: str = "http://localhost:8080/evaluate"


class JobsConfig(BaseModel):
    name_prefix: str = "Verdikta AI Arbiter"
    template_path: Optional[Path] = None
    post_login_delay: float = Field(1.0, ge=0)
    post_bridge_delay: float = Field(2.0, ge=0)
    inter_job_delay: float = Field(2.0, ge=0)
    inter_delete_delay: float = Field(1.0, ge=0)

    @field_validator("name_prefix")
    @classmethod
    def _no_quotes(cls, value: str) -> str:
        if '"' in value or "\n" in value:
            raise ValueError("job name prefix may not contain quotes or newlines")
        return value


class FundingConfig(BaseModel):
    amount_eth: Optional[Decimal] = Field(None, gt=0)
    gas_buffer_eth: Decimal = Field(Decimal("0.01"), ge=0)
    skip_threshold_ratio: Decimal = Field(Decimal("0.8"), ge=0, le=1)
    simple_transfer_gas: int = Field(21_000, gt=0)
    poll_interval: float = Field(10.0, gt=0)
    max_wait: float = Field(300.0, gt=0)
    inter_transaction_delay: float = Field(5.0, ge=0)
    private_key: Optional[SecretStr] = None


class AuthorizationConfig(BaseModel):
    mode: Literal["contract", "hardhat"] = "contract"
    timeout: float = Field(600.0, gt=0)
    kill_grace: float = Field(15.0, ge=0)
    hardhat_dir: Optional[Path] = None
    hardhat_script: str = "scripts/setAuthorizedSenders.js"
    confirmations: int = Field(2, ge=0)


class RetryConfig(BaseModel):
    attempts: int = Field(5, ge=1)
    delay: float = Field(2.0, ge=0)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_file: Optional[Path] = None


class ProvisionerConfig(BaseModel):
    node: NodeConfig = Field(default_factory=NodeConfig)
    chain: ChainConfig = Field(default_factory=ChainConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    funding: FundingConfig = Field(default_factory=FundingConfig)
    authorization: AuthorizationConfig = Field(default_factory=AuthorizationConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    registry_path: Path = Path("installer/.contracts")

    @model_validator(mode="after")
    def _chain_id_matches_network(self) -> "ProvisionerConfig":
        if self.chain.chain_id is not None and self.chain.chain_id != self.chain.preset.chain_id:
            raise ValueError(
                f"chain_id {self.chain.chain_id} does not match network {self.chain.network} "
                f"({self.chain.preset.chain_id})"
            )
        return self

    @property
    def funding_amount_eth(self) -> Decimal:
        return self.funding.amount_eth if self.funding.amount_eth is not None else self.chain.preset.default_funding_eth

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProvisionerConfig":
        try:
            return cls.model_validate(dict(data))
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid configuration: {exc}") from exc

    @classmethod
    def load(cls, path: Path | str, environ: Optional[Mapping[str, str]] = None) -> "ProvisionerConfig":
        file_path = Path(path)
        with file_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            raise ValidationError(f"Configuration file {file_path} must contain a mapping")
        return cls.from_dict(_merge(data, _env_overrides(environ if environ is not None else os.environ)))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProvisionerConfig":
        return cls.from_dict(_env_overrides(environ if environ is not None else os.environ))


_ENV_FIELDS: List[tuple[str, tuple[str, ...]]] = [
    ("DEPLOYMENT_NETWORK", ("chain", "network")),
    ("RPC_URL", ("chain", "rpc_url")),
    ("INFURA_API_KEY", ("chain", "infura_api_key")),
    ("GAS_PRICE_WEI", ("chain", "gas_price_wei")),
    ("CHAINLINK_URL", ("node", "url")),
    ("CHAINLINK_CONTAINER_NAME", ("node", "container_name")),
    ("BRIDGE_URL", ("bridge", "url")),
    ("FUNDING_AMOUNT_ETH", ("funding", "amount_eth")),
    ("PRIVATE_KEY", ("funding", "private_key")),
    ("ARBITER_REGISTRY_PATH", ("registry_path",)),
]


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_key, path in _ENV_FIELDS:
        raw = environ.get(env_key)
        if raw is None or raw.strip() == "":
            continue
        cursor = overrides
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path[-1]] = raw.strip()
    email = environ.get("CHAINLINK_API_EMAIL")
    password = environ.get("CHAINLINK_API_PASSWORD")
    if email and password:
        overrides.setdefault("node", {})["credentials"] = {"email": email, "password": password}
    return overrides


def _merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = _merge(current, value)
        else:
            merged[key] = value
    return merged


__all__ = [
    "AuthorizationConfig",
    "BridgeConfig",
    "ChainConfig",
    "FundingConfig",
    "JobsConfig",
    "LoggingConfig",
    "NETWORK_PRESETS",
    "NetworkPreset",
    "NodeConfig",
    "NodeCredentials",
    "ProvisionerConfig",
    "RetryConfig",
]
