"""Job specification template and placeholder substitution."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

from ..addresses import normalize_address
from ..errors import ValidationError

JOB_NAME = "{JOB_NAME}"
FROM_ADDRESS = "{FROM_ADDRESS}"
CONTRACT_ADDRESS = "{CONTRACT_ADDRESS}"
CHAIN_ID = "<CHAIN_ID>"
GAS_PRICE_WEI = "<GAS_PRICE_WEI>"

PLACEHOLDERS = (JOB_NAME, FROM_ADDRESS, CONTRACT_ADDRESS, CHAIN_ID, GAS_PRICE_WEI)

DEFAULT_JOB_SPEC_TEMPLATE = '''type = "directrequest"
schemaVersion = 1
name = "{JOB_NAME}"
forwardingAllowed = false
maxTaskDuration = "0s"
contractAddress = "{CONTRACT_ADDRESS}"
evmChainID = "<CHAIN_ID>"
minContractPaymentLinkJuels = "0"
observationSource = """
    decode_log   [type="ethabidecodelog"
                  abi="OracleRequest(bytes32 indexed specId, address requester, bytes32 requestId, uint256 payment, address callbackAddr, bytes4 callbackFunctionId, uint256 cancelExpiration, uint256 dataVersion, bytes data)"
                  data="$(jobRun.logData)"
                  topics="$(jobRun.logTopics)"]

    decode_cbor  [type="cborparse" data="$(decode_log.data)"]

    fetch        [type="bridge"
                  name="verdikta-ai"
                  requestData="{\\\\"id\\\\": $(jobSpec.externalJobID), \\\\"data\\\\": {\\\\"cid\\\\": $(decode_cbor.cid)}}"
                  timeout="300s"]

    parse_scores [type="jsonparse" path="data,aggregatedScore" data="$(fetch)"]
    parse_cid    [type="jsonparse" path="data,justificationCid" data="$(fetch)"]

    encode_data  [type="ethabiencode"
                  abi="(bytes32 requestId, uint256[] likelihoods, string justificationCID)"
                  data="{\\\\"requestId\\\\": $(decode_log.requestId), \\\\"likelihoods\\\\": $(parse_scores), \\\\"justificationCID\\\\": $(parse_cid)}"]

    encode_tx    [type="ethabiencode"
                  abi="fulfillOracleRequest3(bytes32 requestId, uint256 payment, address callbackAddress, bytes4 callbackFunctionId, uint256 expiration, bytes calldata data)"
                  data="{\\\\"requestId\\\\": $(decode_log.requestId), \\\\"payment\\\\": $(decode_log.payment), \\\\"callbackAddress\\\\": $(decode_log.callbackAddr), \\\\"callbackFunctionId\\\\": $(decode_log.callbackFunctionId), \\\\"expiration\\\\": $(decode_log.cancelExpiration), \\\\"data\\\\": $(encode_data)}"]

    submit_tx    [type="ethtx"
                  to="{CONTRACT_ADDRESS}"
                  from="[\\\\"{FROM_ADDRESS}\\\\"]"
                  data="$(encode_tx)"
                  gasLimit="1000000"
                  gasPrice="<GAS_PRICE_WEI>"
                  evmChainID="<CHAIN_ID>"
                  minConfirmations="1"]

    decode_log -> decode_cbor -> fetch -> parse_scores -> parse_cid -> encode_data -> encode_tx -> submit_tx
"""
'''


def load_template(path: Optional[Path | str] = None) -> str:
    """Return the template at ``path`` or the built-in one.

    A custom template must carry every placeholder.
    """

    if path is None:
        return DEFAULT_JOB_SPEC_TEMPLATE
    text = Path(path).read_text(encoding="utf-8")
    missing = [token for token in PLACEHOLDERS if token not in text]
    if missing:
        raise ValidationError(f"Job spec template {path} is missing placeholder(s): {', '.join(missing)}")
    return text


def render_job_spec(
    *,
    job_name: str,
    from_address: str,
    contract_address: str,
    chain_id: int,
    gas_price_wei: int,
    template: str = DEFAULT_JOB_SPEC_TEMPLATE,
) -> str:
    """Substitute the five placeholders and nothing else."""

    if not job_name or '"' in job_name or "\n" in job_name or "\\" in job_name:
        raise ValidationError(f"Invalid job name: {job_name!r}")
    if any(token in job_name for token in PLACEHOLDERS):
        raise ValidationError(f"Job name may not contain a template placeholder: {job_name!r}")
    if isinstance(chain_id, bool) or not isinstance(chain_id, int) or chain_id <= 0:
        raise ValidationError(f"Invalid chain ID: {chain_id!r}")
    if isinstance(gas_price_wei, bool) or not isinstance(gas_price_wei, int) or gas_price_wei < 0:
        raise ValidationError(f"Invalid gas price: {gas_price_wei!r}")

    values: Dict[str, str] = {
        JOB_NAME: job_name,
        FROM_ADDRESS: normalize_address(from_address, label="signer address"),
        CONTRACT_ADDRESS: normalize_address(contract_address, label="operator contract address"),
        CHAIN_ID: str(chain_id),
        GAS_PRICE_WEI: str(gas_price_wei),
    }
    rendered = template
    for token, value in values.items():
        rendered = rendered.replace(token, value)
    return rendered


__all__ = ["DEFAULT_JOB_SPEC_TEMPLATE", "PLACEHOLDERS", "load_template", "render_job_spec"]
