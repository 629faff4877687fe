import asyncio
import logging
from dataclasses import dataclass

from passkey_userop.exceptions import RpcTransportError
from passkey_userop.metrics.metrics import FEE_ORACLE_FALLBACKS
from passkey_userop.utils.eth_client_utils import (
    EthClient, get_latest_block_info, get_rpc_error_message)

GWEI = 10**9
DEFAULT_MAX_FEE_PER_GAS = 30 * GWEI
DEFAULT_MAX_PRIORITY_FEE_PER_GAS = 2 * GWEI


@dataclass(frozen=True)
class GasPolicy:
    """
    Fixed gas limits. Estimation against a wallet that does not exist yet
    is unreliable, so limits are sized for the known call shapes instead.
    """
    deployed_verification_gas_limit: int = 500_000
    # deployment + P-256 verification in the same validation phase
    undeployed_verification_gas_limit: int = 2_000_000
    single_call_gas_limit: int = 200_000
    batch_call_gas_limit: int = 400_000
    pre_verification_gas: int = 100_000

    def get_verification_gas_limit(self, is_deployed: bool) -> int:
        if is_deployed:
            return self.deployed_verification_gas_limit
        return self.undeployed_verification_gas_limit

    def get_call_gas_limit(self, is_batch: bool) -> int:
        if is_batch:
            return self.batch_call_gas_limit
        return self.single_call_gas_limit


@dataclass(frozen=True)
class FeeData:
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    is_fallback: bool = False


class GasManager:
    client: EthClient
    default_max_fee_per_gas: int
    default_max_priority_fee_per_gas: int

    def __init__(
        self,
        client: EthClient,
        default_max_fee_per_gas: int = DEFAULT_MAX_FEE_PER_GAS,
        default_max_priority_fee_per_gas: int = DEFAULT_MAX_PRIORITY_FEE_PER_GAS,
    ):
        self.client = client
        self.default_max_fee_per_gas = default_max_fee_per_gas
        self.default_max_priority_fee_per_gas = default_max_priority_fee_per_gas

    def get_default_fee_data(self) -> FeeData:
        FEE_ORACLE_FALLBACKS.inc()
        return FeeData(
            self.default_max_fee_per_gas,
            self.default_max_priority_fee_per_gas,
            is_fallback=True,
        )

    async def get_fee_data(self) -> FeeData:
        """
        Current EIP-1559 fees. Any oracle failure, or a missing value,
        yields the configured defaults rather than an error.
        """
        try:
            block_info, priority_fee_res = await asyncio.gather(
                get_latest_block_info(self.client),
                self.client.send_rpc_request("eth_maxPriorityFeePerGas", []),
            )
        except (KeyError, TypeError, ValueError) as excp:
            logging.warning(
                f"Malformed fee data, using default fees. error: {excp!r}")
            return self.get_default_fee_data()
        except RpcTransportError as excp:
            logging.warning(
                f"Fee data unavailable, using default fees. error: {excp.message}")
            return self.get_default_fee_data()

        _, base_fee = block_info
        priority_fee_hex = priority_fee_res.get("result")
        if base_fee is None or priority_fee_hex is None:
            logging.warning(
                "Fee data incomplete, using default fees. "
                f"baseFee: {base_fee} "
                f"maxPriorityFeePerGas: {get_rpc_error_message(priority_fee_res) or priority_fee_hex}"
            )
            return self.get_default_fee_data()

        try:
            max_priority_fee_per_gas = int(priority_fee_hex, 16)
        except (TypeError, ValueError):
            logging.warning(
                f"Invalid maxPriorityFeePerGas {priority_fee_hex}, using default fees")
            return self.get_default_fee_data()

        max_fee_per_gas = base_fee * 2 + max_priority_fee_per_gas
        return FeeData(max_fee_per_gas, max_priority_fee_per_gas)
